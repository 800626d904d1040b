"""
Registry credential resolution.

Reads the Docker CLI config (``config.json``) including credential helpers
through ``docker.auth``, and encodes credential bundles for the daemon's
registry auth headers.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol

from docker import auth as docker_auth
from docker.credentials import StoreError
from docker.errors import DockerException
from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..exceptions import AuthResolutionError
from .reference import (
    DEFAULT_REGISTRY,
    DOCKER_HUB_INDEX_SERVER,
    normalize_registry_key,
    registry_host,
)

log = logging.getLogger(__name__)


class AuthConfig(BaseModel):
    """Credential bundle for one registry, in the daemon's wire field names."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    username: Optional[str] = None
    password: Optional[str] = None
    auth: Optional[str] = None
    email: Optional[str] = None
    server_address: Optional[str] = Field(None, alias="serveraddress")
    identity_token: Optional[str] = Field(None, alias="identitytoken")
    registry_token: Optional[str] = Field(None, alias="registrytoken")

    @model_validator(mode="before")
    @classmethod
    def _lowercase_keys(cls, data: Any) -> Any:
        # Credential helpers answer with "Username", "ServerAddress", ...
        if isinstance(data, Mapping):
            return {str(key).lower(): value for key, value in data.items()}
        return data

    def is_anonymous(self) -> bool:
        return not (
            self.username
            or self.password
            or self.auth
            or self.identity_token
            or self.registry_token
        )

    def to_wire(self) -> Dict[str, str]:
        return self.model_dump(by_alias=True, exclude_none=True)


def encode_auth_config(config: Optional[AuthConfig]) -> str:
    """Encode one credential bundle for the X-Registry-Auth header."""
    payload = config.to_wire() if config is not None else {}
    return docker_auth.encode_header(payload).decode("ascii")


def encode_auth_configs(configs: Dict[str, AuthConfig]) -> str:
    """Encode a registry -> credentials mapping for the X-Registry-Config header."""
    payload = {key: config.to_wire() for key, config in configs.items()}
    return docker_auth.encode_header(payload).decode("ascii")


class CredentialStore(Protocol):
    """Source of registry credentials."""

    def all_auth_configs(self) -> Dict[str, AuthConfig]: ...

    def auth_config_for_reference(self, ref: str) -> AuthConfig: ...


class DockerConfigCredentialStore:
    """Credential store backed by the Docker CLI config directory."""

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        credstore_env: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize credential store.

        Args:
            config_dir: Directory holding config.json (defaults to ~/.docker)
            credstore_env: Environment for docker-credential-* helpers
        """
        self.config_file = (config_dir or Path.home() / ".docker") / "config.json"
        self.credstore_env = credstore_env

    def _load_config(self) -> docker_auth.AuthConfig:
        if not self.config_file.exists():
            log.debug(f"No docker config at {self.config_file}, using anonymous auth")
            return docker_auth.AuthConfig({}, self.credstore_env)

        try:
            with open(self.config_file, "r") as f:
                config_dict = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            raise AuthResolutionError(
                "read auth configs", f"cannot load {self.config_file}: {e}"
            ) from e

        if not isinstance(config_dict, dict):
            raise AuthResolutionError(
                "read auth configs", f"{self.config_file} is not a JSON object"
            )
        if not config_dict:
            # load_config would fall back to the user's own config file
            return docker_auth.AuthConfig({}, self.credstore_env)

        try:
            return docker_auth.load_config(
                config_dict=config_dict, credstore_env=self.credstore_env
            )
        except (DockerException, ValueError) as e:
            raise AuthResolutionError("read auth configs", str(e)) from e

    def all_auth_configs(self) -> Dict[str, AuthConfig]:
        """
        Get credentials for every registry the config knows about.

        Covers ``auths`` entries, every server listed by ``credsStore`` and
        every ``credHelpers`` registry.

        Returns:
            Mapping of registry key to credentials, anonymous entries omitted
        """
        config = self._load_config()
        try:
            entries = config.get_all_credentials()
        except (DockerException, StoreError) as e:
            raise AuthResolutionError("read auth configs", str(e)) from e

        configs: Dict[str, AuthConfig] = {}
        for key, entry in entries.items():
            if not entry:
                continue
            auth = AuthConfig.model_validate(entry)
            if not auth.is_anonymous():
                configs[key] = auth
        return configs

    def auth_config_for_reference(self, ref: str) -> AuthConfig:
        """
        Get credentials for the registry an image reference points at.

        Args:
            ref: Image reference

        Returns:
            Credentials for that registry, anonymous when none are stored
        """
        host = registry_host(ref)
        server = DOCKER_HUB_INDEX_SERVER if host == DEFAULT_REGISTRY else host

        config = self._load_config()
        try:
            entry = config.resolve_authconfig(host)
        except (DockerException, StoreError) as e:
            raise AuthResolutionError(f"getting credentials for {host}", str(e)) from e

        if not entry:
            return AuthConfig(server_address=server)

        auth = AuthConfig.model_validate(entry)
        if auth.server_address is None:
            auth = auth.model_copy(update={"server_address": server})
        return auth


class AuthResolver:
    """Resolve registry credentials for build and push requests."""

    def __init__(self, store: CredentialStore):
        self.store = store

    def for_build(self) -> Dict[str, AuthConfig]:
        """All known credentials, since a build may pull from several registries."""
        try:
            return dict(self.store.all_auth_configs())
        except AuthResolutionError:
            raise
        except Exception as e:
            raise AuthResolutionError("read auth configs", str(e)) from e

    def for_push(self, ref: str) -> AuthConfig:
        """
        Credentials scoped to the single registry a push targets.

        Raises:
            AuthResolutionError: If the store fails or answers for another registry
        """
        step = f"getting auth config for {ref}"
        try:
            host = registry_host(ref)
            config = self.store.auth_config_for_reference(ref)
        except Exception as e:
            raise AuthResolutionError(step, str(e)) from e

        if config.server_address and normalize_registry_key(config.server_address) != host:
            raise AuthResolutionError(
                step,
                f"credential store returned credentials for "
                f"{config.server_address}, expected {host}",
            )
        return config
