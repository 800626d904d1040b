"""Image reference helpers.

A reference is ``[registry/]repository[:tag][@digest]``. Parsing is left to
the docker SDK; this module only adapts it to credential scoping, push
requests and digest lookups.
"""

from docker.auth import INDEX_NAME, INDEX_URL, resolve_index_name, resolve_repository_name
from docker.utils import parse_repository_tag

DEFAULT_REGISTRY = INDEX_NAME
DEFAULT_TAG = "latest"

# Key under which the Docker CLI stores Docker Hub credentials
DOCKER_HUB_INDEX_SERVER = INDEX_URL


def registry_host(ref: str) -> str:
    """
    Get the registry host an image reference points at.

    Args:
        ref: Image reference (e.g. "gcr.io/project/app:v1" or "app")

    Returns:
        Registry host, "docker.io" when the reference has no domain

    Raises:
        docker.errors.InvalidRepository: If the reference is malformed
    """
    repository, _ = parse_repository_tag(ref.strip())
    index_name, _ = resolve_repository_name(repository)
    return index_name


def normalize_registry_key(key: str) -> str:
    """
    Reduce a credential store key to a bare registry host.

    Keys may be plain hosts or URLs such as "https://index.docker.io/v1/".
    """
    return resolve_index_name(key.strip())


def is_digest_reference(ref: str) -> bool:
    return "@" in ref


def with_latest_tag(ref: str) -> str:
    """
    Append the "latest" tag to a reference.

    The tag is appended unconditionally, so a reference that already carries
    a tag yields a string no image is tagged with.
    """
    return f"{ref}:{DEFAULT_TAG}"
