"""Custom exceptions for dockship.

Every error names the step that failed so a caller or a log line can
localize the fault without inspecting internals.
"""

from typing import Optional


class DockshipError(Exception):
    """Base exception for image build, push and lookup failures."""

    def __init__(self, step: str, message: str):
        """Initialize with the failing step and a description.

        Args:
            step: Short name of the step that failed (e.g. "tar workspace").
            message: Description of what went wrong.
        """
        self.step = step
        self.message = message
        super().__init__(f"{step}: {message}")


class ConfigurationError(DockshipError):
    """Raised for invalid paths or an unreadable Dockerfile."""

    pass


class AuthResolutionError(DockshipError):
    """Raised when registry credentials cannot be resolved."""

    pass


class ContextAssemblyError(DockshipError):
    """Raised when the build context archive cannot be produced."""

    pass


class DependencyResolutionError(ContextAssemblyError):
    """Raised when the Dockerfile dependency parser fails."""

    pass


class SubmissionError(DockshipError):
    """Raised when the daemon rejects a request outright."""

    def __init__(self, step: str, message: str, status_code: Optional[int] = None):
        super().__init__(step, message)
        self.status_code = status_code


class StreamError(DockshipError):
    """Raised when the daemon reports an error partway through a stream.

    Also covers transport failures and undecodable data while the event
    stream is being read.
    """

    def __init__(self, step: str, message: str, code: Optional[int] = None):
        super().__init__(step, message)
        self.code = code


class DaemonQueryError(DockshipError):
    """Raised when a read-only daemon query (image listing) fails."""

    pass
