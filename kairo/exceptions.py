"""Custom exception classes for Kairo."""

from typing import Optional


class KairoError(Exception):
    """Base class for all Kairo errors."""


class ConfigurationError(KairoError):
    """Raised at startup when required settings or credentials are missing."""


class BackendUnavailable(KairoError):
    """Raised when the primary memory backend cannot be reached.

    Attributes:
        backend: Name of the backend that failed
    """

    def __init__(self, message: str, backend: Optional[str] = None):
        super().__init__(message)
        self.backend = backend


class RecordNotFound(KairoError):
    """Raised by backends when a record id does not exist."""

    def __init__(self, record_id: str):
        super().__init__(f"Memory record not found: {record_id}")
        self.record_id = record_id


class DispatchFailure(KairoError):
    """Raised when a target agent fails or times out while handling input.

    Attributes:
        agent_id: Agent that failed
    """

    def __init__(self, message: str, agent_id: str):
        super().__init__(message)
        self.agent_id = agent_id
