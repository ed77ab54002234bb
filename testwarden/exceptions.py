"""Exception hierarchy for testwarden."""


class TestWardenError(Exception):
    """Base exception for all testwarden errors."""


class ValidationError(TestWardenError):
    """Raised when a request is rejected before any mutation."""


class PersistenceError(TestWardenError):
    """Raised when storage fails and the unit of work is rolled back."""


class ClientTransportError(TestWardenError):
    """Raised when a runner cannot reach the testwarden API."""


class ConfigError(TestWardenError):
    """Raised when configuration is invalid."""
