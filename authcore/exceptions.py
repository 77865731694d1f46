class AuthCoreError(Exception):
    """Base exception for the authentication core."""

    pass


class StoreUnavailableError(AuthCoreError):
    """Raised when the key-value store cannot be reached or rejects a command."""

    pass


class SessionDataCorruptedError(AuthCoreError):
    """Raised when a stored session record cannot be parsed."""

    pass


class InvalidConfigurationError(AuthCoreError):
    """Raised when session or brute-force options contradict each other."""

    pass
