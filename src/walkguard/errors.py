class WalkguardError(Exception):
    """Base class for all errors raised by walkguard."""


class ConfigError(WalkguardError):
    """A policy or report configuration is missing or malformed."""


class IntegrityError(WalkguardError):
    """A reviewed Walk no longer matches the fingerprint stored in its Review."""


class PersistenceError(WalkguardError):
    """A Walk or Reviews artifact could not be read or written."""


class ComparisonDefect(WalkguardError):
    """
    A structural anomaly inside a Walk, such as the same path recorded twice.

    The Comparer normally records these as notifications and continues; it
    only raises when asked to run in strict mode.
    """

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path: str = path
        self.message: str = message
