"""Error taxonomy shared by the prediction core and market-data collaborators."""


class AlphaError(Exception):
    """Base exception for alphascroll errors."""


class ValidationError(AlphaError):
    """Bad input to a write path. Surfaced to the caller, never retried."""


class PersistenceError(AlphaError):
    """Storage backend unreachable or failed. Retried at the next natural opportunity."""


class TransientFetchError(AlphaError):
    """Price or market lookup failed or timed out. Retried on the next pass."""


class NotFoundError(AlphaError):
    """Unknown user or token.

    Core read paths return None instead; adapters raise this when they need
    an exception (e.g. to pick a CLI exit code).
    """
