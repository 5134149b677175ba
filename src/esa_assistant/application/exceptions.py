"""Application-level exceptions.

These are business-logic errors, not transport errors. The handlers
translate them into chat messages.
"""


class GenerationError(RuntimeError):
    """Raised when the model stops generating for a reason other than a normal finish."""


class EsaConfigError(ValueError):
    """Raised when the esa client is created without credentials or team name."""
