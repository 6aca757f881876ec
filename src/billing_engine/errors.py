"""
Exception hierarchy for the billing engine.
"""


class BillingEngineError(Exception):
    """Base class for all billing engine errors."""


class RuleStoreError(BillingEngineError):
    """The active rule set could not be loaded. Fatal to a pricing run."""


class RuleValidationError(BillingEngineError):
    """A markup rule failed validation."""

    def __init__(self, message: str, errors: list[str] = None):
        super().__init__(message)
        self.errors = errors or []


class InvalidChargeError(BillingEngineError):
    """A computed charge cannot be persisted (non-finite or sign flipped)."""


class PersistenceError(BillingEngineError):
    """A single transaction update could not be written."""
