"""
Error taxonomy for rule management and message processing.
"""


class AutoresponderError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(AutoresponderError):
    """Rule definition is invalid. Raised at create/update time."""

    def __init__(self, message, field=None):
        super().__init__(message)
        self.field = field


class NotFoundError(AutoresponderError):
    """Operation referenced a rule id that does not exist."""

    def __init__(self, rule_id):
        super().__init__(f"Autoresponder not found: {rule_id}")
        self.rule_id = rule_id


class ConflictError(AutoresponderError):
    """A rule with the same name already exists for the owner."""


class StoreError(AutoresponderError):
    """The rule store is unavailable or failed the request."""


class ProviderError(AutoresponderError):
    """Text generation provider failed (timeout, auth, rate limit, bad response)."""

    def __init__(self, message, provider=None):
        super().__init__(message)
        self.provider = provider
