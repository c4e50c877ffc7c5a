"""Domain exceptions."""


class ValidationError(ValueError):
    """Raised when a caller passes a malformed date key, mood, entry or settings value."""

    pass


class InvariantError(AssertionError):
    """Raised in strict mode when a record would break a storage invariant."""

    pass
