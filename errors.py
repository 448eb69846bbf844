class AuthorizationError(Exception):
    """Missing or invalid caller identity."""


class ValidationError(ValueError):
    """A write payload was rejected; the message is the user-facing reason."""


class DuplicateUserError(ValidationError):
    pass


class MalformedInputError(ValueError):
    pass


class StoreError(Exception):
    """The record store could not serve a query or write."""
