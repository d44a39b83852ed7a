"""
Error taxonomy of the visitor access lifecycle.

Four families, each with a distinct caller reaction:

- ValidationError: the caller's input is wrong; fix it, do not retry.
- ConflictError: a race or a stale client view; refresh state first.
- NotFoundError: the referenced visit or unit does not exist.
- DependencyError: a collaborator is unreachable; try again later.

NotAuthorizedError sits on its own because the caller is the wrong actor.
"""


class GatepassError(Exception):
    """Base class for all lifecycle errors."""

    code: str = "gatepass_error"

    def __init__(self, message: str | None = None):
        self.message = message or (self.__doc__ or self.code).strip()
        super().__init__(self.message)


class ValidationError(GatepassError):
    """Request input is invalid."""

    code = "validation_error"


class MissingDocumentError(ValidationError):
    """A required identity or vehicle document is missing."""

    code = "missing_document"


class UnexpectedDocumentError(ValidationError):
    """A vehicle document was supplied for a pedestrian visit."""

    code = "unexpected_document"


class InvalidPinError(ValidationError):
    """The visitor PIN was rejected."""

    code = "invalid_pin"


class MalformedTokenError(ValidationError):
    """The presented credential token is malformed."""

    code = "malformed_token"


class ConflictError(GatepassError):
    """The visit request changed state underneath the caller."""

    code = "conflict"


class AlreadyDecidedError(ConflictError):
    """The visit request has already been decided."""

    code = "already_decided"


class RequestExpiredError(ConflictError):
    """The visit request expired before a decision was made."""

    code = "request_expired"


class NotFoundError(GatepassError):
    """The referenced record does not exist."""

    code = "not_found"


class VisitRequestNotFoundError(NotFoundError):
    """Visit request not found."""

    code = "visit_request_not_found"


class UnitNotFoundError(NotFoundError):
    """No resident is registered for the unit."""

    code = "unit_not_found"


class NotAuthorizedError(GatepassError):
    """The acting resident may not decide this visit request."""

    code = "not_authorized"


class DependencyError(GatepassError):
    """An external collaborator is unavailable."""

    code = "dependency_unavailable"
