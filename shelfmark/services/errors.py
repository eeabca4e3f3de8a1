"""Exceptions raised by the service layer and mapped to HTTP responses by the API."""


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Request payload is missing required fields or violates an invariant."""

    status_code = 400


class NotFoundError(ServiceError):
    """Entity does not exist or is not owned by the requesting user."""

    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


class UpstreamServiceError(ServiceError):
    """
    An enrichment collaborator (AI categorization, page fetch) failed.

    Callers on the save path catch this and fall back; it never reaches a client
    as the result of a bookmark save.
    """

    status_code = 502
