"""Domain exceptions raised by the service layer.

Routers translate these into HTTP responses; jobs log and continue.
"""


class PortalError(Exception):
    """Base class for all portal errors."""

    status_code = 500


class NotFoundError(PortalError):
    status_code = 404


class PermissionDeniedError(PortalError):
    status_code = 403


class ValidationError(PortalError):
    status_code = 400
