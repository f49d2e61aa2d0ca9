from fastapi import HTTPException, status

from ...services.errors import ServiceError, NotFoundError, AuthorizationError


def to_http_exception(error: ServiceError) -> HTTPException:
    """Maps a service-layer error to the HTTP status shown to the client."""
    if isinstance(error, NotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, AuthorizationError):
        status_code = status.HTTP_403_FORBIDDEN
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=status_code, detail=error.to_detail())
