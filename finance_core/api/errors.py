"""
Mapping of engine errors to HTTP responses
"""

from fastapi import HTTPException, status

from ..errors import ConflictError, FinanceCoreError, NotFoundError, StateError, ValidationError


_STATUS_CODES = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    StateError: status.HTTP_409_CONFLICT,
}


def to_http_error(error: FinanceCoreError) -> HTTPException:
    """HTTPException carrying the engine error's message"""
    for error_type, status_code in _STATUS_CODES.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
