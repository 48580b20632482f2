from fastapi import HTTPException, status

from leadroute.exceptions import (
    ConcurrencyConflict,
    LeadNotFound,
    LeadRoutingError,
    PolicyViolation,
    StateViolation,
)


def to_http_exception(error: LeadRoutingError) -> HTTPException:
    """
    Maps an engine error to an HTTP error with a distinguishable code.

    404 for a missing lead, 409 for state violations and concurrency
    conflicts (the latter marked retryable), 422 for policy violations.
    """
    if isinstance(error, LeadNotFound):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, (StateViolation, ConcurrencyConflict)):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(error, PolicyViolation):
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    return HTTPException(
        status_code=status_code,
        detail={
            "code": error.code,
            "message": str(error),
            "retryable": error.retryable,
        },
    )
