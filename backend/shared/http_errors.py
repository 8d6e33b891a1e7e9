from fastapi import HTTPException
from fastapi import status

from shared.models.exceptions import ScenarioAnalysisException


def create_http_exception(exc: ScenarioAnalysisException) -> HTTPException:
    """
    Convert a ScenarioAnalysisException into an HTTPException.

    Uses each exception's `status_code` and `error_code` attributes for the response.

    Example:
        try:
            status = orchestrator.get_status(scenario_id)
        except ScenarioAnalysisException as e:
            raise create_http_exception(e)
    """
    detail = {
        "error": exc.error_code,
        "message": str(exc)
    }
    # Use the exception's own status_code if provided, otherwise fallback
    status_code = getattr(exc, "status_code", status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail=detail
    )


__all__ = [
    "create_http_exception",
]
