"""Dependencies for FastAPI routes."""
from fastapi import HTTPException, Request, status

from app.services.planner_session import PlannerSession


def get_planner_session(request: Request) -> PlannerSession:
    """
    Return the process-wide planner session created at startup.

    Raises:
        HTTPException: The application has not finished starting
    """
    session = getattr(request.app.state, "planner", None)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Planner not initialised",
        )
    return session
