"""Request dependencies.

The session lives on ``app.state.session`` (set by the lifespan or by tests)
and is handed to routes through Depends(get_session).
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from gameshaper.session import GameShaperSession


def get_session(request: Request) -> GameShaperSession:
    """Get the session bound to the running app.

    Raises:
        HTTPException: 503 if the app has no session yet
    """
    session: GameShaperSession | None = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session not initialized",
        )
    return session
