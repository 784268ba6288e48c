"""
Router dependencies: bearer token extraction and POS session lookup.
"""
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from hare_pos.services.session_service import PosSession, session_service
from hare_pos.utils.exceptions import AuthenticationError

bearer_scheme = HTTPBearer(auto_error=False)


async def get_access_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Missing bearer token")
    return credentials.credentials


async def get_session(token: str = Depends(get_access_token)) -> PosSession:
    """The caller's open POS session; sign in via POST /api/session first."""
    session = session_service.get(token)
    if session is None:
        raise AuthenticationError("No open session for this token")
    return session
