"""Request-scoped dependencies: current user, their sync preferences, the service."""
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session, select

from finance.config import Settings, get_settings
from finance.db.engine import get_session
from finance.models.ledger import User
from finance.models.settings import SyncPreferences
from finance.sync.service import SyncService

bearer = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    session: Session = Depends(get_session),
) -> User:
    """Resolve the bearer token to a User, or 401."""
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user = session.exec(
        select(User).where(User.api_token == credentials.credentials)
    ).first()
    if not user:
        raise HTTPException(
            status_code=401,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_sync_preferences(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> SyncPreferences:
    return SyncPreferences.load(session, user.id, settings)


def get_sync_service(
    session: Session = Depends(get_session),
    preferences: SyncPreferences = Depends(get_sync_preferences),
) -> SyncService:
    return SyncService(session, preferences)
