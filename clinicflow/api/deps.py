from datetime import datetime
from typing import Callable, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import PyJWTError
from sqlalchemy.ext.asyncio import AsyncSession

from clinicflow.clients.notifications import notification_client
from clinicflow.clients.predictor import predictor_client
from clinicflow.clients.service_durations import service_durations
from clinicflow.core.security import Actor, decode_access_token
from clinicflow.db.session import get_session
from clinicflow.lifecycle.time_windows import utcnow
from clinicflow.services.lifecycle_service import LifecycleService

bearer_scheme = HTTPBearer(auto_error=False)

async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Actor:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    try:
        return decode_access_token(credentials.credentials)
    except (PyJWTError, ValueError):
        raise credentials_exception

def get_predictor():
    return predictor_client

def get_notifier():
    return notification_client

def get_durations():
    return service_durations

def get_clock() -> Callable[[], datetime]:
    return utcnow

async def get_lifecycle_service(
    session: AsyncSession = Depends(get_session),
    predictor=Depends(get_predictor),
    notifier=Depends(get_notifier),
    durations=Depends(get_durations),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> LifecycleService:
    return LifecycleService(session, predictor=predictor, notifier=notifier, durations=durations, clock=clock)
