from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

import jwt

from clinicflow.core.config import settings

STAFF_ROLES = frozenset({"admin", "nurse", "receptionist"})
ROLES = STAFF_ROLES | {"doctor", "patient"}


@dataclass(frozen=True)
class Actor:
    id: UUID
    role: str
    name: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_doctor(self) -> bool:
        return self.role == "doctor"

    @property
    def is_patient(self) -> bool:
        return self.role == "patient"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Actor:
    """Raises ``jwt.PyJWTError`` or ``ValueError`` for unusable tokens."""
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    subject = payload.get("sub")
    role = payload.get("role")
    if subject is None or role not in ROLES:
        raise ValueError("token is missing a subject or a known role")
    return Actor(id=UUID(subject), role=role, name=payload.get("name"))
