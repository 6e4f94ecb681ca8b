from typing import Optional
from fastapi import Request, HTTPException, status
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from app.core.config import settings
from uuid import UUID
from pydantic import BaseModel

bearer_scheme = HTTPBearer()
optional_bearer_scheme = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    id: UUID
    role: str = "CLIENT"

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"


def _decode_token(token: str) -> CurrentUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authorized",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        user_id = payload.get("sub")
        if not user_id:
            raise credentials_exception
        return CurrentUser(id=UUID(user_id), role=payload.get("role") or "CLIENT")
    except (JWTError, ValueError):
        raise credentials_exception


def get_current_user(request: Request, credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> CurrentUser:
    user = _decode_token(credentials.credentials)
    # Establecer el user_id en el estado de la solicitud
    request.state.user_id = user.id
    return user


def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer_scheme)
) -> Optional[CurrentUser]:
    """Para rutas del checkout que también acepta visitantes sin sesión."""
    if credentials is None:
        return None
    user = _decode_token(credentials.credentials)
    request.state.user_id = user.id
    return user
