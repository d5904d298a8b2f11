from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from mailmaint.core.config import settings
from mailmaint import schemas
import logging
import uuid

logger = logging.getLogger(__name__)

MAINTENANCE_SCOPE = "maintenance"

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_operator(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> schemas.TokenData:
    if not settings.SECRET_KEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Operator authentication is not configured",
        )

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception

    try:
        payload = jwt.decode(credentials.credentials, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        operator: Optional[str] = payload.get("sub")
        if operator is None:
            raise credentials_exception
        token_data = schemas.TokenData(operator=operator, scope=payload.get("scope"))
    except JWTError:
        raise credentials_exception

    return token_data


def get_maintenance_operator(
    token: schemas.TokenData = Depends(get_current_operator),
) -> schemas.TokenData:
    if token.scope != MAINTENANCE_SCOPE:
        raise HTTPException(status_code=403, detail="The operator doesn't have enough privileges")
    return token


def create_access_token(operator: str, scope: str = MAINTENANCE_SCOPE, expires_delta: Optional[timedelta] = None) -> str:
    """create operator access token"""
    if not settings.SECRET_KEY:
        raise RuntimeError("SECRET_KEY is not set")
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": operator, "scope": scope, "exp": expire, "jti": str(uuid.uuid4())}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def audit_log(message: str):
    logger.info(f"[AUDIT] {datetime.now(timezone.utc).isoformat()} - {message}")
