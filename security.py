import logging
from typing import Any, Dict, List, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database

from config import Settings, get_settings
from customers import get_or_create_customer, is_admin
from database import get_db
from errors import AuthenticationError, ForbiddenError

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str, settings: Settings) -> Dict[str, Any]:
    options = {"require": ["sub", "exp"], "verify_aud": settings.JWT_AUDIENCE is not None}
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.warning("Rejected bearer token: %s", e)
        raise AuthenticationError("Invalid authentication")


def token_roles(claims: Dict[str, Any], settings: Settings) -> List[str]:
    roles = claims.get(settings.ROLES_CLAIM) or []
    if isinstance(roles, str):
        roles = [roles]
    return [str(r) for r in roles]


def get_current_customer(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Not authenticated")
    claims = decode_token(credentials.credentials, settings)
    return get_or_create_customer(db, claims, token_roles(claims, settings))


def get_current_admin(
    customer: Dict[str, Any] = Depends(get_current_customer),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    if not is_admin(customer, settings.ADMIN_ROLE):
        raise ForbiddenError("Admin access required")
    return customer
