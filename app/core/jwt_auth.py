# app/core/jwt_auth.py
"""
JWT Authentication for multi-tenant API access.
Validates JWT tokens issued by the console's auth service.
"""
import jwt
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from fastapi import HTTPException

from app.core import config


class JWTAuth:
    """JWT Authentication handler"""

    @staticmethod
    def decode_token(token: str) -> Dict[str, Any]:
        """
        Decode and validate JWT token.

        Args:
            token: JWT token string

        Returns:
            Decoded token payload

        Raises:
            HTTPException: If token is invalid or expired
        """
        if not config.JWT_SECRET_KEY:
            raise HTTPException(status_code=401, detail="JWT authentication is not configured")

        try:
            payload = jwt.decode(
                token,
                config.JWT_SECRET_KEY,
                algorithms=[config.JWT_ALGORITHM]
            )
        except jwt.ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token has expired")
        except jwt.InvalidTokenError:
            raise HTTPException(status_code=401, detail="Invalid token")

        exp = payload.get('exp')
        if exp and datetime.fromtimestamp(exp, tz=timezone.utc) < datetime.now(timezone.utc):
            raise HTTPException(status_code=401, detail="Token has expired")

        return payload

    @staticmethod
    def get_tenant_id(payload: Dict[str, Any]) -> Optional[str]:
        """Extract tenant_id from JWT payload (several key spellings are in use)"""
        tenant_id = (
            payload.get('tenant_id') or
            payload.get('tenant') or
            payload.get('tenantId')
        )

        if isinstance(tenant_id, dict):
            tenant_id = tenant_id.get('id') or tenant_id.get('tenant_id')

        return str(tenant_id) if tenant_id else None

    @staticmethod
    def get_user_id(payload: Dict[str, Any]) -> Optional[str]:
        user_id = (
            payload.get('user_id') or
            payload.get('sub') or
            payload.get('id')
        )
        return str(user_id) if user_id else None
