"""
Internal Service Authentication

API key authentication for the operator console and other internal
callers. Mutating reconciliation endpoints require it.

Configuration (see config.Settings):
    INTERNAL_API_KEY: Primary API key
    INTERNAL_API_KEYS: Comma-separated additional keys (for key rotation)

Usage:
    from middleware.internal_auth import require_internal_service

    @router.post("/confirm")
    async def confirm(
        request: ConfirmRequest,
        service: InternalService = Depends(require_internal_service)
    ):
        ...

Headers:
    X-Internal-Api-Key: <api_key>
    X-Service-Name: <service_name> (optional, for logging)
"""

import secrets
import logging
from typing import Optional, List
from dataclasses import dataclass

from fastapi import Request, HTTPException, status, Depends
from fastapi.security import APIKeyHeader

from config import get_settings

logger = logging.getLogger(__name__)

# Header names
API_KEY_HEADER = "X-Internal-Api-Key"
SERVICE_NAME_HEADER = "X-Service-Name"


@dataclass
class InternalService:
    """Represents an authenticated internal caller"""
    name: str
    api_key_hash: str  # Last 8 chars of key for logging


def get_valid_api_keys() -> List[str]:
    return get_settings().internal_api_keys


def validate_internal_key(api_key: Optional[str], valid_keys: Optional[List[str]] = None) -> bool:
    """
    Validate an internal API key.

    Args:
        api_key: The API key to validate
        valid_keys: Accepted keys (defaults to the configured keys)

    Returns:
        True if valid, False otherwise
    """
    if not api_key:
        return False

    if valid_keys is None:
        valid_keys = get_valid_api_keys()

    # Constant-time comparison
    for valid_key in valid_keys:
        if secrets.compare_digest(api_key, valid_key):
            return True

    return False


# FastAPI dependency for API key header
api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


async def get_internal_service(
    request: Request,
    api_key: Optional[str] = Depends(api_key_header)
) -> InternalService:
    """
    FastAPI dependency to authenticate internal requests.

    Raises:
        HTTPException: 503 when no keys are configured, 401 when the key is
            missing, 403 when it is wrong
    """
    service_name = request.headers.get(SERVICE_NAME_HEADER, "unknown")
    valid_keys = get_valid_api_keys()

    if not valid_keys:
        logger.warning("No internal API keys configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Internal authentication not configured"
        )

    if not api_key:
        logger.warning(f"Missing API key from service: {service_name}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Internal-Api-Key header",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    if not validate_internal_key(api_key, valid_keys):
        logger.warning(f"Invalid API key from service: {service_name}, key ending: ...{api_key[-8:]}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key"
        )

    return InternalService(
        name=service_name,
        api_key_hash=f"...{api_key[-8:]}"
    )


# Convenience alias - use directly as dependency
require_internal_service = get_internal_service
