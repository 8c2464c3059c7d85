"""
WordPress User Directory Client

Keeps member roles on the website in step with membership status.
Authenticates with an application password (HTTP Basic).
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from reconciliation.membership import ACTIVE_MEMBERSHIP_TYPES, DEFAULT_WORDPRESS_ROLE, wordpress_role_for
from services.propagation import PropagationResult
from services.retry_policy import RetryConfig, call_with_retry, decode_json, raise_for_response
from utils.errors import UpstreamError

logger = logging.getLogger(__name__)

USER_NOT_FOUND = "user_not_found"


class WordPressClient:
    """
    WordPress REST client for /wp-json/wp/v2/users.

    Args:
        api_url: REST root, e.g. https://example.org/wp-json/wp/v2
        username: WordPress user owning the application password
        app_password: Application password
        timeout: Per-request timeout in seconds
        retry_config: Backoff for transient failures
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    COLLABORATOR = "wordpress"

    def __init__(
        self,
        api_url: str,
        username: str,
        app_password: str,
        timeout: float = 10.0,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep=asyncio.sleep,
    ):
        self.api_url = (api_url or "").rstrip("/")
        self.username = username
        self.app_password = app_password
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig()
        self._transport = transport
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "WordPressClient":
        return cls(
            api_url=settings.WORDPRESS_API_URL,
            username=settings.WORDPRESS_USERNAME,
            app_password=settings.WORDPRESS_APP_PASSWORD,
            timeout=settings.EXTERNAL_TIMEOUT_SECONDS,
            retry_config=RetryConfig.from_settings(settings),
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.username and self.app_password)

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        if not self.configured:
            raise UpstreamError(self.COLLABORATOR, "WordPress is not configured")

        async def send() -> httpx.Response:
            async with httpx.AsyncClient(
                base_url=self.api_url,
                auth=httpx.BasicAuth(self.username, self.app_password),
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, **kwargs)
            raise_for_response(self.COLLABORATOR, response)
            return response

        return await call_with_retry(send, self.COLLABORATOR, self.retry_config, sleep=self._sleep)

    async def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        """
        Search users and return the exact (case-insensitive) email match.

        WordPress search matches substrings, so results are filtered.
        """
        response = await self._request("GET", "/users", params={"search": email, "context": "edit"})
        users = decode_json(self.COLLABORATOR, response)
        if not isinstance(users, list):
            raise UpstreamError(self.COLLABORATOR, "Malformed user search response")

        wanted = email.strip().lower()
        for user in users:
            if isinstance(user, dict) and (user.get("email") or "").lower() == wanted:
                return {
                    "id": user.get("id"),
                    "username": user.get("username"),
                    "email": user.get("email"),
                    "roles": user.get("roles") or [],
                }
        return None

    async def update_user_role(self, user_id: int, membership_type: Optional[str]) -> str:
        """Set the role for a membership type; returns the role written."""
        is_active = membership_type in ACTIVE_MEMBERSHIP_TYPES
        role = wordpress_role_for(membership_type) if is_active else DEFAULT_WORDPRESS_ROLE

        await self._request("POST", f"/users/{user_id}", json={
            "roles": [role],
            "meta": {
                "membership_type": membership_type,
                "membership_active": is_active,
                "last_updated": datetime.now(timezone.utc).isoformat(),
            },
        })
        return role

    async def update_membership(self, email: Optional[str], membership_type: Optional[str]) -> PropagationResult:
        """
        Find the member's website account by email and update its role.

        No email or no matching account is a failed propagation with
        error "user_not_found". Without WordPress credentials the step is
        skipped and reported as such.
        """
        if not self.configured:
            logger.warning("WordPress update skipped: WordPress is not configured")
            return PropagationResult(
                success=True,
                collaborator=self.COLLABORATOR,
                details={"skipped": True, "reason": "WordPress is not configured"},
            )

        if not email:
            logger.info("WordPress update skipped: contact has no email")
            return PropagationResult(success=False, collaborator=self.COLLABORATOR, error=USER_NOT_FOUND)

        try:
            user = await self.find_user_by_email(email)
            if user is None:
                logger.info("WordPress user not found for contact email")
                return PropagationResult(
                    success=False,
                    collaborator=self.COLLABORATOR,
                    details={"email": email},
                    error=USER_NOT_FOUND,
                )

            role = await self.update_user_role(user["id"], membership_type)
        except UpstreamError as e:
            logger.error(
                f"WordPress update failed: {e.message}",
                extra={"collaborator": self.COLLABORATOR, "status_code": e.status_code},
            )
            return PropagationResult(
                success=False,
                collaborator=self.COLLABORATOR,
                details={"email": email},
                error=e.message,
                status_code=e.status_code,
            )

        logger.info(f"WordPress user {user['id']} set to role {role}")
        return PropagationResult(
            success=True,
            collaborator=self.COLLABORATOR,
            details={"user_id": user["id"], "role": role, "membership_type": membership_type},
        )

    async def health_check(self) -> bool:
        if not self.configured:
            return False
        try:
            await self._request("GET", "/users/me", params={"context": "edit"})
        except UpstreamError as e:
            logger.warning(f"WordPress health check failed: {e.message}")
            return False
        return True
