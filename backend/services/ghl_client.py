"""
GoHighLevel CRM Client

Reads member contacts and writes membership facts after a confirmed
payment:
- Renewal date and membership type custom fields
- Paid tag
- Reconciliation note on the contact

Every request goes through the retry policy. High-level methods return a
PropagationResult instead of raising, so the orchestrator can decide
whether to compensate.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from reconciliation.contacts import ContactNormalizer, ContactRecord
from reconciliation.membership import MembershipUpdate
from services.propagation import PropagationResult
from services.retry_policy import RetryConfig, call_with_retry, decode_json, raise_for_response
from utils.errors import UpstreamError

logger = logging.getLogger(__name__)


class GhlClient:
    """
    GoHighLevel REST client (v1 API, Bearer auth).

    Args:
        base_url: API root, e.g. https://rest.gohighlevel.com/v1
        api_key: Location API key
        renewal_date_field_id / membership_type_field_id: custom field ids
        paid_tag: Tag applied to paid members
        timeout: Per-request timeout in seconds
        retry_config: Backoff for transient failures
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    COLLABORATOR = "ghl"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        renewal_date_field_id: str,
        membership_type_field_id: str,
        paid_tag: str = "paid",
        timeout: float = 10.0,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep=asyncio.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.renewal_date_field_id = renewal_date_field_id
        self.membership_type_field_id = membership_type_field_id
        self.paid_tag = paid_tag
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig()
        self._transport = transport
        self._sleep = sleep
        self.normalizer = ContactNormalizer(renewal_date_field_id, membership_type_field_id)

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "GhlClient":
        return cls(
            base_url=settings.GHL_API_BASE_URL,
            api_key=settings.GHL_API_KEY,
            renewal_date_field_id=settings.GHL_RENEWAL_DATE_FIELD_ID,
            membership_type_field_id=settings.GHL_MEMBERSHIP_TYPE_FIELD_ID,
            paid_tag=settings.GHL_PAID_TAG,
            timeout=settings.EXTERNAL_TIMEOUT_SECONDS,
            retry_config=RetryConfig.from_settings(settings),
            transport=transport,
        )

    # ==================== TRANSPORT ====================

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        async def send() -> httpx.Response:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, headers=headers, **kwargs)
            raise_for_response(self.COLLABORATOR, response)
            return response

        return await call_with_retry(send, self.COLLABORATOR, self.retry_config, sleep=self._sleep)

    # ==================== CONTACTS ====================

    async def get_contact(self, contact_id: str) -> ContactRecord:
        """
        Fetch and normalize one contact.

        Raises:
            UpstreamError: request failed or the body is not a contact
        """
        response = await self._request("GET", f"/contacts/{contact_id}")
        payload = decode_json(self.COLLABORATOR, response)
        if not isinstance(payload, dict):
            raise UpstreamError(self.COLLABORATOR, "Malformed contact response")

        contact = self.normalizer.from_crm(payload)
        if not contact.id:
            contact.id = contact_id
        return contact

    async def update_membership(
        self,
        update: MembershipUpdate,
        note: Optional[str] = None,
    ) -> PropagationResult:
        """
        Write renewal date, membership type and paid tag, then add a note.

        A failed note does not fail the update.
        """
        contact_id = update.contact_id
        custom_fields = {self.renewal_date_field_id: update.renewal_date.isoformat()}
        if update.membership_type:
            custom_fields[self.membership_type_field_id] = update.membership_type

        try:
            await self._request("PUT", f"/contacts/{contact_id}", json={"customField": custom_fields})
            if update.paid_status and self.paid_tag:
                await self._request("POST", f"/contacts/{contact_id}/tags", json={"tags": [self.paid_tag]})
        except UpstreamError as e:
            logger.error(
                f"GHL membership update failed for contact {contact_id}: {e.message}",
                extra={"collaborator": self.COLLABORATOR, "status_code": e.status_code},
            )
            return PropagationResult(
                success=False,
                collaborator=self.COLLABORATOR,
                details={"membership_update": update.to_dict()},
                error=e.message,
                status_code=e.status_code,
            )

        note_added = False
        if note:
            note_added = await self.add_note(contact_id, note)

        logger.info(f"GHL contact {contact_id} updated, renewal {update.renewal_date.isoformat()}")

        return PropagationResult(
            success=True,
            collaborator=self.COLLABORATOR,
            details={
                "membership_update": update.to_dict(),
                "note_added": note_added,
            },
        )

    async def add_note(self, contact_id: str, body: str) -> bool:
        try:
            await self._request("POST", f"/contacts/{contact_id}/notes", json={"body": body})
        except UpstreamError as e:
            logger.warning(f"Failed to add reconciliation note to contact {contact_id}: {e.message}")
            return False
        return True

    async def health_check(self) -> bool:
        if not self.api_key:
            return False
        try:
            await self._request("GET", "/contacts/", params={"limit": 1})
        except UpstreamError as e:
            logger.warning(f"GHL health check failed: {e.message}")
            return False
        return True


def build_reconciliation_note(
    update: MembershipUpdate,
    contact: ContactRecord,
    validation: Dict[str, Any],
    customer_hints: Optional[Dict[str, Any]] = None,
) -> str:
    """Plain-text note left on the CRM contact for a confirmed payment."""
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    lines = [
        f"Payment Reconciliation - {timestamp}",
        f"Payment: {update.payment_amount} on {update.payment_date.isoformat()}",
        f"Reference: {update.transaction_ref}",
        f"Contact: {contact.full_name or contact.id}",
    ]

    hints = customer_hints or {}
    if hints.get("customer_name"):
        lines.append(f"Customer Name: {hints['customer_name']}")
    if hints.get("customer_email"):
        lines.append(f"Customer Email: {hints['customer_email']}")

    lines.append(f"Membership Type: {update.membership_type or 'Unknown'}")
    lines.append(f"Expected Amount: {validation.get('expected_amount') or 'Unknown'}")
    lines.append(f"Renewal Date: {update.renewal_date.isoformat()}")

    if validation.get("warning"):
        lines.append(f"Warning: {validation['warning']}")
    lines.append(
        "Validation: Payment amount confirmed" if validation.get("is_valid")
        else "Validation: Payment amount does not match expected fee"
    )
    lines.append("Source: Automated reconciliation")

    return "\n".join(lines)
