"""
Unit Tests for the CRM (GoHighLevel) and CMS (WordPress) Clients

Requests are served by httpx.MockTransport; backoff sleeps are stubbed.

Tests:
- Contact fetch and custom field normalization
- Membership update: custom fields, paid tag, note
- Retry of 5xx, no retry of 4xx
- WordPress exact email match, role mapping, user_not_found
- Health checks

Run with: pytest tests/test_collaborator_clients.py -v
"""

import json
import pytest
import httpx
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock

from reconciliation.membership import MembershipUpdate
from services.ghl_client import GhlClient, build_reconciliation_note
from services.retry_policy import RetryConfig
from services.wordpress_client import USER_NOT_FOUND, WordPressClient
from utils.errors import UpstreamError

RENEWAL_FIELD = "renewal-field"
MEMBERSHIP_FIELD = "membership-field"


class FakeServer:
    """Routes requests to canned responses and records them."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"message": "not found"})
        if isinstance(handler, list):
            return handler.pop(0)
        return handler

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]


def make_ghl(server, attempts=3):
    return GhlClient(
        base_url="https://crm.test/v1",
        api_key="ghl-key",
        renewal_date_field_id=RENEWAL_FIELD,
        membership_type_field_id=MEMBERSHIP_FIELD,
        retry_config=RetryConfig(max_attempts=attempts),
        transport=httpx.MockTransport(server),
        sleep=AsyncMock(),
    )


def make_wordpress(server, attempts=3):
    return WordPressClient(
        api_url="https://site.test/wp-json/wp/v2",
        username="admin",
        app_password="app pass",
        retry_config=RetryConfig(max_attempts=attempts),
        transport=httpx.MockTransport(server),
        sleep=AsyncMock(),
    )


@pytest.fixture
def membership_update():
    return MembershipUpdate(
        contact_id="c1",
        membership_type="Full",
        renewal_date=date(2026, 1, 8),
        payment_amount=Decimal("50.00"),
        payment_date=date(2025, 1, 8),
        transaction_ref="ch_001",
    )


class TestGhlContacts:
    """Test contact reads."""

    @pytest.mark.asyncio
    async def test_get_contact_list_custom_fields(self):
        server = FakeServer({
            ("GET", "/v1/contacts/c1"): httpx.Response(200, json={"contact": {
                "id": "c1",
                "firstName": "Jane",
                "lastName": "Doe",
                "email": "Jane@Example.com",
                "customField": [
                    {"id": RENEWAL_FIELD, "value": "2025-03-01"},
                    {"id": MEMBERSHIP_FIELD, "value": "full member"},
                ],
            }}),
        })

        contact = await make_ghl(server).get_contact("c1")

        assert contact.full_name == "Jane Doe"
        assert contact.email == "jane@example.com"
        assert contact.membership_type == "Full"
        assert contact.renewal_date == date(2025, 3, 1)
        assert server.requests[0].headers["Authorization"] == "Bearer ghl-key"

    @pytest.mark.asyncio
    async def test_get_contact_object_custom_fields(self):
        server = FakeServer({
            ("GET", "/v1/contacts/c2"): httpx.Response(200, json={
                "id": "c2",
                "name": "Sam Lee",
                "customField": {MEMBERSHIP_FIELD: "Associate"},
            }),
        })

        contact = await make_ghl(server).get_contact("c2")

        assert contact.full_name == "Sam Lee"
        assert contact.membership_type == "Associate"
        assert contact.renewal_date is None

    @pytest.mark.asyncio
    async def test_get_contact_not_found_not_retried(self):
        server = FakeServer({})

        with pytest.raises(UpstreamError) as exc_info:
            await make_ghl(server).get_contact("missing")

        assert exc_info.value.status_code == 404
        assert len(server.requests) == 1

    @pytest.mark.asyncio
    async def test_get_contact_malformed_body(self):
        server = FakeServer({("GET", "/v1/contacts/c1"): httpx.Response(200, json=["not", "a", "contact"])})

        with pytest.raises(UpstreamError) as exc_info:
            await make_ghl(server).get_contact("c1")

        assert "Malformed" in exc_info.value.message


class TestGhlMembershipUpdate:
    """Test membership writes."""

    @pytest.mark.asyncio
    async def test_update_writes_fields_tag_and_note(self, membership_update):
        server = FakeServer({
            ("PUT", "/v1/contacts/c1"): httpx.Response(200, json={"contact": {"id": "c1"}}),
            ("POST", "/v1/contacts/c1/tags"): httpx.Response(200, json={"tags": ["paid"]}),
            ("POST", "/v1/contacts/c1/notes"): httpx.Response(200, json={"id": "n1"}),
        })

        result = await make_ghl(server).update_membership(membership_update, note="Payment Reconciliation")

        assert result.success is True
        assert result.details["note_added"] is True

        body = json.loads(server.calls("PUT", "/v1/contacts/c1")[0].content)
        assert body == {"customField": {RENEWAL_FIELD: "2026-01-08", MEMBERSHIP_FIELD: "Full"}}

        tags = json.loads(server.calls("POST", "/v1/contacts/c1/tags")[0].content)
        assert tags == {"tags": ["paid"]}

    @pytest.mark.asyncio
    async def test_note_failure_does_not_fail_update(self, membership_update):
        server = FakeServer({
            ("PUT", "/v1/contacts/c1"): httpx.Response(200, json={}),
            ("POST", "/v1/contacts/c1/tags"): httpx.Response(200, json={}),
            ("POST", "/v1/contacts/c1/notes"): httpx.Response(422, json={"message": "bad note"}),
        })

        result = await make_ghl(server).update_membership(membership_update, note="x")

        assert result.success is True
        assert result.details["note_added"] is False

    @pytest.mark.asyncio
    async def test_server_error_retried_then_succeeds(self, membership_update):
        server = FakeServer({
            ("PUT", "/v1/contacts/c1"): [httpx.Response(503), httpx.Response(200, json={})],
            ("POST", "/v1/contacts/c1/tags"): httpx.Response(200, json={}),
        })

        result = await make_ghl(server).update_membership(membership_update)

        assert result.success is True
        assert len(server.calls("PUT", "/v1/contacts/c1")) == 2

    @pytest.mark.asyncio
    async def test_persistent_failure_returns_failed_result(self, membership_update):
        server = FakeServer({
            ("PUT", "/v1/contacts/c1"): [httpx.Response(500), httpx.Response(500), httpx.Response(500)],
        })

        result = await make_ghl(server).update_membership(membership_update)

        assert result.success is False
        assert result.collaborator == "ghl"
        assert result.status_code == 500
        assert len(server.calls("PUT", "/v1/contacts/c1")) == 3

    @pytest.mark.asyncio
    async def test_unauthorized_not_retried(self, membership_update):
        server = FakeServer({("PUT", "/v1/contacts/c1"): httpx.Response(401, json={"msg": "bad key"})})

        result = await make_ghl(server).update_membership(membership_update)

        assert result.success is False
        assert result.status_code == 401
        assert len(server.requests) == 1

    def test_reconciliation_note(self, membership_update):
        from reconciliation.contacts import ContactRecord

        note = build_reconciliation_note(
            membership_update,
            ContactRecord(id="c1", full_name="Jane Doe"),
            {"is_valid": False, "expected_amount": "30.00", "warning": "Payment amount does not match"},
            {"customer_name": "J DOE"},
        )

        assert note.startswith("Payment Reconciliation - ")
        assert "Contact: Jane Doe" in note
        assert "Customer Name: J DOE" in note
        assert "Renewal Date: 2026-01-08" in note
        assert "Warning: Payment amount does not match" in note
        assert note.endswith("Source: Automated reconciliation")


class TestWordPress:
    """Test CMS role updates."""

    USERS_PATH = "/wp-json/wp/v2/users"

    @pytest.mark.asyncio
    async def test_exact_email_match_only(self):
        server = FakeServer({
            ("GET", self.USERS_PATH): httpx.Response(200, json=[
                {"id": 1, "username": "janedoe2", "email": "janedoe2@example.com", "roles": []},
                {"id": 2, "username": "jane", "email": "Jane@Example.com", "roles": ["subscriber"]},
            ]),
        })

        user = await make_wordpress(server).find_user_by_email("jane@example.com")

        assert user["id"] == 2
        assert server.requests[0].url.params["search"] == "jane@example.com"
        assert server.requests[0].headers["Authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_update_membership_sets_role_and_meta(self):
        server = FakeServer({
            ("GET", self.USERS_PATH): httpx.Response(200, json=[{"id": 7, "email": "jane@example.com"}]),
            ("POST", f"{self.USERS_PATH}/7"): httpx.Response(200, json={"id": 7}),
        })

        result = await make_wordpress(server).update_membership("jane@example.com", "Full")

        assert result.success is True
        assert result.details == {"user_id": 7, "role": "full_member", "membership_type": "Full"}

        body = json.loads(server.calls("POST", f"{self.USERS_PATH}/7")[0].content)
        assert body["roles"] == ["full_member"]
        assert body["meta"]["membership_type"] == "Full"
        assert body["meta"]["membership_active"] is True

    @pytest.mark.asyncio
    async def test_inactive_membership_gets_default_role(self):
        server = FakeServer({
            ("GET", self.USERS_PATH): httpx.Response(200, json=[{"id": 7, "email": "jane@example.com"}]),
            ("POST", f"{self.USERS_PATH}/7"): httpx.Response(200, json={"id": 7}),
        })

        result = await make_wordpress(server).update_membership("jane@example.com", "Newsletter Only")

        body = json.loads(server.calls("POST", f"{self.USERS_PATH}/7")[0].content)
        assert result.details["role"] == "subscriber"
        assert body["meta"]["membership_active"] is False

    @pytest.mark.asyncio
    async def test_user_not_found(self):
        server = FakeServer({("GET", self.USERS_PATH): httpx.Response(200, json=[])})

        result = await make_wordpress(server).update_membership("nobody@example.com", "Full")

        assert result.success is False
        assert result.error == USER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_no_email_is_user_not_found(self):
        server = FakeServer({})

        result = await make_wordpress(server).update_membership(None, "Full")

        assert result.error == USER_NOT_FOUND
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_timeout_exhausts_retries(self):
        def timeout(request):
            raise httpx.ConnectTimeout("slow", request=request)

        client = make_wordpress(timeout, attempts=2)

        result = await client.update_membership("jane@example.com", "Full")

        assert result.success is False
        assert result.error == "wordpress: Connection timeout"
        assert client._sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_unconfigured_client_skips_update(self):
        client = WordPressClient(api_url="", username="", app_password="")

        result = await client.update_membership("jane@example.com", "Full")

        assert result.success is True
        assert result.details == {"skipped": True, "reason": "WordPress is not configured"}
        assert result.error is None
        assert await client.health_check() is False


class TestHealthChecks:

    @pytest.mark.asyncio
    async def test_ghl_health(self):
        server = FakeServer({("GET", "/v1/contacts/"): httpx.Response(200, json={"contacts": []})})

        assert await make_ghl(server).health_check() is True

    @pytest.mark.asyncio
    async def test_ghl_health_without_key(self):
        client = GhlClient("https://crm.test/v1", "", RENEWAL_FIELD, MEMBERSHIP_FIELD)

        assert await client.health_check() is False

    @pytest.mark.asyncio
    async def test_wordpress_health_failure(self):
        server = FakeServer({("GET", "/wp-json/wp/v2/users/me"): httpx.Response(401)})

        assert await make_wordpress(server).health_check() is False
