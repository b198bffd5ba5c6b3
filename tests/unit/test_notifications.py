"""Tests for unlock notification templates, identity lookup and the email relay client."""

import json
import logging
from datetime import UTC, datetime
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest

from src.cu_common.errors import NotificationError
from src.cu_notify import templates
from src.cu_notify.dispatcher import NotificationDispatcher
from src.cu_notify.identity import Identity, IdentityResolver
from tests.unit.fakes import FakeSession

RELAY = "https://relay.test/send"


def _message(to: str = "club@example.com") -> templates.EmailMessage:
    return templates.operator_unlock_confirmed(
        to, "Club", "Ana Lopez", Decimal("4"), Decimal("6"), None
    )


class TestTemplates:
    def test_athlete_email(self) -> None:
        msg = templates.athlete_unlocked(
            "ana@example.com", "Ana", "FC Test", datetime(2026, 11, 16, tzinfo=UTC)
        )
        assert msg.to == "ana@example.com"
        assert "FC Test has unlocked your contact details." in msg.text
        assert "16 Nov 2026" in msg.text
        assert msg.html.startswith("<div")

    def test_operator_email_lists_credits(self) -> None:
        msg = _message()
        assert "Credits spent: 4.00 credits." in msg.text
        assert "Remaining balance: 6.00 credits." in msg.text
        assert "no expiry" in msg.text

    def test_unknown_balance_is_omitted(self) -> None:
        msg = templates.operator_unlock_confirmed("c@x.io", "", "", Decimal("4"), None, None)
        assert "Remaining balance" not in msg.text
        assert msg.text.startswith("Hi,")
        assert "an athlete" in msg.text

    def test_html_is_escaped(self) -> None:
        msg = templates.athlete_unlocked("a@x.io", "<b>Ana</b>", "", None)
        assert "<b>Ana</b>" not in msg.html
        assert "&lt;b&gt;Ana&lt;/b&gt;" in msg.html
        assert "An operator has unlocked" in msg.text

    def test_payload(self) -> None:
        assert set(_message().to_payload()) == {"to", "subject", "text", "html"}


class TestDispatcher:
    async def test_send_posts_json_with_token(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "msg-1"})

        dispatcher = NotificationDispatcher(
            url=RELAY, token="relay-token", transport=httpx.MockTransport(handler)
        )
        result = await dispatcher.send(_message())

        assert result == {"id": "msg-1"}
        assert seen[0].headers["Authorization"] == "Bearer relay-token"
        assert json.loads(seen[0].content)["to"] == "club@example.com"

    async def test_non_json_body(self) -> None:
        dispatcher = NotificationDispatcher(
            url=RELAY, transport=httpx.MockTransport(lambda r: httpx.Response(202, text="ok"))
        )
        assert await dispatcher.send(_message()) == {"status_code": 202}

    async def test_error_status_raises(self) -> None:
        dispatcher = NotificationDispatcher(
            url=RELAY,
            transport=httpx.MockTransport(lambda r: httpx.Response(500, text="relay broke")),
        )
        with pytest.raises(NotificationError) as exc_info:
            await dispatcher.send(_message())
        assert exc_info.value.status_code == 500
        assert "relay broke" in exc_info.value.message

    async def test_connection_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        dispatcher = NotificationDispatcher(url=RELAY, transport=httpx.MockTransport(handler))
        with pytest.raises(NotificationError, match="unreachable"):
            await dispatcher.send(_message())

    async def test_missing_recipient(self) -> None:
        with pytest.raises(NotificationError, match="missing recipient"):
            await NotificationDispatcher(url=RELAY).send(_message(to=""))

    async def test_dispatch_all_logs_failures(self, caplog: pytest.LogCaptureFixture) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            to = json.loads(request.content)["to"]
            return httpx.Response(500 if to == "bad@example.com" else 200, json={})

        dispatcher = NotificationDispatcher(url=RELAY, transport=httpx.MockTransport(handler))
        with caplog.at_level(logging.ERROR, logger="src.cu_notify.dispatcher"):
            results = await dispatcher.dispatch_all(
                [_message("good@example.com"), _message("bad@example.com")]
            )

        assert results[0] == {}
        assert isinstance(results[1], NotificationError)
        assert "Notification to bad@example.com" in caplog.text

    async def test_disabled_relay_skips(self) -> None:
        dispatcher = NotificationDispatcher(url="")
        assert dispatcher.enabled is False
        assert await dispatcher.dispatch_all([_message()]) == []

    async def test_nothing_to_send(self) -> None:
        assert await NotificationDispatcher(url=RELAY).dispatch_all([]) == []


class TestIdentityResolver:
    async def test_athlete_from_profile(self) -> None:
        db = FakeSession()
        db.canned["first_name, last_name, email FROM athlete"] = [
            SimpleNamespace(first_name=" Ana ", last_name="Lopez", email="ana@example.com")
        ]
        identity = await IdentityResolver().athlete(db, "a-1")
        assert identity == Identity("Ana", "Lopez", "ana@example.com")
        assert identity.display_name == "Ana Lopez"

    async def test_athlete_without_email_column_uses_auth_user(self) -> None:
        db = FakeSession()
        db.fail_on["last_name, email FROM athlete"] = "42703"
        db.canned["first_name, last_name FROM athlete"] = [
            SimpleNamespace(first_name="Ana", last_name=None)
        ]
        db.canned["FROM auth.users"] = [SimpleNamespace(email="ana@auth.example.com")]

        identity = await IdentityResolver().athlete(db, "a-1")

        assert identity.email == "ana@auth.example.com"
        assert identity.display_name == "Ana"

    async def test_missing_tables_give_blank_identity(self) -> None:
        identity = await IdentityResolver().athlete(FakeSession(), "a-1")
        assert identity == Identity()
        assert identity.display_name == ""

    async def test_operator_email_falls_back_to_auth_user(self) -> None:
        db = FakeSession()
        db.canned["FROM op_account"] = [
            SimpleNamespace(first_name="Club", last_name="", email=None, auth_user_id="u-9")
        ]
        db.canned["FROM auth.users"] = [SimpleNamespace(email="club@auth.example.com")]

        identity = await IdentityResolver().operator(db, "op-1")

        assert identity.first_name == "Club"
        assert identity.last_name is None
        assert identity.email == "club@auth.example.com"

    async def test_unknown_operator(self) -> None:
        db = FakeSession()
        db.canned["FROM op_account"] = []
        assert await IdentityResolver().operator(db, "op-1") == Identity()

    async def test_unexpected_error_is_swallowed(self) -> None:
        db = FakeSession()
        db.fail_on["FROM op_account"] = "57014"
        assert await IdentityResolver().operator(db, "op-1") == Identity()
