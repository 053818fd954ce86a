"""Tests for dispatch bearer tokens and HTTP delivery."""

import datetime as dt
import json

import httpx
import jwt
import pytest

from dm_manager.dispatch import (
    DispatchAuthError,
    DispatchTokenSettings,
    HttpTaskDelivery,
    issue_dispatch_token,
    parse_bearer,
    verify_dispatch_token,
)
from dm_manager.models import DispatchTask

SETTINGS = DispatchTokenSettings(secret="s3cret", issuer="dispatcher", audience="processor")


class TestTokens:
    """Tests for issuing and verifying tokens."""

    def test_round_trip(self):
        token = issue_dispatch_token(SETTINGS, subject="process-t1-1")
        claims = verify_dispatch_token(SETTINGS, token)
        assert claims["sub"] == "process-t1-1"
        assert claims["iss"] == "dispatcher"

    def test_wrong_secret_rejected(self):
        token = issue_dispatch_token(SETTINGS, subject="x")
        other = DispatchTokenSettings(secret="other", issuer="dispatcher", audience="processor")
        with pytest.raises(DispatchAuthError):
            verify_dispatch_token(other, token)

    def test_wrong_audience_rejected(self):
        token = issue_dispatch_token(SETTINGS, subject="x")
        other = DispatchTokenSettings(secret="s3cret", issuer="dispatcher", audience="someone")
        with pytest.raises(DispatchAuthError):
            verify_dispatch_token(other, token)

    def test_expired_token_rejected(self):
        issued = dt.datetime.now(dt.timezone.utc) - dt.timedelta(hours=1)
        token = issue_dispatch_token(SETTINGS, subject="x", now=issued)
        with pytest.raises(DispatchAuthError):
            verify_dispatch_token(SETTINGS, token)

    def test_token_without_expiry_rejected(self):
        token = jwt.encode(
            {"iss": "dispatcher", "aud": "processor"}, "s3cret", algorithm="HS256"
        )
        with pytest.raises(DispatchAuthError):
            verify_dispatch_token(SETTINGS, token)

    def test_missing_secret(self):
        empty = DispatchTokenSettings(secret="", issuer="i", audience="a")
        with pytest.raises(DispatchAuthError):
            issue_dispatch_token(empty, subject="x")
        with pytest.raises(DispatchAuthError):
            verify_dispatch_token(empty, "token")


class TestParseBearer:
    def test_valid_header(self):
        assert parse_bearer("Bearer abc.def") == "abc.def"

    @pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer ", "abc"])
    def test_invalid_header(self, header):
        with pytest.raises(DispatchAuthError):
            parse_bearer(header)


class TestHttpTaskDelivery:
    """Tests for HTTP delivery."""

    async def test_posts_payload_with_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"status": "processed"})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        delivery = HttpTaskDelivery("http://processor/tasks/process-thread", SETTINGS, client=client)
        task = DispatchTask(
            name="process-t1-1",
            thread_id="t1",
            run_at=dt.datetime.now(dt.timezone.utc),
            payload={"thread_id": "t1"},
        )

        await delivery(task)
        await client.aclose()

        assert seen["body"] == {"thread_id": "t1"}
        claims = verify_dispatch_token(SETTINGS, parse_bearer(seen["auth"]))
        assert claims["sub"] == "process-t1-1"

    async def test_error_status_raises(self):
        client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(500))
        )
        delivery = HttpTaskDelivery("http://processor/x", SETTINGS, client=client)
        task = DispatchTask(
            name="n", thread_id="t1", run_at=dt.datetime.now(dt.timezone.utc)
        )

        with pytest.raises(httpx.HTTPStatusError):
            await delivery(task)
        await client.aclose()
