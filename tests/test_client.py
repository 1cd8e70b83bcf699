"""
API Client Tests
----------------
Tests for the rate-limited, retrying dispatcher.

Tests cover:
- Request shaping (path, query, body, auth)
- Retry on 429 and 5xx, terminal 4xx
- Transport failures
- Rate ceiling under a burst
- Credentials kept out of logs
"""

import asyncio
import json
import logging
import time

import httpx
import pytest

from api.client import APIStatus, classify_status
from core.errors import ConfigurationError, TransportError, UpstreamAPIError


class TestClassifyStatus:
    """Tests for status classification."""

    @pytest.mark.parametrize("code,status", [
        (200, APIStatus.SUCCESS),
        (204, APIStatus.SUCCESS),
        (429, APIStatus.RATE_LIMITED),
        (401, APIStatus.AUTH_ERROR),
        (404, APIStatus.NOT_FOUND),
        (400, APIStatus.CLIENT_ERROR),
        (503, APIStatus.SERVER_ERROR),
    ])
    def test_classification(self, code, status):
        assert classify_status(code) == status


class TestRequestShaping:
    """Tests for how requests are built."""

    @pytest.mark.anyio
    async def test_get_sends_query_and_bearer_token(self, make_client, api_key):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=[{"id": "N_1"}], headers={"X-Rate-Limit-Remaining": "4"})

        client = make_client(handler)
        response = await client.get(
            "/organizations/1/networks",
            {"perPage": 5, "tags": ["a", "b"], "verbose": True, "skip": None},
        )
        await client.aclose()

        assert response.success
        assert response.data == [{"id": "N_1"}]
        assert response.attempts == 1
        assert response.rate_limit_remaining == 4

        request = seen[0]
        assert request.method == "GET"
        assert request.url.path == "/api/v1/organizations/1/networks"
        assert request.url.params["perPage"] == "5"
        assert request.url.params.get_list("tags[]") == ["a", "b"]
        assert request.url.params["verbose"] == "true"
        assert "skip" not in request.url.params
        assert request.headers["Authorization"] == f"Bearer {api_key}"

    @pytest.mark.anyio
    async def test_put_sends_json_body(self, make_client):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"id": "N_1", "name": "Lab"})

        client = make_client(handler)
        await client.put("/networks/N_1", {"name": "Lab"})
        await client.aclose()

        assert seen[0].method == "PUT"
        assert json.loads(seen[0].content) == {"name": "Lab"}
        assert not seen[0].url.params

    @pytest.mark.anyio
    async def test_empty_body_is_none(self, make_client):
        client = make_client(lambda request: httpx.Response(204))
        response = await client.post("/devices/Q2XX/reboot")
        await client.aclose()

        assert response.data is None

    @pytest.mark.anyio
    async def test_base_url_from_environment(self, make_client, monkeypatch):
        monkeypatch.setenv("MERAKI_API_BASE_URL", "https://api.meraki.cn/api/v1")
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={})

        client = make_client(handler)
        await client.get("/organizations")
        await client.aclose()

        assert seen[0].url.host == "api.meraki.cn"

    @pytest.mark.anyio
    async def test_missing_key_fails_before_network(self, make_client, monkeypatch):
        monkeypatch.delenv("MERAKI_API_KEY")
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={})

        client = make_client(handler)
        assert not client.is_configured

        with pytest.raises(ConfigurationError) as exc_info:
            await client.get("/organizations")

        assert calls == []
        assert exc_info.value.kind == "configuration_error"
        assert "MERAKI_API_KEY" in exc_info.value.message

    @pytest.mark.anyio
    async def test_non_json_success_body_is_returned_as_text(self, make_client):
        def handler(request):
            return httpx.Response(200, text="rebooted", headers={"Content-Type": "text/plain"})

        client = make_client(handler)
        response = await client.post("/devices/Q2XX-1/reboot")
        await client.aclose()

        assert response.success
        assert response.status_code == 200
        assert response.data == "rebooted"


class TestRetries:
    """Tests for retry and backoff behavior."""

    @pytest.mark.anyio
    async def test_retry_after_is_honored(self, make_client, sleep_recorder):
        """Two 429s with Retry-After: 2, then success on the third attempt."""
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(429, headers={"Retry-After": "2"}, json={"errors": ["Too many"]})
            return httpx.Response(200, json={"ok": True})

        client = make_client(handler)
        response = await client.get("/organizations")
        await client.aclose()

        assert response.data == {"ok": True}
        assert response.attempts == 3
        assert len(calls) == 3
        assert sleep_recorder.delays == [2.0, 2.0]

    @pytest.mark.anyio
    async def test_rate_limit_exhaustion_raises_upstream_error(self, make_client, sleep_recorder):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429, json={"errors": ["Rate limit exceeded"]})

        client = make_client(handler)
        with pytest.raises(UpstreamAPIError) as exc_info:
            await client.get("/organizations")
        await client.aclose()

        assert len(calls) == 3
        assert exc_info.value.status_code == 429
        assert exc_info.value.message == "Rate limit exceeded"
        # No Retry-After header: fixed initial backoff
        assert sleep_recorder.delays == [1.0, 1.0]

    @pytest.mark.anyio
    async def test_unparseable_retry_after_uses_backoff(self, make_client, sleep_recorder):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(429, headers={"Retry-After": "soon"})
            return httpx.Response(200, json=[])

        client = make_client(handler, initial_backoff_seconds=0.5)
        await client.get("/organizations")
        await client.aclose()

        assert sleep_recorder.delays == [0.5]

    @pytest.mark.anyio
    async def test_server_error_is_retried(self, make_client, sleep_recorder):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503, text="Service Unavailable")
            return httpx.Response(200, json={"id": "1"})

        client = make_client(handler)
        response = await client.get("/organizations/1")
        await client.aclose()

        assert response.attempts == 2
        assert sleep_recorder.delays == [1.0]

    @pytest.mark.anyio
    async def test_server_error_exhaustion(self, make_client):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, json={"error": "boom"})

        client = make_client(handler)
        with pytest.raises(UpstreamAPIError) as exc_info:
            await client.get("/organizations")
        await client.aclose()

        assert len(calls) == 3
        assert exc_info.value.status_code == 500
        assert exc_info.value.details["payload"] == {"error": "boom"}

    @pytest.mark.anyio
    async def test_client_error_is_terminal(self, make_client, sleep_recorder):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, json={"errors": ["Network not found"]})

        client = make_client(handler)
        with pytest.raises(UpstreamAPIError) as exc_info:
            await client.get("/networks/N_missing")
        await client.aclose()

        assert len(calls) == 1
        assert sleep_recorder.delays == []
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "Network not found"
        assert exc_info.value.to_dict()["kind"] == "upstream_api_error"

    @pytest.mark.anyio
    async def test_status_message_fallback(self, make_client):
        client = make_client(lambda request: httpx.Response(401))
        with pytest.raises(UpstreamAPIError) as exc_info:
            await client.get("/organizations")
        await client.aclose()

        assert exc_info.value.message == "Unauthorized - Invalid API key"


class TestTransportFailures:
    """Tests for failures below HTTP."""

    @pytest.mark.anyio
    async def test_timeout(self, make_client):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(handler)
        with pytest.raises(TransportError) as exc_info:
            await client.get("/organizations")
        await client.aclose()

        assert len(calls) == 1
        assert exc_info.value.reason == "timeout"
        assert exc_info.value.kind == "transport_error"

    @pytest.mark.anyio
    async def test_slow_body_hits_overall_timeout(self, make_client):
        async def trickle():
            yield b"{"
            for _ in range(20):
                await asyncio.sleep(0.1)
                yield b" "
            yield b"}"

        def handler(request):
            return httpx.Response(200, content=trickle())

        client = make_client(handler, timeout_seconds=0.3)
        start = time.monotonic()
        with pytest.raises(TransportError) as exc_info:
            await client.get("/organizations")
        elapsed = time.monotonic() - start
        await client.aclose()

        assert exc_info.value.reason == "timeout"
        assert elapsed < 1.5

    @pytest.mark.anyio
    async def test_connection_failure(self, make_client):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)
        with pytest.raises(TransportError) as exc_info:
            await client.get("/organizations")
        await client.aclose()

        assert exc_info.value.reason == "network"

    @pytest.mark.anyio
    async def test_slot_released_after_failure(self, make_client):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler, max_requests=1, interval_seconds=0.01)
        for _ in range(3):
            with pytest.raises(TransportError):
                await asyncio.wait_for(client.get("/organizations"), timeout=1.0)
        await client.aclose()


class TestRateCeiling:
    """Tests for the shared rate ceiling."""

    @pytest.mark.anyio
    async def test_burst_respects_window(self, make_client):
        """50 concurrent calls: every call succeeds, no window sees more than 5."""
        interval = 0.05
        seen_at = []

        def handler(request):
            seen_at.append(time.monotonic())
            return httpx.Response(200, json={"ok": True})

        client = make_client(handler, max_requests=5, interval_seconds=interval)
        responses = await asyncio.gather(*(client.get(f"/networks/N_{i}") for i in range(50)))
        await client.aclose()

        assert len(responses) == 50
        assert all(r.success for r in responses)

        seen_at.sort()
        for i in range(len(seen_at) - 5):
            assert seen_at[i + 5] - seen_at[i] >= interval - 0.01


class TestLogging:
    """Tests for what reaches the logs."""

    @pytest.mark.anyio
    async def test_api_key_never_logged(self, make_client, api_key, caplog):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(429, headers={"Retry-After": "0"})
            return httpx.Response(200, json={})

        client = make_client(handler)
        with caplog.at_level(logging.DEBUG, logger="meraki"):
            await client.get("/organizations")
        await client.aclose()

        assert "GET /organizations" in caplog.text
        assert api_key not in caplog.text
