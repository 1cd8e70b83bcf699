"""
Tool Executor Tests
-------------------
End-to-end tests of the request pipeline against a mock transport.

Tests cover:
- defaults -> coercion -> transform -> validation -> dispatch -> bounding
- No network traffic on validation failure
- Structured error envelopes from invoke
- Composite and custom hooks
"""

import dataclasses
import json

import httpx
import pytest

from infra.settings import build_settings
from tools.catalog import create_default_registry
from tools.executor import ExecutionContext, ToolExecutor, normalize_tool_name
from tools.policy import PolicyMatcher
from tools.registry import HttpMethod, ParameterType, Tool, ToolParameter, ToolRegistry, ToolSchema


class Recorder:
    """Mock upstream: records requests, answers from a handler."""

    def __init__(self, respond=None):
        self.requests = []
        self._respond = respond or (lambda request: httpx.Response(200, json={}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._respond(request)


@pytest.fixture
def make_executor(sleep_recorder):
    def _make(upstream, registry=None, settings=None, policy=None) -> ToolExecutor:
        context = ExecutionContext.from_settings(
            settings or build_settings(),
            registry,
            httpx.MockTransport(upstream),
            sleep=sleep_recorder,
        )
        if policy is not None:
            context = dataclasses.replace(context, policy=policy)
        return ToolExecutor(context)

    return _make


class TestNormalizeToolName:
    @pytest.mark.parametrize("raw,expected", [
        ("network_get", "network_get"),
        (" network__get_ ", "network_get"),
        ("_organizations___list", "organizations_list"),
        ("device get", "deviceget"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_tool_name(raw) == expected


class TestPipeline:
    """Tests for the happy path."""

    @pytest.mark.anyio
    async def test_defaults_coercion_and_path(self, make_executor):
        upstream = Recorder(lambda r: httpx.Response(200, json=[{"mac": "aa", "status": "Online"}]))
        executor = make_executor(upstream)

        outcome = await executor.invoke("network_clients_list", {"networkId": "N 1/x", "perPage": "10"})
        await executor.context.aclose()

        assert outcome == {"ok": True, "result": [{"mac": "aa", "status": "Online"}]}

        request = upstream.requests[0]
        assert request.method == "GET"
        assert "/networks/N%201%2Fx/clients" in request.url.raw_path.decode()
        # Caller wins over the configured default of 20
        assert request.url.params["perPage"] == "10"
        assert request.url.params["timespan"] == "3600"
        assert "networkId" not in request.url.params

    @pytest.mark.anyio
    async def test_pre_validation_default_window(self, make_executor):
        upstream = Recorder(lambda r: httpx.Response(200, json=[]))
        executor = make_executor(upstream, policy=PolicyMatcher())

        await executor.invoke("network_clients_list", {"networkId": "N_1"})
        await executor.invoke("network_clients_list", {"networkId": "N_1", "t0": "2024-01-01T00:00:00Z"})
        await executor.context.aclose()

        assert upstream.requests[0].url.params["timespan"] == "3600"
        assert "timespan" not in upstream.requests[1].url.params
        assert upstream.requests[1].url.params["t0"] == "2024-01-01T00:00:00Z"

    @pytest.mark.anyio
    async def test_status_window_default(self, make_executor):
        upstream = Recorder(lambda r: httpx.Response(200, json=[]))
        executor = make_executor(upstream)

        await executor.invoke("organization_top_networks_by_status", {"organizationId": "1"})
        await executor.context.aclose()

        request = upstream.requests[0]
        assert request.url.path.endswith("/organizations/1/summary/top/networks/byStatus")
        assert request.url.params["timespan"] == "86400"

    @pytest.mark.anyio
    async def test_pattern_default_skips_undeclared_fields(self, make_executor):
        """`*_list` declares perPage, but a tool without it must not receive it."""
        upstream = Recorder(lambda r: httpx.Response(200, json=[]))
        registry = ToolRegistry([Tool(
            name="network_ssids_list",
            description="List SSIDs",
            method=HttpMethod.GET,
            endpoint="/networks/{networkId}/wireless/ssids",
            schema=ToolSchema(parameters=(
                ToolParameter(name="networkId", type=ParameterType.STRING, required=True),
            )),
        )])
        executor = make_executor(upstream, registry=registry)

        outcome = await executor.invoke("network_ssids_list", {"networkId": "N_1"})
        await executor.context.aclose()

        assert outcome["ok"]
        assert not upstream.requests[0].url.params

    @pytest.mark.anyio
    async def test_put_sends_body_without_path_params(self, make_executor):
        upstream = Recorder(lambda r: httpx.Response(200, json={"id": "N_1", "name": "Lab"}))
        executor = make_executor(upstream)

        outcome = await executor.invoke("network_update", {"networkId": "N_1", "name": "Lab", "tags": "a,b"})
        await executor.context.aclose()

        assert outcome["ok"]
        request = upstream.requests[0]
        assert request.method == "PUT"
        assert request.url.path.endswith("/networks/N_1")
        assert json.loads(request.content) == {"name": "Lab", "tags": ["a", "b"]}

    @pytest.mark.anyio
    async def test_post_without_body(self, make_executor):
        upstream = Recorder(lambda r: httpx.Response(202, json={"success": True}))
        executor = make_executor(upstream)

        outcome = await executor.invoke("device_reboot", {"serial": "Q2XX-AAAA-BBBB"})
        await executor.context.aclose()

        assert outcome == {"ok": True, "result": {"success": True}}
        assert upstream.requests[0].method == "POST"
        assert upstream.requests[0].content == b""

    @pytest.mark.anyio
    async def test_transform_response(self, make_executor):
        upstream = Recorder(lambda r: httpx.Response(200, json={"items": [1, 2], "meta": {}}))
        registry = ToolRegistry([Tool(
            name="device_items_get",
            description="",
            method=HttpMethod.GET,
            endpoint="/devices/{serial}/items",
            schema=ToolSchema(parameters=(
                ToolParameter(name="serial", type=ParameterType.STRING, required=True),
            )),
            transform_response=lambda data: data["items"],
        )])
        executor = make_executor(upstream, registry=registry)

        outcome = await executor.invoke("device_items_get", {"serial": "Q"})
        await executor.context.aclose()

        assert outcome["result"] == [1, 2]

    @pytest.mark.anyio
    async def test_result_is_bounded(self, make_executor):
        networks = [{"id": f"N_{i}", "name": f"net-{i}", "notes": None} for i in range(120)]
        upstream = Recorder(lambda r: httpx.Response(200, json=networks))
        executor = make_executor(upstream)

        outcome = await executor.invoke("organization_networks_list", {"organizationId": "1"})
        await executor.context.aclose()

        result = outcome["result"]
        assert result["_meta"] == {"totalCount": 120, "returnedCount": 50, "truncated": True}
        assert result["data"][0] == {"id": "N_0", "name": "net-0"}

    @pytest.mark.anyio
    async def test_large_result_is_summarized(self, make_executor):
        clients = [{"mac": f"m{i}", "status": "Online", "description": "d" * 800} for i in range(100)]
        upstream = Recorder(lambda r: httpx.Response(200, json=clients))
        executor = make_executor(upstream)

        outcome = await executor.invoke("network_clients_list", {"networkId": "N_1"})
        await executor.context.aclose()

        result = outcome["result"]
        assert result["totalCount"] == 100
        assert len(result["firstItems"]) == 5
        assert result["facetSummaries"]["status"]["uniqueCount"] == 1

    @pytest.mark.anyio
    async def test_composite_gets_params_and_client(self, make_executor):
        received = {}

        async def executor_fn(params, client):
            received["params"] = params
            response = await client.get("/organizations")
            return {"count": len(response.data)}

        upstream = Recorder(lambda r: httpx.Response(200, json=[{"id": "1"}, {"id": "2"}]))
        registry = ToolRegistry([Tool(
            name="organizations_count",
            description="",
            method=HttpMethod.COMPOSITE,
            schema=ToolSchema(parameters=(
                ToolParameter(name="limit", type=ParameterType.INTEGER),
            )),
            custom_executor=executor_fn,
        )])
        executor = make_executor(upstream, registry=registry)

        outcome = await executor.invoke("organizations_count", {"limit": "7"})
        await executor.context.aclose()

        assert outcome == {"ok": True, "result": {"count": 2}}
        assert received["params"] == {"limit": 7}


class TestErrors:
    """Tests for error envelopes."""

    @pytest.mark.anyio
    async def test_validation_failure_makes_no_request(self, make_executor):
        upstream = Recorder()
        executor = make_executor(upstream)

        outcome = await executor.invoke("network_clients_list", {"networkId": "N_1", "perPage": "0"})
        await executor.context.aclose()

        assert upstream.requests == []
        assert outcome["ok"] is False
        assert outcome["error"]["kind"] == "validation_error"
        assert outcome["error"]["details"]["field"] == "perPage"

    @pytest.mark.anyio
    async def test_unknown_parameter_rejected(self, make_executor):
        upstream = Recorder()
        executor = make_executor(upstream)

        outcome = await executor.invoke("device_get", {"serial": "Q", "color": "blue"})
        await executor.context.aclose()

        assert upstream.requests == []
        assert outcome["error"]["details"]["field"] == "color"

    @pytest.mark.anyio
    async def test_unknown_tool(self, make_executor):
        executor = make_executor(Recorder())

        outcome = await executor.invoke("network_teleport", {})

        assert outcome == {
            "ok": False,
            "error": {
                "kind": "unknown_tool",
                "message": "Tool 'network_teleport' not found",
                "details": {"tool": "network_teleport"},
            },
        }

    @pytest.mark.anyio
    async def test_name_is_normalized(self, make_executor):
        upstream = Recorder(lambda r: httpx.Response(200, json={"serial": "Q"}))
        executor = make_executor(upstream)

        outcome = await executor.invoke(" device__get ", {"serial": "Q"})
        await executor.context.aclose()

        assert outcome["ok"]

    @pytest.mark.anyio
    async def test_upstream_error(self, make_executor):
        upstream = Recorder(lambda r: httpx.Response(404, json={"errors": ["Device not found"]}))
        executor = make_executor(upstream)

        outcome = await executor.invoke("device_get", {"serial": "Q"})
        await executor.context.aclose()

        error = outcome["error"]
        assert error["kind"] == "upstream_api_error"
        assert error["message"] == "Device not found"
        assert error["details"]["statusCode"] == 404
        assert executor.error_handler.get_error_stats() == {"API_ERROR": 1}

    @pytest.mark.anyio
    async def test_missing_api_key(self, make_executor, monkeypatch):
        monkeypatch.delenv("MERAKI_API_KEY")
        upstream = Recorder()
        executor = make_executor(upstream)

        outcome = await executor.invoke("organizations_list", {})

        assert upstream.requests == []
        assert outcome["error"]["kind"] == "configuration_error"

    @pytest.mark.anyio
    async def test_transport_error(self, make_executor):
        def respond(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        executor = make_executor(Recorder(respond))

        outcome = await executor.invoke("organizations_list", {})
        await executor.context.aclose()

        assert outcome["error"]["kind"] == "transport_error"
        assert outcome["error"]["details"] == {"reason": "timeout"}

    @pytest.mark.anyio
    async def test_unexpected_exception_becomes_internal_error(self, make_executor):
        def broken(params):
            raise KeyError("networkId")

        registry = ToolRegistry([Tool(
            name="broken_get",
            description="",
            method=HttpMethod.GET,
            endpoint="/broken",
            transform_params=broken,
        )])
        executor = make_executor(Recorder(), registry=registry)

        outcome = await executor.invoke("broken_get", {})

        assert outcome["error"]["kind"] == "internal_error"
        assert outcome["error"]["details"] == {"type": "KeyError"}
        assert "Traceback" not in outcome["error"]["message"]


class TestExecutionContext:
    def test_from_settings_wires_limits(self):
        settings = build_settings({
            "rateLimit": {"requestsPerSecond": 2, "timeoutSeconds": 5},
            "responseLimits": {"maxArrayLength": 7},
        })
        context = ExecutionContext.from_settings(settings)

        assert context.client.config.rate_limit_per_second == 2
        assert context.client.config.timeout_seconds == 5
        assert context.client.rate_limiter.config.max_requests == 2
        assert context.bounder.limits.max_array_length == 7
        assert "organization_security_events" in context.registry
