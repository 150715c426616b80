"""Tests for tools/ (parsers, registry, subprocess runner, API clients)."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from reconpilot.core.errors import ToolTransportFailure
from reconpilot.models.tier import Plan
from reconpilot.tools import api, parsers, process
from reconpilot.tools.registry import ToolInvocation, default_registry

NMAP_GREPABLE = (
    "# Nmap 7.94 scan initiated\n"
    "Host: 192.0.2.10 (www.example.com)\tStatus: Up\n"
    "Host: 192.0.2.10 (www.example.com)\tPorts: 22/open/tcp//ssh///, 80/open/tcp//http///, "
    "8081/filtered/tcp/////\tIgnored State: closed (997)\n"
    "# Nmap done\n"
)


class TestParsers:
    def test_json_lines_keeps_raw_lines(self):
        items = parsers.json_lines('{"host": "a.example.com"}\nnot json\n\n[1]\n')
        assert items == [{"host": "a.example.com"}, {"raw": "not json"}, {"raw": [1]}]

    def test_host_lines_normalized(self):
        assert parsers.host_lines("API.Example.com.\n") == [{"host": "api.example.com"}]

    def test_url_lines(self):
        assert parsers.url_lines("https://a/x\n  \nhttps://a/y") == [{"url": "https://a/x"}, {"url": "https://a/y"}]

    def test_httpx_status_key(self):
        items = parsers.httpx_items('{"url": "https://a", "status-code": 301}\n')
        assert items[0]["status_code"] == 301

    def test_nmap_grepable(self):
        items = parsers.nmap_grepable(NMAP_GREPABLE)
        assert [(i["port"], i["state"], i["service"]) for i in items] == [
            (22, "open", "ssh"),
            (80, "open", "http"),
            (8081, "filtered", "unknown"),
        ]
        assert items[0]["host"] == "www.example.com"
        assert items[0]["ip"] == "192.0.2.10"


class TestRegistry:
    def test_default_tools(self):
        registry = default_registry()
        assert "subfinder" in registry
        assert "nope" not in registry
        assert registry.get("masscan").execute is None
        shodan = registry.get("shodan").descriptor
        assert shodan.tier == Plan.PAID and shodan.requires_key and shodan.rate_limited

    def test_available_for(self):
        registry = default_registry()
        free = {d.name for d in registry.available_for(Plan.FREE)}
        assert "subfinder" in free
        assert "shodan" not in free
        assert "shodan" in {d.name for d in registry.available_for(Plan.FREE, ["shodan"])}
        assert len(registry.available_for(Plan.PAID)) == len(registry.names())

    @pytest.mark.parametrize("tool", default_registry().names())
    def test_simulators_are_deterministic(self, tool):
        spec = default_registry().get(tool)
        assert spec.simulate("example.com") == spec.simulate("example.com")
        assert isinstance(spec.simulate("example.com"), list)


class TestRunCommand:
    @pytest.mark.asyncio
    async def test_missing_binary(self, monkeypatch):
        monkeypatch.setattr(process.shutil, "which", lambda name: None)
        with pytest.raises(ToolTransportFailure, match="not installed"):
            await process.run_command("subfinder", ["subfinder", "-d", "example.com"])

    @pytest.mark.asyncio
    async def test_registry_runner_surfaces_missing_binary(self, monkeypatch):
        monkeypatch.setattr(process.shutil, "which", lambda name: None)
        spec = default_registry().get("subfinder")
        with pytest.raises(ToolTransportFailure):
            await spec.execute(ToolInvocation(tool="subfinder", target="example.com"))

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, monkeypatch):
        monkeypatch.setattr(process.shutil, "which", lambda name: f"/usr/bin/{name}")
        proc = MagicMock(returncode=2)
        proc.communicate = AsyncMock(return_value=(b"", b"boom: bad flag\n"))
        with patch.object(process.asyncio, "create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(ToolTransportFailure, match="exited with code 2: boom: bad flag"):
                await process.run_command("nmap", ["nmap", "-oG", "-", "example.com"])

    @pytest.mark.asyncio
    async def test_stdout_returned(self, monkeypatch):
        monkeypatch.setattr(process.shutil, "which", lambda name: f"/usr/bin/{name}")
        proc = MagicMock(returncode=0)
        proc.communicate = AsyncMock(return_value=(b"a.example.com\n", b""))
        spawn = AsyncMock(return_value=proc)
        with patch.object(process.asyncio, "create_subprocess_exec", spawn):
            out = await process.run_command("amass", ["amass", "enum", "-d", "example.com"], stdin="x\n")
        assert out == "a.example.com\n"
        proc.communicate.assert_awaited_once_with(b"x\n")


def mock_client(monkeypatch, handler):
    real_client = httpx.AsyncClient

    def factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return real_client(*args, **kwargs)

    monkeypatch.setattr(httpx, "AsyncClient", factory)


class TestApiClients:
    @pytest.mark.asyncio
    async def test_shodan_requires_key(self):
        with pytest.raises(ToolTransportFailure, match="No API key"):
            await api.shodan(ToolInvocation(tool="shodan", target="example.com"))

    @pytest.mark.asyncio
    async def test_shodan_results_are_cached(self, monkeypatch, cache):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"matches": [{"ip_str": "192.0.2.1", "port": 443}]})

        mock_client(monkeypatch, handler)
        invocation = ToolInvocation(tool="shodan", target="example.com", credential="k", cache=cache)
        first = await api.shodan(invocation)
        second = await api.shodan(invocation)
        assert first == second
        assert first[0]["port"] == 443
        assert len(calls) == 1
        assert calls[0].url.params["query"] == "hostname:example.com"

    @pytest.mark.asyncio
    async def test_http_error_is_transport_failure(self, monkeypatch):
        mock_client(monkeypatch, lambda request: httpx.Response(401, json={"error": "bad key"}))
        invocation = ToolInvocation(tool="shodan", target="example.com", credential="k")
        with pytest.raises(ToolTransportFailure, match="HTTP 401"):
            await api.shodan(invocation)
