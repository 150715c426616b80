"""HTTP clients for the key-gated intelligence services.

Responses are memoized in the shared result cache under ``api:`` keys so a
burst of executions against the same target spends one upstream request.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

import httpx

from ..core.errors import ToolTransportFailure

logger = logging.getLogger(__name__)

SHODAN_SEARCH_URL = "https://api.shodan.io/shodan/host/search"
SECURITYTRAILS_URL = "https://api.securitytrails.com/v1/domain/{target}/subdomains"
CENSYS_SEARCH_URL = "https://search.censys.io/api/v2/hosts/search"


async def _cached_json(
    invocation,
    service: str,
    endpoint: str,
    params: dict,
    fetch: Callable[[httpx.AsyncClient], Awaitable[httpx.Response]],
) -> Any:
    cache = invocation.cache
    if cache is not None:
        hit = cache.get_cached_api_response(service, endpoint, params)
        if hit is not None:
            logger.debug("API cache hit for %s %s", service, endpoint)
            return hit

    try:
        async with httpx.AsyncClient(timeout=invocation.timeout) as client:
            response = await fetch(client)
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPStatusError as e:
        raise ToolTransportFailure(
            invocation.tool, f"{service} returned HTTP {e.response.status_code}"
        ) from e
    except httpx.HTTPError as e:
        raise ToolTransportFailure(invocation.tool, f"{service} request failed: {e}") from e
    except ValueError as e:
        raise ToolTransportFailure(invocation.tool, f"{service} returned invalid JSON") from e

    if cache is not None:
        cache.cache_api_response(service, endpoint, data, invocation.api_ttl_seconds, params)
    return data


def _require_key(invocation) -> str:
    if not invocation.credential:
        raise ToolTransportFailure(invocation.tool, f"No API key available for {invocation.tool}")
    return invocation.credential


async def shodan(invocation) -> list[dict[str, Any]]:
    key = _require_key(invocation)
    query = {"query": f"hostname:{invocation.target}"}

    async def fetch(client: httpx.AsyncClient) -> httpx.Response:
        return await client.get(SHODAN_SEARCH_URL, params={"key": key, **query})

    data = await _cached_json(invocation, "shodan", "host/search", query, fetch)
    return [
        {
            "ip_str": match.get("ip_str"),
            "port": match.get("port"),
            "product": match.get("product"),
            "hostnames": match.get("hostnames", []),
            "transport": match.get("transport", "tcp"),
        }
        for match in data.get("matches", [])
    ]


async def securitytrails(invocation) -> list[dict[str, Any]]:
    key = _require_key(invocation)
    target = invocation.target

    async def fetch(client: httpx.AsyncClient) -> httpx.Response:
        return await client.get(SECURITYTRAILS_URL.format(target=target), headers={"APIKEY": key})

    data = await _cached_json(invocation, "securitytrails", "domain/subdomains", {"target": target}, fetch)
    return [{"host": f"{sub}.{target}", "source": "securitytrails"} for sub in data.get("subdomains", [])]


async def censys(invocation) -> list[dict[str, Any]]:
    """Censys search. The credential is ``"<api id>:<secret>"``."""
    key = _require_key(invocation)
    api_id, sep, secret = key.partition(":")
    if not sep or not api_id or not secret:
        raise ToolTransportFailure(invocation.tool, "Censys credential must be '<api id>:<secret>'")
    params = {"q": invocation.target, "per_page": 50}

    async def fetch(client: httpx.AsyncClient) -> httpx.Response:
        return await client.get(CENSYS_SEARCH_URL, params=params, auth=(api_id, secret))

    data = await _cached_json(invocation, "censys", "hosts/search", params, fetch)
    items: list[dict[str, Any]] = []
    for hit in (data.get("result") or {}).get("hits", []):
        for service in hit.get("services", []):
            items.append({
                "ip": hit.get("ip"),
                "port": service.get("port"),
                "service": service.get("service_name", "unknown"),
            })
    return items

