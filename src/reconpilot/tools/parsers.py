"""Normalize raw tool stdout into lists of item dicts."""

from __future__ import annotations

import json
import re
from typing import Any


def _lines(output: str) -> list[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]


def json_lines(output: str) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for line in _lines(output):
        try:
            value = json.loads(line)
        except json.JSONDecodeError:
            items.append({"raw": line})
            continue
        items.append(value if isinstance(value, dict) else {"raw": value})
    return items


def url_lines(output: str) -> list[dict[str, Any]]:
    return [{"url": line} for line in _lines(output)]


def host_lines(output: str) -> list[dict[str, Any]]:
    return [{"host": line.lower().rstrip(".")} for line in _lines(output)]


def httpx_items(output: str) -> list[dict[str, Any]]:
    """httpx JSON lines; older releases spell the status key ``status-code``."""
    items = json_lines(output)
    for item in items:
        if "status_code" not in item and "status-code" in item:
            item["status_code"] = item.pop("status-code")
    return items


_NMAP_HOST = re.compile(r"^Host:\s+(\S+)(?:\s+\(([^)]*)\))?\s+Ports:\s+(.*)$")


def nmap_grepable(output: str) -> list[dict[str, Any]]:
    """Parse ``nmap -oG -`` output into one item per reported port."""
    items: list[dict[str, Any]] = []
    for line in _lines(output):
        m = _NMAP_HOST.match(line)
        if not m:
            continue
        address, hostname, ports = m.group(1), m.group(2) or "", m.group(3)
        # Trailing "Ignored State:" section is tab separated from the port list
        ports = ports.split("\t")[0]
        for spec in ports.split(","):
            fields = spec.strip().split("/")
            if len(fields) < 5 or not fields[0].isdigit():
                continue
            items.append({
                "host": hostname or address,
                "ip": address,
                "port": int(fields[0]),
                "state": fields[1],
                "protocol": fields[2],
                "service": fields[4] or "unknown",
            })
    return items
