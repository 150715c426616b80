"""Deterministic stand-in outputs used when a real tool run is unavailable.

Every simulator returns the same normalized shape as the real parser for that
tool, so finding extraction does not care where the items came from. Secret
scanners deliberately simulate to an empty list.
"""

from __future__ import annotations

from typing import Any

SIMULATED_SUBDOMAINS = ("www", "api", "admin", "mail", "ftp", "dev", "staging")


def subfinder(target: str) -> list[dict[str, Any]]:
    return [{"host": f"{sub}.{target}", "source": "simulated"} for sub in SIMULATED_SUBDOMAINS]


def amass(target: str) -> list[dict[str, Any]]:
    return [{"host": f"{sub}.{target}", "source": "simulated"} for sub in SIMULATED_SUBDOMAINS[:4]]


def securitytrails(target: str) -> list[dict[str, Any]]:
    return [{"host": f"{sub}.{target}", "source": "simulated"} for sub in ("www", "api", "mail", "admin")]


def httpx(target: str) -> list[dict[str, Any]]:
    return [
        {"url": f"https://{target}", "status_code": 200, "title": "Example Site"},
        {"url": f"https://www.{target}", "status_code": 200, "title": "Example Site"},
        {"url": f"https://api.{target}", "status_code": 404, "title": "Not Found"},
    ]


def dnsx(target: str) -> list[dict[str, Any]]:
    return [
        {"host": target, "a": ["192.0.2.10"]},
        {"host": f"www.{target}", "a": ["192.0.2.10"]},
    ]


def nmap(target: str) -> list[dict[str, Any]]:
    return [
        {"host": target, "port": 22, "state": "open", "protocol": "tcp", "service": "ssh"},
        {"host": target, "port": 80, "state": "open", "protocol": "tcp", "service": "http"},
        {"host": target, "port": 443, "state": "open", "protocol": "tcp", "service": "https"},
    ]


def masscan(target: str) -> list[dict[str, Any]]:
    return [
        {"host": target, "port": 80, "state": "open", "protocol": "tcp", "service": "http"},
        {"host": target, "port": 443, "state": "open", "protocol": "tcp", "service": "https"},
    ]


def waybackurls(target: str) -> list[dict[str, Any]]:
    return [
        {"url": f"https://{target}/admin"},
        {"url": f"https://{target}/api/v1/users"},
        {"url": f"https://{target}/backup.sql"},
    ]


def gau(target: str) -> list[dict[str, Any]]:
    return [
        {"url": f"https://{target}/api/v1/"},
        {"url": f"https://{target}/admin/login"},
        {"url": f"https://{target}/.env"},
    ]


def arjun(target: str) -> list[dict[str, Any]]:
    return [{"url": f"https://{target}/search", "params": ["q", "debug"]}]


def trufflehog(target: str) -> list[dict[str, Any]]:
    return []


def shodan(target: str) -> list[dict[str, Any]]:
    return [
        {"ip_str": "192.0.2.1", "port": 80, "product": "nginx", "hostnames": [target]},
        {"ip_str": "192.0.2.1", "port": 443, "product": "nginx", "hostnames": [target]},
    ]


def censys(target: str) -> list[dict[str, Any]]:
    return [
        {"ip": "192.0.2.1", "port": 80, "service": "HTTP"},
        {"ip": "192.0.2.1", "port": 443, "service": "HTTP"},
    ]
