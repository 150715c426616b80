"""Finding extraction: turns normalized tool output into structured findings.

Each tool has one rule that looks at a single output item and either derives
a finding or returns None. Items a rule cannot make sense of are dropped, so
an empty result is not proof that nothing is there.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Optional
from urllib.parse import urlparse

from ..models.finding import Finding, Severity

# (type, title, description, severity, extra metadata)
Derived = tuple[str, str, str, Severity, dict[str, Any]]
Rule = Callable[[dict[str, Any]], Optional[Derived]]

SENSITIVE_SUFFIXES = (".sql", ".bak", ".env", ".git", ".zip", ".tar.gz", ".old")
SENSITIVE_MARKERS = ("backup", "/.git/", "/.env", "dump")

PORT_RISK: dict[int, tuple[str, Severity]] = {
    # Should never be internet-facing
    3389: ("RDP", Severity.CRITICAL),
    5900: ("VNC", Severity.CRITICAL),
    2375: ("Docker API", Severity.CRITICAL),
    3306: ("MySQL", Severity.CRITICAL),
    5432: ("PostgreSQL", Severity.CRITICAL),
    27017: ("MongoDB", Severity.CRITICAL),
    6379: ("Redis", Severity.CRITICAL),
    9200: ("Elasticsearch", Severity.CRITICAL),
    # Commonly exploited
    21: ("FTP", Severity.HIGH),
    23: ("Telnet", Severity.HIGH),
    445: ("SMB", Severity.HIGH),
    11211: ("Memcached", Severity.HIGH),
    # Needs careful configuration
    22: ("SSH", Severity.MEDIUM),
    25: ("SMTP", Severity.MEDIUM),
    8080: ("HTTP alternate", Severity.MEDIUM),
    8443: ("HTTPS alternate", Severity.MEDIUM),
    # Expected web ports
    80: ("HTTP", Severity.LOW),
    443: ("HTTPS", Severity.LOW),
}


def _str(item: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _subdomain(item: dict[str, Any]) -> Optional[Derived]:
    host = _str(item, "host", "name")
    if not host:
        return None
    return (
        "subdomain",
        f"Subdomain discovered: {host}",
        f"Found subdomain {host} during reconnaissance",
        Severity.LOW,
        {"host": host},
    )


def _dns_record(item: dict[str, Any]) -> Optional[Derived]:
    host = _str(item, "host")
    addresses = item.get("a") or []
    if not host or not addresses:
        return None
    return (
        "dns",
        f"DNS record resolved: {host}",
        f"{host} resolves to {', '.join(str(a) for a in addresses)}",
        Severity.LOW,
        {"host": host, "a": list(addresses)},
    )


def _live_endpoint(item: dict[str, Any]) -> Optional[Derived]:
    url = _str(item, "url")
    status = item.get("status_code")
    if not url or not isinstance(status, int):
        return None
    severity = Severity.LOW if 200 <= status < 300 else Severity.MEDIUM
    return (
        "endpoint",
        f"Active endpoint: {url} ({status})",
        f"HTTP service responded with status {status}",
        severity,
        {"url": url, "status_code": status, "title": item.get("title")},
    )


def _historical_url(item: dict[str, Any]) -> Optional[Derived]:
    url = _str(item, "url")
    if not url:
        return None
    path = urlparse(url).path.lower()
    meta = {"url": url}
    if path.endswith(SENSITIVE_SUFFIXES) or any(m in path for m in SENSITIVE_MARKERS):
        return (
            "exposed_file",
            f"Possible backup or config file exposed: {url}",
            f"Archived URL points at a sensitive file path: {path}",
            Severity.HIGH,
            meta,
        )
    if "/admin" in path:
        return (
            "admin_panel",
            f"Admin panel discovered: {url}",
            "Archived URL references an administrator interface",
            Severity.MEDIUM,
            meta,
        )
    if "/api/" in path:
        return (
            "api_endpoint",
            f"API endpoint discovered: {url}",
            "Archived URL references an API endpoint",
            Severity.LOW,
            meta,
        )
    return ("url", f"Historical URL: {url}", "URL found in web archives", Severity.LOW, meta)


def _secret(item: dict[str, Any]) -> Optional[Derived]:
    raw = _str(item, "Raw")
    if not raw:
        return None
    detector = _str(item, "DetectorName") or "unknown"
    verified = bool(item.get("Verified"))
    return (
        "secret",
        f"Potential secret found: {detector}",
        f"TruffleHog detected potential secret: {detector}",
        Severity.CRITICAL if verified else Severity.HIGH,
        # The raw secret itself is never copied into the finding
        {"detector": detector, "verified": verified},
    )


def _open_port(item: dict[str, Any]) -> Optional[Derived]:
    port = item.get("port")
    host = _str(item, "host", "ip", "ip_str")
    if not isinstance(port, int) or not host:
        return None
    if item.get("state", "open") != "open":
        return None
    label, severity = PORT_RISK.get(port, (_str(item, "service") or "unknown", Severity.MEDIUM))
    return (
        "open_port",
        f"Open port {port} ({label}) on {host}",
        f"Port {port}/{item.get('protocol', 'tcp')} is reachable, service: {item.get('service', 'unknown')}",
        severity,
        {"host": host, "port": port, "service": item.get("service")},
    )


def _exposed_service(item: dict[str, Any]) -> Optional[Derived]:
    port = item.get("port")
    address = _str(item, "ip_str", "ip")
    if not isinstance(port, int) or not address:
        return None
    product = _str(item, "product", "service") or "unknown service"
    return (
        "exposed_service",
        f"Internet-exposed service: {address}:{port}",
        f"{product} indexed by an internet scanner on port {port}",
        Severity.MEDIUM,
        {"ip": address, "port": port, "product": product},
    )


def _parameters(item: dict[str, Any]) -> Optional[Derived]:
    url = _str(item, "url")
    params = item.get("params") or []
    if not url or not params:
        return None
    return (
        "parameter",
        f"Hidden parameters discovered: {url}",
        f"Accepted parameters: {', '.join(str(p) for p in params)}",
        Severity.MEDIUM,
        {"url": url, "params": list(params)},
    )


RULES: dict[str, Rule] = {
    "subfinder": _subdomain,
    "amass": _subdomain,
    "securitytrails": _subdomain,
    "dnsx": _dns_record,
    "httpx": _live_endpoint,
    "waybackurls": _historical_url,
    "gau": _historical_url,
    "trufflehog": _secret,
    "nmap": _open_port,
    "masscan": _open_port,
    "shodan": _exposed_service,
    "censys": _exposed_service,
    "arjun": _parameters,
}


def extract_findings(
    tool: str,
    output: Any,
    *,
    target: str,
    project_id: str,
    run_id: str,
    category: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> list[Finding]:
    """Derive findings from one tool result.

    Deterministic for a given input: ids are positional within the run and
    every finding shares one timestamp. Unknown tools and non-list output
    yield an empty list.
    """
    rule = RULES.get(tool)
    if rule is None or not isinstance(output, list):
        return []

    stamp = created_at or datetime.now(timezone.utc)
    findings: list[Finding] = []
    for item in output:
        if not isinstance(item, dict):
            continue
        derived = rule(item)
        if derived is None:
            continue
        kind, title, description, severity, extra = derived
        findings.append(Finding(
            id=f"{run_id}-f{len(findings)}",
            project_id=project_id,
            run_id=run_id,
            type=kind,
            severity=severity,
            title=title,
            description=description,
            target=target,
            metadata={"tool": tool, "category": category, **extra},
            created_at=stamp,
        ))
    return findings
