"""Tool registry: descriptors plus how to run or simulate each tool."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional

from ..core.cache import ResultCache
from ..models.tier import Plan
from ..models.tool import ToolCategory, ToolDescriptor
from . import api, parsers, simulators
from .process import run_command


@dataclass
class ToolInvocation:
    """Everything a tool runner needs for one call."""

    tool: str
    target: str
    headers: dict[str, str] = field(default_factory=dict)
    credential: Optional[str] = None
    timeout: float = 60.0
    cache: Optional[ResultCache] = None
    api_ttl_seconds: float = 600.0


Runner = Callable[[ToolInvocation], Awaitable[Any]]


@dataclass(frozen=True)
class ToolSpec:
    descriptor: ToolDescriptor
    simulate: Callable[[str], Any]
    execute: Optional[Runner] = None


def _header_flags(headers: dict[str, str]) -> list[str]:
    flags: list[str] = []
    for name, value in headers.items():
        flags.extend(["-H", f"{name}: {value}"])
    return flags


async def _subfinder(inv: ToolInvocation) -> list[dict]:
    out = await run_command(inv.tool, ["subfinder", "-d", inv.target, "-silent", "-oJ"])
    return parsers.json_lines(out)


async def _amass(inv: ToolInvocation) -> list[dict]:
    out = await run_command(inv.tool, ["amass", "enum", "-passive", "-d", inv.target])
    return parsers.host_lines(out)


async def _httpx(inv: ToolInvocation) -> list[dict]:
    argv = ["httpx", "-silent", "-json", "-status-code", "-title", *_header_flags(inv.headers)]
    out = await run_command(inv.tool, argv, stdin=inv.target + "\n")
    return parsers.httpx_items(out)


async def _dnsx(inv: ToolInvocation) -> list[dict]:
    out = await run_command(inv.tool, ["dnsx", "-silent", "-json", "-a"], stdin=inv.target + "\n")
    return parsers.json_lines(out)


async def _waybackurls(inv: ToolInvocation) -> list[dict]:
    out = await run_command(inv.tool, ["waybackurls", inv.target])
    return parsers.url_lines(out)


async def _gau(inv: ToolInvocation) -> list[dict]:
    out = await run_command(inv.tool, ["gau", inv.target])
    return parsers.url_lines(out)


async def _nmap(inv: ToolInvocation) -> list[dict]:
    out = await run_command(inv.tool, ["nmap", "-sV", "--top-ports", "1000", "-oG", "-", inv.target])
    return parsers.nmap_grepable(out)


async def _trufflehog(inv: ToolInvocation) -> list[dict]:
    out = await run_command(
        inv.tool, ["trufflehog", "git", f"https://{inv.target}", "--json", "--no-update"]
    )
    return [item for item in parsers.json_lines(out) if "Raw" in item]


class ToolRegistry:
    def __init__(self, specs: Iterable[ToolSpec] = ()):
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        self._specs[spec.descriptor.name] = spec

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._specs.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def names(self) -> list[str]:
        return sorted(self._specs)

    def descriptors(self) -> list[ToolDescriptor]:
        return [self._specs[name].descriptor for name in self.names()]

    def available_for(self, plan: Plan, own_keys: Iterable[str] = ()) -> list[ToolDescriptor]:
        """Descriptors a requester on ``plan`` can run at their own tier.

        Free-tier tools are always listed. Paid-tier tools are listed on the
        paid plan, or on any plan when the requester holds a key for them.
        """
        keys = set(own_keys)
        return [
            d
            for d in self.descriptors()
            if d.tier == Plan.FREE or plan == Plan.PAID or d.name in keys
        ]


def _descriptor(name: str, category: ToolCategory, **kwargs: Any) -> ToolDescriptor:
    return ToolDescriptor(name=name, category=category, **kwargs)


def default_registry() -> ToolRegistry:
    """Registry of every tool the executor knows how to run."""
    sub, end, vul, sec, port, dns = (
        ToolCategory.SUBDOMAIN,
        ToolCategory.ENDPOINT,
        ToolCategory.VULNERABILITY,
        ToolCategory.SECRET,
        ToolCategory.PORT,
        ToolCategory.DNS,
    )
    paid = Plan.PAID
    return ToolRegistry([
        ToolSpec(_descriptor("subfinder", sub, binary="subfinder"), simulators.subfinder, _subfinder),
        ToolSpec(_descriptor("httpx", end, binary="httpx"), simulators.httpx, _httpx),
        ToolSpec(_descriptor("dnsx", dns, binary="dnsx"), simulators.dnsx, _dnsx),
        ToolSpec(
            _descriptor("waybackurls", end, rate_limited=True, binary="waybackurls"),
            simulators.waybackurls,
            _waybackurls,
        ),
        ToolSpec(_descriptor("gau", end, rate_limited=True, binary="gau"), simulators.gau, _gau),
        ToolSpec(_descriptor("arjun", vul), simulators.arjun),
        ToolSpec(_descriptor("trufflehog", sec, binary="trufflehog"), simulators.trufflehog, _trufflehog),
        ToolSpec(_descriptor("nmap", port, binary="nmap"), simulators.nmap, _nmap),
        ToolSpec(_descriptor("masscan", port, tier=paid), simulators.masscan),
        ToolSpec(_descriptor("amass", sub, tier=paid, binary="amass"), simulators.amass, _amass),
        ToolSpec(
            _descriptor("shodan", port, tier=paid, requires_key=True, rate_limited=True),
            simulators.shodan,
            api.shodan,
        ),
        ToolSpec(
            _descriptor("securitytrails", sub, tier=paid, requires_key=True, rate_limited=True),
            simulators.securitytrails,
            api.securitytrails,
        ),
        ToolSpec(
            _descriptor("censys", port, tier=paid, requires_key=True, rate_limited=True),
            simulators.censys,
            api.censys,
        ),
    ])
