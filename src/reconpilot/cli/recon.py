"""reconpilot (recon) - AI-assisted reconnaissance runner.

Entry point for queueing tool runs, asking the planner for next steps and
scoring collected findings.
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from .. import __version__
from ..core.config import get_effective_config, initialize_project
from ..core.errors import ReconError, TierRestricted, UnknownTool
from ..core.risk import RiskAggregator
from ..core.service import ReconService, build_service, default_context
from ..core.tiers import TierPolicy, coerce_plan
from ..models.decision import Decision
from ..models.execution import ExecutionRequest
from ..models.finding import Finding, Severity
from ..models.threat import RiskAssessment
from ..models.tier import Plan
from ..models.tool import Origin
from ..tools.registry import default_registry
from ..utils.logging import configure_logging

console = Console()

EXIT_RESTRICTED = 3

SEVERITY_STYLE = {
    Severity.CRITICAL: "bold red",
    Severity.HIGH: "red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "green",
}

ORIGIN_STYLE = {
    Origin.REAL: "[green]REAL[/green]",
    Origin.CACHED: "[cyan]CACHED[/cyan]",
    Origin.SIMULATED: "[bold yellow]SIMULATED[/bold yellow]",
}


def get_exit_code(level: Severity) -> int:
    """Map a risk level to a CI exit code."""
    return {
        Severity.CRITICAL: 1,
        Severity.HIGH: 1,
        Severity.MEDIUM: 2,
        Severity.LOW: 0,
    }.get(level, 0)


def _load_config(project: Optional[str], dry_run: bool, plan: Optional[str] = None) -> dict:
    overrides: dict = {}
    if dry_run:
        overrides["ai"] = {"provider": "stub"}
        overrides["executor"] = {"real_execution": False}
    if plan:
        overrides["project"] = {"plan": plan}
    return get_effective_config(Path(project) if project else None, overrides)


def _parse_headers(values: tuple[str, ...]) -> dict[str, str]:
    headers: dict[str, str] = {}
    for value in values:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            raise click.BadParameter(f"Expected 'Name: value', got {value!r}", param_hint="--header")
        headers[name.strip()] = content.strip()
    return headers


def _print_execution(request: ExecutionRequest) -> None:
    result = request.result
    status_color = "green" if request.status.value == "completed" else "red"
    console.print(
        f"  [{status_color}]{request.status.value.upper()}[/{status_color}] "
        f"{request.tool} on [white]{request.target}[/white] ({request.id})"
    )
    if result is None:
        return
    if result.error:
        console.print(f"    [red]ERROR[/red] {result.error}")
        return
    meta = result.metadata
    if meta is not None:
        line = f"    Origin: {ORIGIN_STYLE[meta.origin]}  {meta.execution_time_ms}ms"
        if meta.cached_origin is not None:
            line += f"  (cached from {meta.cached_origin.value})"
        console.print(line)
        if meta.simulation_reason:
            console.print(f"    [yellow]Simulated data:[/yellow] {meta.simulation_reason}")
    count = len(result.output) if isinstance(result.output, list) else 0
    console.print(f"    Items: {count}  Findings: {len(result.findings)}")
    _print_findings(result.findings, indent="      ")


def _print_findings(findings: list[Finding], indent: str = "  ") -> None:
    for finding in findings:
        style = SEVERITY_STYLE[finding.severity]
        console.print(f"{indent}[{style}]{finding.severity.value.upper():8}[/{style}] {finding.title}")


def _print_decision(decision: Decision) -> None:
    console.print(f"  Decision: [white]{decision.id}[/white]  confidence {decision.confidence:.2f}")
    if decision.reasoning:
        console.print(f"  Reasoning: {decision.reasoning}")
    if decision.needs_clarification:
        console.print(f"  [yellow]Clarification needed:[/yellow] {decision.clarification or ''}")
    for action in decision.actions:
        inferred = " [dim](target inferred)[/dim]" if action.inferred else ""
        console.print(
            f"    - {action.tool} on {action.target} ({action.confidence:.2f}){inferred}: {action.reason}"
        )
    if decision.auto_execute:
        console.print("  [green]AUTO-EXECUTE[/green] all actions cleared the gate")
    elif decision.actions:
        console.print("  [yellow]APPROVAL REQUIRED[/yellow] re-run with --approve to execute")


def _print_assessment(assessment: RiskAssessment) -> None:
    style = SEVERITY_STYLE[assessment.risk_level]
    console.print()
    console.print(
        f"  Risk: [{style}]{assessment.risk_level.value.upper()}[/{style}] "
        f"({assessment.overall_risk_score}/100) from {assessment.finding_count} findings"
    )
    breakdown = assessment.severity_breakdown
    console.print(
        f"  Severity: {breakdown.critical} critical, {breakdown.high} high, "
        f"{breakdown.medium} medium, {breakdown.low} low"
    )
    console.print(f"  Time to compromise: {assessment.time_to_compromise_estimate}")
    for threat in assessment.primary_threats:
        console.print(
            f"    {threat.threat_type}: {threat.risk_score} "
            f"(confidence {threat.confidence:.2f}, likelihood {threat.likelihood:.2f})"
        )
    if assessment.recommendations:
        console.print("  Recommendations:")
        for rec in assessment.recommendations:
            console.print(f"    - {rec}")


@click.group()
@click.version_option(__version__, prog_name="recon")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def recon_cli(verbose: bool) -> None:
    """reconpilot - AI-assisted reconnaissance orchestration."""
    configure_logging(verbose)


@recon_cli.command()
@click.option("--project", "-p", type=click.Path(exists=True, file_okay=False), required=True)
@click.option("--target", "-t", default="", help="Primary target domain")
@click.option("--plan", type=click.Choice([p.value for p in Plan]), default="free")
@click.option("--ai-provider", type=click.Choice(["stub", "openai", "anthropic", "ollama"]), default="stub")
def init(project: str, target: str, plan: str, ai_provider: str) -> None:
    """Initialize reconpilot in a project directory."""
    path = initialize_project(Path(project), target=target, plan=plan, provider=ai_provider)
    console.print(f"  [green]Initialized[/green] {path}")


@recon_cli.command()
@click.option("--plan", type=click.Choice([p.value for p in Plan]), default="free")
@click.option("--key", "keys", multiple=True, help="Tool you hold your own API key for")
def tools(plan: str, keys: tuple[str, ...]) -> None:
    """List tools and whether they run on a plan."""
    registry = default_registry()
    policy = TierPolicy()
    resolved = coerce_plan(plan)
    available = {d.name for d in registry.available_for(resolved, keys)}
    for descriptor in registry.descriptors():
        access = policy.is_tool_allowed(descriptor.name, resolved, descriptor.name in keys)
        ok = access.allowed and descriptor.name in available
        mark = "[green]OK[/green]    " if ok else "[red]LOCKED[/red]"
        flags = []
        if descriptor.requires_key:
            flags.append("key")
        if descriptor.rate_limited:
            flags.append("rate-limited")
        extra = f" [dim]({', '.join(flags)})[/dim]" if flags else ""
        console.print(f"  {mark} {descriptor.name:15} {descriptor.category.value:13} {descriptor.tier.value}{extra}")


@recon_cli.command()
def tiers() -> None:
    """Show plan limits."""
    policy = TierPolicy()
    for plan in Plan:
        info = policy.tier_info(plan)
        console.print(f"  [bold cyan]{plan.value.upper()}[/bold cyan]")
        for feature in info.features:
            console.print(f"    [green]+[/green] {feature}")
        for restriction in info.restrictions:
            console.print(f"    [yellow]-[/yellow] {restriction}")


async def _run_tools(
    service: ReconService,
    project_id: str,
    tool_names: list[str],
    target: str,
    plan: Plan,
    confidence: float,
    headers: dict[str, str],
    credentials: dict[str, str],
) -> list[ExecutionRequest]:
    async with service:
        ids = [
            await service.enqueue(
                project_id,
                name,
                target,
                plan=plan,
                confidence=confidence,
                headers=headers,
                credentials=credentials,
            )
            for name in tool_names
        ]
        await service.wait_idle()
        return [service.status(i) for i in ids]


@recon_cli.command()
@click.argument("tool_names", nargs=-1, required=True)
@click.option("--target", "-t", help="Target (defaults to the project target)")
@click.option("--project", "-p", type=click.Path(exists=True, file_okay=False))
@click.option("--plan", type=click.Choice([p.value for p in Plan]))
@click.option("--confidence", type=click.FloatRange(0.0, 1.0), default=0.0)
@click.option("--header", "-H", "header_values", multiple=True, help="'Name: value' header")
@click.option("--key", "key_values", multiple=True, help="'tool=secret' credential")
@click.option("--dry-run", is_flag=True, help="Simulate tools instead of running them")
@click.option("--ci", is_flag=True, help="CI mode: exit code from risk level")
def run(
    tool_names: tuple[str, ...],
    target: Optional[str],
    project: Optional[str],
    plan: Optional[str],
    confidence: float,
    header_values: tuple[str, ...],
    key_values: tuple[str, ...],
    dry_run: bool,
    ci: bool,
) -> None:
    """Queue TOOL_NAMES against a target and wait for them."""
    config = _load_config(project, dry_run, plan)
    context = default_context(config)
    target = target or context.target
    if not target:
        raise click.UsageError("No target: pass --target or set project.target")

    credentials: dict[str, str] = {}
    for value in key_values:
        name, sep, secret = value.partition("=")
        if not sep:
            raise click.BadParameter("Expected 'tool=secret'", param_hint="--key")
        credentials[name.strip()] = secret

    service = build_service(config)
    try:
        requests = asyncio.run(_run_tools(
            service,
            context.project_id,
            list(tool_names),
            target,
            context.plan,
            confidence,
            _parse_headers(header_values),
            credentials,
        ))
    except (TierRestricted, UnknownTool) as e:
        console.print(f"  [red]DENIED[/red] {e}")
        sys.exit(EXIT_RESTRICTED)

    console.print()
    for request in requests:
        if request is not None:
            _print_execution(request)

    assessment = service.risk_assessment(project_id=context.project_id)
    _print_assessment(assessment)
    if ci:
        sys.exit(get_exit_code(assessment.risk_level))


async def _decide(service: ReconService, text: str, context, approve: bool, execute: bool):
    async with service:
        decision = await service.decide(text, context, auto_enqueue=execute or approve)
        if approve and decision.requires_approval and decision.actions:
            outcome = await service.approve_decision(decision.id, context)
            decision = outcome.decision or decision
        await service.wait_idle()
        return decision, [service.status(i) for i in decision.execution_ids]


@recon_cli.command()
@click.argument("text")
@click.option("--project", "-p", type=click.Path(exists=True, file_okay=False))
@click.option("--target", "-t", help="Target (defaults to the project target)")
@click.option("--plan", type=click.Choice([p.value for p in Plan]))
@click.option("--approve", is_flag=True, help="Approve and run the proposed actions")
@click.option("--no-execute", is_flag=True, help="Only show the plan")
@click.option("--dry-run", is_flag=True, help="Stub planner and simulated tools")
@click.option("--ai-provider", type=click.Choice(["stub", "openai", "anthropic", "ollama"]))
@click.option("--ci", is_flag=True, help="CI mode: exit code from risk level")
def decide(
    text: str,
    project: Optional[str],
    target: Optional[str],
    plan: Optional[str],
    approve: bool,
    no_execute: bool,
    dry_run: bool,
    ai_provider: Optional[str],
    ci: bool,
) -> None:
    """Ask the planner what to run for TEXT."""
    config = _load_config(project, dry_run, plan)
    if ai_provider and not dry_run:
        config["ai"]["provider"] = ai_provider
    context = default_context(config)
    if target:
        context = context.model_copy(update={"target": target, "scope": context.scope or [target]})

    service = build_service(config)
    decision, requests = asyncio.run(_decide(service, text, context, approve, not no_execute))

    console.print()
    _print_decision(decision)
    for request in requests:
        if request is not None:
            _print_execution(request)

    if decision.execution_ids:
        assessment = service.risk_assessment(project_id=context.project_id)
        _print_assessment(assessment)
        if ci:
            sys.exit(get_exit_code(assessment.risk_level))


@recon_cli.command()
@click.argument("findings_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--project-id", help="Only assess findings for this project")
@click.option("--json", "as_json", is_flag=True, help="Print the assessment as JSON")
@click.option("--ci", is_flag=True, help="CI mode: exit code from risk level")
def risk(findings_file: str, project_id: Optional[str], as_json: bool, ci: bool) -> None:
    """Score findings from a JSON lines file (one Finding per line)."""
    findings: list[Finding] = []
    for number, line in enumerate(Path(findings_file).read_text(encoding="utf-8-sig").splitlines(), 1):
        if not line.strip():
            continue
        try:
            finding = Finding.model_validate(json.loads(line))
        except ValueError as e:
            raise click.ClickException(f"{findings_file}:{number}: not a finding ({e.__class__.__name__})")
        if project_id is None or finding.project_id == project_id:
            findings.append(finding)

    assessment = RiskAggregator().assess(findings, project_id)
    if as_json:
        click.echo(assessment.model_dump_json(indent=2))
    else:
        _print_assessment(assessment)
    if ci:
        sys.exit(get_exit_code(assessment.risk_level))


def main() -> None:
    try:
        recon_cli()
    except ReconError as e:
        console.print(f"  [red]ERROR[/red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
