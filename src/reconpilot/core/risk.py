"""Risk aggregation: folds a finding set into threat predictions and a score.

Everything here is a pure function of the findings. Groups and predictions
are emitted in a fixed order and ids are derived from the project and threat
type, so assessing the same findings twice gives identical output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..models.finding import Finding, Severity, SeverityBreakdown
from ..models.threat import AttackSurface, RiskAssessment, ThreatPrediction


@dataclass(frozen=True)
class RiskModel:
    base_score: int
    factors: dict[str, int] = field(default_factory=dict)
    reliability: float = 0.7
    likelihood: float = 0.5
    impact: float = 0.5
    attack_vectors: tuple[str, ...] = ("Reconnaissance", "Exploitation", "Privilege escalation")
    recommendations: tuple[str, ...] = (
        "Conduct security assessment",
        "Implement security controls",
        "Monitor for anomalies",
    )


RISK_MODELS: dict[str, RiskModel] = {
    "exposed_admin_panel": RiskModel(
        base_score=75,
        factors={
            "no_authentication": 30,
            "weak_credentials": 20,
            "sensitive_data_access": 25,
            "privilege_escalation": 15,
        },
        reliability=0.9,
        likelihood=0.8,
        impact=0.9,
        attack_vectors=(
            "Brute force authentication",
            "Default credential exploitation",
            "Session hijacking",
            "Privilege escalation",
        ),
        recommendations=(
            "Implement strong authentication mechanisms",
            "Add IP whitelisting for admin access",
            "Enable multi-factor authentication",
            "Monitor admin panel access logs",
        ),
    ),
    "sql_injection": RiskModel(
        base_score=85,
        factors={
            "data_exposure": 25,
            "authentication_bypass": 20,
            "remote_code_execution": 30,
            "database_access": 20,
        },
        reliability=0.85,
        likelihood=0.7,
        impact=0.95,
        attack_vectors=(
            "Database enumeration",
            "Data exfiltration",
            "Authentication bypass",
            "Remote code execution",
        ),
        recommendations=(
            "Use parameterized queries",
            "Implement input validation",
            "Apply principle of least privilege",
            "Regular security code reviews",
        ),
    ),
    "exposed_backup_files": RiskModel(
        base_score=60,
        factors={
            "contains_credentials": 25,
            "source_code_exposure": 20,
            "database_dump": 30,
            "configuration_files": 15,
        },
        reliability=0.95,
        likelihood=0.9,
        impact=0.8,
        attack_vectors=(
            "Credential harvesting",
            "Source code analysis",
            "Configuration exploitation",
            "Information disclosure",
        ),
        recommendations=(
            "Remove sensitive files from web directories",
            "Implement proper file permissions",
            "Use secure backup storage",
            "Regular backup security audits",
        ),
    ),
    "subdomain_takeover": RiskModel(
        base_score=70,
        factors={
            "dns_misconfiguration": 20,
            "abandoned_service": 15,
            "cookie_hijacking": 25,
            "phishing_potential": 20,
        },
        reliability=0.8,
        likelihood=0.6,
        impact=0.7,
        attack_vectors=("DNS hijacking", "Phishing campaigns", "Cookie theft", "Traffic interception"),
        recommendations=(
            "Audit DNS configurations",
            "Remove unused DNS records",
            "Implement DNS monitoring",
            "Use domain validation certificates",
        ),
    ),
    "exposed_api_endpoints": RiskModel(
        base_score=55,
        factors={
            "no_authentication": 25,
            "sensitive_data": 20,
            "write_operations": 20,
            "rate_limiting_missing": 10,
        },
        reliability=0.75,
        likelihood=0.7,
        impact=0.6,
        attack_vectors=("Data enumeration", "Unauthorized access", "Rate limiting bypass", "API abuse"),
        recommendations=(
            "Implement API authentication",
            "Add rate limiting",
            "Use API versioning",
            "Regular API security testing",
        ),
    ),
    "exposed_secrets": RiskModel(
        base_score=80,
        factors={"verified_secret": 20, "contains_credentials": 15},
        reliability=0.8,
        likelihood=0.8,
        impact=0.9,
        attack_vectors=("Credential reuse", "Cloud account takeover", "Lateral movement"),
        recommendations=(
            "Revoke and rotate exposed credentials",
            "Purge secrets from repository history",
            "Add secret scanning to CI",
        ),
    ),
    "generic_vulnerability": RiskModel(
        base_score=20,
        factors={
            "no_authentication": 15,
            "sensitive_data_access": 10,
            "privilege_escalation": 10,
            "database_access": 10,
            "accessible": 5,
        },
    ),
}

ATTACK_CHAIN = "multi_stage_attack"
ATTACK_CHAIN_VECTORS = (
    "Harvest credentials from backup files",
    "Use credentials to access admin panel",
    "Escalate privileges",
    "Establish persistence",
)
ATTACK_CHAIN_RECOMMENDATIONS = (
    "Immediately secure backup files",
    "Change all admin credentials",
    "Implement file access monitoring",
    "Audit admin panel access logs",
)

SEVERITY_WEIGHT: dict[Severity, float] = {
    Severity.CRITICAL: 1.0,
    Severity.HIGH: 0.8,
    Severity.MEDIUM: 0.6,
    Severity.LOW: 0.4,
}

SERVICE_TYPES = frozenset({"open_port", "exposed_service", "service"})
ENDPOINT_TYPES = frozenset({"endpoint", "api_endpoint", "admin_panel"})
PRIMARY_THREATS = 5


def risk_level(score: float) -> Severity:
    if score >= 80:
        return Severity.CRITICAL
    if score >= 60:
        return Severity.HIGH
    if score >= 40:
        return Severity.MEDIUM
    return Severity.LOW


def classify(finding: Finding) -> str:
    title = finding.title.lower()
    if "admin" in title and "panel" in title:
        return "exposed_admin_panel"
    if "sql" in title and "injection" in title:
        return "sql_injection"
    if "backup" in title or ".sql" in title or ".bak" in title:
        return "exposed_backup_files"
    if "subdomain" in title and "takeover" in title:
        return "subdomain_takeover"
    if "api" in title or "endpoint" in title:
        return "exposed_api_endpoints"
    if "secret" in title or "key" in title or "token" in title:
        return "exposed_secrets"
    return "generic_vulnerability"


def risk_factors(finding: Finding) -> list[str]:
    description = finding.description.lower()
    metadata = finding.metadata or {}
    factors: list[str] = []
    if "no authentication" in description or "unauthenticated" in description:
        factors.append("no_authentication")
    if "sensitive data" in description or "personal information" in description:
        factors.extend(["sensitive_data_access", "data_exposure"])
    if "admin" in description or "administrator" in description:
        factors.append("privilege_escalation")
    if "database" in description or "sql" in description:
        factors.append("database_access")
    if "credential" in description or "password" in description:
        factors.append("contains_credentials")
    if metadata.get("status_code") == 200:
        factors.append("accessible")
    if metadata.get("verified") is True:
        factors.append("verified_secret")
    return factors


def severity_multiplier(findings: Iterable[Finding]) -> float:
    present = {f.severity for f in findings}
    if Severity.CRITICAL in present:
        return 1.3
    if Severity.HIGH in present:
        return 1.2
    if Severity.MEDIUM in present:
        return 1.1
    return 1.0


def _clamp_score(score: float) -> int:
    return min(100, max(0, round(score)))


class RiskAggregator:
    def __init__(self, models: Optional[dict[str, RiskModel]] = None):
        self.models = dict(models or RISK_MODELS)

    def score(self, model: RiskModel, findings: list[Finding]) -> int:
        total = float(model.base_score)
        for finding in findings:
            for factor in risk_factors(finding):
                total += model.factors.get(factor, 0)
        return _clamp_score(total * severity_multiplier(findings))

    def predict(self, project_id: str, threat_type: str, findings: list[Finding]) -> Optional[ThreatPrediction]:
        model = self.models.get(threat_type)
        if model is None:
            return None
        score = self.score(model, findings)
        confidence = round(min(0.9, 0.3 + len(findings) * 0.15) * model.reliability, 2)
        critical = sum(1 for f in findings if f.severity == Severity.CRITICAL)
        return ThreatPrediction(
            id=f"threat-{project_id}-{threat_type}",
            project_id=project_id,
            threat_type=threat_type,
            risk_score=score,
            confidence=confidence,
            severity=risk_level(score),
            likelihood=min(1.0, round(model.likelihood + critical * 0.1, 2)),
            impact=model.impact,
            finding_ids=sorted(f.id for f in findings),
            predicted_attack_vectors=list(model.attack_vectors),
            recommended_actions=list(model.recommendations),
        )

    def attack_chains(self, project_id: str, findings: list[Finding]) -> list[ThreatPrediction]:
        """Admin panel plus leaked backups is worse than either alone."""
        admin = [f for f in findings if "admin" in f.title.lower() and "panel" in f.title.lower()]
        backups = [f for f in findings if "backup" in f.title.lower() or ".sql" in f.title.lower()]
        if not admin or not backups:
            return []
        return [ThreatPrediction(
            id=f"threat-{project_id}-{ATTACK_CHAIN}",
            project_id=project_id,
            threat_type=ATTACK_CHAIN,
            risk_score=90,
            confidence=0.85,
            severity=risk_level(90),
            likelihood=0.8,
            impact=0.9,
            finding_ids=sorted({f.id for f in admin + backups}),
            predicted_attack_vectors=list(ATTACK_CHAIN_VECTORS),
            recommended_actions=list(ATTACK_CHAIN_RECOMMENDATIONS),
        )]

    def analyze(self, findings: Iterable[Finding], project_id: str = "") -> list[ThreatPrediction]:
        """Threat predictions, highest risk first."""
        ordered = sorted(findings, key=lambda f: f.id)
        groups: dict[str, list[Finding]] = {}
        for finding in ordered:
            groups.setdefault(classify(finding), []).append(finding)

        predictions: list[ThreatPrediction] = []
        for threat_type in sorted(groups):
            prediction = self.predict(project_id, threat_type, groups[threat_type])
            if prediction is not None:
                predictions.append(prediction)
        predictions.extend(self.attack_chains(project_id, ordered))
        predictions.sort(key=lambda p: (-p.risk_score, p.threat_type))
        return predictions

    @staticmethod
    def overall_score(predictions: list[ThreatPrediction]) -> int:
        weighted = 0.0
        total_weight = 0.0
        for prediction in predictions:
            weight = prediction.confidence * SEVERITY_WEIGHT.get(prediction.severity, 0.5)
            weighted += prediction.risk_score * weight
            total_weight += weight
        return round(weighted / total_weight) if total_weight > 0 else 0

    @staticmethod
    def attack_surface(findings: list[Finding]) -> AttackSurface:
        surface = AttackSurface()
        for f in findings:
            description = f.description.lower()
            if f.type in SERVICE_TYPES:
                surface.exposed_services += 1
            if f.type in ENDPOINT_TYPES and f.severity == Severity.CRITICAL:
                surface.critical_endpoints += 1
            if "misconfiguration" in description:
                surface.weak_configurations += 1
            if "data" in description or "information" in description:
                surface.data_exposure_risk += 1
        return surface

    @staticmethod
    def time_to_compromise(predictions: list[ThreatPrediction]) -> str:
        highest = max((p.risk_score for p in predictions), default=0)
        if highest >= 90:
            return "Minutes to hours"
        if highest >= 70:
            return "Hours to days"
        if highest >= 50:
            return "Days to weeks"
        if highest >= 30:
            return "Weeks to months"
        return "Months or longer"

    @staticmethod
    def recommendations(predictions: list[ThreatPrediction], surface: AttackSurface) -> list[str]:
        seen: dict[str, None] = {}
        for prediction in predictions:
            for action in prediction.recommended_actions:
                seen.setdefault(action, None)
        if surface.exposed_services > 5:
            seen.setdefault("Reduce unnecessary exposed services", None)
        if surface.critical_endpoints > 0:
            seen.setdefault("Immediately address critical endpoint vulnerabilities", None)
        if surface.weak_configurations > 3:
            seen.setdefault("Implement configuration management and security hardening", None)
        return list(seen)

    def assess(self, findings: Iterable[Finding], project_id: Optional[str] = None) -> RiskAssessment:
        findings = sorted(findings, key=lambda f: f.id)
        if project_id is None:
            project_id = min((f.project_id for f in findings), default="")

        predictions = self.analyze(findings, project_id)
        score = self.overall_score(predictions)
        surface = self.attack_surface(findings)

        breakdown = SeverityBreakdown()
        for f in findings:
            setattr(breakdown, f.severity.value, getattr(breakdown, f.severity.value) + 1)

        return RiskAssessment(
            overall_risk_score=score,
            risk_level=risk_level(score),
            finding_count=len(findings),
            severity_breakdown=breakdown,
            predictions=predictions,
            primary_threats=predictions[:PRIMARY_THREATS],
            attack_surface_analysis=surface,
            time_to_compromise_estimate=self.time_to_compromise(predictions),
            recommendations=self.recommendations(predictions, surface),
        )
