"""Threat prediction and risk assessment data models."""

from __future__ import annotations

from pydantic import BaseModel

from .finding import Severity, SeverityBreakdown


class ThreatPrediction(BaseModel):
    id: str
    project_id: str
    threat_type: str
    risk_score: int
    confidence: float
    severity: Severity
    likelihood: float
    impact: float
    finding_ids: list[str] = []
    predicted_attack_vectors: list[str] = []
    recommended_actions: list[str] = []


class AttackSurface(BaseModel):
    exposed_services: int = 0
    critical_endpoints: int = 0
    weak_configurations: int = 0
    data_exposure_risk: int = 0


class RiskAssessment(BaseModel):
    overall_risk_score: int = 0
    risk_level: Severity = Severity.LOW
    finding_count: int = 0
    severity_breakdown: SeverityBreakdown = SeverityBreakdown()
    predictions: list[ThreatPrediction] = []
    primary_threats: list[ThreatPrediction] = []
    attack_surface_analysis: AttackSurface = AttackSurface()
    time_to_compromise_estimate: str = "Months or longer"
    recommendations: list[str] = []
