"""
Tests for approval recommendations.
"""

from invoice_workflows.models.approval import CheckResult, ComplianceStatus, FraudRiskBreakdown, RiskFactor
from invoice_workflows.models.workflow import ApprovalWorkflow, ComplianceCheck
from invoice_workflows.services.recommendations import RecommendationGenerator

from conftest import make_invoice

WORKFLOW = ApprovalWorkflow(
    id="wf",
    name="Test",
    compliance_checks=[
        ComplianceCheck(id="tax_id", name="Tax ID", check_type="tax", severity="critical"),
        ComplianceCheck(id="po", name="Purchase order", check_type="internal_policy", severity="medium"),
    ],
)


def compliance(overall="compliant", failed=()):
    checks = [
        CheckResult(check_id=c, check_name=c, status="failed", details="failed")
        for c in failed
    ]
    return ComplianceStatus(overall_status=overall, compliance_score=100.0, checks_performed=checks)


def fraud(score):
    factors = [RiskFactor(
        factor_type="amount_analysis", factor_name="Unusual amount pattern", rule_id="amount_check",
        risk_score=score, signal=1.0, confidence=0.9, description="Unusual amount",
    )] if score else []
    return FraudRiskBreakdown(overall_score=score, risk_factors=factors)


def test_high_fraud_score_recommends_reject_first():
    recs = RecommendationGenerator(70).recommend(make_invoice(50000), fraud(85), compliance(), WORKFLOW)

    assert recs[0].recommendation_type == "reject"
    assert recs[0].confidence == 0.94
    assert recs[1].recommendation_type == "escalate"
    assert recs[0].impact_analysis.financial_impact == 50000


def test_low_risk_compliant_recommends_approve():
    recs = RecommendationGenerator(70).recommend(make_invoice(), fraud(10), compliance(), WORKFLOW)

    assert [r.recommendation_type for r in recs] == ["approve"]
    assert recs[0].confidence == 0.95


def test_critical_failure_leads_with_request_info():
    recs = RecommendationGenerator(70).recommend(
        make_invoice(), fraud(10), compliance("non_compliant", failed=["tax_id"]), WORKFLOW
    )
    assert recs[0].recommendation_type == "request_info"


def test_critical_failure_with_high_risk_rejects():
    recs = RecommendationGenerator(70).recommend(
        make_invoice(), fraud(90), compliance("non_compliant", failed=["tax_id"]), WORKFLOW
    )
    assert recs[0].recommendation_type == "reject"
    assert recs[0].confidence == 0.9


def test_non_critical_failure_is_conditional():
    recs = RecommendationGenerator(70).recommend(
        make_invoice(), fraud(40), compliance("partial_compliance", failed=["po"]), WORKFLOW
    )
    assert [r.recommendation_type for r in recs] == ["conditional_approve", "request_info"]
    assert recs[0].conditions


def test_moderate_score_approves_with_lower_confidence():
    recs = RecommendationGenerator(70).recommend(make_invoice(), fraud(60), compliance(), WORKFLOW)

    assert recs[0].recommendation_type == "approve"
    assert recs[0].confidence == 0.6
