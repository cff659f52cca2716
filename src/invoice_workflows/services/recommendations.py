"""
Recommendation generation for approvers.

Turns a fraud breakdown and compliance status into ranked, advisory
approve/reject guidance. Output is never used to mutate request state.
"""

import uuid
from typing import List, Optional

from loguru import logger

from ..models.invoice import Invoice
from ..models.workflow import ApprovalWorkflow
from ..models.approval import (
    ApprovalRecommendation,
    ComplianceStatus,
    FraudRiskBreakdown,
    ImpactAnalysis,
)


class RecommendationGenerator:
    def __init__(self, high_risk_threshold: float = 70):
        self.high_risk_threshold = high_risk_threshold

    def recommend(
        self,
        invoice: Invoice,
        fraud: FraudRiskBreakdown,
        compliance: ComplianceStatus,
        workflow: ApprovalWorkflow,
    ) -> List[ApprovalRecommendation]:
        """
        Produce recommendations ranked by confidence, highest first.

        A critical compliance failure always leads with reject or
        request_info, whatever the fraud score.
        """
        score = fraud.overall_score
        auto_threshold = workflow.automation_settings.auto_approve_threshold
        critical_failures = self._critical_failures(compliance, workflow)
        failed_checks = [c.check_name for c in compliance.checks_performed if c.status == "failed"]
        top_factors = [f.factor_name for f in fraud.risk_factors[:3]]

        recommendations: List[ApprovalRecommendation] = []

        if critical_failures:
            if score >= self.high_risk_threshold:
                recommendations.append(self._build(
                    invoice, "reject", 0.9,
                    reasoning=[
                        f"Critical compliance checks failed: {', '.join(critical_failures)}",
                        f"Fraud score {score:.0f} is at or above the high-risk threshold of {self.high_risk_threshold:.0f}",
                    ],
                    risk="Critical compliance failure combined with high fraud risk",
                    evidence=top_factors,
                    alternatives=["Escalate to compliance officer", "Request corrected invoice from customer"],
                    compliance_impact="Approving would breach mandatory controls",
                ))
            else:
                recommendations.append(self._build(
                    invoice, "request_info", 0.85,
                    reasoning=[
                        f"Critical compliance checks failed: {', '.join(critical_failures)}",
                        "Missing or incorrect information must be resolved before approval",
                    ],
                    risk="Compliance failure blocks approval",
                    evidence=failed_checks,
                    alternatives=["Reject and ask for resubmission"],
                    compliance_impact="Approving would breach mandatory controls",
                ))
        elif score >= self.high_risk_threshold:
            recommendations.append(self._build(
                invoice, "reject", min(0.95, 0.6 + score / 250),
                reasoning=[f"Fraud score {score:.0f} is at or above the high-risk threshold of {self.high_risk_threshold:.0f}"]
                + [f"Risk factor: {name}" for name in top_factors],
                risk="High fraud risk",
                evidence=top_factors,
                alternatives=["Escalate for investigation", "Verify vendor and invoice details directly"],
                compliance_impact="No compliance blockers" if not failed_checks else "Compliance issues also present",
            ))
            recommendations.append(self._build(
                invoice, "escalate", 0.6,
                reasoning=["Elevated risk warrants review by a higher authority"],
                risk="High fraud risk",
                evidence=top_factors,
                alternatives=["Reject"],
            ))
        elif score < auto_threshold and compliance.overall_status == "compliant":
            recommendations.append(self._build(
                invoice, "approve", 0.95,
                reasoning=[
                    f"Fraud score {score:.0f} is below the auto-approve threshold of {auto_threshold:.0f}",
                    "All compliance checks passed",
                ],
                risk="Low risk",
                alternatives=["Approve with spot-check audit"],
            ))
        elif failed_checks or compliance.overall_status == "requires_review":
            recommendations.append(self._build(
                invoice, "conditional_approve", 0.65,
                reasoning=[f"Fraud score {score:.0f} is moderate"]
                + [f"Compliance check needs attention: {name}" for name in failed_checks],
                risk="Moderate risk with compliance findings",
                evidence=failed_checks,
                conditions=["Resolve outstanding compliance findings before payment"],
                alternatives=["Request additional information"],
                compliance_impact="Non-critical compliance findings",
            ))
            recommendations.append(self._build(
                invoice, "request_info", 0.5,
                reasoning=["Clarify compliance findings with the submitter"],
                risk="Moderate risk with compliance findings",
                evidence=failed_checks,
            ))
        else:
            confidence = max(0.5, 0.9 - score / 200)
            recommendations.append(self._build(
                invoice, "approve", confidence,
                reasoning=[f"Fraud score {score:.0f} is below the high-risk threshold", "All compliance checks passed"],
                risk="Moderate risk" if score >= auto_threshold else "Low risk",
                evidence=top_factors,
                conditions=["Verify the top risk factors before sign-off"] if top_factors else [],
                alternatives=["Request additional documentation"],
            ))

        recommendations.sort(key=lambda r: r.confidence, reverse=True)
        logger.debug(
            "Generated recommendations",
            invoice_number=invoice.invoice_number,
            types=[r.recommendation_type for r in recommendations],
        )
        return recommendations

    @staticmethod
    def _critical_failures(compliance: ComplianceStatus, workflow: ApprovalWorkflow) -> List[str]:
        severity = {c.id: c.severity for c in workflow.compliance_checks}
        return [
            r.check_name for r in compliance.checks_performed
            if r.status == "failed" and severity.get(r.check_id) == "critical"
        ]

    @staticmethod
    def _build(
        invoice: Invoice,
        kind: str,
        confidence: float,
        reasoning: List[str],
        risk: str,
        evidence: Optional[List[str]] = None,
        conditions: Optional[List[str]] = None,
        alternatives: Optional[List[str]] = None,
        compliance_impact: str = "No compliance blockers",
    ) -> ApprovalRecommendation:
        if kind in ("reject", "request_info"):
            timeline = "Payment delayed until resolved"
        elif kind == "escalate":
            timeline = "Additional review adds 1-2 business days"
        else:
            timeline = "No delay"

        return ApprovalRecommendation(
            recommendation_id=str(uuid.uuid4()),
            recommendation_type=kind,
            confidence=round(min(1.0, max(0.0, confidence)), 2),
            reasoning=reasoning,
            risk_assessment=risk,
            supporting_evidence=evidence or [],
            conditions=conditions or [],
            alternative_actions=alternatives or [],
            impact_analysis=ImpactAnalysis(
                financial_impact=invoice.total,
                compliance_impact=compliance_impact,
                business_impact=f"{invoice.currency} {invoice.total:,.2f} exposure",
                timeline_impact=timeline,
            ),
        )
