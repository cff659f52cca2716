"""
Tests for invoice compliance checking and auto-fixes.
"""

import pytest

from invoice_workflows.models.invoice import LineItem
from invoice_workflows.models.workflow import ComplianceCheck, ValidationRule
from invoice_workflows.services.compliance import ComplianceChecker, resolve_field

from conftest import make_invoice


def check(check_id, *rules, severity="medium", check_type="internal_policy", auto_fix=False, regulation=None):
    return ComplianceCheck(
        id=check_id,
        name=check_id.replace("_", " ").title(),
        check_type=check_type,
        severity=severity,
        auto_fix_available=auto_fix,
        validation_rules=list(rules),
        regulation=regulation,
    )


def vrule(rule_id, validation_type, field_path="", fix=None, **parameters):
    return ValidationRule(
        rule_id=rule_id,
        rule_name=rule_id,
        field_path=field_path,
        validation_type=validation_type,
        parameters=parameters,
        auto_correction_logic=fix,
    )


@pytest.fixture
def checker():
    return ComplianceChecker(
        reference_tables={"currencies": ["USD", "EUR", "AUD"], "vat": {"EUR": 0.2, "USD": 0.0}},
        custom_predicates={"has_po": lambda invoice: "po_number" in invoice.custom_fields},
    )


class TestResolveField:
    def test_nested_paths(self):
        invoice = make_invoice(75, custom_fields={"po_number": "PO-7"})
        assert resolve_field(invoice, "line_items.0.amount") == 75
        assert resolve_field(invoice, "custom_fields.po_number") == "PO-7"

    def test_missing_segments_return_none(self):
        invoice = make_invoice(75)
        assert resolve_field(invoice, "line_items.5.amount") is None
        assert resolve_field(invoice, "no_such_field.value") is None


class TestRuleTypes:
    def test_required(self, checker):
        status = checker.check(make_invoice(department=None), [check("dept", vrule("dept_required", "required", "department"))])
        assert status.checks_performed[0].status == "failed"
        assert status.overall_status == "partial_compliance"

    def test_format(self, checker):
        rules = [vrule("number_format", "format", "invoice_number", pattern=r"INV-\d{4}")]
        assert checker.check(make_invoice(), [check("fmt", *rules)]).overall_status == "compliant"
        assert checker.check(make_invoice(invoice_number="X1"), [check("fmt", *rules)]).overall_status == "partial_compliance"

    def test_range(self, checker):
        rules = [vrule("total_range", "range", "total", min=0, max=1000)]
        assert checker.check(make_invoice(500), [check("rng", *rules)]).checks_performed[0].status == "passed"
        assert checker.check(make_invoice(5000), [check("rng", *rules)]).checks_performed[0].status == "failed"

    def test_lookup_allowed_and_table(self, checker):
        allowed = vrule("currency_allowed", "lookup", "currency", allowed=["USD"])
        table = vrule("currency_table", "lookup", "currency", table="currencies")
        status = checker.check(make_invoice(currency="EUR"), [check("a", allowed), check("b", table)])

        assert [c.status for c in status.checks_performed] == ["failed", "passed"]

    def test_tax_rate_from_table(self, checker):
        invoice = make_invoice(100, currency="EUR", tax_amount=20, total=120)
        rules = [vrule("vat", "calculation", expression="tax_matches_rate", rate_table="vat")]
        assert checker.check(invoice, [check("tax", *rules, check_type="tax")]).overall_status == "compliant"

    def test_custom_predicate(self, checker):
        rules = [vrule("po", "custom", predicate="has_po")]
        assert checker.check(make_invoice(), [check("po", *rules)]).checks_performed[0].status == "failed"
        with_po = make_invoice(custom_fields={"po_number": "PO-1"})
        assert checker.check(with_po, [check("po", *rules)]).checks_performed[0].status == "passed"


class TestAutoFix:
    def test_recompute_subtotal_and_total(self, checker):
        invoice = make_invoice(
            line_items=[LineItem(amount=60), LineItem(amount=40)],
            subtotal=90,
            total=90,
            balance_due=90,
        )
        rules = [
            vrule("subtotal_sum", "calculation", expression="subtotal_matches_line_items", fix="recompute_subtotal"),
            vrule("total_sum", "calculation", expression="total_matches_subtotal_plus_tax", fix="recompute_total"),
        ]
        status = checker.check(invoice, [check("amounts", *rules, auto_fix=True, check_type="accounting_standards")])

        assert status.overall_status == "compliant"
        assert status.checks_performed[0].auto_fix_applied is True
        assert invoice.subtotal == 100
        assert invoice.total == 100
        assert invoice.balance_due == 100

    def test_no_fix_without_permission(self, checker):
        invoice = make_invoice(subtotal=90, total=90)
        rules = [vrule("subtotal_sum", "calculation", expression="subtotal_matches_line_items", fix="recompute_subtotal")]
        status = checker.check(invoice, [check("amounts", *rules)])

        assert status.checks_performed[0].status == "failed"
        assert invoice.subtotal == 90

    def test_fix_discarded_when_check_is_skipped(self, checker):
        invoice = make_invoice(
            line_items=[LineItem(amount=60), LineItem(amount=40)],
            subtotal=90,
            total=90,
        )
        rules = [
            vrule("subtotal_sum", "calculation", expression="subtotal_matches_line_items", fix="recompute_subtotal"),
            vrule("bad_range", "range", "total"),
        ]
        status = checker.check(invoice, [check("amounts", *rules, auto_fix=True)])

        assert status.checks_performed[0].status == "skipped"
        assert status.checks_performed[0].auto_fix_applied is False
        assert invoice.subtotal == 90
        assert invoice.total == 90

    def test_unknown_fix_is_left_for_review(self, checker):
        invoice = make_invoice(subtotal=90, total=90)
        rules = [vrule("subtotal_sum", "calculation", expression="subtotal_matches_line_items", fix="ask_vendor")]
        status = checker.check(invoice, [check("amounts", *rules, auto_fix=True)])

        assert status.checks_performed[0].status == "failed"
        assert status.checks_performed[0].manual_review_required is True


class TestOverallStatus:
    def test_low_severity_failure_is_warning(self, checker):
        rules = [vrule("dept_required", "required", "department")]
        status = checker.check(make_invoice(), [check("dept", *rules, severity="low")])

        assert status.checks_performed[0].status == "warning"
        assert status.compliance_score == 50.0
        assert status.overall_status == "compliant"

    def test_critical_failure_is_non_compliant(self, checker):
        rules = [vrule("dept_required", "required", "department")]
        passing = [vrule("number_required", "required", "invoice_number")]
        status = checker.check(make_invoice(), [check("dept", *rules, severity="critical"), check("num", *passing)])

        assert status.overall_status == "non_compliant"
        assert status.compliance_score == 50.0

    def test_malformed_rule_skips_check(self, checker):
        rules = [vrule("bad_range", "range", "total")]
        status = checker.check(make_invoice(), [check("rng", *rules)])

        assert status.checks_performed[0].status == "skipped"
        assert status.checks_performed[0].manual_review_required is True
        assert status.overall_status == "requires_review"
        assert status.compliance_score == 100.0
        assert status.degraded_checks[0].startswith("rng")

    def test_raising_custom_predicate_skips_check(self):
        checker = ComplianceChecker(custom_predicates={
            "po_prefix": lambda invoice: invoice.custom_fields["po_number"].startswith("PO-"),
        })
        rules = [vrule("po_prefix", "custom", predicate="po_prefix")]
        status = checker.check(make_invoice(), [check("po", *rules)])

        assert status.checks_performed[0].status == "skipped"
        assert status.overall_status == "requires_review"
        assert "KeyError" in status.degraded_checks[0]

    def test_regulatory_summary(self, checker):
        failing = vrule("dept_required", "required", "department")
        passing = vrule("number_required", "required", "invoice_number")
        status = checker.check(make_invoice(), [
            check("sox_controls", failing, check_type="regulatory"),
            check("gaap", passing, check_type="accounting_standards"),
            check("local", passing, regulation="EU VAT Directive"),
        ])

        summary = {r.regulation: r.status for r in status.regulatory_requirements}
        assert summary == {"SOX": "non_compliant", "GAAP": "compliant", "EU VAT Directive": "compliant"}
