"""
Tests for the in-memory and SQLite approval repositories.

Both backends run the same cases: workflow storage order, request
round-tripping, status/customer queries and versioned updates.
"""

import os
import tempfile
from datetime import timedelta

import pytest

from invoice_workflows.core.errors import RequestNotFound, StateConflictError
from invoice_workflows.models.approval import ComplianceStatus, FraudRiskBreakdown, InvoiceApprovalRequest
from invoice_workflows.models.workflow import ApprovalLevel, ApprovalWorkflow
from invoice_workflows.services.storage import (
    InMemoryApprovalRepository,
    SQLiteApprovalRepository,
    create_repository,
)

from conftest import NOW, make_invoice


@pytest.fixture
def db_path():
    """Create a temporary database file for testing"""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    yield path
    # Cleanup
    if os.path.exists(path):
        os.unlink(path)


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, db_path):
    if request.param == "sqlite":
        return SQLiteApprovalRepository(db_path)
    return InMemoryApprovalRepository()


def make_workflow(workflow_id, name="Workflow"):
    return ApprovalWorkflow(
        id=workflow_id,
        name=name,
        approval_levels=[ApprovalLevel(level=1, name="Manager", approver_roles=["manager"])],
    )


def make_request(request_id, status="pending", customer_id="cust-1", offset_hours=0, due_in_hours=24):
    submitted = NOW + timedelta(hours=offset_hours)
    return InvoiceApprovalRequest(
        id=request_id,
        invoice=make_invoice(100, id=f"inv-{request_id}", customer_id=customer_id),
        workflow=make_workflow("standard_approval"),
        current_level=1,
        status=status,
        submission_date=submitted,
        due_date=submitted + timedelta(hours=due_in_hours),
        submitter_id="sam",
        fraud_risk_score=40,
        fraud_risk_breakdown=FraudRiskBreakdown(overall_score=40),
        compliance_status=ComplianceStatus(overall_status="compliant", compliance_score=100.0),
        required_approvals_remaining=1,
    )


def test_workflows_keep_definition_order(repo):
    repo.save_workflow(make_workflow("b"))
    repo.save_workflow(make_workflow("a"))
    repo.save_workflow(make_workflow("b", name="Updated"))

    workflows = repo.list_workflows()
    assert [w.id for w in workflows] == ["b", "a"]
    assert workflows[0].name == "Updated"
    assert repo.get_workflow("missing") is None


def test_create_and_get_request(repo):
    repo.create_request(make_request("r1"))
    stored = repo.get_request("r1")

    assert stored.id == "r1"
    assert stored.version == 1
    assert stored.invoice.total == 100
    assert stored.submission_date == NOW
    assert repo.get_request("missing") is None


def test_duplicate_request_id(repo):
    repo.create_request(make_request("r1"))
    with pytest.raises(StateConflictError):
        repo.create_request(make_request("r1"))


def test_returned_request_is_a_copy(repo):
    repo.create_request(make_request("r1"))
    copy = repo.get_request("r1")
    copy.status = "approved"

    assert repo.get_request("r1").status == "pending"


def test_update_increments_version(repo):
    repo.create_request(make_request("r1"))
    request = repo.get_request("r1")
    request.status = "approved"

    updated = repo.update_request(request, expected_version=1)

    assert updated.version == 2
    assert repo.get_request("r1").status == "approved"
    assert repo.query_by_status("approved")[0].id == "r1"


def test_stale_update_is_rejected(repo):
    repo.create_request(make_request("r1"))
    first = repo.get_request("r1")
    second = repo.get_request("r1")

    first.status = "approved"
    repo.update_request(first, expected_version=first.version)

    second.status = "rejected"
    with pytest.raises(StateConflictError):
        repo.update_request(second, expected_version=second.version)
    assert repo.get_request("r1").status == "approved"


def test_update_unknown_request(repo):
    with pytest.raises(RequestNotFound):
        repo.update_request(make_request("ghost"), expected_version=1)


def test_queries(repo):
    repo.create_request(make_request("r2", offset_hours=2, customer_id="cust-2"))
    repo.create_request(make_request("r1", offset_hours=1))
    repo.create_request(make_request("r3", status="approved", offset_hours=3))

    assert [r.id for r in repo.list_requests()] == ["r1", "r2", "r3"]
    assert [r.id for r in repo.query_by_status("pending")] == ["r1", "r2"]
    assert [r.id for r in repo.list_by_customer("cust-2")] == ["r2"]


def test_list_overdue(repo):
    repo.create_request(make_request("late", due_in_hours=1))
    repo.create_request(make_request("on_time", due_in_hours=48))
    repo.create_request(make_request("closed", status="approved", due_in_hours=1))

    overdue = repo.list_overdue(NOW + timedelta(hours=2))
    assert [r.id for r in overdue] == ["late"]


def test_sqlite_persists_across_instances(db_path):
    SQLiteApprovalRepository(db_path).create_request(make_request("r1"))
    assert SQLiteApprovalRepository(db_path).get_request("r1").id == "r1"


def test_create_repository(db_path):
    assert isinstance(create_repository("memory"), InMemoryApprovalRepository)
    assert isinstance(create_repository("sqlite", db_path), SQLiteApprovalRepository)
    with pytest.raises(ValueError):
        create_repository("cosmos")
