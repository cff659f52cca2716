from fastapi import APIRouter, Depends
from loguru import logger

from ..deps import (
    ActionRequest,
    CancelRequest,
    ReenterRequest,
    SubmitRequest,
    TimeoutCheckRequest,
    get_approval_engine,
)
from ...models.workflow import ApprovalWorkflow
from ...models.approval import RequestStatus
from ...services.approval_engine import ApprovalWorkflowEngine

router = APIRouter(prefix="/approvals", tags=["approvals"])


@router.get("/workflows")
async def list_workflows(engine: ApprovalWorkflowEngine = Depends(get_approval_engine)):
    return {"data": engine.list_workflows()}


@router.post("/workflows", status_code=201)
async def create_workflow(workflow: ApprovalWorkflow, engine: ApprovalWorkflowEngine = Depends(get_approval_engine)):
    return {"data": engine.create_workflow(workflow)}


@router.get("/workflows/{workflow_id}")
async def get_workflow(workflow_id: str, engine: ApprovalWorkflowEngine = Depends(get_approval_engine)):
    return {"data": engine.get_workflow(workflow_id)}


@router.post("/requests", status_code=201)
async def submit_invoice(req: SubmitRequest, engine: ApprovalWorkflowEngine = Depends(get_approval_engine)):
    """
    Submit an invoice for approval.

    Low-risk, fully compliant invoices come back already ``approved``;
    everything else is ``pending`` at level 1 with approvers assigned.

    Example request:
    {
        "invoice": {"id": "inv-1", "invoice_number": "INV-1001", "customer_id": "cust-1",
                    "subtotal": 50.0, "total": 50.0},
        "submitter_id": "clerk-7"
    }
    """
    request = engine.submit(req.invoice, req.submitter_id, workflow_id=req.workflow_id, customer=req.customer)
    return {"data": request}


@router.get("/requests")
async def list_requests(
    status: RequestStatus | None = None,
    engine: ApprovalWorkflowEngine = Depends(get_approval_engine),
):
    return {"data": engine.list_requests(status)}


@router.get("/requests/{request_id}")
async def get_request(request_id: str, engine: ApprovalWorkflowEngine = Depends(get_approval_engine)):
    return {"data": engine.get_request(request_id)}


@router.get("/requests/{request_id}/progress")
async def get_progress(request_id: str, engine: ApprovalWorkflowEngine = Depends(get_approval_engine)):
    request = engine.get_request(request_id)
    return {"data": engine.calculate_approval_progress(request)}


@router.post("/requests/{request_id}/actions")
async def process_action(
    request_id: str,
    req: ActionRequest,
    engine: ApprovalWorkflowEngine = Depends(get_approval_engine),
):
    """
    Apply an approver action (approved, rejected, request_info, escalated, delegated).

    A 409 means the request changed underneath the caller; refresh and retry.
    """
    outcome = engine.process_action(
        request_id,
        req.approver_id,
        req.action,
        comments=req.comments,
        conditions=req.conditions,
        delegate_to=req.delegate_to,
    )
    return {"data": outcome}


@router.post("/requests/{request_id}/cancel")
async def cancel_request(
    request_id: str,
    req: CancelRequest,
    engine: ApprovalWorkflowEngine = Depends(get_approval_engine),
):
    return {"data": engine.cancel(request_id, req.actor_id, req.reason)}


@router.post("/requests/{request_id}/reenter")
async def reenter_escalation(
    request_id: str,
    req: ReenterRequest,
    engine: ApprovalWorkflowEngine = Depends(get_approval_engine),
):
    return {"data": engine.reenter_escalation(request_id, req.actor_id, req.level)}


@router.post("/timeouts/check")
async def check_timeouts(
    req: TimeoutCheckRequest | None = None,
    engine: ApprovalWorkflowEngine = Depends(get_approval_engine),
):
    """Escalate overdue requests. Called periodically by the timeout sweeper."""
    escalated = engine.check_timeouts(req.now if req else None)
    logger.info("Timeout sweep complete", escalated=len(escalated))
    return {"data": {"escalated": [r.id for r in escalated], "count": len(escalated)}}


@router.get("/metrics")
async def approval_metrics(engine: ApprovalWorkflowEngine = Depends(get_approval_engine)):
    return {"data": engine.get_approval_metrics()}


@router.get("/fraud-monitor")
async def fraud_monitor(engine: ApprovalWorkflowEngine = Depends(get_approval_engine)):
    return {"data": engine.monitor_fraud_risk()}


@router.get("/compliance-overview")
async def compliance_overview(engine: ApprovalWorkflowEngine = Depends(get_approval_engine)):
    return {"data": engine.get_compliance_overview()}
