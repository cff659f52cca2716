"""
In-memory approval repository (for tests and single-process demos).
"""
import threading
from typing import Dict, List, Optional

from loguru import logger

from ...core.errors import RequestNotFound, StateConflictError
from ...models.workflow import ApprovalWorkflow
from ...models.approval import InvoiceApprovalRequest
from .repository_base import ApprovalRepositoryBase


class InMemoryApprovalRepository(ApprovalRepositoryBase):
    def __init__(self):
        self._workflows: Dict[str, ApprovalWorkflow] = {}
        self._requests: Dict[str, InvoiceApprovalRequest] = {}
        self._lock = threading.Lock()

    def save_workflow(self, workflow: ApprovalWorkflow) -> ApprovalWorkflow:
        with self._lock:
            self._workflows[workflow.id] = workflow.model_copy(deep=True)
        return workflow.model_copy(deep=True)

    def get_workflow(self, workflow_id: str) -> Optional[ApprovalWorkflow]:
        with self._lock:
            workflow = self._workflows.get(workflow_id)
            return workflow.model_copy(deep=True) if workflow else None

    def list_workflows(self) -> List[ApprovalWorkflow]:
        with self._lock:
            return [w.model_copy(deep=True) for w in self._workflows.values()]

    def create_request(self, request: InvoiceApprovalRequest) -> InvoiceApprovalRequest:
        with self._lock:
            if request.id in self._requests:
                raise StateConflictError(f"Approval request {request.id} already exists")
            self._requests[request.id] = request.model_copy(deep=True)
        return request.model_copy(deep=True)

    def get_request(self, request_id: str) -> Optional[InvoiceApprovalRequest]:
        with self._lock:
            request = self._requests.get(request_id)
            return request.model_copy(deep=True) if request else None

    def update_request(self, request: InvoiceApprovalRequest, expected_version: int) -> InvoiceApprovalRequest:
        with self._lock:
            stored = self._requests.get(request.id)
            if stored is None:
                raise RequestNotFound(f"Approval request {request.id} not found")
            if stored.version != expected_version:
                logger.warning(
                    "Version conflict on approval request",
                    request_id=request.id,
                    expected=expected_version,
                    actual=stored.version,
                )
                raise StateConflictError(
                    f"Approval request {request.id} was modified concurrently "
                    f"(expected version {expected_version}, found {stored.version})"
                )
            updated = request.model_copy(deep=True, update={"version": expected_version + 1})
            self._requests[request.id] = updated
            return updated.model_copy(deep=True)

    def list_requests(self) -> List[InvoiceApprovalRequest]:
        with self._lock:
            requests = [r.model_copy(deep=True) for r in self._requests.values()]
        return sorted(requests, key=lambda r: r.submission_date)
