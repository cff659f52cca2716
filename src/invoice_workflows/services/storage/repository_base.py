"""
Abstract base class for approval repositories.

Defines the interface that all storage backends must implement,
enabling dependency injection and easy swapping of storage backends.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from ...models.workflow import ApprovalWorkflow
from ...models.approval import InvoiceApprovalRequest


class ApprovalRepositoryBase(ABC):
    """
    Abstract base class for workflow and approval request storage.

    Implementations can use:
    - In-memory storage (for testing/demo)
    - SQLite (for single-instance deployments)
    - SQL Server / PostgreSQL (for production)

    Requests are updated with compare-and-swap on ``version``: an update
    whose expected version does not match the stored one raises
    StateConflictError and leaves the stored request untouched.
    """

    @abstractmethod
    def save_workflow(self, workflow: ApprovalWorkflow) -> ApprovalWorkflow:
        """Insert or replace a workflow, keeping its original definition order"""
        pass

    @abstractmethod
    def get_workflow(self, workflow_id: str) -> Optional[ApprovalWorkflow]:
        pass

    @abstractmethod
    def list_workflows(self) -> List[ApprovalWorkflow]:
        """List workflows in definition order"""
        pass

    @abstractmethod
    def create_request(self, request: InvoiceApprovalRequest) -> InvoiceApprovalRequest:
        """
        Store a new approval request.

        Raises:
            StateConflictError: If a request with the same id exists
        """
        pass

    @abstractmethod
    def get_request(self, request_id: str) -> Optional[InvoiceApprovalRequest]:
        """
        Get an approval request by ID.

        Returns:
            A copy of the stored request, or None if not found
        """
        pass

    @abstractmethod
    def update_request(self, request: InvoiceApprovalRequest, expected_version: int) -> InvoiceApprovalRequest:
        """
        Replace a stored request if its version still matches.

        Args:
            request: The new request state
            expected_version: Version the caller read before mutating

        Returns:
            The stored request with its version incremented

        Raises:
            RequestNotFound: If the request does not exist
            StateConflictError: If the stored version differs
        """
        pass

    @abstractmethod
    def list_requests(self) -> List[InvoiceApprovalRequest]:
        """List all requests, oldest submission first"""
        pass

    def query_by_status(self, status: str) -> List[InvoiceApprovalRequest]:
        return [r for r in self.list_requests() if r.status == status]

    def list_by_customer(self, customer_id: str) -> List[InvoiceApprovalRequest]:
        return [r for r in self.list_requests() if r.invoice.customer_id == customer_id]

    def list_overdue(self, now: datetime) -> List[InvoiceApprovalRequest]:
        """List pending or in-review requests whose due date has passed"""
        return [
            r for r in self.list_requests()
            if r.status in ("pending", "in_review") and r.due_date < now
        ]
