"""
SQLite-backed approval repository for persistent deployments.

Workflows and requests are stored as JSON documents, with the columns
needed for filtering (status, customer, version) kept alongside. Due
dates live only in the document, so overdue checks filter in Python.
"""

import sqlite3
from datetime import datetime
from typing import List, Optional

from loguru import logger

from ...core.errors import RequestNotFound, StateConflictError
from ...models.workflow import ApprovalWorkflow
from ...models.approval import InvoiceApprovalRequest
from .repository_base import ApprovalRepositoryBase


class SQLiteApprovalRepository(ApprovalRepositoryBase):
    """
    SQLite-backed approval repository with persistent storage.

    Features:
    - Persistent storage across application restarts
    - Status and customer filtering in SQL
    - Optimistic concurrency via ``UPDATE ... WHERE id = ? AND version = ?``
    """

    def __init__(self, db_path: str = "approvals.db"):
        """
        Initialize repository with database path.

        Args:
            db_path: Path to SQLite database file (default: approvals.db)
        """
        self.db_path = db_path
        self._init_database()

    def _init_database(self):
        """Create tables if they don't exist"""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS approval_requests (
                id TEXT PRIMARY KEY,
                customer_id TEXT NOT NULL,
                status TEXT NOT NULL,
                version INTEGER NOT NULL,
                submission_date TEXT NOT NULL,
                data TEXT NOT NULL,
                CHECK (status IN ('pending', 'in_review', 'approved', 'rejected', 'escalated', 'cancelled'))
            )
        """)

        # Create indexes for common queries
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_requests_status
            ON approval_requests(status)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_requests_customer
            ON approval_requests(customer_id)
        """)

        conn.commit()
        conn.close()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection with row factory"""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def save_workflow(self, workflow: ApprovalWorkflow) -> ApprovalWorkflow:
        conn = self._get_connection()
        cursor = conn.cursor()

        # Upsert keeps the rowid, so definition order survives updates
        cursor.execute("""
            INSERT INTO workflows (id, data) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET data = excluded.data
        """, (workflow.id, workflow.model_dump_json()))

        conn.commit()
        conn.close()
        return workflow.model_copy(deep=True)

    def get_workflow(self, workflow_id: str) -> Optional[ApprovalWorkflow]:
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("SELECT data FROM workflows WHERE id = ?", (workflow_id,))
        row = cursor.fetchone()
        conn.close()

        if row is None:
            return None
        return ApprovalWorkflow.model_validate_json(row["data"])

    def list_workflows(self) -> List[ApprovalWorkflow]:
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("SELECT data FROM workflows ORDER BY rowid")
        rows = cursor.fetchall()
        conn.close()

        return [ApprovalWorkflow.model_validate_json(row["data"]) for row in rows]

    def create_request(self, request: InvoiceApprovalRequest) -> InvoiceApprovalRequest:
        conn = self._get_connection()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO approval_requests (id, customer_id, status, version, submission_date, data)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                request.id,
                request.invoice.customer_id,
                request.status,
                request.version,
                request.submission_date.isoformat(),
                request.model_dump_json(),
            ))
            conn.commit()
        except sqlite3.IntegrityError:
            raise StateConflictError(f"Approval request {request.id} already exists")
        finally:
            conn.close()

        return request.model_copy(deep=True)

    def get_request(self, request_id: str) -> Optional[InvoiceApprovalRequest]:
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("SELECT data FROM approval_requests WHERE id = ?", (request_id,))
        row = cursor.fetchone()
        conn.close()

        if row is None:
            return None
        return InvoiceApprovalRequest.model_validate_json(row["data"])

    def update_request(self, request: InvoiceApprovalRequest, expected_version: int) -> InvoiceApprovalRequest:
        updated = request.model_copy(deep=True, update={"version": expected_version + 1})

        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute("""
            UPDATE approval_requests
            SET status = ?,
                version = ?,
                data = ?
            WHERE id = ? AND version = ?
        """, (updated.status, updated.version, updated.model_dump_json(), request.id, expected_version))

        rows_affected = cursor.rowcount
        conn.commit()

        if rows_affected == 0:
            cursor.execute("SELECT version FROM approval_requests WHERE id = ?", (request.id,))
            row = cursor.fetchone()
            conn.close()
            if row is None:
                raise RequestNotFound(f"Approval request {request.id} not found")
            logger.warning(
                "Version conflict on approval request",
                request_id=request.id,
                expected=expected_version,
                actual=row["version"],
            )
            raise StateConflictError(
                f"Approval request {request.id} was modified concurrently "
                f"(expected version {expected_version}, found {row['version']})"
            )

        conn.close()
        return updated

    def _query(self, where: str = "", params: tuple = ()) -> List[InvoiceApprovalRequest]:
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute(f"""
            SELECT data FROM approval_requests
            {where}
            ORDER BY submission_date
        """, params)

        rows = cursor.fetchall()
        conn.close()

        return [InvoiceApprovalRequest.model_validate_json(row["data"]) for row in rows]

    def list_requests(self) -> List[InvoiceApprovalRequest]:
        return self._query()

    def query_by_status(self, status: str) -> List[InvoiceApprovalRequest]:
        return self._query("WHERE status = ?", (status,))

    def list_by_customer(self, customer_id: str) -> List[InvoiceApprovalRequest]:
        return self._query("WHERE customer_id = ?", (customer_id,))

    def list_overdue(self, now: datetime) -> List[InvoiceApprovalRequest]:
        # Due dates live in the JSON document; filter open requests in Python
        open_requests = self._query("WHERE status IN ('pending', 'in_review')")
        return [r for r in open_requests if r.due_date < now]
