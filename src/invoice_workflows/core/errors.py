"""
Error taxonomy for the approval and collections engines.

The API layer maps each class to an HTTP status code; engines raise them
at the point the problem is detected.
"""


class WorkflowError(Exception):
    """Base class for all engine errors"""
    status_code = 400


class ValidationError(WorkflowError):
    """Malformed input (e.g. missing required invoice fields)"""
    status_code = 422


class NotFoundError(WorkflowError):
    """Unknown workflow, request, approver or automation"""
    status_code = 404


class NoWorkflowFound(NotFoundError):
    """No active workflow matches the submitted invoice"""


class RequestNotFound(NotFoundError):
    """Approval request id is unknown"""


class StateConflictError(WorkflowError):
    """
    Action submitted against a terminal or already-advanced request.

    Clients should refresh the request and retry.
    """
    status_code = 409


class RuleEvaluationError(WorkflowError):
    """A fraud or compliance rule has malformed parameters"""

    def __init__(self, rule_id: str, message: str):
        super().__init__(f"Rule '{rule_id}': {message}")
        self.rule_id = rule_id
