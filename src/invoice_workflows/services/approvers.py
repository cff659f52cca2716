"""
Approver directory: resolves an approval level's roles and users into
concrete assignments.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

from ..models.workflow import ApprovalLevel
from ..models.approval import ApproverAssignment


class ApproverDirectory:
    """
    Maps roles to user ids.

    A role with no registered members is assigned to a placeholder
    approver whose id is the role name itself, unless the level already
    lists explicit approver users.
    """

    def __init__(self, members: Optional[Dict[str, List[str]]] = None):
        self.members = {role: list(users) for role, users in (members or {}).items()}

    def add(self, role: str, user_id: str) -> None:
        users = self.members.setdefault(role, [])
        if user_id not in users:
            users.append(user_id)

    def users_for(self, role: str) -> List[str]:
        return self.members.get(role) or [role]

    def role_of(self, user_id: str, candidates: List[str]) -> Optional[str]:
        for role in candidates:
            if user_id in self.users_for(role):
                return role
        return None

    def assign(self, level: ApprovalLevel, now: datetime) -> List[ApproverAssignment]:
        due = now + timedelta(hours=level.timeout_hours)
        default_role = level.approver_roles[0] if level.approver_roles else "approver"
        assignments: Dict[str, ApproverAssignment] = {}

        for user_id in level.approver_users:
            role = self.role_of(user_id, level.approver_roles) or default_role
            assignments[user_id] = self._assignment(user_id, role, level, now, due)

        for role in level.approver_roles:
            # Placeholders only when the level names no users explicitly
            members = self.members.get(role, []) if level.approver_users else self.users_for(role)
            for user_id in members:
                if user_id not in assignments:
                    assignments[user_id] = self._assignment(user_id, role, level, now, due)

        return list(assignments.values())

    @staticmethod
    def _assignment(user_id, role, level, now, due) -> ApproverAssignment:
        return ApproverAssignment(
            approver_id=user_id,
            approver_role=role,
            level=level.level,
            assigned_date=now,
            due_date=due,
            delegation_allowed=level.delegation_allowed,
        )
