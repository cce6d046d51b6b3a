# Overview: Resolve who approves a workflow level (explicit assignment, then role lookup).

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from flask import current_app

logger = logging.getLogger(__name__)

FALLBACK_ROLE = "MANAGER"


@dataclass(frozen=True)
class Approver:
    id: str | None
    name: str
    email: str | None
    source: str

    @property
    def has_valid_email(self) -> bool:
        return bool(self.email and "@" in self.email)


class ApproverResolver(Protocol):
    def resolve(self, level, employee_id: str | None = None) -> Approver:
        ...


class RoleTableApproverResolver:
    """
    Looks approvers up by role in a {role: {id, name, email}} table.

    Unknown roles get the MANAGER entry.
    """

    def __init__(self, table: dict[str, dict] | None = None):
        self._table = table

    @property
    def table(self) -> dict[str, dict]:
        if self._table is not None:
            return self._table
        return current_app.config.get("ROLE_APPROVERS") or {}

    def resolve_role(self, role: str) -> Approver:
        table = self.table
        entry = table.get(role) or table.get(FALLBACK_ROLE) or {}
        return Approver(
            id=entry.get("id"),
            name=entry.get("name") or role,
            email=entry.get("email"),
            source="role-based",
        )

    def resolve(self, level, employee_id: str | None = None) -> Approver:
        return self.resolve_role(level.role)


class WorkflowLevelApproverResolver:
    """Uses the approver pinned on the workflow level, falling back to the role table."""

    def __init__(self, fallback: RoleTableApproverResolver | None = None):
        self.fallback = fallback or RoleTableApproverResolver()

    def resolve(self, level, employee_id: str | None = None) -> Approver:
        if level.approver_email:
            approver = Approver(
                id=level.approver_id or f"approver_{level.role.lower()}",
                name=level.approver_name or level.role,
                email=level.approver_email,
                source="workflow-level",
            )
            logger.info(
                "Using approver from workflow level %s: %s (%s)",
                level.level,
                approver.name,
                approver.email,
            )
            return approver

        approver = self.fallback.resolve(level, employee_id)
        logger.warning(
            "Using role-based approver for level %s: %s (no email on workflow level)",
            level.level,
            approver.email,
        )
        return approver


def default_resolver() -> ApproverResolver:
    return WorkflowLevelApproverResolver()
