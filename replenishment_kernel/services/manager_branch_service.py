"""
ManagerBranchService -- manager <-> branch eligibility.

Responsibility:
    Answers "which managers may act on this branch's orders" for the
    lifecycle service, and provides the administrative assign / remove
    operations that maintain the join table.

Architecture position:
    Kernel > Services.  The workflow only calls the read methods
    (``eligible_managers``, ``is_eligible``); it never assigns or removes.

Invariants enforced:
    - Only active assignments make a manager eligible.
    - Removal deactivates; re-assignment reactivates the same row, so the
      (manager, branch) pair never has two rows.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from replenishment_kernel.domain.clock import Clock, SystemClock
from replenishment_kernel.domain.dtos import ManagerBranchAssignmentDTO
from replenishment_kernel.logging_config import get_logger
from replenishment_kernel.models.assignment import ManagerBranchAssignmentModel

logger = get_logger("services.manager_branch")


class ManagerBranchResolver(Protocol):
    """Read-only view the lifecycle service depends on."""

    def eligible_managers(self, branch_id: UUID) -> tuple[UUID, ...]:
        ...


class ManagerBranchService:
    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Read side (used by the workflow)
    # -------------------------------------------------------------------------

    def eligible_managers(self, branch_id: UUID) -> tuple[UUID, ...]:
        """Active managers of ``branch_id``, oldest assignment first."""
        rows = self._session.execute(
            select(ManagerBranchAssignmentModel.manager_id)
            .where(
                ManagerBranchAssignmentModel.branch_id == branch_id,
                ManagerBranchAssignmentModel.is_active.is_(True),
            )
            .order_by(ManagerBranchAssignmentModel.assigned_at)
        ).scalars()
        return tuple(rows)

    def is_eligible(self, manager_id: UUID, branch_id: UUID) -> bool:
        return manager_id in self.eligible_managers(branch_id)

    def branches_for_manager(self, manager_id: UUID) -> tuple[UUID, ...]:
        """Branches where ``manager_id`` holds an active assignment."""
        rows = self._session.execute(
            select(ManagerBranchAssignmentModel.branch_id)
            .where(
                ManagerBranchAssignmentModel.manager_id == manager_id,
                ManagerBranchAssignmentModel.is_active.is_(True),
            )
            .order_by(ManagerBranchAssignmentModel.assigned_at)
        ).scalars()
        return tuple(rows)

    def list_assignments(
        self, include_inactive: bool = False
    ) -> tuple[ManagerBranchAssignmentDTO, ...]:
        stmt = select(ManagerBranchAssignmentModel).order_by(
            ManagerBranchAssignmentModel.assigned_at
        )
        if not include_inactive:
            stmt = stmt.where(ManagerBranchAssignmentModel.is_active.is_(True))
        return tuple(m.to_dto() for m in self._session.execute(stmt).scalars())

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    def assign_manager(
        self, manager_id: UUID, branch_id: UUID, actor_id: UUID
    ) -> ManagerBranchAssignmentDTO:
        """Create or reactivate the assignment. Idempotent for active rows."""
        now = self._clock.now()
        model = self._load(manager_id, branch_id)
        if model is None:
            model = ManagerBranchAssignmentModel(
                manager_id=manager_id,
                branch_id=branch_id,
                is_active=True,
                assigned_at=now,
                created_at=now,
                updated_at=now,
                created_by_id=actor_id,
            )
            self._session.add(model)
            action = "created"
        elif not model.is_active:
            model.is_active = True
            model.assigned_at = now
            model.deactivated_at = None
            model.updated_at = now
            model.updated_by_id = actor_id
            action = "reactivated"
        else:
            action = "unchanged"
        self._session.flush()

        logger.info(
            "manager_branch_assigned",
            extra={
                "manager_id": str(manager_id),
                "branch_id": str(branch_id),
                "action": action,
            },
        )
        return model.to_dto()

    def remove_manager(
        self, manager_id: UUID, branch_id: UUID, actor_id: UUID
    ) -> ManagerBranchAssignmentDTO | None:
        """Deactivate the assignment. Returns None when there is none."""
        model = self._load(manager_id, branch_id)
        if model is None:
            return None
        if model.is_active:
            now = self._clock.now()
            model.is_active = False
            model.deactivated_at = now
            model.updated_at = now
            model.updated_by_id = actor_id
            self._session.flush()
            logger.info(
                "manager_branch_removed",
                extra={"manager_id": str(manager_id), "branch_id": str(branch_id)},
            )
        return model.to_dto()

    def _load(
        self, manager_id: UUID, branch_id: UUID
    ) -> ManagerBranchAssignmentModel | None:
        return self._session.execute(
            select(ManagerBranchAssignmentModel).where(
                ManagerBranchAssignmentModel.manager_id == manager_id,
                ManagerBranchAssignmentModel.branch_id == branch_id,
            )
        ).scalar_one_or_none()
