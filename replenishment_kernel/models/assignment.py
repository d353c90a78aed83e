"""
Module: replenishment_kernel.models.assignment
Responsibility: Many-to-many manager <-> branch join with an active flag.

Architecture position: Kernel > Models.  Read by the lifecycle service (via
    ManagerBranchService.eligible_managers) and written only by the
    administrative assign/remove operations; the order workflow never
    mutates it.

Invariants enforced:
    - (manager_id, branch_id) is unique; removal deactivates, re-assignment
      reactivates the same row.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from replenishment_kernel.db.base import TrackedBase, UUIDString
from replenishment_kernel.domain.dtos import ManagerBranchAssignmentDTO


class ManagerBranchAssignmentModel(TrackedBase):
    __tablename__ = "manager_branch_assignments"

    __table_args__ = (
        UniqueConstraint("manager_id", "branch_id", name="uq_manager_branch"),
        Index("ix_manager_branch_active", "branch_id", "is_active"),
    )

    manager_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    branch_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    assigned_at: Mapped[datetime] = mapped_column(nullable=False)
    deactivated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        state = "active" if self.is_active else "inactive"
        return f"<ManagerBranch {self.manager_id} -> {self.branch_id} {state}>"

    def to_dto(self) -> ManagerBranchAssignmentDTO:
        return ManagerBranchAssignmentDTO(
            id=self.id,
            manager_id=self.manager_id,
            branch_id=self.branch_id,
            is_active=self.is_active,
            assigned_at=self.assigned_at,
            deactivated_at=self.deactivated_at,
        )
