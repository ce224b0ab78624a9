"""Repository Protocol: dependency inversion for testability.

Unit tests inject an in-memory fake that conforms to this Protocol.
Infrastructure layer provides the real implementation.
"""

from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_equipment.domain.models import Equipment, EquipmentLoan, NewLoan


class EquipmentRepositoryProtocol(Protocol):
    async def get_equipment(self, db: AsyncSession, equipment_id: int) -> Equipment | None: ...

    async def lock_equipment(self, db: AsyncSession, equipment_id: int) -> Equipment | None: ...

    async def update_equipment(
        self,
        db: AsyncSession,
        equipment_id: int,
        status: str,
        condition: str | None = None,
    ) -> Equipment: ...

    async def find_active_loan(
        self, db: AsyncSession, equipment_id: int
    ) -> EquipmentLoan | None: ...

    async def insert_loan(self, db: AsyncSession, loan: NewLoan) -> EquipmentLoan | None:
        """None when the equipment already has an active loan."""
        ...

    async def get_loan(self, db: AsyncSession, loan_id: int) -> EquipmentLoan | None: ...

    async def lock_loan(self, db: AsyncSession, loan_id: int) -> EquipmentLoan | None: ...

    async def update_loan(
        self,
        db: AsyncSession,
        loan_id: int,
        state: str,
        checked_out_at: datetime | None = None,
        returned_at: datetime | None = None,
        due_at: datetime | None = None,
        condition_out: str | None = None,
        condition_in: str | None = None,
        damage_notes: str | None = None,
    ) -> EquipmentLoan:
        """Set the state; None leaves the other columns unchanged."""
        ...

    async def list_loans_for_borrower(
        self, db: AsyncSession, borrower_id: int, active_only: bool
    ) -> list[EquipmentLoan]: ...

    async def list_loans_for_equipment(
        self, db: AsyncSession, equipment_id: int, limit: int
    ) -> list[EquipmentLoan]: ...

    async def list_past_due(self, db: AsyncSession, now: datetime) -> list[EquipmentLoan]: ...
