"""Credit ledger: per-user integer balance with a signed journal."""
import logging
from abc import ABC, abstractmethod
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from rental_access.infrastructure.models import (
    CreditAccountModel,
    CreditLedgerEntryModel,
    RentalModel,
)
from rental_access.utils import utcnow

logger = logging.getLogger(__name__)

REASON_RENTAL = "rental"
REASON_EXTENSION = "extension"
REASON_REWIND = "rewind"
REASON_REFUND = "refund"


class LedgerEntry(BaseModel):
    """One journal line. Debits are negative."""

    user_id: UUID
    amount: int
    reason: str
    rental_id: Optional[UUID]


class CreditLedger(ABC):
    """Abstract credit ledger interface."""

    @abstractmethod
    async def get_balance(self, user_id: UUID) -> int:
        """Current balance, 0 for unknown users."""
        pass

    @abstractmethod
    async def debit(
        self, user_id: UUID, amount: int, reason: str, rental_id: Optional[UUID] = None
    ) -> bool:
        """Debit if sufficient. Returns False and changes nothing otherwise."""
        pass

    @abstractmethod
    async def credit(
        self, user_id: UUID, amount: int, reason: str, rental_id: Optional[UUID] = None
    ) -> int:
        """Credit the account, returning the new balance."""
        pass

    @abstractmethod
    async def find_orphaned_rental_debits(self) -> List[LedgerEntry]:
        """Rental debits with no rental row and no refund."""
        pass


class PostgresCreditLedger(CreditLedger):
    """Ledger stored next to the rentals, so it joins their transactions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _journal(
        self, user_id: UUID, amount: int, reason: str, rental_id: Optional[UUID]
    ) -> None:
        self.session.add(
            CreditLedgerEntryModel(
                user_id=user_id, amount=amount, reason=reason, rental_id=rental_id
            )
        )
        await self.session.flush()

    async def get_balance(self, user_id: UUID) -> int:
        stmt = select(CreditAccountModel.balance).where(CreditAccountModel.user_id == user_id)
        result = await self.session.execute(stmt)
        balance = result.scalar_one_or_none()
        return balance or 0

    async def debit(
        self, user_id: UUID, amount: int, reason: str, rental_id: Optional[UUID] = None
    ) -> bool:
        stmt = (
            update(CreditAccountModel)
            .where(
                CreditAccountModel.user_id == user_id,
                CreditAccountModel.balance >= amount,
            )
            .values(balance=CreditAccountModel.balance - amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            return False

        await self._journal(user_id, -amount, reason, rental_id)
        logger.info(f"Debited {amount} from {user_id} ({reason})")
        return True

    async def credit(
        self, user_id: UUID, amount: int, reason: str, rental_id: Optional[UUID] = None
    ) -> int:
        stmt = (
            update(CreditAccountModel)
            .where(CreditAccountModel.user_id == user_id)
            .values(balance=CreditAccountModel.balance + amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            self.session.add(CreditAccountModel(user_id=user_id, balance=amount))
            await self.session.flush()

        await self._journal(user_id, amount, reason, rental_id)
        logger.info(f"Credited {amount} to {user_id} ({reason})")
        return await self.get_balance(user_id)

    async def open_account(self, user_id: UUID, balance: int = 0) -> None:
        """Create an account with an initial balance."""
        self.session.add(CreditAccountModel(user_id=user_id, balance=balance))
        await self.session.flush()

    async def find_orphaned_rental_debits(self) -> List[LedgerEntry]:
        refund = aliased(CreditLedgerEntryModel)
        stmt = (
            select(CreditLedgerEntryModel)
            .outerjoin(RentalModel, RentalModel.rental_id == CreditLedgerEntryModel.rental_id)
            .outerjoin(
                refund,
                and_(
                    refund.rental_id == CreditLedgerEntryModel.rental_id,
                    refund.reason == REASON_REFUND,
                ),
            )
            .where(
                CreditLedgerEntryModel.reason == REASON_RENTAL,
                CreditLedgerEntryModel.rental_id.is_not(None),
                RentalModel.rental_id.is_(None),
                refund.id.is_(None),
            )
        )
        result = await self.session.execute(stmt)
        return [
            LedgerEntry(
                user_id=entry.user_id,
                amount=entry.amount,
                reason=entry.reason,
                rental_id=entry.rental_id,
            )
            for entry in result.scalars().all()
        ]
