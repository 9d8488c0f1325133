"""
积分仓储
"""

from dataclasses import replace
from typing import List

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from gym_billing.core.exceptions import ConcurrentModification
from gym_billing.core.points_ledger import (
    PointsAccount, PointsEntry, PointsTransaction, PointsTransactionType, PointsSource
)
from gym_billing.models.points import PointsAccountRecord, PointsTransactionRecord
from gym_billing.repositories.base import BaseRepository


class PointsRepository(BaseRepository):

    async def get_or_create(self, member_id: str) -> PointsAccount:
        record = await self.session.get(PointsAccountRecord, member_id, populate_existing=True)
        if record is not None:
            return PointsAccount(
                member_id=record.member_id,
                balance=record.balance,
                last_sequence=record.last_sequence,
                version=record.version,
            )

        self.session.add(PointsAccountRecord(member_id=member_id, balance=0, last_sequence=0, version=0))
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConcurrentModification(f"Points account for member {member_id} was created concurrently") from e
        return PointsAccount(member_id=member_id)

    async def append(self, previous: PointsAccount, entry: PointsEntry) -> PointsAccount:
        version = await self.compare_and_swap(
            PointsAccountRecord,
            {'member_id': previous.member_id},
            previous.version,
            {'balance': entry.account.balance, 'last_sequence': entry.account.last_sequence},
        )
        tx = entry.transaction
        self.session.add(PointsTransactionRecord(
            member_id=tx.member_id,
            sequence=tx.sequence,
            type=tx.type.value,
            source=tx.source.value,
            points=tx.points,
            balance_after=tx.balance_after,
            reference=tx.reference,
            description=tx.description,
            created_at=tx.created_at,
        ))
        await self.session.flush()
        return replace(entry.account, version=version)

    async def has_reference(self, member_id: str, reference: str) -> bool:
        result = await self.session.execute(
            select(PointsTransactionRecord.id).where(
                PointsTransactionRecord.member_id == member_id,
                PointsTransactionRecord.reference == reference,
            ).limit(1)
        )
        return result.scalars().first() is not None

    async def list_transactions(self, member_id: str) -> List[PointsTransaction]:
        result = await self.session.execute(
            select(PointsTransactionRecord)
            .where(PointsTransactionRecord.member_id == member_id)
            .order_by(PointsTransactionRecord.sequence)
        )
        return [
            PointsTransaction(
                member_id=r.member_id,
                sequence=r.sequence,
                type=PointsTransactionType(r.type),
                points=r.points,
                balance_after=r.balance_after,
                created_at=r.created_at,
                source=PointsSource(r.source),
                reference=r.reference,
                description=r.description,
            )
            for r in result.scalars().all()
        ]
