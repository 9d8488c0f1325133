"""
钱包仓储 - 余额按版本更新，交易只追加
"""

from dataclasses import replace
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from gym_billing.core.exceptions import ConcurrentModification
from gym_billing.core.wallet_ledger import WalletBalance, WalletTransaction, WalletTransactionType, LedgerEntry
from gym_billing.models.wallet import MemberWalletRecord, WalletTransactionRecord
from gym_billing.repositories.base import BaseRepository
from gym_billing.utils.money import round_money


class WalletRepository(BaseRepository):

    async def get(self, member_id: str) -> Optional[WalletBalance]:
        record = await self.session.get(MemberWalletRecord, member_id, populate_existing=True)
        if record is None:
            return None
        return WalletBalance(
            member_id=record.member_id,
            balance=round_money(record.balance, record.currency),
            currency=record.currency,
            last_sequence=record.last_sequence,
            version=record.version,
        )

    async def get_or_create(self, member_id: str, currency: str) -> WalletBalance:
        """获取会员钱包，不存在时创建零余额钱包"""
        wallet = await self.get(member_id)
        if wallet is not None:
            return wallet

        self.session.add(MemberWalletRecord(
            member_id=member_id,
            balance=round_money(0, currency),
            currency=currency,
            last_sequence=0,
            version=0,
        ))
        try:
            await self.session.flush()
        except IntegrityError as e:
            # 另一个事务同时创建了该钱包
            raise ConcurrentModification(f"Wallet for member {member_id} was created concurrently") from e
        return WalletBalance(member_id=member_id, balance=round_money(0, currency), currency=currency)

    async def append(self, previous: WalletBalance, entry: LedgerEntry) -> WalletBalance:
        """写入一条账本记录: 版本比较更新余额并追加交易"""
        version = await self.compare_and_swap(
            MemberWalletRecord,
            {'member_id': previous.member_id},
            previous.version,
            {'balance': entry.wallet.balance, 'last_sequence': entry.wallet.last_sequence},
        )
        tx = entry.transaction
        self.session.add(WalletTransactionRecord(
            member_id=tx.member_id,
            sequence=tx.sequence,
            type=tx.type.value,
            amount=tx.amount,
            balance_after=tx.balance_after,
            currency=tx.currency,
            reference=tx.reference,
            description=tx.description,
            created_at=tx.created_at,
        ))
        await self.session.flush()
        return replace(entry.wallet, version=version)

    async def list_transactions(self, member_id: str, limit: int = 100, offset: int = 0) -> List[WalletTransaction]:
        """交易记录，按序号升序"""
        result = await self.session.execute(
            select(WalletTransactionRecord)
            .where(WalletTransactionRecord.member_id == member_id)
            .order_by(WalletTransactionRecord.sequence)
            .offset(offset)
            .limit(limit)
        )
        return [
            WalletTransaction(
                member_id=r.member_id,
                sequence=r.sequence,
                type=WalletTransactionType(r.type),
                amount=round_money(r.amount, r.currency),
                balance_after=round_money(r.balance_after, r.currency),
                currency=r.currency,
                created_at=r.created_at,
                reference=r.reference,
                description=r.description,
            )
            for r in result.scalars().all()
        ]

    async def count_by_reference(self, member_id: str, reference: str) -> int:
        result = await self.session.execute(
            select(WalletTransactionRecord.id).where(
                WalletTransactionRecord.member_id == member_id,
                WalletTransactionRecord.reference == reference,
            )
        )
        return len(result.scalars().all())
