# mlm_engine/services/ledger_service.py
"""
Ledger service - the only writer of wallet balances.

Every balance change is a TransactionRecord plus an atomic
`balance = balance + delta` UPDATE issued in the same unit of work,
so records and balances cannot drift apart.
"""
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

import config
from models import Account, TransactionRecord, TransactionCategory, TransactionStatus
from mlm_engine.errors import (ValidationError, NotFoundError, InsufficientFundsError,
                               ReconciliationError)
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.utils.money import toDecimal, ZERO

logger = logging.getLogger(__name__)

# Category -> lifetime earnings column on Account
EARNING_COLUMNS = {
    TransactionCategory.ROI_DISTRIBUTION: "roiEarnings",
    TransactionCategory.BOOSTER_INCOME: "boosterEarnings",
    TransactionCategory.DIRECT_INCOME: "directEarnings",
    TransactionCategory.LEVEL_INCOME: "commissionEarnings",
    TransactionCategory.ROI_ON_ROI: "roiOnRoiEarnings",
    TransactionCategory.MATCHING_BONUS: "binaryEarnings",
    TransactionCategory.RANK_REWARD: "rankEarnings",
}


class LedgerService:
    """Service for posting transactions and keeping balances reconciled."""

    def __init__(self, session: Session):
        self.session = session

    async def postTransaction(
            self,
            accountId: int,
            category: str,
            amount,
            counterpartyId: Optional[int] = None,
            level: Optional[int] = None,
            packageTypeId: Optional[int] = None,
            packageId: Optional[int] = None,
            description: Optional[str] = None,
            status: str = TransactionStatus.COMPLETED
    ) -> TransactionRecord:
        """
        Append a transaction and apply its balance delta.
        Pending transactions touch the balance only when completed.
        """
        amount = toDecimal(amount)
        if amount == 0:
            raise ValidationError("Transaction amount must be non-zero", accountId=accountId)
        if status not in (TransactionStatus.PENDING, TransactionStatus.COMPLETED):
            raise ValidationError(f"Cannot post a transaction as {status}")

        if status == TransactionStatus.COMPLETED:
            self._applyDelta(accountId, category, amount)
        elif not self.session.get(Account, accountId):
            raise NotFoundError(f"Account {accountId} not found", accountId=accountId)

        record = TransactionRecord(
            accountID=accountId,
            category=category,
            amount=amount,
            counterpartyID=counterpartyId,
            level=level,
            packageTypeID=packageTypeId,
            packageID=packageId,
            status=status,
            description=description
        )
        self.session.add(record)
        self.session.flush()

        logger.info(
            f"Posted {category} {amount} for account {accountId} "
            f"(tx {record.transactionID}, {status})"
        )

        if category in EARNING_COLUMNS and amount >= config.LARGE_PAYOUT_THRESHOLD:
            await eventBus.emit(MLMEvents.LARGE_PAYOUT, {
                "accountId": accountId,
                "category": category,
                "amount": amount,
                "transactionId": record.transactionID
            })

        return record

    async def deposit(self, accountId: int, amount, description: Optional[str] = None) -> TransactionRecord:
        """Fund a wallet from outside the engine."""
        amount = toDecimal(amount)
        if amount <= 0:
            raise ValidationError("Deposit amount must be positive", amount=str(amount))
        return await self.postTransaction(
            accountId,
            TransactionCategory.DEPOSIT,
            amount,
            description=description or "Wallet deposit"
        )

    async def debit(
            self,
            accountId: int,
            amount,
            category: str,
            **refs
    ) -> TransactionRecord:
        """
        Take `amount` from the wallet or fail with InsufficientFundsError.
        Balance check and decrement are one conditional UPDATE.
        """
        amount = toDecimal(amount)
        if amount <= 0:
            raise ValidationError("Debit amount must be positive", amount=str(amount))

        updated = self.session.query(Account).filter(
            Account.accountID == accountId,
            Account.walletBalance >= amount
        ).update(
            {Account.walletBalance: Account.walletBalance - amount},
            synchronize_session="evaluate"
        )

        if not updated:
            account = self.session.get(Account, accountId)
            if not account:
                raise NotFoundError(f"Account {accountId} not found", accountId=accountId)
            raise InsufficientFundsError(
                f"Account {accountId} balance {account.walletBalance} is below {amount}",
                accountId=accountId,
                balance=str(account.walletBalance),
                required=str(amount)
            )

        record = TransactionRecord(
            accountID=accountId,
            category=category,
            amount=-amount,
            status=TransactionStatus.COMPLETED,
            **refs
        )
        self.session.add(record)
        self.session.flush()

        logger.info(f"Debited {amount} from account {accountId} ({category}, tx {record.transactionID})")
        return record

    async def markTransaction(self, transactionId: int, status: str) -> TransactionRecord:
        """Move a pending transaction to completed or failed - exactly once."""
        record = self.session.get(TransactionRecord, transactionId)
        if not record:
            raise NotFoundError(f"Transaction {transactionId} not found", transactionId=transactionId)

        if record.status != TransactionStatus.PENDING:
            raise ValidationError(
                f"Transaction {transactionId} is already {record.status}",
                transactionId=transactionId
            )
        if status not in (TransactionStatus.COMPLETED, TransactionStatus.FAILED):
            raise ValidationError(f"Invalid target status {status}")

        if status == TransactionStatus.COMPLETED:
            self._applyDelta(record.accountID, record.category, toDecimal(record.amount))

        record.status = status
        self.session.flush()

        logger.info(f"Transaction {transactionId} marked {status}")
        return record

    async def listTransactions(
            self,
            accountId: int,
            limit: int = 50,
            offset: int = 0,
            category: Optional[str] = None
    ) -> List[TransactionRecord]:
        """Paginated transaction history, newest first."""
        if limit < 1 or limit > 500:
            raise ValidationError("limit must be between 1 and 500")
        if offset < 0:
            raise ValidationError("offset must not be negative")

        query = self.session.query(TransactionRecord).filter(
            TransactionRecord.accountID == accountId
        )
        if category:
            query = query.filter(TransactionRecord.category == category)

        return query.order_by(
            TransactionRecord.transactionID.desc()
        ).offset(offset).limit(limit).all()

    async def reconcile(self, accountId: Optional[int] = None) -> Dict:
        """
        Audit pass: wallet balance must equal the sum of completed transactions.
        Divergences are logged for monitoring, never raised here.
        """
        sums = dict(
            self.session.query(
                TransactionRecord.accountID,
                func.sum(TransactionRecord.amount)
            ).filter(
                TransactionRecord.status == TransactionStatus.COMPLETED
            ).group_by(TransactionRecord.accountID).all()
        )

        query = self.session.query(Account)
        if accountId is not None:
            query = query.filter(Account.accountID == accountId)

        report = {"checked": 0, "mismatches": []}

        for account in query.all():
            report["checked"] += 1
            expected = toDecimal(sums.get(account.accountID) or ZERO)
            actual = toDecimal(account.walletBalance or ZERO)

            if expected != actual:
                mismatch = {
                    "accountId": account.accountID,
                    "walletBalance": actual,
                    "ledgerTotal": expected,
                    "difference": actual - expected
                }
                report["mismatches"].append(mismatch)
                logger.error(
                    f"Reconciliation mismatch for account {account.accountID}: "
                    f"balance={actual}, ledger={expected}"
                )
                await eventBus.emit(MLMEvents.RECONCILIATION_FAILED, mismatch)

        logger.info(
            f"Reconciliation complete: checked={report['checked']}, "
            f"mismatches={len(report['mismatches'])}"
        )
        return report

    async def assertReconciled(self, accountId: Optional[int] = None):
        report = await self.reconcile(accountId)
        if report["mismatches"]:
            raise ReconciliationError(
                f"{len(report['mismatches'])} account(s) out of balance",
                mismatches=report["mismatches"]
            )

    def _applyDelta(self, accountId: int, category: str, amount: Decimal):
        values = {Account.walletBalance: Account.walletBalance + amount}

        column = EARNING_COLUMNS.get(category)
        if column and amount > 0:
            earnings = getattr(Account, column)
            values[earnings] = earnings + amount
            values[Account.totalEarnings] = Account.totalEarnings + amount

        updated = self.session.query(Account).filter(
            Account.accountID == accountId
        ).update(values, synchronize_session="evaluate")

        if not updated:
            raise NotFoundError(f"Account {accountId} not found", accountId=accountId)
