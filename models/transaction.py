# models/transaction.py
"""
TransactionRecord model - append-only ledger, the system of record for
every wallet balance change.
"""
from sqlalchemy import Column, Integer, String, Text, DECIMAL, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class TransactionCategory:
    DEPOSIT = "deposit"
    PACKAGE_PURCHASE = "package_purchase"
    ROI_DISTRIBUTION = "roi_distribution"
    BOOSTER_INCOME = "booster_income"
    DIRECT_INCOME = "direct_income"
    LEVEL_INCOME = "level_income"
    ROI_ON_ROI = "roi_on_roi"
    MATCHING_BONUS = "matching_bonus"
    RANK_REWARD = "rank_reward"


class TransactionStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionRecord(Base, AuditMixin):
    __tablename__ = 'transactions'

    transactionID = Column(Integer, primary_key=True, autoincrement=True)

    # Relations
    accountID = Column(Integer, ForeignKey('accounts.accountID'), nullable=False, index=True)
    counterpartyID = Column(Integer, ForeignKey('accounts.accountID'), nullable=True)  # Кто сгенерировал доход
    packageTypeID = Column(Integer, ForeignKey('package_types.packageTypeID'), nullable=True)
    packageID = Column(Integer, ForeignKey('packages.packageID'), nullable=True)

    # Details
    category = Column(String, nullable=False, index=True)
    amount = Column(DECIMAL(18, 2), nullable=False)  # Положительная или отрицательная
    level = Column(Integer, nullable=True)  # Глубина для level_income / roi_on_roi
    status = Column(String, default=TransactionStatus.COMPLETED, nullable=False)
    description = Column(Text, nullable=True)

    # Relationships
    account = relationship('Account', foreign_keys=[accountID], backref='transactions')
    counterparty = relationship('Account', foreign_keys=[counterpartyID])

    def __repr__(self):
        return (f"<TransactionRecord(id={self.transactionID}, account={self.accountID}, "
                f"{self.category}={self.amount}, status={self.status})>")
