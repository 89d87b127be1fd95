# models/package.py
"""
Package models - package types on sale, purchased investment contracts
and the per-day ROI payout marker.
"""
from decimal import Decimal
from sqlalchemy import (Column, Integer, String, Boolean, DateTime, Date, DECIMAL, JSON,
                        ForeignKey, UniqueConstraint)
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin, Money


class PackageType(Base, AuditMixin):
    __tablename__ = 'package_types'

    packageTypeID = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)

    # Investment bounds
    minInvestment = Money()
    maxInvestment = Money()

    # Returns
    dailyRoiPercentage = Column(DECIMAL(9, 4), nullable=False)  # 1.0000 = 1% per day
    durationDays = Column(Integer, nullable=False)
    roiCapMultiplier = Column(DECIMAL(6, 2), nullable=False, default=2)  # 2 = 200%

    # Level income table, index 0 = level 1
    levelIncomePercentages = Column(JSON, nullable=True)
    # ["10", "5", "3", ...] - percentages as strings to keep Decimal precision

    isActive = Column(Boolean, default=True, nullable=False)

    def levelPercentage(self, level):
        table = self.levelIncomePercentages or []
        if level < 1 or level > len(table):
            return Decimal("0")
        return Decimal(str(table[level - 1]))

    def __repr__(self):
        return f"<PackageType(packageTypeID={self.packageTypeID}, name={self.name})>"


class Package(Base, AuditMixin):
    __tablename__ = 'packages'

    packageID = Column(Integer, primary_key=True, autoincrement=True)
    accountID = Column(Integer, ForeignKey('accounts.accountID'), nullable=False, index=True)
    packageTypeID = Column(Integer, ForeignKey('package_types.packageTypeID'), nullable=False)

    # Contract
    principalAmount = Money()
    dailyRoiAmount = Money()
    roiCap = Money()
    roiEarned = Money()

    activatedAt = Column(DateTime, nullable=False)
    expiresAt = Column(DateTime, nullable=False)
    lastDistributedOn = Column(Date, nullable=True)

    status = Column(String, default="active", nullable=False, index=True)  # active, completed

    # Relationships
    account = relationship('Account', backref='packages')
    packageType = relationship('PackageType')

    @property
    def remainingCap(self):
        return (self.roiCap or 0) - (self.roiEarned or 0)

    def __repr__(self):
        return (f"<Package(packageID={self.packageID}, account={self.accountID}, "
                f"earned={self.roiEarned}/{self.roiCap}, status={self.status})>")


class RoiPayout(Base):
    __tablename__ = 'roi_payouts'

    payoutID = Column(Integer, primary_key=True, autoincrement=True)
    packageID = Column(Integer, ForeignKey('packages.packageID'), nullable=False)
    distributionDate = Column(Date, nullable=False)
    amount = Money()
    boosterAmount = Money()
    transactionID = Column(Integer, ForeignKey('transactions.transactionID'), nullable=True)
    createdAt = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint('packageID', 'distributionDate', name='uq_roi_payouts_package_date'),
    )

    def __repr__(self):
        return f"<RoiPayout(package={self.packageID}, date={self.distributionDate}, amount={self.amount})>"
