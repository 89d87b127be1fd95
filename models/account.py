# models/account.py
"""
Account model - central entity: wallet, lifetime earnings, sponsor link.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin, Money


class Account(Base, AuditMixin):
    __tablename__ = 'accounts'

    # Primary identification
    accountID = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, unique=True, nullable=True)
    fullName = Column(String, nullable=True)
    sponsorID = Column(Integer, ForeignKey('accounts.accountID'), nullable=True, index=True)

    # System fields
    status = Column(String, default="active", nullable=False)  # active, deactivated
    kycVerified = Column(Boolean, default=False, nullable=False)
    isActive = Column(Boolean, default=False, nullable=False, index=True)  # Has at least one active package
    firstInvestmentAt = Column(DateTime, nullable=True)

    # Wallet
    walletBalance = Money()
    totalInvestment = Money()

    # Lifetime earnings by category
    totalEarnings = Money()
    roiEarnings = Money()
    boosterEarnings = Money()
    directEarnings = Money()
    commissionEarnings = Money()
    roiOnRoiEarnings = Money()
    binaryEarnings = Money()
    rankEarnings = Money()

    # Volumes for rank qualification
    personalVolume = Money()
    teamVolume = Money()

    # Rank
    rank = Column(String, nullable=True, index=True)

    # Relationships
    sponsor = relationship('Account', remote_side=[accountID], backref='directReferrals')

    def __repr__(self):
        return f"<Account(accountID={self.accountID}, sponsor={self.sponsorID}, rank={self.rank})>"
