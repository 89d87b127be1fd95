# models/rank.py
"""
RankTier reference table and the immutable RankAchievement history.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from models.base import Base, AuditMixin, Money


class RankTier(Base, AuditMixin):
    __tablename__ = 'rank_tiers'

    rankTierID = Column(Integer, primary_key=True, autoincrement=True)
    rankName = Column(String, unique=True, nullable=False)
    orderIndex = Column(Integer, unique=True, nullable=False)

    rewardAmount = Money()

    # Qualification thresholds
    minDirectReferrals = Column(Integer, default=0, nullable=False)
    minActiveDirects = Column(Integer, default=0, nullable=False)
    minTeamVolume = Money()
    minPersonalVolume = Money()

    # Level income depth this rank unlocks
    levelsUnlocked = Column(Integer, default=1, nullable=False)

    isActive = Column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<RankTier(rank={self.rankName}, order={self.orderIndex})>"


class RankAchievement(Base):
    __tablename__ = 'rank_achievements'

    achievementID = Column(Integer, primary_key=True, autoincrement=True)
    createdAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    accountID = Column(Integer, ForeignKey('accounts.accountID'), nullable=False)
    rankTierID = Column(Integer, ForeignKey('rank_tiers.rankTierID'), nullable=False)
    rankName = Column(String, nullable=False)
    rewardAmount = Money()
    distributedBy = Column(String, nullable=False, default="system")
    transactionID = Column(Integer, ForeignKey('transactions.transactionID'), nullable=True)

    __table_args__ = (
        UniqueConstraint('accountID', 'rankTierID', name='uq_rank_achievements_account_tier'),
    )

    # Relationships
    account = relationship('Account', backref='rankAchievements')
    rankTier = relationship('RankTier')

    def __repr__(self):
        return f"<RankAchievement(account={self.accountID}, rank={self.rankName}, date={self.createdAt})>"
