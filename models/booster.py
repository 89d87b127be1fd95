# models/booster.py
"""
Booster model - countdown window in which recruiting enough active
directs unlocks an extra ROI percentage.
"""
from sqlalchemy import Column, Integer, String, DateTime, DECIMAL, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin


class Booster(Base, AuditMixin):
    __tablename__ = 'boosters'

    boosterID = Column(Integer, primary_key=True, autoincrement=True)
    accountID = Column(Integer, ForeignKey('accounts.accountID'), nullable=False, index=True)

    startedAt = Column(DateTime, nullable=False)
    endsAt = Column(DateTime, nullable=False)
    directCount = Column(Integer, default=0, nullable=False)
    targetDirects = Column(Integer, nullable=False)
    bonusRoiPercentage = Column(DECIMAL(9, 4), nullable=False)  # % of base daily ROI

    status = Column(String, default="active", nullable=False)  # active, achieved, expired

    # Relationships
    account = relationship('Account', backref='boosters')

    def __repr__(self):
        return f"<Booster(account={self.accountID}, {self.directCount}/{self.targetDirects}, status={self.status})>"
