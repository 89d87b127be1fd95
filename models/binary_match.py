# models/binary_match.py
"""
BinarySettings singleton and the BinaryMatch history of paid matches.
"""
from sqlalchemy import Column, Integer, Boolean, Date, DECIMAL, ForeignKey
from sqlalchemy.orm import relationship
from models.base import Base, AuditMixin, Money


class BinarySettings(Base, AuditMixin):
    __tablename__ = 'binary_settings'

    settingsID = Column(Integer, primary_key=True, autoincrement=True)
    matchBonusPercentage = Column(DECIMAL(9, 4), nullable=False)  # 10.0000 = 10% of matched volume
    maxDailyMatches = Column(Integer, nullable=False)
    carryoverEnabled = Column(Boolean, nullable=False)
    requireActiveLeft = Column(Boolean, nullable=False)
    requireActiveRight = Column(Boolean, nullable=False)
    minVolumePerLeg = Money()

    def __repr__(self):
        return (f"<BinarySettings(bonus={self.matchBonusPercentage}%, "
                f"maxDaily={self.maxDailyMatches}, carryover={self.carryoverEnabled})>")


class BinaryMatch(Base, AuditMixin):
    __tablename__ = 'binary_matches'

    matchID = Column(Integer, primary_key=True, autoincrement=True)
    nodeID = Column(Integer, ForeignKey('binary_nodes.nodeID'), nullable=False)
    accountID = Column(Integer, ForeignKey('accounts.accountID'), nullable=False)
    matchDate = Column(Date, nullable=False)

    matchedVolume = Money()
    leftVolumeBefore = Money()
    rightVolumeBefore = Money()
    leftCarryAfter = Money()
    rightCarryAfter = Money()
    flushedVolume = Money()  # Stronger leg excess dropped when carryover is off
    bonusAmount = Money()

    transactionID = Column(Integer, ForeignKey('transactions.transactionID'), nullable=True)

    # Relationships
    node = relationship('BinaryNode', backref='matches')

    def __repr__(self):
        return f"<BinaryMatch(node={self.nodeID}, matched={self.matchedVolume}, bonus={self.bonusAmount})>"
