# models/__init__.py
"""
Database models for the compensation engine.
Import all models here for easy access.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Core models
from models.account import Account
from models.transaction import TransactionRecord, TransactionCategory, TransactionStatus
from models.package import PackageType, Package, RoiPayout

# MLM models
from models.binary_node import BinaryNode
from models.binary_match import BinarySettings, BinaryMatch
from models.rank import RankTier, RankAchievement
from models.booster import Booster

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Core
    'Account',
    'TransactionRecord',
    'TransactionCategory',
    'TransactionStatus',
    'PackageType',
    'Package',
    'RoiPayout',

    # MLM
    'BinaryNode',
    'BinarySettings',
    'BinaryMatch',
    'RankTier',
    'RankAchievement',
    'Booster',
]
