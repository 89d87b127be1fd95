# mlm_engine/__init__.py
"""
MLM Engine - compensation plan computation: binary tree, daily ROI,
level income, binary matching and ranks.
"""

# Services
from mlm_engine.services.ledger_service import LedgerService
from mlm_engine.services.tree_service import TreeService
from mlm_engine.services.roi_service import RoiService
from mlm_engine.services.level_income_service import LevelIncomeService
from mlm_engine.services.matching_service import MatchingService
from mlm_engine.services.rank_service import RankService
from mlm_engine.services.volume_service import VolumeService
from mlm_engine.services.booster_service import BoosterService
from mlm_engine.services.purchase_service import PurchaseService
from mlm_engine.services.account_service import AccountService
from mlm_engine.services.placement import PlacementStrategy, BreadthFirstPlacement, OuterLegPlacement

# Models and configuration
from mlm_engine.config.ranks import Rank, RANK_CONFIG
from mlm_engine.config.plans import BINARY_DEFAULTS, DEFAULT_LEVEL_INCOME_PERCENTAGES

# Errors
from mlm_engine.errors import (
    EngineError,
    ValidationError,
    DuplicateNodeError,
    NotFoundError,
    ParentNotFoundError,
    CapacityError,
    PositionOccupiedError,
    DailyMatchLimitError,
    InsufficientFundsError,
    ReconciliationError,
)

# Utilities
from mlm_engine.utils.time_machine import timeMachine

# Events
from mlm_engine.events.event_bus import eventBus, MLMEvents

__all__ = [
    # Services
    'LedgerService',
    'TreeService',
    'RoiService',
    'LevelIncomeService',
    'MatchingService',
    'RankService',
    'VolumeService',
    'BoosterService',
    'PurchaseService',
    'AccountService',
    'PlacementStrategy',
    'BreadthFirstPlacement',
    'OuterLegPlacement',

    # Config
    'Rank',
    'RANK_CONFIG',
    'BINARY_DEFAULTS',
    'DEFAULT_LEVEL_INCOME_PERCENTAGES',

    # Errors
    'EngineError',
    'ValidationError',
    'DuplicateNodeError',
    'NotFoundError',
    'ParentNotFoundError',
    'CapacityError',
    'PositionOccupiedError',
    'DailyMatchLimitError',
    'InsufficientFundsError',
    'ReconciliationError',

    # Utils
    'timeMachine',

    # Events
    'eventBus',
    'MLMEvents',
]
