# mlm_engine/config/plans.py
"""
Compensation plan defaults: binary settings used when no settings row
exists, and the default 30-level override table used by package types
that do not define their own.
"""
from decimal import Decimal

BINARY_DEFAULTS = {
    "matchBonusPercentage": Decimal("10"),
    "maxDailyMatches": 100,
    "carryoverEnabled": True,
    "requireActiveLeft": True,
    "requireActiveRight": True,
    "minVolumePerLeg": Decimal("100"),
}

# Level 1 is the direct sponsor
DEFAULT_LEVEL_INCOME_PERCENTAGES = (
    ["10", "5", "3", "2", "1"]
    + ["0.5"] * 5
    + ["0.25"] * 10
    + ["0.1"] * 10
)

POSITIONS = ("left", "right")
