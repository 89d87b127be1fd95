# mlm_engine/config/ranks.py
"""
Default rank ladder, loaded into the rank_tiers table by
RankService.seedRankTiers(). Admins manage the table afterwards.
"""
from enum import Enum
from decimal import Decimal


class Rank(Enum):
    STARTER = "starter"
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


RANK_CONFIG = {
    Rank.STARTER: {
        "orderIndex": 1,
        "rewardAmount": Decimal("0"),
        "minDirectReferrals": 0,
        "minActiveDirects": 0,
        "minTeamVolume": Decimal("0"),
        "minPersonalVolume": Decimal("0"),
        "levelsUnlocked": 5,
    },
    Rank.BRONZE: {
        "orderIndex": 2,
        "rewardAmount": Decimal("500"),
        "minDirectReferrals": 3,
        "minActiveDirects": 2,
        "minTeamVolume": Decimal("10000"),
        "minPersonalVolume": Decimal("500"),
        "levelsUnlocked": 10,
    },
    Rank.SILVER: {
        "orderIndex": 3,
        "rewardAmount": Decimal("2500"),
        "minDirectReferrals": 5,
        "minActiveDirects": 4,
        "minTeamVolume": Decimal("50000"),
        "minPersonalVolume": Decimal("1000"),
        "levelsUnlocked": 15,
    },
    Rank.GOLD: {
        "orderIndex": 4,
        "rewardAmount": Decimal("10000"),
        "minDirectReferrals": 8,
        "minActiveDirects": 6,
        "minTeamVolume": Decimal("150000"),
        "minPersonalVolume": Decimal("2500"),
        "levelsUnlocked": 20,
    },
    Rank.PLATINUM: {
        "orderIndex": 5,
        "rewardAmount": Decimal("50000"),
        "minDirectReferrals": 12,
        "minActiveDirects": 10,
        "minTeamVolume": Decimal("500000"),
        "minPersonalVolume": Decimal("5000"),
        "levelsUnlocked": 30,
    },
}

# Depth unlocked for accounts when the rank table is empty
FALLBACK_LEVELS_UNLOCKED = 1
