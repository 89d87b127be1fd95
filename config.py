import os
import logging
from decimal import Decimal
from dotenv import load_dotenv

# Загрузка .env
load_dotenv()


def _getBool(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _getDecimalList(name, default):
    value = os.getenv(name)
    if not value:
        return list(default)
    return [Decimal(part.strip()) for part in value.split(",") if part.strip()]


# База данных
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///mlm_engine.db")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv(
    "LOG_FORMAT",
    "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Tree
DEFAULT_TREE_EXPORT_DEPTH = int(os.getenv("DEFAULT_TREE_EXPORT_DEPTH", "5"))
MAX_TREE_EXPORT_DEPTH = int(os.getenv("MAX_TREE_EXPORT_DEPTH", "10"))

# Level income
MAX_LEVELS = int(os.getenv("MAX_LEVELS", "30"))
# Hard stop for sponsor-chain walks without a level limit
MAX_UPLINE_DEPTH = int(os.getenv("MAX_UPLINE_DEPTH", "1000"))
LEVEL_INCOME_REQUIRE_ACTIVE = _getBool("LEVEL_INCOME_REQUIRE_ACTIVE", False)
DIRECT_INCOME_PERCENTAGE = Decimal(os.getenv("DIRECT_INCOME_PERCENTAGE", "0"))

# ROI-on-ROI (generation plan)
GENERATION_PLAN_ENABLED = _getBool("GENERATION_PLAN_ENABLED", False)
GENERATION_LEVEL_PERCENTAGES = _getDecimalList(
    "GENERATION_LEVEL_PERCENTAGES",
    [Decimal(p) for p in ("12", "10", "8", "5", "4", "4", "3", "3", "2", "2",
                          "3", "3", "4", "4", "8")]
)

# Booster
BOOSTER_ENABLED = _getBool("BOOSTER_ENABLED", True)
BOOSTER_COUNTDOWN_DAYS = int(os.getenv("BOOSTER_COUNTDOWN_DAYS", "30"))
BOOSTER_REQUIRED_DIRECTS = int(os.getenv("BOOSTER_REQUIRED_DIRECTS", "2"))
BOOSTER_BONUS_ROI_PERCENTAGE = Decimal(os.getenv("BOOSTER_BONUS_ROI_PERCENTAGE", "10"))

# Notifications
LARGE_PAYOUT_THRESHOLD = Decimal(os.getenv("LARGE_PAYOUT_THRESHOLD", "1000"))


def setup_logging(level=None):
    """Configure root logging for scripts and schedulers."""
    logging.basicConfig(level=level or LOG_LEVEL, format=LOG_FORMAT)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
