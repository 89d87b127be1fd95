# mlm_engine/services/booster_service.py
"""
Booster service - countdown window opened on an account's first
investment; recruiting enough active directs inside it unlocks extra ROI.
"""
from datetime import timedelta
from decimal import Decimal
from typing import Optional
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

import config
from models import Account, Booster, Package
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.utils.time_machine import timeMachine
from mlm_engine.utils.money import ZERO

logger = logging.getLogger(__name__)


class BoosterService:
    """Service for booster windows and the bonus ROI they unlock."""

    def __init__(self, session: Session):
        self.session = session

    async def initializeBooster(self, accountId: int) -> Optional[Booster]:
        """Open the countdown window. No-op if the account already has one."""
        if not config.BOOSTER_ENABLED:
            return None

        existing = self.session.query(Booster).filter(
            Booster.accountID == accountId,
            Booster.status.in_(["active", "achieved"])
        ).first()
        if existing:
            return existing

        now = timeMachine.now
        booster = Booster(
            accountID=accountId,
            startedAt=now,
            endsAt=now + timedelta(days=config.BOOSTER_COUNTDOWN_DAYS),
            directCount=0,
            targetDirects=config.BOOSTER_REQUIRED_DIRECTS,
            bonusRoiPercentage=config.BOOSTER_BONUS_ROI_PERCENTAGE,
            status="active"
        )
        self.session.add(booster)
        self.session.flush()

        logger.info(
            f"Booster started for account {accountId}: "
            f"{booster.targetDirects} directs by {booster.endsAt}"
        )
        return booster

    async def updateDirectCount(self, sponsorId: int) -> Optional[Booster]:
        """Recount the sponsor's directs holding an active package."""
        booster = self.session.query(Booster).filter(
            Booster.accountID == sponsorId,
            Booster.status == "active"
        ).first()
        if not booster:
            return None

        if timeMachine.now > booster.endsAt:
            booster.status = "expired"
            logger.info(f"Booster {booster.boosterID} of account {sponsorId} expired")
            return booster

        booster.directCount = self.session.query(
            func.count(func.distinct(Account.accountID))
        ).join(
            Package, Package.accountID == Account.accountID
        ).filter(
            Account.sponsorID == sponsorId,
            Package.status == "active",
            Package.activatedAt >= booster.startedAt
        ).scalar() or 0

        if booster.directCount >= booster.targetDirects:
            booster.status = "achieved"
            logger.info(f"Booster achieved by account {sponsorId} ({booster.directCount} directs)")
            await eventBus.emit(MLMEvents.BOOSTER_ACHIEVED, {
                "accountId": sponsorId,
                "boosterId": booster.boosterID,
                "bonusRoiPercentage": booster.bonusRoiPercentage
            })

        self.session.flush()
        return booster

    async def expireBoosters(self) -> int:
        """Close active windows whose deadline passed."""
        expired = self.session.query(Booster).filter(
            Booster.status == "active",
            Booster.endsAt < timeMachine.now
        ).update({Booster.status: "expired"}, synchronize_session="fetch")

        if expired:
            logger.info(f"Expired {expired} boosters")
        return expired

    async def getActiveBonusPercentage(self, accountId: int) -> Decimal:
        """Extra ROI percentage while an achieved booster window is still open."""
        if not config.BOOSTER_ENABLED:
            return ZERO

        booster = self.session.query(Booster).filter(
            Booster.accountID == accountId,
            Booster.status == "achieved",
            Booster.endsAt > timeMachine.now
        ).first()
        if not booster:
            return ZERO
        return Decimal(str(booster.bonusRoiPercentage))
