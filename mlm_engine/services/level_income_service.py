# mlm_engine/services/level_income_service.py
"""
Level income service - the 30-level override paid up the sponsor chain
on every purchase, plus direct income and ROI-on-ROI generation income
which reuse the same walk.
"""
from decimal import Decimal
from typing import Callable, Dict, Optional
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

import config
from models import Account, PackageType, RankTier, TransactionCategory
from mlm_engine.config.plans import DEFAULT_LEVEL_INCOME_PERCENTAGES
from mlm_engine.config.ranks import FALLBACK_LEVELS_UNLOCKED
from mlm_engine.errors import ValidationError, NotFoundError
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.services.ledger_service import LedgerService
from mlm_engine.services.volume_service import VolumeService
from mlm_engine.utils.money import toDecimal, percentOf, ZERO

logger = logging.getLogger(__name__)


class LevelIncomeService:
    """Service for distributing level-based commissions up the sponsor chain."""

    def __init__(self, session: Session):
        self.session = session
        self.ledger = LedgerService(session)
        self.volumeService = VolumeService(session)

    async def distributeLevelIncome(
            self,
            purchaserAccountId: int,
            investmentAmount,
            packageTypeId: int,
            packageId: Optional[int] = None
    ) -> Dict:
        """
        Pay each sponsor ancestor its level percentage of the investment.
        Ineligible levels are skipped, never redirected upward.
        """
        investmentAmount = toDecimal(investmentAmount)
        if investmentAmount <= 0:
            raise ValidationError("Investment amount must be positive", amount=str(investmentAmount))

        packageType = self.session.get(PackageType, packageTypeId)
        if not packageType:
            raise NotFoundError(f"Package type {packageTypeId} not found", packageTypeId=packageTypeId)

        percentageFor = packageType.levelPercentage
        if packageType.levelIncomePercentages is None:
            percentageFor = self._defaultLevelPercentage

        results = await self._walkUpline(
            sourceAccountId=purchaserAccountId,
            baseAmount=investmentAmount,
            maxLevels=config.MAX_LEVELS,
            percentageFor=percentageFor,
            category=TransactionCategory.LEVEL_INCOME,
            packageTypeId=packageTypeId,
            packageId=packageId
        )

        if results["paidLevels"]:
            await eventBus.emit(MLMEvents.LEVEL_INCOME_DISTRIBUTED, {
                "purchaserAccountId": purchaserAccountId,
                "packageId": packageId,
                "totalDistributed": results["totalDistributed"],
                "levels": len(results["paidLevels"])
            })

        return results

    async def distributeRoiOnRoi(
            self,
            accountId: int,
            roiAmount,
            packageId: Optional[int] = None
    ) -> Dict:
        """Generation income: uplines earn a share of a downline's ROI payout."""
        roiAmount = toDecimal(roiAmount)
        if roiAmount <= 0:
            raise ValidationError("ROI amount must be positive", amount=str(roiAmount))

        table = config.GENERATION_LEVEL_PERCENTAGES

        def percentageFor(level):
            if level < 1 or level > len(table):
                return ZERO
            return toDecimal(table[level - 1])

        return await self._walkUpline(
            sourceAccountId=accountId,
            baseAmount=roiAmount,
            maxLevels=min(len(table), config.MAX_LEVELS),
            percentageFor=percentageFor,
            category=TransactionCategory.ROI_ON_ROI,
            packageId=packageId,
            unlockBy="directs"
        )

    async def distributeDirectIncome(
            self,
            purchaserAccountId: int,
            investmentAmount,
            packageTypeId: Optional[int] = None,
            packageId: Optional[int] = None
    ) -> Dict:
        """Flat direct-sponsor income. Disabled while the percentage is zero."""
        percentage = toDecimal(config.DIRECT_INCOME_PERCENTAGE)
        if percentage <= 0:
            return {"success": True, "paid": False, "reason": "disabled", "amount": ZERO}

        purchaser = self.session.get(Account, purchaserAccountId)
        if not purchaser:
            raise NotFoundError(f"Account {purchaserAccountId} not found", accountId=purchaserAccountId)
        if purchaser.sponsorID is None:
            return {"success": True, "paid": False, "reason": "no_sponsor", "amount": ZERO}

        amount = percentOf(investmentAmount, percentage)
        if amount <= 0:
            return {"success": True, "paid": False, "reason": "zero_amount", "amount": ZERO}

        record = await self.ledger.postTransaction(
            purchaser.sponsorID,
            TransactionCategory.DIRECT_INCOME,
            amount,
            counterpartyId=purchaserAccountId,
            level=1,
            packageTypeId=packageTypeId,
            packageId=packageId,
            description=f"Direct income from account {purchaserAccountId}"
        )

        logger.info(f"Direct income {amount} paid to account {purchaser.sponsorID}")
        return {
            "success": True,
            "paid": True,
            "sponsorAccountId": purchaser.sponsorID,
            "amount": amount,
            "transactionId": record.transactionID
        }

    @staticmethod
    def _defaultLevelPercentage(level: int) -> Decimal:
        """Plan-wide table for package types without their own."""
        if level < 1 or level > len(DEFAULT_LEVEL_INCOME_PERCENTAGES):
            return ZERO
        return Decimal(DEFAULT_LEVEL_INCOME_PERCENTAGES[level - 1])

    async def getLevelsUnlocked(self, account: Account) -> int:
        """Override depth the account's rank unlocks."""
        return self._levelsUnlockedMap()(account)

    async def _walkUpline(
            self,
            sourceAccountId: int,
            baseAmount: Decimal,
            maxLevels: int,
            percentageFor: Callable[[int], Decimal],
            category: str,
            packageTypeId: Optional[int] = None,
            packageId: Optional[int] = None,
            unlockBy: str = "rank"
    ) -> Dict:
        """
        Pay each ancestor its level share. Depth is unlocked by rank, or by
        direct referral count (level N needs N directs) for generation income.
        """
        if not self.session.get(Account, sourceAccountId):
            raise NotFoundError(f"Account {sourceAccountId} not found", accountId=sourceAccountId)

        uplineIds = await self.volumeService.getUplineChain(sourceAccountId, maxLevels)
        accounts = {
            account.accountID: account
            for account in self.session.query(Account).filter(Account.accountID.in_(uplineIds)).all()
        } if uplineIds else {}
        if unlockBy == "directs":
            levelsUnlocked = self._directCountMap(uplineIds)
            lockedReason = "directs_locked"
        else:
            levelsUnlocked = self._levelsUnlockedMap()
            lockedReason = "rank_locked"

        results = {
            "success": True,
            "sourceAccountId": sourceAccountId,
            "category": category,
            "paidLevels": [],
            "skippedLevels": [],
            "failedLevels": [],
            "totalDistributed": ZERO
        }

        for level, ancestorId in enumerate(uplineIds, start=1):
            ancestor = accounts[ancestorId]

            percentage = percentageFor(level)
            if percentage <= 0:
                results["skippedLevels"].append(self._skip(level, ancestorId, "no_percentage"))
                continue

            reason = self._ineligibleReason(ancestor, level, levelsUnlocked, lockedReason)
            if reason:
                results["skippedLevels"].append(self._skip(level, ancestorId, reason))
                continue

            amount = percentOf(baseAmount, percentage)
            if amount <= 0:
                results["skippedLevels"].append(self._skip(level, ancestorId, "zero_amount"))
                continue

            try:
                with eventBus.holding() as held, self.session.begin_nested():
                    record = await self.ledger.postTransaction(
                        ancestorId,
                        category,
                        amount,
                        counterpartyId=sourceAccountId,
                        level=level,
                        packageTypeId=packageTypeId,
                        packageId=packageId,
                        description=f"Level {level} {category} from account {sourceAccountId}"
                    )
            except Exception as e:
                logger.error(f"Level {level} {category} for account {ancestorId} failed: {e}")
                results["failedLevels"].append({
                    "level": level,
                    "accountId": ancestorId,
                    "amount": amount,
                    "error": str(e)
                })
                continue
            await eventBus.release(held)

            results["paidLevels"].append({
                "level": level,
                "accountId": ancestorId,
                "percentage": percentage,
                "amount": amount,
                "transactionId": record.transactionID
            })
            results["totalDistributed"] += amount

        logger.info(
            f"{category} for account {sourceAccountId}: paid {len(results['paidLevels'])} levels, "
            f"skipped {len(results['skippedLevels'])}, failed {len(results['failedLevels'])}, "
            f"total {results['totalDistributed']}"
        )
        return results

    def _ineligibleReason(self, ancestor: Account, level: int, levelsUnlocked,
                          lockedReason: str = "rank_locked") -> Optional[str]:
        if ancestor.status != "active":
            return "deactivated"
        if config.LEVEL_INCOME_REQUIRE_ACTIVE and not ancestor.isActive:
            return "inactive"
        if levelsUnlocked(ancestor) < level:
            return lockedReason
        return None

    def _levelsUnlockedMap(self):
        tiers = self.session.query(RankTier).filter(
            RankTier.isActive == True
        ).order_by(RankTier.orderIndex).all()

        byName = {tier.rankName: tier.levelsUnlocked for tier in tiers}
        default = tiers[0].levelsUnlocked if tiers else FALLBACK_LEVELS_UNLOCKED

        def levelsFor(account: Account) -> int:
            return byName.get(account.rank, default)

        return levelsFor

    def _directCountMap(self, accountIds):
        counts = dict(self.session.query(
            Account.sponsorID, func.count(Account.accountID)
        ).filter(
            Account.sponsorID.in_(accountIds)
        ).group_by(Account.sponsorID).all()) if accountIds else {}

        def levelsFor(account: Account) -> int:
            return counts.get(account.accountID, 0)

        return levelsFor

    @staticmethod
    def _skip(level: int, accountId: int, reason: str) -> Dict:
        return {"level": level, "accountId": accountId, "reason": reason}
