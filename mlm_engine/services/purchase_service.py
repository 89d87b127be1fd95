# mlm_engine/services/purchase_service.py
"""
Package purchase - the inbound entry point of the engine.

The wallet debit, its ledger record and the Package row are committed as
one unit. Commissions and volumes then run as an ordered list of
post-purchase handlers; each is isolated, so a failing handler is reported
without undoing the purchase or the handlers before it.
"""
from datetime import timedelta
from decimal import Decimal
from typing import Dict
from sqlalchemy.orm import Session
import logging

import config
from models import Account, BinaryNode, Package, PackageType, TransactionCategory
from mlm_engine.errors import ValidationError, NotFoundError, InsufficientFundsError
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.services.booster_service import BoosterService
from mlm_engine.services.ledger_service import LedgerService
from mlm_engine.services.level_income_service import LevelIncomeService
from mlm_engine.services.matching_service import MatchingService
from mlm_engine.services.rank_service import RankService
from mlm_engine.services.volume_service import VolumeService
from mlm_engine.utils.money import toDecimal, quantize, percentOf
from mlm_engine.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class PurchaseService:
    """Service for selling packages and running the purchase pipeline."""

    def __init__(self, session: Session):
        self.session = session
        self.ledger = LedgerService(session)
        self.volumeService = VolumeService(session)
        self.levelIncomeService = LevelIncomeService(session)
        self.matchingService = MatchingService(session)
        self.boosterService = BoosterService(session)
        self.rankService = RankService(session)

    async def purchasePackage(self, accountId: int, packageTypeId: int, amount) -> Dict:
        """
        Buy a package from the wallet balance.
        Validation errors are raised before anything is written.
        """
        amount = toDecimal(amount)
        account, packageType = await self._validate(accountId, packageTypeId, amount)
        isFirstInvestment = account.firstInvestmentAt is None
        now = timeMachine.now

        with self.session.begin_nested():
            package = Package(
                accountID=accountId,
                packageTypeID=packageTypeId,
                principalAmount=amount,
                dailyRoiAmount=percentOf(amount, packageType.dailyRoiPercentage),
                roiCap=quantize(amount * toDecimal(packageType.roiCapMultiplier)),
                roiEarned=Decimal("0"),
                activatedAt=now,
                expiresAt=now + timedelta(days=packageType.durationDays),
                status="active"
            )
            self.session.add(package)
            self.session.flush()

            await self.ledger.debit(
                accountId,
                amount,
                TransactionCategory.PACKAGE_PURCHASE,
                packageTypeID=packageTypeId,
                packageID=package.packageID,
                description=f"Package purchase: {packageType.name}"
            )

            account.isActive = True
            account.totalInvestment = (account.totalInvestment or Decimal("0")) + amount
            if isFirstInvestment:
                account.firstInvestmentAt = now
            self.session.flush()

        self.session.commit()
        logger.info(f"Account {accountId} bought package {package.packageID} ({packageType.name}) for {amount}")

        results = {
            "success": True,
            "package": package.packageID,
            "handlers": {},
            "failedHandlers": []
        }

        sponsorId = account.sponsorID
        handlers = [
            ("volumes", lambda: self.volumeService.updatePurchaseVolumes(accountId, amount)),
            ("directIncome", lambda: self.levelIncomeService.distributeDirectIncome(
                accountId, amount, packageTypeId, package.packageID)),
            ("levelIncome", lambda: self.levelIncomeService.distributeLevelIncome(
                accountId, amount, packageTypeId, package.packageID)),
            ("binary", lambda: self._binaryHandler(accountId, amount)),
            ("booster", lambda: self._boosterHandler(accountId, sponsorId, isFirstInvestment)),
            ("rank", lambda: self._rankHandler(accountId, results["handlers"])),
        ]

        for name, handler in handlers:
            try:
                with eventBus.holding() as held, self.session.begin_nested():
                    results["handlers"][name] = await handler()
                self.session.commit()
            except Exception as e:
                logger.error(f"Post-purchase handler {name} failed for package {package.packageID}: {e}")
                results["failedHandlers"].append({"handler": name, "error": str(e)})
                continue
            await eventBus.release(held)

        await eventBus.emit(MLMEvents.PURCHASE_COMPLETED, {
            "accountId": accountId,
            "packageId": package.packageID,
            "amount": amount,
            "failedHandlers": [failure["handler"] for failure in results["failedHandlers"]]
        })

        return results

    async def _validate(self, accountId: int, packageTypeId: int, amount: Decimal):
        if amount <= 0:
            raise ValidationError("Purchase amount must be positive", amount=str(amount))

        account = self.session.get(Account, accountId)
        if not account:
            raise NotFoundError(f"Account {accountId} not found", accountId=accountId)
        if account.status != "active":
            raise ValidationError(f"Account {accountId} is {account.status}", accountId=accountId)

        packageType = self.session.get(PackageType, packageTypeId)
        if not packageType:
            raise NotFoundError(f"Package type {packageTypeId} not found", packageTypeId=packageTypeId)
        if not packageType.isActive:
            raise ValidationError(f"Package type {packageType.name} is not on sale", packageTypeId=packageTypeId)

        minimum = toDecimal(packageType.minInvestment or 0)
        maximum = toDecimal(packageType.maxInvestment or 0)
        if amount < minimum or (maximum > 0 and amount > maximum):
            raise ValidationError(
                f"Amount {amount} is outside {packageType.name} bounds {minimum}-{maximum}",
                amount=str(amount),
                minInvestment=str(minimum),
                maxInvestment=str(maximum)
            )

        if toDecimal(account.walletBalance or 0) < amount:
            raise InsufficientFundsError(
                f"Account {accountId} balance {account.walletBalance} is below {amount}",
                accountId=accountId,
                balance=str(account.walletBalance),
                required=str(amount)
            )

        return account, packageType

    async def _binaryHandler(self, accountId: int, amount: Decimal) -> Dict:
        if not self.session.query(BinaryNode.nodeID).filter_by(accountID=accountId).first():
            return {"success": True, "skipped": True, "reason": "not_placed"}
        return await self.matchingService.updateBinaryVolume(accountId, amount)

    async def _boosterHandler(self, accountId: int, sponsorId, isFirstInvestment: bool) -> Dict:
        result = {"started": False, "sponsorBooster": None}
        if isFirstInvestment:
            booster = await self.boosterService.initializeBooster(accountId)
            result["started"] = booster is not None
        if sponsorId is not None:
            sponsorBooster = await self.boosterService.updateDirectCount(sponsorId)
            if sponsorBooster:
                result["sponsorBooster"] = sponsorBooster.status
        return result

    async def _rankHandler(self, accountId: int, handlerResults: Dict) -> Dict:
        """Re-check every account whose volume or earnings the purchase moved."""
        candidateIds = [accountId]
        candidateIds += await self.volumeService.getUplineChain(accountId, maxLevels=config.MAX_LEVELS)
        for match in handlerResults.get("binary", {}).get("matches", []):
            candidateIds.append(match["accountId"])

        result = {"checked": [], "promoted": [], "failed": []}
        for candidateId in dict.fromkeys(candidateIds):
            try:
                with eventBus.holding() as held, self.session.begin_nested():
                    advancement = await self.rankService.checkRankAdvancement(candidateId)
            except Exception as e:
                logger.error(f"Rank check for account {candidateId} failed: {e}")
                result["failed"].append({"accountId": candidateId, "error": str(e)})
                continue
            await eventBus.release(held)

            result["checked"].append(candidateId)
            if advancement["promoted"]:
                result["promoted"].append({
                    "accountId": candidateId,
                    "previousRank": advancement["previousRank"],
                    "newRank": advancement["newRank"]
                })
        return result
