# mlm_engine/services/roi_service.py
"""
Daily ROI distribution - the scheduled batch job.

Every active package is paid once per calendar day, in its own savepoint,
and committed on its own: one failing package never blocks the rest, and a
second run on the same day pays nothing.
"""
from datetime import datetime, date, time
from decimal import Decimal
from typing import Dict, Optional
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

import config
from models import Account, Package, RoiPayout, TransactionCategory
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.services.booster_service import BoosterService
from mlm_engine.services.ledger_service import LedgerService
from mlm_engine.services.level_income_service import LevelIncomeService
from mlm_engine.utils.money import toDecimal, quantize, percentOf, ZERO
from mlm_engine.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class RoiService:
    """Service for the daily ROI run."""

    def __init__(self, session: Session):
        self.session = session
        self.ledger = LedgerService(session)
        self.boosterService = BoosterService(session)
        self.levelIncomeService = LevelIncomeService(session)

    async def runDailyDistribution(self, runDate: Optional[date] = None) -> Dict:
        """
        Pay one day of ROI on every active package.
        A back-dated run evaluates expiry at the end of runDate.
        """
        today = timeMachine.today
        runDate = runDate or today
        asOf = timeMachine.now if runDate == today else datetime.combine(runDate, time.max)

        logger.info(f"Starting ROI distribution for {runDate}")

        expiredBoosters = await self.boosterService.expireBoosters()
        if expiredBoosters:
            self.session.commit()

        summary = {
            "runDate": runDate,
            "processed": 0,
            "totalAmount": ZERO,
            "completed": 0,
            "expired": 0,
            "skipped": 0,
            "failed": 0,
            "boosterAmount": ZERO,
            "roiOnRoiAmount": ZERO,
            "failures": []
        }

        packageIds = [
            packageId for (packageId,) in self.session.query(Package.packageID).filter(
                Package.status == "active"
            ).order_by(Package.packageID).all()
        ]

        for packageId in packageIds:
            try:
                with eventBus.holding() as held, self.session.begin_nested():
                    outcome = await self._distributePackage(packageId, runDate, asOf)
            except Exception as e:
                logger.error(f"ROI distribution failed for package {packageId}: {e}")
                summary["failed"] += 1
                summary["failures"].append({"packageId": packageId, "error": str(e)})
                continue

            status = outcome["status"]
            if status == "paid":
                summary["processed"] += 1
                summary["totalAmount"] += outcome["amount"]
                summary["boosterAmount"] += outcome["boosterAmount"]
                if outcome["packageCompleted"]:
                    summary["completed"] += 1
            elif status == "completed":
                summary["completed"] += 1
                # Completed by end date rather than by cap
                if outcome.get("reason") == "expired":
                    summary["expired"] += 1
            else:
                summary["skipped"] += 1

            if status == "paid" and config.GENERATION_PLAN_ENABLED:
                summary["roiOnRoiAmount"] += await self._payRoiOnRoi(outcome)

            self.session.commit()
            await eventBus.release(held)

        logger.info(
            f"ROI distribution for {runDate} finished: processed={summary['processed']}, "
            f"total={summary['totalAmount']}, completed={summary['completed']}, "
            f"expired={summary['expired']}, skipped={summary['skipped']}, failed={summary['failed']}"
        )

        await eventBus.emit(MLMEvents.ROI_DISTRIBUTED, {
            "runDate": runDate,
            "processed": summary["processed"],
            "totalAmount": summary["totalAmount"],
            "failed": summary["failed"]
        })

        return summary

    async def _distributePackage(self, packageId: int, runDate: date, asOf: datetime) -> Dict:
        package = self.session.query(Package).filter(
            Package.packageID == packageId
        ).with_for_update().first()

        outcome = {
            "packageId": packageId,
            "accountId": package.accountID,
            "status": "skipped",
            "amount": ZERO,
            "boosterAmount": ZERO,
            "packageCompleted": False
        }

        if package.status != "active":
            outcome["reason"] = "inactive"
            return outcome

        if package.lastDistributedOn is not None and package.lastDistributedOn >= runDate:
            outcome["reason"] = "already_distributed"
            return outcome

        if package.activatedAt.date() > runDate:
            outcome["reason"] = "not_started"
            return outcome

        if asOf >= package.expiresAt:
            package.status = "completed"
            await self._retireOwnerIfIdle(package.accountID)
            logger.info(f"Package {packageId} reached its end date on {runDate}, marked completed")
            outcome["status"] = "completed"
            outcome["reason"] = "expired"
            return outcome

        remaining = toDecimal(package.remainingCap)
        payout = quantize(min(toDecimal(package.dailyRoiAmount), remaining))

        if payout <= 0:
            package.status = "completed"
            await self._retireOwnerIfIdle(package.accountID)
            logger.info(f"Package {packageId} already at its ROI cap, marked completed")
            outcome["status"] = "completed"
            return outcome

        record = await self.ledger.postTransaction(
            package.accountID,
            TransactionCategory.ROI_DISTRIBUTION,
            payout,
            packageTypeId=package.packageTypeID,
            packageId=packageId,
            description=f"Daily ROI {runDate} - package {packageId}"
        )

        boosterAmount = ZERO
        bonusPercentage = await self.boosterService.getActiveBonusPercentage(package.accountID)
        if bonusPercentage > 0:
            boosterAmount = min(percentOf(payout, bonusPercentage), remaining - payout)
            if boosterAmount > 0:
                await self.ledger.postTransaction(
                    package.accountID,
                    TransactionCategory.BOOSTER_INCOME,
                    boosterAmount,
                    packageTypeId=package.packageTypeID,
                    packageId=packageId,
                    description=f"Booster ROI {runDate} - package {packageId}"
                )
            else:
                boosterAmount = ZERO

        earned = payout + boosterAmount
        self.session.query(Package).filter(Package.packageID == packageId).update({
            Package.roiEarned: Package.roiEarned + earned,
            Package.lastDistributedOn: runDate
        }, synchronize_session="evaluate")

        self.session.add(RoiPayout(
            packageID=packageId,
            distributionDate=runDate,
            amount=payout,
            boosterAmount=boosterAmount,
            transactionID=record.transactionID,
            createdAt=timeMachine.now
        ))
        self.session.flush()

        if toDecimal(package.roiEarned) >= toDecimal(package.roiCap):
            package.status = "completed"
            outcome["packageCompleted"] = True
            await self._retireOwnerIfIdle(package.accountID)
            logger.info(f"Package {packageId} reached its ROI cap {package.roiCap}")

        outcome.update({"status": "paid", "amount": payout, "boosterAmount": boosterAmount})
        return outcome

    async def _payRoiOnRoi(self, outcome: Dict) -> Decimal:
        amount = outcome["amount"] + outcome["boosterAmount"]
        try:
            result = await self.levelIncomeService.distributeRoiOnRoi(
                outcome["accountId"], amount, packageId=outcome["packageId"]
            )
        except Exception as e:
            logger.error(f"ROI-on-ROI for package {outcome['packageId']} failed: {e}")
            return ZERO
        return result["totalDistributed"]

    async def _retireOwnerIfIdle(self, accountId: int):
        self.session.flush()
        activeCount = self.session.query(func.count(Package.packageID)).filter(
            Package.accountID == accountId,
            Package.status == "active"
        ).scalar()

        if not activeCount:
            self.session.query(Account).filter(Account.accountID == accountId).update(
                {Account.isActive: False}, synchronize_session="evaluate"
            )
            logger.info(f"Account {accountId} has no active packages left, marked inactive")

    async def getPackageHistory(self, packageId: int):
        """Daily payouts of a package, oldest first."""
        return self.session.query(RoiPayout).filter(
            RoiPayout.packageID == packageId
        ).order_by(RoiPayout.distributionDate).all()
