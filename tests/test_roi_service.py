"""
Tests for the daily ROI run: cap, idempotency, expiry, boosters and failure isolation.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

import config
from models import Booster, Package, PackageType, RoiPayout, TransactionCategory, TransactionRecord
from mlm_engine.services.ledger_service import LedgerService
from mlm_engine.services.purchase_service import PurchaseService
from mlm_engine.services.roi_service import RoiService


async def buy(session, account, packageType, amount):
    result = await PurchaseService(session).purchasePackage(
        account.accountID, packageType.packageTypeID, Decimal(amount)
    )
    return session.get(Package, result["package"])


class TestRoiCap:
    """Lifetime ROI never exceeds the cap."""

    @pytest.mark.asyncio
    async def test_package_completes_exactly_at_cap(self, session, enroll, packageType, clock):
        owner = await enroll("owner@example.com", balance="500")
        package = await buy(session, owner, packageType, "500")
        service = RoiService(session)

        assert package.dailyRoiAmount == Decimal("5")
        assert package.roiCap == Decimal("1000")

        for day in range(1, 201):
            summary = await service.runDailyDistribution()
            assert summary["processed"] == 1
            if day < 200:
                assert package.status == "active"
            clock.advanceTime(days=1)

        assert summary["completed"] == 1
        assert package.status == "completed"
        assert package.roiEarned == Decimal("1000")

        summary = await service.runDailyDistribution()
        assert summary["processed"] == 0
        assert package.roiEarned == Decimal("1000")
        assert owner.walletBalance == Decimal("1000")
        assert owner.roiEarnings == Decimal("1000")
        assert session.query(RoiPayout).filter_by(packageID=package.packageID).count() == 200
        assert owner.isActive is False

    @pytest.mark.asyncio
    async def test_last_payout_is_clipped(self, session, enroll, packageType):
        owner = await enroll("owner@example.com", balance="500")
        package = await buy(session, owner, packageType, "500")
        package.roiEarned = Decimal("997.50")
        session.commit()

        summary = await RoiService(session).runDailyDistribution()

        assert summary["totalAmount"] == Decimal("2.50")
        assert package.roiEarned == Decimal("1000")
        assert package.status == "completed"


class TestIdempotency:
    """A second run on the same day pays nothing."""

    @pytest.mark.asyncio
    async def test_same_day_rerun(self, session, enroll, packageType):
        owner = await enroll("owner@example.com", balance="1000")
        package = await buy(session, owner, packageType, "1000")
        service = RoiService(session)

        first = await service.runDailyDistribution()
        second = await service.runDailyDistribution()

        assert first["processed"] == 1
        assert first["totalAmount"] == Decimal("10")
        assert second["processed"] == 0
        assert second["skipped"] == 1
        assert package.roiEarned == Decimal("10")
        assert session.query(RoiPayout).count() == 1

        history = await service.getPackageHistory(package.packageID)
        assert [payout.amount for payout in history] == [Decimal("10")]

    @pytest.mark.asyncio
    async def test_unique_payout_row_is_a_backstop(self, session, enroll, packageType, clock):
        first = await enroll("first@example.com", balance="1000")
        second = await enroll("second@example.com", sponsor=first, balance="1000")
        blocked = await buy(session, first, packageType, "1000")
        healthy = await buy(session, second, packageType, "1000")

        # Payout row present while the marker is missing
        session.add(RoiPayout(packageID=blocked.packageID, distributionDate=clock.today, amount=Decimal("10")))
        session.commit()

        summary = await RoiService(session).runDailyDistribution()

        assert summary["failed"] == 1
        assert summary["failures"][0]["packageId"] == blocked.packageID
        assert summary["processed"] == 1
        assert blocked.roiEarned == Decimal("0")
        assert healthy.roiEarned == Decimal("10")
        assert first.walletBalance == Decimal("100")  # level income from second
        assert second.walletBalance == Decimal("10")
        assert (await LedgerService(session).reconcile())["mismatches"] == []

    @pytest.mark.asyncio
    async def test_backdated_run_before_activation(self, session, enroll, packageType, clock):
        owner = await enroll("owner@example.com", balance="1000")
        await buy(session, owner, packageType, "1000")

        summary = await RoiService(session).runDailyDistribution(clock.today - timedelta(days=1))

        assert summary["processed"] == 0
        assert summary["skipped"] == 1


class TestExpiry:

    @pytest.mark.asyncio
    async def test_expired_package_retired_without_payout(self, session, enroll, clock):
        shortTerm = PackageType(
            name="Short",
            minInvestment=Decimal("100"),
            maxInvestment=Decimal("0"),
            dailyRoiPercentage=Decimal("1"),
            durationDays=10,
            roiCapMultiplier=Decimal("2"),
            levelIncomePercentages=[],
            isActive=True
        )
        session.add(shortTerm)
        session.commit()

        owner = await enroll("owner@example.com", balance="1000")
        package = await buy(session, owner, shortTerm, "1000")
        assert owner.isActive is True

        clock.advanceTime(days=11)
        summary = await RoiService(session).runDailyDistribution()

        assert summary["completed"] == 1
        assert summary["expired"] == 1
        assert summary["processed"] == 0
        assert package.status == "completed"
        assert package.roiEarned == Decimal("0")
        assert owner.isActive is False


class TestBoosterAndGenerationIncome:

    @pytest.mark.asyncio
    async def test_booster_income_on_top_of_roi(self, session, enroll, packageType, clock):
        owner = await enroll("owner@example.com", balance="1000")
        package = await buy(session, owner, packageType, "1000")
        session.add(Booster(
            accountID=owner.accountID,
            startedAt=clock.now,
            endsAt=clock.now + timedelta(days=30),
            directCount=2,
            targetDirects=2,
            bonusRoiPercentage=Decimal("10"),
            status="achieved"
        ))
        session.commit()

        summary = await RoiService(session).runDailyDistribution()

        assert summary["totalAmount"] == Decimal("10")
        assert summary["boosterAmount"] == Decimal("1")
        assert package.roiEarned == Decimal("11")
        assert owner.boosterEarnings == Decimal("1")
        assert owner.roiEarnings == Decimal("10")

    @pytest.mark.asyncio
    async def test_roi_on_roi_paid_to_sponsor(self, session, enroll, packageType, rankTiers, monkeypatch):
        monkeypatch.setattr(config, "GENERATION_PLAN_ENABLED", True)
        sponsor = await enroll("sponsor@example.com")
        member = await enroll("member@example.com", sponsor=sponsor, balance="1000")
        await buy(session, member, packageType, "1000")

        summary = await RoiService(session).runDailyDistribution()

        # 12% of the member's 10.00 daily ROI
        assert summary["roiOnRoiAmount"] == Decimal("1.20")
        assert sponsor.roiOnRoiEarnings == Decimal("1.20")
        records = session.query(TransactionRecord).filter_by(
            accountID=sponsor.accountID, category=TransactionCategory.ROI_ON_ROI
        ).all()
        assert len(records) == 1
        assert records[0].counterpartyID == member.accountID

    @pytest.mark.asyncio
    async def test_generation_plan_off_by_default(self, session, enroll, packageType, rankTiers):
        sponsor = await enroll("sponsor@example.com")
        member = await enroll("member@example.com", sponsor=sponsor, balance="1000")
        await buy(session, member, packageType, "1000")

        summary = await RoiService(session).runDailyDistribution()

        assert summary["roiOnRoiAmount"] == Decimal("0")
        assert sponsor.roiOnRoiEarnings == Decimal("0")
