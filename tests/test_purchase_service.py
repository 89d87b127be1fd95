"""
Tests for the purchase pipeline: validation, the committed purchase unit
and isolated post-purchase handlers.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

import config
from models import Booster, Package, PackageType, RankTier, TransactionCategory, TransactionRecord
from mlm_engine.errors import ValidationError, NotFoundError, InsufficientFundsError
from mlm_engine.events.event_bus import MLMEvents
from mlm_engine.services.ledger_service import LedgerService
from mlm_engine.services.purchase_service import PurchaseService


@pytest.fixture
def buyer(session, enroll, rankTiers):
    """Funded account under a root sponsor."""

    async def _buyer(balance="1000"):
        root = await enroll("root@example.com")
        account = await enroll("buyer@example.com", sponsor=root, balance=balance)
        return root, account

    return _buyer


class TestValidation:
    """Rejected purchases leave no trace."""

    @pytest.mark.asyncio
    async def test_amount_below_minimum(self, session, buyer, packageType):
        _, account = await buyer()

        with pytest.raises(ValidationError):
            await PurchaseService(session).purchasePackage(account.accountID, packageType.packageTypeID, Decimal("50"))

        assert session.query(Package).count() == 0
        assert account.walletBalance == Decimal("1000")

    @pytest.mark.asyncio
    async def test_inactive_package_type(self, session, buyer, packageType):
        _, account = await buyer()
        packageType.isActive = False
        session.commit()

        with pytest.raises(ValidationError):
            await PurchaseService(session).purchasePackage(account.accountID, packageType.packageTypeID, Decimal("500"))

    @pytest.mark.asyncio
    async def test_unknown_package_type(self, session, buyer):
        _, account = await buyer()

        with pytest.raises(NotFoundError):
            await PurchaseService(session).purchasePackage(account.accountID, 999, Decimal("500"))

    @pytest.mark.asyncio
    async def test_insufficient_funds(self, session, buyer, packageType):
        _, account = await buyer(balance="400")

        with pytest.raises(InsufficientFundsError):
            await PurchaseService(session).purchasePackage(account.accountID, packageType.packageTypeID, Decimal("500"))

        assert session.query(Package).count() == 0
        assert account.walletBalance == Decimal("400")
        assert account.isActive is False

    @pytest.mark.asyncio
    async def test_no_maximum_when_zero(self, session, buyer):
        _, account = await buyer(balance="5000")
        unbounded = PackageType(
            name="Open",
            minInvestment=Decimal("10"),
            maxInvestment=Decimal("0"),
            dailyRoiPercentage=Decimal("0.5"),
            durationDays=100,
            roiCapMultiplier=Decimal("1.5"),
            levelIncomePercentages=[],
            isActive=True
        )
        session.add(unbounded)
        session.commit()

        result = await PurchaseService(session).purchasePackage(
            account.accountID, unbounded.packageTypeID, Decimal("5000")
        )

        package = session.get(Package, result["package"])
        assert package.dailyRoiAmount == Decimal("25")
        assert package.roiCap == Decimal("7500")


class TestPurchase:

    @pytest.mark.asyncio
    async def test_successful_purchase(self, session, buyer, packageType, clock):
        root, account = await buyer()

        result = await PurchaseService(session).purchasePackage(
            account.accountID, packageType.packageTypeID, Decimal("1000")
        )

        package = session.get(Package, result["package"])
        assert result["success"] is True
        assert result["failedHandlers"] == []
        assert set(result["handlers"]) == {"volumes", "directIncome", "levelIncome", "binary", "booster", "rank"}

        assert package.dailyRoiAmount == Decimal("10")
        assert package.roiCap == Decimal("2000")
        assert package.activatedAt == clock.now
        assert package.expiresAt == clock.now + timedelta(days=365)
        assert package.status == "active"

        assert account.walletBalance == Decimal("0")
        assert account.isActive is True
        assert account.firstInvestmentAt == clock.now
        assert account.totalInvestment == Decimal("1000")
        assert account.personalVolume == Decimal("1000")
        assert root.teamVolume == Decimal("1000")

        debit = session.query(TransactionRecord).filter_by(
            accountID=account.accountID, category=TransactionCategory.PACKAGE_PURCHASE
        ).one()
        assert debit.amount == Decimal("-1000")
        assert debit.packageID == package.packageID
        assert (await LedgerService(session).reconcile())["mismatches"] == []

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self, session, buyer, packageType, monkeypatch):
        root, account = await buyer()
        service = PurchaseService(session)

        async def brokenLevelIncome(*args, **kwargs):
            raise RuntimeError("level table unavailable")

        monkeypatch.setattr(service.levelIncomeService, "distributeLevelIncome", brokenLevelIncome)

        result = await service.purchasePackage(account.accountID, packageType.packageTypeID, Decimal("1000"))

        assert result["failedHandlers"] == [{"handler": "levelIncome", "error": "level table unavailable"}]
        assert "rank" in result["handlers"]
        assert session.get(Package, result["package"]).status == "active"
        assert account.walletBalance == Decimal("0")
        assert root.commissionEarnings == Decimal("0")
        assert root.teamVolume == Decimal("1000")

    @pytest.mark.asyncio
    async def test_completion_event(self, session, buyer, packageType, capturedEvents):
        events = capturedEvents(MLMEvents.PURCHASE_COMPLETED)
        _, account = await buyer()

        result = await PurchaseService(session).purchasePackage(
            account.accountID, packageType.packageTypeID, Decimal("1000")
        )

        assert len(events) == 1
        assert events[0]["packageId"] == result["package"]
        assert events[0]["failedHandlers"] == []

    @pytest.mark.asyncio
    async def test_second_purchase_keeps_first_investment_date(self, session, buyer, packageType, clock):
        _, account = await buyer()
        service = PurchaseService(session)
        firstAt = clock.now

        await service.purchasePackage(account.accountID, packageType.packageTypeID, Decimal("500"))
        clock.advanceTime(days=3)
        await service.purchasePackage(account.accountID, packageType.packageTypeID, Decimal("500"))

        assert account.firstInvestmentAt == firstAt
        assert account.totalInvestment == Decimal("1000")
        assert session.query(Booster).filter_by(accountID=account.accountID).count() == 1


class TestBoosterFromPurchases:

    @pytest.mark.asyncio
    async def test_sponsor_booster_achieved(self, session, enroll, packageType, rankTiers, capturedEvents):
        events = capturedEvents(MLMEvents.BOOSTER_ACHIEVED)
        sponsor = await enroll("sponsor@example.com", balance="100")
        first = await enroll("first@example.com", sponsor=sponsor, balance="100")
        second = await enroll("second@example.com", sponsor=sponsor, balance="100")
        service = PurchaseService(session)

        await service.purchasePackage(sponsor.accountID, packageType.packageTypeID, Decimal("100"))
        await service.purchasePackage(first.accountID, packageType.packageTypeID, Decimal("100"))
        result = await service.purchasePackage(second.accountID, packageType.packageTypeID, Decimal("100"))

        booster = session.query(Booster).filter_by(accountID=sponsor.accountID).one()
        assert result["handlers"]["booster"]["sponsorBooster"] == "achieved"
        assert booster.directCount == 2
        assert booster.status == "achieved"
        assert len(events) == 1


class TestRankRecheck:
    """Every account the purchase touched is re-evaluated for rank."""

    @pytest.mark.asyncio
    async def test_whole_upline_promoted(self, session, makeChain, packageType):
        session.add(RankTier(rankName="starter", orderIndex=1, levelsUnlocked=5))
        session.add(RankTier(rankName="bronze", orderIndex=2, levelsUnlocked=10, minTeamVolume=Decimal("1000")))
        session.commit()
        grand, sponsor, buyer = makeChain(3)
        await LedgerService(session).deposit(buyer.accountID, Decimal("1000"))
        session.commit()

        result = await PurchaseService(session).purchasePackage(
            buyer.accountID, packageType.packageTypeID, Decimal("1000")
        )

        assert grand.teamVolume == Decimal("1000")
        assert grand.rank == "bronze"
        assert sponsor.rank == "bronze"
        assert buyer.rank == "starter"
        assert result["handlers"]["rank"]["checked"] == [buyer.accountID, sponsor.accountID, grand.accountID]

    @pytest.mark.asyncio
    async def test_matching_payee_outside_level_depth(self, session, enroll, packageType, rankTiers, monkeypatch):
        monkeypatch.setattr(config, "MAX_LEVELS", 1)
        root = await enroll("root@example.com")
        left = await enroll("left@example.com", sponsor=root, parent=root, side="left", balance="1000")
        right = await enroll("right@example.com", sponsor=left, parent=root, side="right", balance="1000")
        service = PurchaseService(session)

        await service.purchasePackage(left.accountID, packageType.packageTypeID, Decimal("1000"))
        result = await service.purchasePackage(right.accountID, packageType.packageTypeID, Decimal("1000"))

        assert result["handlers"]["binary"]["matches"][0]["accountId"] == root.accountID
        assert result["handlers"]["rank"]["checked"] == [right.accountID, left.accountID, root.accountID]
        assert result["handlers"]["rank"]["failed"] == []
