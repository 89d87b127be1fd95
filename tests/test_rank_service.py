"""
Tests for rank qualification, promotion and one-time rank rewards.
"""

from decimal import Decimal

import pytest

from models import Account, RankAchievement, RankTier, TransactionCategory, TransactionRecord
from mlm_engine.errors import NotFoundError
from mlm_engine.events.event_bus import MLMEvents
from mlm_engine.services.rank_service import RankService


@pytest.fixture
def leader(session):
    """Account with three directs, two of them active."""
    leader = Account(email="leader@example.com")
    session.add(leader)
    session.flush()
    for index in range(3):
        session.add(Account(
            email=f"direct{index}@example.com",
            sponsorID=leader.accountID,
            isActive=index < 2
        ))
    session.commit()
    return leader


def rewardRecords(session, account):
    return session.query(TransactionRecord).filter_by(
        accountID=account.accountID, category=TransactionCategory.RANK_REWARD
    ).all()


class TestSeeding:

    @pytest.mark.asyncio
    async def test_seed_is_repeatable(self, session):
        service = RankService(session)

        assert await service.seedRankTiers() == 5
        assert await service.seedRankTiers() == 0

        tiers = session.query(RankTier).order_by(RankTier.orderIndex).all()
        assert [tier.rankName for tier in tiers] == ["starter", "bronze", "silver", "gold", "platinum"]
        assert tiers[-1].levelsUnlocked == 30


class TestEligibility:

    @pytest.mark.asyncio
    async def test_new_account(self, session, rankTiers):
        account = Account(email="new@example.com")
        session.add(account)
        session.commit()

        evaluation = await RankService(session).evaluateRankEligibility(account.accountID)

        assert evaluation["currentRank"] is None
        assert evaluation["qualifiedRank"] == "starter"
        assert evaluation["nextRank"] == "bronze"
        assert evaluation["progress"] == Decimal("0")
        assert "Need 3 more direct referrals" in evaluation["missingRequirements"]

    @pytest.mark.asyncio
    async def test_partial_progress(self, session, rankTiers, leader):
        leader.teamVolume = Decimal("5000")
        leader.personalVolume = Decimal("250")
        session.commit()

        evaluation = await RankService(session).evaluateRankEligibility(leader.accountID)

        assert evaluation["metrics"]["directReferrals"] == 3
        assert evaluation["metrics"]["activeDirects"] == 2
        assert evaluation["qualifiedRank"] == "starter"
        assert evaluation["progress"] == Decimal("75.00")
        assert len(evaluation["missingRequirements"]) == 2

    @pytest.mark.asyncio
    async def test_unknown_account(self, session, rankTiers):
        with pytest.raises(NotFoundError):
            await RankService(session).evaluateRankEligibility(404)


class TestAdvancement:

    @pytest.mark.asyncio
    async def test_promotion_pays_each_tier_once(self, session, rankTiers, leader, capturedEvents):
        events = capturedEvents(MLMEvents.RANK_ACHIEVED)
        leader.teamVolume = Decimal("10000")
        leader.personalVolume = Decimal("500")
        session.commit()
        service = RankService(session)

        result = await service.checkRankAdvancement(leader.accountID)
        session.commit()

        assert result["promoted"] is True
        assert result["previousRank"] is None
        assert result["newRank"] == "bronze"
        assert [reward["rankName"] for reward in result["rewards"]] == ["starter", "bronze"]
        assert leader.walletBalance == Decimal("500")
        assert leader.rankEarnings == Decimal("500")
        assert len(events) == 2

        again = await service.checkRankAdvancement(leader.accountID)
        session.commit()

        assert again["promoted"] is False
        assert leader.walletBalance == Decimal("500")
        assert len(rewardRecords(session, leader)) == 1

    @pytest.mark.asyncio
    async def test_rank_never_goes_down(self, session, rankTiers):
        account = Account(email="veteran@example.com", rank="silver")
        session.add(account)
        session.commit()

        result = await RankService(session).checkRankAdvancement(account.accountID)

        assert result["promoted"] is False
        assert account.rank == "silver"

    @pytest.mark.asyncio
    async def test_reward_distributed_once(self, session, rankTiers, leader):
        service = RankService(session)
        bronze = rankTiers["bronze"]

        first = await service.distributeRankReward(leader.accountID, bronze.rankTierID, distributedBy="admin")
        second = await service.distributeRankReward(leader.accountID, bronze.rankTierID)
        session.commit()

        assert first["alreadyDistributed"] is False
        assert first["rewardAmount"] == Decimal("500")
        assert second["alreadyDistributed"] is True
        assert session.query(RankAchievement).filter_by(accountID=leader.accountID).count() == 1
        assert len(rewardRecords(session, leader)) == 1
        assert leader.walletBalance == Decimal("500")

        history = await service.getRankHistory(leader.accountID)
        assert history[0].distributedBy == "admin"

    @pytest.mark.asyncio
    async def test_zero_reward_tier_records_achievement_only(self, session, rankTiers, leader):
        result = await RankService(session).distributeRankReward(leader.accountID, rankTiers["starter"].rankTierID)

        assert result["transactionId"] is None
        assert rewardRecords(session, leader) == []

    @pytest.mark.asyncio
    async def test_unknown_tier(self, session, rankTiers, leader):
        with pytest.raises(NotFoundError):
            await RankService(session).distributeRankReward(leader.accountID, 999)

    @pytest.mark.asyncio
    async def test_check_all_ranks(self, session, rankTiers, leader):
        result = await RankService(session).checkAllRanks()

        # Leader and three directs all reach starter
        assert result["checked"] == 4
        assert result["updated"] == 4
        assert result["errors"] == 0
        assert leader.rank == "starter"
