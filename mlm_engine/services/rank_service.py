# mlm_engine/services/rank_service.py
"""
Rank management service - qualification, promotion and one-time rank rewards.
"""
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from sqlalchemy import func
import logging

from models import Account, RankTier, RankAchievement, TransactionCategory
from mlm_engine.config.ranks import RANK_CONFIG
from mlm_engine.errors import NotFoundError
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.services.ledger_service import LedgerService
from mlm_engine.utils.money import toDecimal, HUNDRED, CENT

logger = logging.getLogger(__name__)


class RankService:
    """Service for managing account ranks and qualifications."""

    def __init__(self, session: Session):
        self.session = session
        self.ledger = LedgerService(session)

    async def seedRankTiers(self) -> int:
        """Insert the default rank ladder. Existing tiers are left as they are."""
        existing = {name for (name,) in self.session.query(RankTier.rankName).all()}
        created = 0

        for rank, requirements in RANK_CONFIG.items():
            if rank.value in existing:
                continue
            self.session.add(RankTier(rankName=rank.value, **requirements))
            created += 1

        self.session.flush()
        logger.info(f"Seeded {created} rank tiers")
        return created

    async def evaluateRankEligibility(self, accountId: int) -> Dict:
        """
        Highest rank the account currently qualifies for, and how far it is
        from the next one.
        """
        account = self.session.get(Account, accountId)
        if not account:
            raise NotFoundError(f"Account {accountId} not found", accountId=accountId)

        metrics = await self._collectMetrics(account)
        tiers = self._activeTiers()

        qualified = None
        nextTier = None
        for tier in tiers:
            if self._missing(tier, metrics):
                nextTier = tier
                break
            qualified = tier

        progress = Decimal("100")
        missingRequirements = []
        if nextTier:
            progress = self._progress(nextTier, metrics)
            missingRequirements = self._missing(nextTier, metrics)

        return {
            "accountId": accountId,
            "currentRank": account.rank,
            "qualifiedRank": qualified.rankName if qualified else None,
            "qualifiedRankTierId": qualified.rankTierID if qualified else None,
            "nextRank": nextTier.rankName if nextTier else None,
            "progress": progress,
            "missingRequirements": missingRequirements,
            "metrics": metrics
        }

    async def distributeRankReward(
            self,
            accountId: int,
            rankTierId: int,
            distributedBy: str = "system"
    ) -> Dict:
        """Pay a tier's reward once per account, ever."""
        tier = self.session.get(RankTier, rankTierId)
        if not tier:
            raise NotFoundError(f"Rank tier {rankTierId} not found", rankTierId=rankTierId)
        if not self.session.get(Account, accountId):
            raise NotFoundError(f"Account {accountId} not found", accountId=accountId)

        if self._achievement(accountId, rankTierId):
            logger.info(f"Rank {tier.rankName} reward already distributed to account {accountId}")
            return {"success": True, "alreadyDistributed": True, "rankName": tier.rankName}

        reward = toDecimal(tier.rewardAmount or 0)
        try:
            with eventBus.holding() as held, self.session.begin_nested():
                record = None
                if reward > 0:
                    record = await self.ledger.postTransaction(
                        accountId,
                        TransactionCategory.RANK_REWARD,
                        reward,
                        description=f"Rank reward: {tier.rankName}"
                    )

                achievement = RankAchievement(
                    accountID=accountId,
                    rankTierID=rankTierId,
                    rankName=tier.rankName,
                    rewardAmount=reward,
                    distributedBy=distributedBy,
                    transactionID=record.transactionID if record else None
                )
                self.session.add(achievement)
                self.session.flush()
        except IntegrityError:
            # Concurrent distribution won the unique (account, tier) row
            logger.warning(f"Rank {tier.rankName} reward for account {accountId} raced, skipping")
            return {"success": True, "alreadyDistributed": True, "rankName": tier.rankName}

        await eventBus.release(held)
        logger.info(f"Rank {tier.rankName} reached by account {accountId}, reward {reward}")

        await eventBus.emit(MLMEvents.RANK_ACHIEVED, {
            "accountId": accountId,
            "rankName": tier.rankName,
            "rewardAmount": reward,
            "distributedBy": distributedBy
        })

        return {
            "success": True,
            "alreadyDistributed": False,
            "rankName": tier.rankName,
            "rewardAmount": reward,
            "achievementId": achievement.achievementID,
            "transactionId": record.transactionID if record else None
        }

    async def checkRankAdvancement(self, accountId: int) -> Dict:
        """
        Promote to the highest qualifying rank and pay every tier passed on
        the way. Ranks never go down.
        """
        evaluation = await self.evaluateRankEligibility(accountId)
        account = self.session.get(Account, accountId)

        result = {
            "accountId": accountId,
            "previousRank": account.rank,
            "newRank": account.rank,
            "promoted": False,
            "rewards": []
        }

        qualifiedId = evaluation["qualifiedRankTierId"]
        if qualifiedId is None:
            return result

        tiers = self._activeTiers()
        qualifiedOrder = next(t.orderIndex for t in tiers if t.rankTierID == qualifiedId)
        currentOrder = next((t.orderIndex for t in tiers if t.rankName == account.rank), 0)

        if qualifiedOrder <= currentOrder:
            return result

        for tier in tiers:
            if currentOrder < tier.orderIndex <= qualifiedOrder:
                reward = await self.distributeRankReward(accountId, tier.rankTierID)
                result["rewards"].append(reward)

        account.rank = evaluation["qualifiedRank"]
        self.session.flush()

        result["newRank"] = account.rank
        result["promoted"] = True
        logger.info(f"Account {accountId} rank updated: {result['previousRank']} -> {account.rank}")
        return result

    async def checkAllRanks(self) -> Dict[str, int]:
        """Check and update ranks for all accounts."""
        results = {
            "checked": 0,
            "updated": 0,
            "errors": 0
        }

        accountIds = [accountId for (accountId,) in self.session.query(Account.accountID).filter(
            Account.status == "active"
        ).order_by(Account.accountID).all()]

        for accountId in accountIds:
            results["checked"] += 1
            try:
                with eventBus.holding() as held, self.session.begin_nested():
                    advancement = await self.checkRankAdvancement(accountId)
                if advancement["promoted"]:
                    results["updated"] += 1
            except Exception as e:
                logger.error(f"Error checking rank for account {accountId}: {e}")
                results["errors"] += 1
                continue
            await eventBus.release(held)

        self.session.commit()

        logger.info(
            f"Rank check complete: checked={results['checked']}, "
            f"updated={results['updated']}, errors={results['errors']}"
        )

        return results

    async def getRankHistory(self, accountId: int) -> List[RankAchievement]:
        return self.session.query(RankAchievement).filter(
            RankAchievement.accountID == accountId
        ).order_by(RankAchievement.achievementID).all()

    async def _collectMetrics(self, account: Account) -> Dict:
        directReferrals = self.session.query(func.count(Account.accountID)).filter(
            Account.sponsorID == account.accountID
        ).scalar() or 0

        activeDirects = self.session.query(func.count(Account.accountID)).filter(
            Account.sponsorID == account.accountID,
            Account.isActive == True
        ).scalar() or 0

        return {
            "directReferrals": directReferrals,
            "activeDirects": activeDirects,
            "teamVolume": toDecimal(account.teamVolume or 0),
            "personalVolume": toDecimal(account.personalVolume or 0)
        }

    def _activeTiers(self) -> List[RankTier]:
        return self.session.query(RankTier).filter(
            RankTier.isActive == True
        ).order_by(RankTier.orderIndex).all()

    def _achievement(self, accountId: int, rankTierId: int) -> Optional[RankAchievement]:
        return self.session.query(RankAchievement).filter_by(
            accountID=accountId,
            rankTierID=rankTierId
        ).first()

    @staticmethod
    def _requirements(tier: RankTier):
        return [
            ("directReferrals", tier.minDirectReferrals or 0, "direct referrals"),
            ("activeDirects", tier.minActiveDirects or 0, "active direct referrals"),
            ("teamVolume", toDecimal(tier.minTeamVolume or 0), "team volume"),
            ("personalVolume", toDecimal(tier.minPersonalVolume or 0), "personal volume"),
        ]

    def _missing(self, tier: RankTier, metrics: Dict) -> List[str]:
        missing = []
        for key, required, label in self._requirements(tier):
            if metrics[key] < required:
                missing.append(f"Need {required - metrics[key]} more {label}")
        return missing

    def _progress(self, tier: RankTier, metrics: Dict) -> Decimal:
        """Mean of the four requirement ratios, each capped at 100%."""
        ratios = []
        for key, required, _ in self._requirements(tier):
            if required <= 0:
                ratios.append(Decimal("1"))
            else:
                ratios.append(min(Decimal(metrics[key]) / Decimal(required), Decimal("1")))
        return (sum(ratios) / len(ratios) * HUNDRED).quantize(CENT)
