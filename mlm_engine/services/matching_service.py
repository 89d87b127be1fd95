# mlm_engine/services/matching_service.py
"""
Binary matching engine.

Leg volumes are cumulative and only grow. Matching consumes the per-leg
carries: each match takes min(leftCarry, rightCarry) off both carries, so
the weaker leg drops to zero and the stronger leg keeps its excess for the
next match (or loses it when carryover is disabled).
"""
from typing import Dict, Optional
from sqlalchemy.orm import Session
from sqlalchemy import func
import logging

from models import Account, BinaryNode, BinarySettings, BinaryMatch, TransactionCategory
from mlm_engine.config.plans import BINARY_DEFAULTS
from mlm_engine.errors import ValidationError, NotFoundError, DailyMatchLimitError, CapacityError
from mlm_engine.events.event_bus import eventBus, MLMEvents
from mlm_engine.services.ledger_service import LedgerService
from mlm_engine.services.tree_service import TreeService
from mlm_engine.utils.money import toDecimal, percentOf, HUNDRED, ZERO
from mlm_engine.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class MatchingService:
    """Service for binary volume updates and matching bonuses."""

    def __init__(self, session: Session, treeService: Optional[TreeService] = None):
        self.session = session
        self.ledger = LedgerService(session)
        self.treeService = treeService or TreeService(session)

    async def updateBinaryVolume(self, accountId: int, amount) -> Dict:
        """
        Attribute a purchase to the account's own node, push it up both
        legs and evaluate a match at every ancestor up to the root.
        """
        amount = toDecimal(amount)
        if amount <= 0:
            raise ValidationError("Volume amount must be positive", amount=str(amount))

        node = await self.treeService.getNode(accountId)

        self.session.query(BinaryNode).filter(BinaryNode.nodeID == node.nodeID).update(
            {BinaryNode.personalVolume: BinaryNode.personalVolume + amount},
            synchronize_session="evaluate"
        )
        propagation = await self.treeService.propagateVolume(node.nodeID, amount)

        settings = await self.getSettings()
        results = {
            "success": True,
            "accountId": accountId,
            "amount": amount,
            "propagation": propagation,
            "matches": [],
            "skipped": [],
            "failures": [],
            "totalBonus": ZERO
        }

        # Nearest ancestor first
        for ancestorId in reversed(node.ancestorIds):
            try:
                with eventBus.holding() as held, self.session.begin_nested():
                    evaluation = await self._evaluateNode(ancestorId, settings)
            except CapacityError as e:
                logger.warning(f"Matching skipped for node {ancestorId}: {e}")
                results["skipped"].append({"nodeId": ancestorId, "reason": e.code})
                continue
            except Exception as e:
                logger.error(f"Matching failed for node {ancestorId}: {e}")
                results["failures"].append({"nodeId": ancestorId, "error": str(e)})
                continue
            await eventBus.release(held)

            if evaluation["matched"]:
                results["matches"].append(evaluation)
                results["totalBonus"] += evaluation["bonusAmount"]
            else:
                results["skipped"].append({"nodeId": ancestorId, "reason": evaluation["reason"]})

        logger.info(
            f"Binary volume {amount} from account {accountId}: "
            f"{len(results['matches'])} matches, bonus {results['totalBonus']}"
        )

        # Only matches whose savepoint was released are announced
        for match in results["matches"]:
            await eventBus.emit(MLMEvents.MATCHING_BONUS_PAID, {
                "accountId": match["accountId"],
                "nodeId": match["nodeId"],
                "matchedVolume": match["matchedVolume"],
                "bonusAmount": match["bonusAmount"]
            })
        return results

    async def _evaluateNode(self, nodeId: int, settings: BinarySettings) -> Dict:
        node = self.session.query(BinaryNode).filter(
            BinaryNode.nodeID == nodeId
        ).with_for_update().first()

        leftCarry = toDecimal(node.leftCarry)
        rightCarry = toDecimal(node.rightCarry)
        matchable = min(leftCarry, rightCarry)

        evaluation = {"nodeId": nodeId, "accountId": node.accountID, "matched": False}

        if matchable <= 0:
            evaluation["reason"] = "no_matchable_volume"
            return evaluation

        if settings.requireActiveLeft and not self._legActive(node.leftChildID):
            evaluation["reason"] = "left_leg_inactive"
            return evaluation
        if settings.requireActiveRight and not self._legActive(node.rightChildID):
            evaluation["reason"] = "right_leg_inactive"
            return evaluation

        minVolume = toDecimal(settings.minVolumePerLeg or 0)
        if toDecimal(node.leftVolume) < minVolume or toDecimal(node.rightVolume) < minVolume:
            evaluation["reason"] = "below_min_volume"
            return evaluation

        today = timeMachine.today
        matchesToday = self.session.query(func.count(BinaryMatch.matchID)).filter(
            BinaryMatch.nodeID == nodeId,
            BinaryMatch.matchDate == today
        ).scalar() or 0
        if matchesToday >= settings.maxDailyMatches:
            raise DailyMatchLimitError(
                f"Node {nodeId} reached {settings.maxDailyMatches} matches for {today}",
                nodeId=nodeId,
                matchesToday=matchesToday
            )

        bonus = percentOf(matchable, settings.matchBonusPercentage)
        if bonus <= 0:
            evaluation["reason"] = "bonus_below_minimum"
            return evaluation

        leftAfter = leftCarry - matchable
        rightAfter = rightCarry - matchable
        flushed = ZERO
        if not settings.carryoverEnabled:
            flushed = leftAfter + rightAfter
            leftAfter = rightAfter = ZERO

        self.session.query(BinaryNode).filter(BinaryNode.nodeID == nodeId).update({
            BinaryNode.leftCarry: leftAfter,
            BinaryNode.rightCarry: rightAfter,
            BinaryNode.matchedTotal: BinaryNode.matchedTotal + matchable
        }, synchronize_session="evaluate")

        record = await self.ledger.postTransaction(
            node.accountID,
            TransactionCategory.MATCHING_BONUS,
            bonus,
            description=f"Binary match {matchable} at node {nodeId}"
        )

        match = BinaryMatch(
            nodeID=nodeId,
            accountID=node.accountID,
            matchDate=today,
            matchedVolume=matchable,
            leftVolumeBefore=leftCarry,
            rightVolumeBefore=rightCarry,
            leftCarryAfter=leftAfter,
            rightCarryAfter=rightAfter,
            flushedVolume=flushed,
            bonusAmount=bonus,
            transactionID=record.transactionID
        )
        self.session.add(match)
        self.session.flush()

        logger.info(
            f"Matched {matchable} at node {nodeId} for account {node.accountID}: "
            f"bonus {bonus}, carries L={leftAfter} R={rightAfter}, flushed {flushed}"
        )

        evaluation.update({
            "matched": True,
            "matchId": match.matchID,
            "matchedVolume": matchable,
            "bonusAmount": bonus,
            "leftCarryAfter": leftAfter,
            "rightCarryAfter": rightAfter,
            "flushedVolume": flushed,
            "transactionId": record.transactionID
        })
        return evaluation

    def _legActive(self, childNodeId: Optional[int]) -> bool:
        """A leg is active when the direct child account on it is active."""
        if childNodeId is None:
            return False
        isActive = self.session.query(Account.isActive).join(
            BinaryNode, BinaryNode.accountID == Account.accountID
        ).filter(BinaryNode.nodeID == childNodeId).scalar()
        return bool(isActive)

    async def getSettings(self) -> BinarySettings:
        """Stored settings row, or an unsaved row holding the defaults."""
        settings = self.session.query(BinarySettings).order_by(BinarySettings.settingsID).first()
        if settings:
            return settings
        return BinarySettings(**BINARY_DEFAULTS)

    async def saveSettings(self, **values) -> BinarySettings:
        unknown = set(values) - set(BINARY_DEFAULTS)
        if unknown:
            raise ValidationError(f"Unknown binary settings: {', '.join(sorted(unknown))}")

        if "matchBonusPercentage" in values:
            percentage = toDecimal(values["matchBonusPercentage"])
            if percentage < 0 or percentage > HUNDRED:
                raise ValidationError("matchBonusPercentage must be between 0 and 100")
            values["matchBonusPercentage"] = percentage
        if "maxDailyMatches" in values and int(values["maxDailyMatches"]) < 1:
            raise ValidationError("maxDailyMatches must be at least 1")
        if "minVolumePerLeg" in values:
            minVolume = toDecimal(values["minVolumePerLeg"])
            if minVolume < 0:
                raise ValidationError("minVolumePerLeg must not be negative")
            values["minVolumePerLeg"] = minVolume

        settings = self.session.query(BinarySettings).order_by(BinarySettings.settingsID).first()
        if not settings:
            settings = BinarySettings(**BINARY_DEFAULTS)
            self.session.add(settings)

        for key, value in values.items():
            setattr(settings, key, value)
        self.session.flush()

        logger.info(f"Binary settings saved: {values}")
        return settings

    async def getMatchHistory(self, accountId: int, limit: int = 50):
        node = self.session.query(BinaryNode).filter_by(accountID=accountId).first()
        if not node:
            raise NotFoundError(f"Account {accountId} has no binary node", accountId=accountId)
        return self.session.query(BinaryMatch).filter(
            BinaryMatch.nodeID == node.nodeID
        ).order_by(BinaryMatch.matchID.desc()).limit(limit).all()
