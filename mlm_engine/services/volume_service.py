# mlm_engine/services/volume_service.py
"""
Volume tracking service - personal and sponsor-chain team volumes used
for rank qualification.
"""
from decimal import Decimal
from typing import List, Optional
from sqlalchemy.orm import Session, aliased
from sqlalchemy import literal
import logging

import config
from models import Account
from mlm_engine.errors import ValidationError, NotFoundError
from mlm_engine.utils.money import toDecimal

logger = logging.getLogger(__name__)


class VolumeService:
    """Service for tracking personal and team volumes."""

    def __init__(self, session: Session):
        self.session = session

    async def updatePurchaseVolumes(self, accountId: int, amount) -> dict:
        """Update volumes after a purchase."""
        amount = toDecimal(amount)
        if amount <= 0:
            raise ValidationError("Volume amount must be positive", amount=str(amount))

        # Purchaser's personal volume
        updated = self.session.query(Account).filter(
            Account.accountID == accountId
        ).update(
            {Account.personalVolume: Account.personalVolume + amount},
            synchronize_session="evaluate"
        )
        if not updated:
            raise NotFoundError(f"Account {accountId} not found", accountId=accountId)

        # Team volumes up the sponsor chain
        uplineIds = await self.getUplineChain(accountId)
        if uplineIds:
            self.session.query(Account).filter(
                Account.accountID.in_(uplineIds)
            ).update(
                {Account.teamVolume: Account.teamVolume + amount},
                synchronize_session="evaluate"
            )

        logger.info(
            f"Updated volumes for account {accountId}: PV +{amount}, "
            f"TV +{amount} on {len(uplineIds)} uplines"
        )
        return {"accountId": accountId, "amount": amount, "uplineCount": len(uplineIds)}

    async def getUplineChain(self, accountId: int, maxLevels: Optional[int] = None) -> List[int]:
        """Sponsor ids above the account, direct sponsor first. One recursive query."""
        depthLimit = maxLevels if maxLevels is not None else config.MAX_UPLINE_DEPTH
        if depthLimit <= 0:
            return []

        upline = self.session.query(
            Account.sponsorID.label("accountId"),
            literal(1).label("depth")
        ).filter(
            Account.accountID == accountId,
            Account.sponsorID.isnot(None)
        ).cte(name="upline", recursive=True)

        sponsor = aliased(Account)
        upline = upline.union_all(
            self.session.query(
                sponsor.sponsorID,
                upline.c.depth + 1
            ).filter(
                sponsor.accountID == upline.c.accountId,
                sponsor.sponsorID.isnot(None),
                upline.c.depth < depthLimit
            )
        )

        chain = []
        seen = {accountId}
        for (sponsorId,) in self.session.query(upline.c.accountId).order_by(upline.c.depth):
            if sponsorId in seen:
                logger.error(f"Sponsor cycle detected at account {sponsorId}")
                break
            chain.append(sponsorId)
            seen.add(sponsorId)

        return chain

    async def getTeamVolume(self, accountId: int) -> Decimal:
        account = self.session.get(Account, accountId)
        if not account:
            raise NotFoundError(f"Account {accountId} not found", accountId=accountId)
        return toDecimal(account.teamVolume or 0)
