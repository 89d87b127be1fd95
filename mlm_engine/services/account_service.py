# mlm_engine/services/account_service.py
"""
Account enrollment - creates the account and places it in the binary tree
in one unit of work.
"""
from typing import Optional
from sqlalchemy.orm import Session
import logging

from models import Account, BinaryNode
from mlm_engine.errors import ValidationError, NotFoundError
from mlm_engine.services.tree_service import TreeService

logger = logging.getLogger(__name__)


class AccountService:
    """Service for enrolling and deactivating accounts."""

    def __init__(self, session: Session, treeService: Optional[TreeService] = None):
        self.session = session
        self.treeService = treeService or TreeService(session)

    async def enroll(
            self,
            email: str,
            fullName: Optional[str] = None,
            sponsorAccountId: Optional[int] = None,
            parentAccountId: Optional[int] = None,
            side: Optional[str] = None
    ) -> Account:
        """
        Create an account under its sponsor.
        The first account of an empty tree becomes the root.
        """
        if not email:
            raise ValidationError("Email is required")
        if self.session.query(Account.accountID).filter(Account.email == email).first():
            raise ValidationError(f"Email {email} is already enrolled", email=email)
        if sponsorAccountId is not None and not self.session.get(Account, sponsorAccountId):
            raise NotFoundError(f"Sponsor account {sponsorAccountId} not found", accountId=sponsorAccountId)

        with self.session.begin_nested():
            account = Account(email=email, fullName=fullName, sponsorID=sponsorAccountId)
            self.session.add(account)
            self.session.flush()

            treeIsEmpty = self.session.query(BinaryNode.nodeID).first() is None
            if sponsorAccountId is None and parentAccountId is None and treeIsEmpty:
                await self.treeService.createRoot(account.accountID)
            else:
                await self.treeService.placeNode(
                    account.accountID,
                    parentAccountId=parentAccountId,
                    side=side,
                    sponsorAccountId=sponsorAccountId
                )

        self.session.commit()
        logger.info(f"Enrolled account {account.accountID} ({email}) under sponsor {sponsorAccountId}")
        return account

    async def getAccount(self, accountId: int) -> Account:
        account = self.session.get(Account, accountId)
        if not account:
            raise NotFoundError(f"Account {accountId} not found", accountId=accountId)
        return account

    async def deactivate(self, accountId: int) -> Account:
        """Soft deactivation - the tree node and ledger history stay."""
        account = await self.getAccount(accountId)
        account.status = "deactivated"
        account.isActive = False
        self.session.commit()

        logger.info(f"Account {accountId} deactivated")
        return account
