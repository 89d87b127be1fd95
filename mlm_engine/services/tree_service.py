# mlm_engine/services/tree_service.py
"""
Binary tree manager - placement, leg volume propagation, repair and export.

Each node stores a materialized path of its ancestors, so the whole
ancestor chain is loaded with one query and leg volumes are updated with
two batched atomic UPDATEs (one per leg) instead of one round trip per level.
"""
from decimal import Decimal
from typing import Dict, List, Optional
from sqlalchemy.orm import Session, joinedload
import logging

import config
from models import Account, BinaryNode
from mlm_engine.config.plans import POSITIONS
from mlm_engine.errors import (ValidationError, NotFoundError, DuplicateNodeError,
                               ParentNotFoundError, PositionOccupiedError)
from mlm_engine.services.placement import PlacementStrategy, BreadthFirstPlacement
from mlm_engine.utils.money import toDecimal, ZERO

logger = logging.getLogger(__name__)

VOLUME_FIELDS = ["leftVolume", "rightVolume", "leftCarry", "rightCarry"]


class TreeService:
    """Service for maintaining the binary placement tree."""

    def __init__(self, session: Session, placementStrategy: Optional[PlacementStrategy] = None):
        self.session = session
        self.placementStrategy = placementStrategy or BreadthFirstPlacement()

    async def createRoot(self, accountId: int) -> BinaryNode:
        """Create the single parentless node of the tree."""
        await self._requireAccount(accountId)
        await self._requireNoNode(accountId)

        if self.session.query(BinaryNode).filter(BinaryNode.parentID.is_(None)).first():
            raise ValidationError("Binary tree already has a root", accountId=accountId)

        node = BinaryNode(accountID=accountId, position="root", level=0)
        self.session.add(node)
        self.session.flush()
        node.path = f"/{node.nodeID}/"
        self.session.flush()

        logger.info(f"Account {accountId} placed as binary tree root (node {node.nodeID})")
        return node

    async def placeNode(
            self,
            newAccountId: int,
            parentAccountId: Optional[int] = None,
            side: Optional[str] = None,
            sponsorAccountId: Optional[int] = None
    ) -> BinaryNode:
        """
        Place an account under parent/side, or let the placement strategy
        choose a slot under the sponsor when no parent is given.
        """
        if side is not None and side not in POSITIONS:
            raise ValidationError(f"Unknown side '{side}'", side=side)
        if side is not None and parentAccountId is None:
            raise ValidationError("A side requires a parent account")

        account = await self._requireAccount(newAccountId)
        await self._requireNoNode(newAccountId)

        if parentAccountId is not None:
            parent = self._lockNode(parentAccountId)
            if not parent:
                raise ParentNotFoundError(
                    f"Parent account {parentAccountId} has no binary node",
                    parentAccountId=parentAccountId
                )
            if side is None:
                parent, side = self.placementStrategy.findPlacement(self.session, parent)
        else:
            sponsorId = sponsorAccountId or account.sponsorID
            if sponsorId is None:
                raise ValidationError(
                    f"Account {newAccountId} has no sponsor to place under",
                    accountId=newAccountId
                )
            sponsorNode = self._lockNode(sponsorId)
            if not sponsorNode:
                raise ParentNotFoundError(
                    f"Sponsor account {sponsorId} has no binary node",
                    parentAccountId=sponsorId
                )
            parent, side = self.placementStrategy.findPlacement(self.session, sponsorNode)

        if parent.childId(side) is not None:
            raise PositionOccupiedError(
                f"{side} position under account {parent.accountID} is already occupied",
                parentAccountId=parent.accountID,
                side=side
            )

        childColumn = BinaryNode.leftChildID if side == "left" else BinaryNode.rightChildID

        with self.session.begin_nested():
            node = BinaryNode(
                accountID=newAccountId,
                parentID=parent.nodeID,
                position=side,
                level=parent.level + 1
            )
            self.session.add(node)
            self.session.flush()
            node.path = f"{parent.path}{node.nodeID}/"

            # Claim the slot only if it is still empty
            claimed = self.session.query(BinaryNode).filter(
                BinaryNode.nodeID == parent.nodeID,
                childColumn.is_(None)
            ).update({childColumn: node.nodeID}, synchronize_session=False)

            if not claimed:
                raise PositionOccupiedError(
                    f"{side} position under account {parent.accountID} was taken concurrently",
                    parentAccountId=parent.accountID,
                    side=side
                )
            self.session.flush()

        self.session.expire(parent, ["leftChildID", "rightChildID"])

        logger.info(
            f"Placed account {newAccountId} {side} of account {parent.accountID} "
            f"(node {node.nodeID}, level {node.level})"
        )
        return node

    async def getNode(self, accountId: int) -> BinaryNode:
        node = self.session.query(BinaryNode).filter_by(accountID=accountId).first()
        if not node:
            raise NotFoundError(f"Account {accountId} has no binary node", accountId=accountId)
        return node

    async def getAncestors(self, accountId: int) -> List[BinaryNode]:
        """Strict ancestors, nearest parent first."""
        node = await self.getNode(accountId)
        chain = self._loadChain(node)
        return list(reversed(chain[:-1]))

    async def propagateVolume(self, nodeId: int, amount) -> Dict:
        """
        Add a volume delta to the proper leg of every strict ancestor.
        Callers pass a delta, never a resend of history.
        """
        amount = toDecimal(amount)
        if amount <= 0:
            raise ValidationError("Volume delta must be positive", amount=str(amount))

        node = self.session.get(BinaryNode, nodeId)
        if not node:
            raise NotFoundError(f"Binary node {nodeId} not found", nodeId=nodeId)

        chain = self._loadChain(node)

        leftIds = []
        rightIds = []
        for ancestor, child in zip(chain[:-1], chain[1:]):
            if child.position == "left":
                leftIds.append(ancestor.nodeID)
            else:
                rightIds.append(ancestor.nodeID)

        if leftIds:
            self.session.query(BinaryNode).filter(BinaryNode.nodeID.in_(leftIds)).update({
                BinaryNode.leftVolume: BinaryNode.leftVolume + amount,
                BinaryNode.leftCarry: BinaryNode.leftCarry + amount,
            }, synchronize_session=False)
        if rightIds:
            self.session.query(BinaryNode).filter(BinaryNode.nodeID.in_(rightIds)).update({
                BinaryNode.rightVolume: BinaryNode.rightVolume + amount,
                BinaryNode.rightCarry: BinaryNode.rightCarry + amount,
            }, synchronize_session=False)

        for ancestor in chain[:-1]:
            self.session.expire(ancestor, VOLUME_FIELDS)

        logger.info(
            f"Propagated {amount} from node {nodeId}: "
            f"{len(leftIds)} left legs, {len(rightIds)} right legs"
        )

        return {
            "nodeId": nodeId,
            "amount": amount,
            "leftAncestors": leftIds,
            "rightAncestors": rightIds
        }

    async def recomputeAllVolumes(self) -> int:
        """
        Repair tool: rebuild leg volumes bottom-up from personal volumes.
        O(n) over the whole tree, not for the purchase path.
        """
        nodes = self.session.query(BinaryNode).order_by(BinaryNode.level.desc()).all()
        subtreeTotals: Dict[int, Decimal] = {}

        for node in nodes:
            left = subtreeTotals.get(node.leftChildID, ZERO) if node.leftChildID else ZERO
            right = subtreeTotals.get(node.rightChildID, ZERO) if node.rightChildID else ZERO

            node.leftVolume = left
            node.rightVolume = right
            subtreeTotals[node.nodeID] = toDecimal(node.personalVolume or ZERO) + left + right

        self.session.flush()
        logger.info(f"Recalculated binary volumes for {len(nodes)} nodes")
        return len(nodes)

    async def exportSubtree(self, rootAccountId: int, maxDepth: Optional[int] = None) -> Dict:
        """
        Depth-bounded nested view of the tree below an account.
        Loads one tree level per query and stops at maxDepth levels.
        """
        depth = maxDepth if maxDepth is not None else config.DEFAULT_TREE_EXPORT_DEPTH
        if depth < 1 or depth > config.MAX_TREE_EXPORT_DEPTH:
            raise ValidationError(
                f"maxDepth must be between 1 and {config.MAX_TREE_EXPORT_DEPTH}",
                maxDepth=depth
            )

        root = self.session.query(BinaryNode).options(
            joinedload(BinaryNode.account)
        ).filter_by(accountID=rootAccountId).first()
        if not root:
            raise NotFoundError(f"Account {rootAccountId} has no binary node", accountId=rootAccountId)

        tree = self._nodeView(root, 1)
        frontier = [(root, tree)]

        for currentDepth in range(2, depth + 1):
            childIds = [
                childId
                for node, _ in frontier
                for childId in (node.leftChildID, node.rightChildID)
                if childId
            ]
            if not childIds:
                break

            children = {
                child.nodeID: child
                for child in self.session.query(BinaryNode).options(
                    joinedload(BinaryNode.account)
                ).filter(BinaryNode.nodeID.in_(childIds)).all()
            }

            nextFrontier = []
            for node, view in frontier:
                for side in POSITIONS:
                    child = children.get(node.childId(side))
                    if child:
                        childView = self._nodeView(child, currentDepth)
                        view[side] = childView
                        nextFrontier.append((child, childView))
            frontier = nextFrontier

        return tree

    def _nodeView(self, node: BinaryNode, depth: int) -> Dict:
        account = node.account
        return {
            "accountId": node.accountID,
            "nodeId": node.nodeID,
            "name": account.fullName if account else None,
            "email": account.email if account else None,
            "isActive": bool(account.isActive) if account else False,
            "rank": account.rank if account else None,
            "position": node.position,
            "level": node.level,
            "depth": depth,
            "personalVolume": node.personalVolume,
            "leftVolume": node.leftVolume,
            "rightVolume": node.rightVolume,
            "leftCarry": node.leftCarry,
            "rightCarry": node.rightCarry,
            "matchedTotal": node.matchedTotal,
            "hasChildren": bool(node.leftChildID or node.rightChildID),
            "left": None,
            "right": None,
        }

    def _loadChain(self, node: BinaryNode) -> List[BinaryNode]:
        """Root-first chain ending with `node`, loaded with one query."""
        ancestorIds = node.ancestorIds
        if not ancestorIds:
            return [node]

        ancestors = self.session.query(BinaryNode).filter(
            BinaryNode.nodeID.in_(ancestorIds)
        ).order_by(BinaryNode.level).all()

        if len(ancestors) != node.level:
            # Path out of sync with parent links - walk the parents instead
            logger.warning(f"Materialized path of node {node.nodeID} is inconsistent, walking parents")
            ancestors = []
            current = node
            while current.parentID is not None:
                current = self.session.get(BinaryNode, current.parentID)
                ancestors.append(current)
            ancestors.reverse()

        return ancestors + [node]

    def _lockNode(self, accountId: int) -> Optional[BinaryNode]:
        return self.session.query(BinaryNode).filter_by(
            accountID=accountId
        ).with_for_update().first()

    async def _requireAccount(self, accountId: int) -> Account:
        account = self.session.get(Account, accountId)
        if not account:
            raise NotFoundError(f"Account {accountId} not found", accountId=accountId)
        return account

    async def _requireNoNode(self, accountId: int):
        if self.session.query(BinaryNode.nodeID).filter_by(accountID=accountId).first():
            raise DuplicateNodeError(
                f"Account {accountId} already has a binary node",
                accountId=accountId
            )
