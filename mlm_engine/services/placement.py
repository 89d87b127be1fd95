# mlm_engine/services/placement.py
"""
Auto-placement strategies for new binary nodes.
A strategy picks (parent node, side) under the sponsor's node; the tree
service validates and performs the placement.
"""
from collections import deque
from typing import Tuple
from sqlalchemy.orm import Session

from models import BinaryNode


class PlacementStrategy:
    """Base class for pluggable placement policies."""

    name = "base"

    def findPlacement(self, session: Session, sponsorNode: BinaryNode) -> Tuple[BinaryNode, str]:
        raise NotImplementedError


class BreadthFirstPlacement(PlacementStrategy):
    """Shallowest open slot under the sponsor, left before right."""

    name = "breadth_first"

    def findPlacement(self, session, sponsorNode):
        frontier = deque([sponsorNode])

        while frontier:
            # One query per tree level
            levelNodes = list(frontier)
            frontier.clear()

            childIds = []
            for node in levelNodes:
                if node.leftChildID is None:
                    return node, "left"
                if node.rightChildID is None:
                    return node, "right"
                childIds.extend([node.leftChildID, node.rightChildID])

            children = {
                child.nodeID: child
                for child in session.query(BinaryNode).filter(BinaryNode.nodeID.in_(childIds)).all()
            }
            frontier.extend(children[childId] for childId in childIds)

        raise RuntimeError("Binary tree has no open slot")  # unreachable for a finite tree


class OuterLegPlacement(PlacementStrategy):
    """Spillover down the sponsor's outermost left or right leg."""

    name = "outer_leg"

    def __init__(self, side: str = "left"):
        if side not in ("left", "right"):
            raise ValueError(f"Unknown side {side}")
        self.side = side

    def findPlacement(self, session, sponsorNode):
        node = sponsorNode
        while True:
            childId = node.childId(self.side)
            if childId is None:
                return node, self.side
            node = session.get(BinaryNode, childId)
