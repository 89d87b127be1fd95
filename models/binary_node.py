# models/binary_node.py
"""
BinaryNode model - one placement node per account in the binary tree.
"""
from sqlalchemy import Column, Integer, String, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship, backref
from models.base import Base, AuditMixin, Money


class BinaryNode(Base, AuditMixin):
    __tablename__ = 'binary_nodes'

    nodeID = Column(Integer, primary_key=True, autoincrement=True)
    accountID = Column(Integer, ForeignKey('accounts.accountID'), unique=True, nullable=False)

    # Structure
    parentID = Column(Integer, ForeignKey('binary_nodes.nodeID'), nullable=True, index=True)
    leftChildID = Column(Integer, ForeignKey('binary_nodes.nodeID'), nullable=True, unique=True)
    rightChildID = Column(Integer, ForeignKey('binary_nodes.nodeID'), nullable=True, unique=True)
    position = Column(String, nullable=False)  # root, left, right
    level = Column(Integer, nullable=False, default=0, index=True)  # root = 0
    path = Column(String, nullable=False, default="/")  # "/1/4/9/" - ancestors, root first, self last

    # Volumes
    personalVolume = Money()  # Own attributed package value
    leftVolume = Money()  # Cumulative left subtree volume
    rightVolume = Money()  # Cumulative right subtree volume
    leftCarry = Money()  # Left volume not yet consumed by a match
    rightCarry = Money()
    matchedTotal = Money()

    __table_args__ = (
        CheckConstraint("position IN ('root', 'left', 'right')", name='ck_binary_nodes_position'),
    )

    # Relationships
    account = relationship('Account', backref=backref('binaryNode', uselist=False))

    @property
    def ancestorIds(self):
        """Node ids from the root down to the parent."""
        ids = [int(part) for part in self.path.strip("/").split("/") if part]
        return ids[:-1]

    def childId(self, side):
        return self.leftChildID if side == "left" else self.rightChildID

    def __repr__(self):
        return (f"<BinaryNode(nodeID={self.nodeID}, account={self.accountID}, "
                f"L={self.leftVolume}, R={self.rightVolume})>")
