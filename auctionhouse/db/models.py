"""
SQLAlchemy ORM Models
"""
import enum
import uuid

from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Numeric,
    ForeignKey, Enum as SQLEnum, Index, CheckConstraint,
)
from sqlalchemy.orm import relationship

from auctionhouse.db.session import Base
from auctionhouse.db.types import UTCDateTime, utcnow


def _uuid() -> str:
    return str(uuid.uuid4())


# ============================================
# Enum Types
# ============================================

class AuctionStatus(str, enum.Enum):
    """경매 상태"""
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    ENDED_NO_SALE = "ENDED_NO_SALE"
    CANCELLED = "CANCELLED"
    SUSPENDED = "SUSPENDED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    AuctionStatus.COMPLETED,
    AuctionStatus.ENDED_NO_SALE,
    AuctionStatus.CANCELLED,
})


# ============================================
# 사용자
# ============================================

class User(Base):
    """회원"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False, unique=True)
    username = Column(String(50), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(30))
    email_verified = Column(Boolean, nullable=False, default=False)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    auctions = relationship("Auction", back_populates="seller", foreign_keys="Auction.seller_id")
    bids = relationship("Bid", back_populates="bidder")


# ============================================
# 경매
# ============================================

class Auction(Base):
    """경매 매물"""
    __tablename__ = "auctions"

    id = Column(String(36), primary_key=True, default=_uuid)
    seller_id = Column(String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    title = Column(String(200), nullable=False)
    description = Column(Text)
    category = Column(String(100), nullable=False)
    condition = Column(String(50))
    location = Column(String(200))

    starting_price = Column(Numeric(12, 2), nullable=False)
    reserve_price = Column(Numeric(12, 2))
    buy_now_price = Column(Numeric(12, 2))
    current_price = Column(Numeric(12, 2), nullable=False)

    start_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)

    status = Column(SQLEnum(AuctionStatus, name="auction_status"), nullable=False, default=AuctionStatus.DRAFT)
    # SUSPENDED 직전 상태 (reinstate 시 복원)
    suspended_from = Column(SQLEnum(AuctionStatus, name="auction_status"))

    highest_bidder_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    bid_count = Column(Integer, nullable=False, default=0)
    view_count = Column(Integer, nullable=False, default=0)
    watch_count = Column(Integer, nullable=False, default=0)
    reserve_met = Column(Boolean, nullable=False, default=False)
    featured = Column(Boolean, nullable=False, default=False)

    # 낙관적 동시성 카운터: 입찰/상태 변경마다 +1
    version = Column(Integer, nullable=False, default=0)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    seller = relationship("User", back_populates="auctions", foreign_keys=[seller_id])
    highest_bidder = relationship("User", foreign_keys=[highest_bidder_id])
    bids = relationship("Bid", back_populates="auction", order_by="Bid.created_at.desc()")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="chk_auction_time_window"),
        CheckConstraint("current_price >= starting_price", name="chk_auction_current_price"),
        CheckConstraint("starting_price > 0", name="chk_auction_starting_price"),
        CheckConstraint("bid_count >= 0 AND view_count >= 0 AND watch_count >= 0", name="chk_auction_counters"),
        Index("ix_auctions_status_end_time", "status", "end_time"),
        Index("ix_auctions_status_start_time", "status", "start_time"),
        Index("ix_auctions_seller", "seller_id"),
    )


# ============================================
# 입찰 이력 (append-only)
# ============================================

class Bid(Base):
    """수락된 입찰 1건"""
    __tablename__ = "bids"

    id = Column(String(36), primary_key=True, default=_uuid)
    auction_id = Column(String(36), ForeignKey("auctions.id", ondelete="CASCADE"), nullable=False)
    bidder_id = Column(String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    buy_now = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    # Relationships
    auction = relationship("Auction", back_populates="bids")
    bidder = relationship("User", back_populates="bids")

    __table_args__ = (
        Index("ix_bids_auction_created", "auction_id", "created_at"),
        Index("ix_bids_bidder", "bidder_id"),
    )
