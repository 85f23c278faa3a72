import enum

from sqlalchemy import Column, DateTime, Index, Integer, Numeric, String, Text, text

from signalhub.core.database import Base
from signalhub.models.base import CreatedAtMixin, UuidMixin


class Direction(str, enum.Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class SignalStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    CLOSED_WIN = "CLOSED_WIN"
    CLOSED_LOSS = "CLOSED_LOSS"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not SignalStatus.ACTIVE


class Signal(Base, UuidMixin, CreatedAtMixin):
    """
    Trading signals published to viewers.
    Market fields are fixed at creation; close fields are filled by lifecycle updates.
    """
    __tablename__ = "signals"

    # Market fields
    pair = Column(String(32), nullable=False)
    action = Column(String(8), nullable=False)  # LONG, SHORT
    entry = Column(Numeric(18, 8), nullable=False)
    stop_loss = Column(Numeric(18, 8), nullable=False)
    take_profit = Column(Numeric(18, 8), nullable=False)
    confidence = Column(Integer)
    risk = Column(Numeric(10, 4))
    reasoning = Column(Text)

    # Provenance
    source = Column(String(100), nullable=False)

    # Lifecycle (close fields are null while ACTIVE)
    status = Column(String(20), nullable=False, default=SignalStatus.ACTIVE.value)
    close_price = Column(Numeric(18, 8))
    profit = Column(Numeric(18, 8))
    profit_percent = Column(Numeric(12, 6))
    closed_at = Column(DateTime)

    __table_args__ = (
        Index("ix_signals_status", "status"),
        Index("ix_signals_created_at", text("created_at DESC")),
        Index("ix_signals_pair", "pair"),
    )

    def __repr__(self) -> str:
        return f"<Signal {self.id} {self.action} {self.pair} {self.status}>"
