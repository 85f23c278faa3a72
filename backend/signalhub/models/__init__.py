# Base
from signalhub.models.base import CreatedAtMixin, UuidMixin

# Signals
from signalhub.models.signal import Direction, Signal, SignalStatus

__all__ = [
    "CreatedAtMixin",
    "UuidMixin",
    "Direction",
    "Signal",
    "SignalStatus",
]
