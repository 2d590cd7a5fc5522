# Core data models for the bridge
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Side(str, Enum):
    ONE = "1"
    TWO = "2"

    @property
    def opposite(self) -> "Side":
        return Side.TWO if self is Side.ONE else Side.ONE


@dataclass(frozen=True)
class MessageMapping:
    """Pair of message ids, one per side. Both ids resolve to the same object in the store."""

    side_1: Optional[int] = None
    side_2: Optional[int] = None

    @classmethod
    def from_sides(cls, first: Side, first_id: int, second: Side, second_id: int) -> "MessageMapping":
        ids = {first: first_id, second: second_id}
        return cls(side_1=ids.get(Side.ONE), side_2=ids.get(Side.TWO))

    def get(self, side: Side) -> Optional[int]:
        return self.side_1 if side is Side.ONE else self.side_2

    def ids(self):
        return [value for value in (self.side_1, self.side_2) if value is not None]


@dataclass(frozen=True)
class BridgeContext:
    source_channel_id: int
    target_channel_id: int
    source_side: Side
    target_side: Side
