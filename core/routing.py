# Pure routing between the two bridged channels
from typing import Optional

from core.config import ChannelPairConfig
from core.models import BridgeContext, Side

STANDARD_ATTACHMENT_LIMIT = 10 * 1024 * 1024
NITRO_ATTACHMENT_LIMIT = 500 * 1024 * 1024


class RoutingResolver:
    def __init__(self, channels: ChannelPairConfig, has_nitro: bool = False):
        self.channels = channels
        self.has_nitro = has_nitro

    def side_of(self, channel_id: int) -> Optional[Side]:
        if channel_id == self.channels.side_1:
            return Side.ONE
        if channel_id == self.channels.side_2:
            return Side.TWO
        return None

    def is_managed_channel(self, channel_id: Optional[int]) -> bool:
        return channel_id is not None and self.side_of(channel_id) is not None

    def resolve(self, source_channel_id: int) -> Optional[BridgeContext]:
        source_side = self.side_of(source_channel_id)
        if source_side is None:
            return None
        target_side = source_side.opposite
        return BridgeContext(
            source_channel_id=source_channel_id,
            target_channel_id=self.channels.channel_for(target_side),
            source_side=source_side,
            target_side=target_side,
        )

    def managed_channel_ids(self):
        return [self.channels.side_1, self.channels.side_2]

    def max_attachment_bytes(self) -> int:
        # Discord rejects the whole send when one file is over the account limit
        return NITRO_ATTACHMENT_LIMIT if self.has_nitro else STANDARD_ATTACHMENT_LIMIT
