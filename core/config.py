from __future__ import annotations

import json
import os
from dataclasses import dataclass

from core.models import Side


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class ChannelPairConfig:
    side_1: int
    side_2: int

    def channel_for(self, side: Side) -> int:
        return self.side_1 if side is Side.ONE else self.side_2


@dataclass(frozen=True)
class AppConfig:
    token: str
    prefix: str
    owner_id: int
    cache_to_file: bool
    debug_to_dms: bool
    has_nitro: bool
    channels: ChannelPairConfig
    db_path: str = "cache.db"
    legacy_cache_path: str = "cache.json"


def load_config(path: str) -> AppConfig:
    if not os.path.exists(path):
        raise ConfigError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as handle:
        raw = json.load(handle)

    gc_raw = raw.get("gc", {})
    try:
        channels = ChannelPairConfig(side_1=int(gc_raw["1"]), side_2=int(gc_raw["2"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"Config must define both channel ids under 'gc': {exc}") from exc
    if channels.side_1 == channels.side_2:
        raise ConfigError("The two bridged channels must be different")

    return AppConfig(
        token=str(raw.get("token", "")),
        prefix=str(raw.get("prefix", "!gc")),
        owner_id=int(raw.get("owner_id", 0)),
        cache_to_file=bool(raw.get("cache_to_file", True)),
        debug_to_dms=bool(raw.get("debug_to_dms", False)),
        has_nitro=bool(raw.get("has_nitro", False)),
        channels=channels,
        db_path=str(raw.get("db_path", "cache.db")),
        legacy_cache_path=str(raw.get("legacy_cache_path", "cache.json")),
    )
