from typing import Optional

from soulaware import config
from soulaware.engine.text import string_hash


def rollout_bucket(guest_id: str) -> int:
    return abs(string_hash(guest_id)) % 100


def should_use_v2(guest_id: str, engine: Optional[str] = None, percent: Optional[int] = None) -> bool:
    """Stable per-guest decision: v2 only when enabled and the guest's bucket falls under the percentage."""
    engine = (engine if engine is not None else config.chat_engine()).lower()
    if engine != "v2":
        return False
    pct = max(0, min(100, percent if percent is not None else config.chat_v2_percent()))
    if pct <= 0:
        return False
    if pct >= 100:
        return True
    return rollout_bucket(guest_id) < pct
