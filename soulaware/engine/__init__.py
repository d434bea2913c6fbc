"""Adaptive coaching reply engine.

The v2 pipeline lives in `orchestrator`; `classic` is the single-call v1 reply
and `snapshot` the purpose snapshot extractor.
"""

from .classic import ClassicResult, generate_classic_reply
from .orchestrator import CoachReplyResult, generate_coach_reply_v2
from .snapshot import SnapshotDraft, generate_purpose_snapshot

__all__ = [
    "ClassicResult",
    "CoachReplyResult",
    "SnapshotDraft",
    "generate_classic_reply",
    "generate_coach_reply_v2",
    "generate_purpose_snapshot",
]
