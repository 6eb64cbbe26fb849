from usage_monitor.token_tracker.session_blocks import (
    BlockLoader,
    SessionBlock,
    SessionBlockLoader,
    TokenCounts,
    UsageEntry,
    identify_session_blocks,
)
from usage_monitor.token_tracker.snapshot import (
    SnapshotComputer,
    SnapshotStatus,
    UsageSnapshot,
    snapshot_key,
)

__all__ = [
    "BlockLoader",
    "SessionBlock",
    "SessionBlockLoader",
    "TokenCounts",
    "UsageEntry",
    "identify_session_blocks",
    "SnapshotComputer",
    "SnapshotStatus",
    "UsageSnapshot",
    "snapshot_key",
]
