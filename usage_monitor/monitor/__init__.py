"""Monitor subsystem: freshness control, change broadcast, service lifecycle."""

from .broadcaster import USAGE_MONITOR_CONFIG_CHANGED, USAGE_MONITOR_STATS_CHANGED, ChangeBroadcaster
from .freshness import FreshnessController, FreshnessMode
from .service import UsageMonitorService, create_usage_monitor_service
