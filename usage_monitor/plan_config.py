"""Persisted plan tier + base token limit for the usage monitor.

The file is small JSON owned by this process:

    {"plan": "pro" | "max5" | "max20", "limits": {"pro": 5500000}}

Loading never fails. Anything malformed is replaced by its default, so a
hand-edited or corrupt file heals itself on the next write.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from usage_monitor.config import settings

logger = logging.getLogger(__name__)

PLANS = ("pro", "max5", "max20")
PLAN_MULTIPLIERS = {"pro": 1, "max5": 5, "max20": 20}
DEFAULT_PLAN = "pro"
DEFAULT_PRO_LIMIT = 5_500_000

CONFIG_FILENAME = "usage-monitor.json"


@dataclass(frozen=True)
class UsageMonitorConfig:
    """Plan selection plus the base (pro) limit the other tiers scale from."""

    plan: str = DEFAULT_PLAN
    pro_limit: int | float = DEFAULT_PRO_LIMIT

    def to_dict(self) -> dict[str, Any]:
        return {"plan": self.plan, "limits": {"pro": self.pro_limit}}

    def derived_limits(self) -> dict[str, int | float]:
        return {
            "pro": self.pro_limit,
            "max5": self.pro_limit * 5,
            "max20": self.pro_limit * 20,
        }

    @property
    def limit(self) -> int | float:
        """Absolute token ceiling for the selected plan."""
        return self.pro_limit * PLAN_MULTIPLIERS.get(self.plan, 1)


DEFAULT_CONFIG = UsageMonitorConfig()


def _is_positive_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def normalize_plan(plan: Any) -> str:
    """Only the two premium tiers are kept; everything else is ``pro``."""
    return plan if plan in ("max5", "max20") else DEFAULT_PLAN


def sanitize_config(raw: Any) -> UsageMonitorConfig:
    """Coerce arbitrary decoded JSON into a complete, valid config."""
    data = raw if isinstance(raw, dict) else {}
    limits = data.get("limits")
    pro = limits.get("pro") if isinstance(limits, dict) else None
    return UsageMonitorConfig(
        plan=normalize_plan(data.get("plan")),
        pro_limit=pro if _is_positive_number(pro) else DEFAULT_PRO_LIMIT,
    )


def default_config_path() -> Path:
    return Path(settings.config_dir).expanduser() / CONFIG_FILENAME


class UsageConfigStore:
    """Read-through store for the usage monitor config file.

    Every query re-reads the file; nothing is cached in memory. Writes
    replace the whole document, so callers read-modify-write.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or default_config_path()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> UsageMonitorConfig:
        """Return the sanitized config, creating the file on first access."""
        try:
            if not self._path.exists():
                self.save(DEFAULT_CONFIG)
                logger.info("Created usage monitor config at %s", self._path)
                return DEFAULT_CONFIG
            with open(self._path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Could not read usage monitor config %s: %s", self._path, exc)
            return DEFAULT_CONFIG
        return sanitize_config(raw)

    def save(self, config: UsageMonitorConfig) -> None:
        """Overwrite the persisted config wholesale."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "w", encoding="utf-8") as f:
            json.dump(config.to_dict(), f, indent=2)

    def get_plan(self) -> str:
        return self.load().plan

    def set_plan(self, plan: Any) -> UsageMonitorConfig:
        current = self.load()
        updated = UsageMonitorConfig(plan=normalize_plan(plan), pro_limit=current.pro_limit)
        self.save(updated)
        return updated

    def set_pro_limit(self, limit: Any) -> UsageMonitorConfig:
        current = self.load()
        next_limit = math.floor(limit) if _is_positive_number(limit) else DEFAULT_PRO_LIMIT
        updated = UsageMonitorConfig(plan=current.plan, pro_limit=next_limit)
        self.save(updated)
        return updated

    def get_derived_limits(self) -> dict[str, int | float]:
        return self.load().derived_limits()

    def get_limit(self) -> int | float:
        return self.load().limit
