"""Live estimate of Claude Code usage against the plan's rolling 5-hour quota."""

__version__ = "0.1.0"
