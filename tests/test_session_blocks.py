"""Tests for the JSONL session block loader."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

from conftest import assistant_entry, write_session

from usage_monitor.token_tracker.session_blocks import (
    SessionBlockLoader,
    TokenCounts,
    UsageEntry,
    default_claude_paths,
    identify_session_blocks,
    load_usage_entries,
    parse_usage_entry,
    projects_dirs_for,
)


def _entry(ts: datetime, tokens: int = 10) -> UsageEntry:
    return UsageEntry(timestamp=ts, usage=TokenCounts(input_tokens=tokens), model="claude-sonnet-4-6")


T0 = datetime(2026, 2, 19, 10, 17, tzinfo=timezone.utc)


# -- Entry parsing -------------------------------------------------------------


class TestParseUsageEntry:
    def test_assistant_entry(self):
        entry = parse_usage_entry(assistant_entry("2026-02-19T10:00:05.000Z", 100, 50, 5, 7))
        assert entry is not None
        assert entry.timestamp == datetime(2026, 2, 19, 10, 0, 5, tzinfo=timezone.utc)
        assert entry.usage.total == 162

    def test_user_entry_ignored(self):
        raw = {"type": "user", "timestamp": "2026-02-19T10:00:00Z",
               "message": {"role": "user", "content": "hi"}}
        assert parse_usage_entry(raw) is None

    def test_synthetic_ignored(self):
        raw = assistant_entry("2026-02-19T10:00:00Z", 5, model="<synthetic>")
        assert parse_usage_entry(raw) is None

    def test_bad_timestamp_ignored(self):
        assert parse_usage_entry(assistant_entry("yesterday", 5)) is None

    def test_usage_limit_notice_carries_reset(self):
        raw = {
            "type": "assistant",
            "timestamp": "2026-02-19T12:00:00Z",
            "isApiErrorMessage": True,
            "message": {
                "model": "<synthetic>",
                "content": [{"type": "text", "text": "Claude AI usage limit reached|1771520400"}],
            },
        }
        entry = parse_usage_entry(raw)
        assert entry is not None
        assert entry.usage.total == 0
        assert entry.usage_limit_reset_time == datetime.fromtimestamp(1771520400, tz=timezone.utc)

    def test_non_finite_counts_are_zero(self):
        raw = assistant_entry("2026-02-19T10:00:00Z", 10, 5)
        raw["message"]["usage"]["input_tokens"] = float("nan")
        raw["message"]["usage"]["cache_read_input_tokens"] = float("inf")
        entry = parse_usage_entry(raw)
        assert entry is not None
        assert entry.usage.total == 5

    def test_out_of_range_reset_epoch_is_dropped(self):
        raw = {
            "type": "assistant",
            "timestamp": "2026-02-19T12:00:00Z",
            "isApiErrorMessage": True,
            "message": {
                "model": "<synthetic>",
                "content": [{"type": "text", "text": "Claude AI usage limit reached|" + "9" * 40}],
            },
        }
        assert parse_usage_entry(raw) is None


class TestLoadUsageEntries:
    def test_reads_nested_project_files(self, claude_dir: Path):
        projects = claude_dir / "projects"
        write_session(projects / "proj-a" / "s1.jsonl", [
            assistant_entry("2026-02-19T10:00:00Z", 100, 50),
        ])
        write_session(projects / "proj-b" / "nested" / "s2.jsonl", [
            assistant_entry("2026-02-19T10:05:00Z", 10, 5),
        ])
        entries = load_usage_entries([projects])
        assert sorted(e.usage.total for e in entries) == [15, 150]

    def test_skips_malformed_lines(self, claude_dir: Path):
        path = claude_dir / "projects" / "p" / "s.jsonl"
        write_session(path, [assistant_entry("2026-02-19T10:00:00Z", 1, 1)])
        with open(path, "a", encoding="utf-8") as f:
            f.write("{broken\n\n[1, 2]\n")
        assert len(load_usage_entries([claude_dir / "projects"])) == 1

    def test_dedupes_streamed_messages(self, claude_dir: Path):
        dup = assistant_entry("2026-02-19T10:00:00Z", 100, 50, message_id="msg_1", request_id="req_1")
        write_session(claude_dir / "projects" / "p" / "s.jsonl", [dup, dup])
        assert len(load_usage_entries([claude_dir / "projects"])) == 1

    def test_non_finite_json_numbers_do_not_abort(self, claude_dir: Path):
        path = claude_dir / "projects" / "p" / "s.jsonl"
        write_session(path, [assistant_entry("2026-02-19T10:00:00Z", 100, 50)])
        bad = json.dumps(assistant_entry("2026-02-19T10:01:00Z", 0, 7)).replace(
            '"input_tokens": 0', '"input_tokens": NaN'
        )
        huge = json.dumps(assistant_entry("2026-02-19T10:02:00Z", 0, 3)).replace(
            '"input_tokens": 0', '"input_tokens": 1e400'
        )
        with open(path, "a", encoding="utf-8") as f:
            f.write(bad + "\n" + huge + "\n")

        entries = load_usage_entries([claude_dir / "projects"])
        assert sorted(e.usage.total for e in entries) == [3, 7, 150]

    def test_ignores_non_jsonl_files(self, claude_dir: Path):
        other = claude_dir / "projects" / "p" / "notes.txt"
        other.parent.mkdir(parents=True)
        other.write_text('{"type": "assistant"}\n', encoding="utf-8")
        assert load_usage_entries([claude_dir / "projects"]) == []


# -- Block grouping ------------------------------------------------------------


class TestIdentifySessionBlocks:
    def test_empty(self):
        assert identify_session_blocks([]) == []

    def test_single_block_floored_to_hour(self):
        blocks = identify_session_blocks(
            [_entry(T0, 10), _entry(T0 + timedelta(minutes=30), 5)],
            now=T0 + timedelta(hours=1),
        )
        assert len(blocks) == 1
        block = blocks[0]
        assert block.start_time == datetime(2026, 2, 19, 10, 0, tzinfo=timezone.utc)
        assert block.end_time == datetime(2026, 2, 19, 15, 0, tzinfo=timezone.utc)
        assert block.actual_end_time == T0 + timedelta(minutes=30)
        assert block.total_tokens == 15
        assert block.is_active
        assert not block.is_gap

    def test_block_inactive_after_end(self):
        blocks = identify_session_blocks([_entry(T0)], now=T0 + timedelta(hours=6))
        assert not blocks[0].is_active

    def test_new_block_after_window_elapses(self):
        entries = [_entry(T0), _entry(T0 + timedelta(hours=4)), _entry(T0 + timedelta(hours=5))]
        blocks = identify_session_blocks(entries, now=T0 + timedelta(hours=5, minutes=1))
        assert len(blocks) == 2
        assert [b.is_gap for b in blocks] == [False, False]
        assert blocks[1].start_time == datetime(2026, 2, 19, 15, 0, tzinfo=timezone.utc)
        assert blocks[1].is_active
        assert not blocks[0].is_active

    def test_gap_block_inserted_for_long_silence(self):
        later = T0 + timedelta(hours=12)
        blocks = identify_session_blocks([_entry(T0), _entry(later)], now=later)
        assert [b.is_gap for b in blocks] == [False, True, False]
        gap = blocks[1]
        assert gap.start_time == T0 + timedelta(hours=5)
        assert gap.end_time == later
        assert gap.total_tokens == 0
        assert not gap.is_active

    def test_unsorted_input(self):
        blocks = identify_session_blocks(
            [_entry(T0 + timedelta(minutes=20), 1), _entry(T0, 2)],
            now=T0,
        )
        assert len(blocks) == 1
        assert blocks[0].entries[0].timestamp == T0

    def test_reset_time_is_last_seen(self):
        first = _entry(T0)
        second = _entry(T0 + timedelta(minutes=5))
        first.usage_limit_reset_time = T0 + timedelta(hours=1)
        second.usage_limit_reset_time = T0 + timedelta(hours=2)
        blocks = identify_session_blocks([first, second], now=T0)
        assert blocks[0].usage_limit_reset_time == T0 + timedelta(hours=2)


# -- Paths / loader ------------------------------------------------------------


class TestClaudePaths:
    def test_env_value_comma_separated(self, tmp_path: Path):
        paths = default_claude_paths(f"{tmp_path / 'a'}, {tmp_path / 'b'}")
        assert paths == [tmp_path / "a", tmp_path / "b"]

    def test_defaults_to_home(self, monkeypatch, tmp_path: Path):
        monkeypatch.delenv("CLAUDE_CONFIG_DIR", raising=False)
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_path))
        assert default_claude_paths("") == [tmp_path / ".config" / "claude", tmp_path / ".claude"]

    def test_projects_dirs_for_filters_missing(self, claude_dir: Path, tmp_path: Path):
        assert projects_dirs_for([claude_dir, tmp_path / "nope"]) == [claude_dir / "projects"]


class TestSessionBlockLoader:
    def test_loads_blocks_from_disk(self, claude_dir: Path):
        now = datetime.now(timezone.utc).replace(microsecond=0)
        write_session(claude_dir / "projects" / "p" / "s.jsonl", [
            assistant_entry(now.isoformat(), 100, 50),
        ])
        loader = SessionBlockLoader(paths=[claude_dir])
        blocks = loader.load_session_block_data()
        assert len(blocks) == 1
        assert blocks[0].total_tokens == 150
        assert blocks[0].is_active

    def test_one_nan_line_does_not_hide_the_rest(self, claude_dir: Path):
        now = datetime.now(timezone.utc).replace(microsecond=0)
        path = write_session(claude_dir / "projects" / "p" / "s.jsonl", [
            assistant_entry(now.isoformat(), 100, 50),
        ])
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(assistant_entry(now.isoformat(), 1)).replace(
                '"input_tokens": 1', '"input_tokens": NaN'
            ) + "\n")

        blocks = SessionBlockLoader(paths=[claude_dir]).load_session_block_data()
        assert blocks[0].total_tokens == 150

    def test_no_projects_dir(self, tmp_path: Path):
        loader = SessionBlockLoader(paths=[tmp_path])
        assert loader.load_session_block_data() == []
