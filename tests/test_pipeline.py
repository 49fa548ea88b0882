"""
Integration tests for the ingestion pipeline.

Runs complete passes over synthetic log corpora with a mocked pricing source.
"""

import asyncio
import json
from datetime import date, datetime, timezone

import httpx
import pytest

from claude_watch.ingest.pipeline import IngestionPipeline
from claude_watch.ingest.scanner import LogScanner
from claude_watch.core.pricing_resolver import PricingResolver

UTC = timezone.utc
NOW = datetime(2026, 1, 24, 22, 0, tzinfo=UTC)

PRICING_DOCUMENT = {
    "claude-sonnet-4-20250514": {
        "input_cost_per_token": 3e-6,
        "output_cost_per_token": 15e-6,
        "cache_read_input_token_cost": 0.3e-6,
    },
}


def _line(timestamp, input_tokens, output_tokens, cache_read=0, session_id="s1",
          model="claude-sonnet-4-20250514", cwd="/work/claude-watch"):
    return json.dumps({
        "type": "assistant",
        "timestamp": timestamp,
        "sessionId": session_id,
        "cwd": cwd,
        "message": {
            "model": model,
            "usage": {
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cache_creation_input_tokens": 0,
                "cache_read_input_tokens": cache_read,
            },
        },
    })


def _write_log(path, lines):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _resolver(tmp_path):
    def handler(request):
        return httpx.Response(200, json=PRICING_DOCUMENT)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PricingResolver(tmp_path / "cache" / "pricing.json", client=client)


def _pipeline(tmp_path, resolver=None):
    return IngestionPipeline(
        scanner=LogScanner(tmp_path / "logs"),
        resolver=resolver or _resolver(tmp_path),
        tz=UTC,
        clock=lambda: NOW,
    )


class GatedResolver:
    """Resolver stand-in that blocks until released."""

    def __init__(self):
        self.gate = asyncio.Event()

    async def get_rates(self):
        await self.gate.wait()
        return {}


class TestIngestionPass:
    """Test complete ingestion passes."""

    @pytest.mark.asyncio
    async def test_reference_scenario_cost(self, tmp_path):
        """Verify two sonnet events on one day cost 0.0561 in total."""
        _write_log(tmp_path / "logs" / "projects" / "a" / "one.jsonl", [
            _line("2026-01-24T09:00:00.000Z", 10000, 300, cache_read=8000),
        ])
        _write_log(tmp_path / "logs" / "projects" / "b" / "two.jsonl", [
            _line("2026-01-24T11:30:00.250Z", 5000, 200, cache_read=4000),
        ])

        result = await _pipeline(tmp_path).run()

        [day] = result.daily
        assert day.date == "2026-01-24"
        assert day.tokens.input_tokens == 15000
        assert day.tokens.output_tokens == 500
        assert day.tokens.cache_creation_tokens == 0
        assert day.tokens.cache_read_tokens == 12000
        assert day.total_cost == pytest.approx(0.0561)
        assert result.files_scanned == 2
        assert result.events_parsed == 2
        assert "claude-sonnet-4-20250514" in result.pricing

    @pytest.mark.asyncio
    async def test_all_views_produced(self, tmp_path):
        """Verify one pass yields daily, hourly and session views."""
        _write_log(tmp_path / "logs" / "s.jsonl", [
            _line("2026-01-23T10:00:00Z", 100, 10),
            _line("2026-01-24T08:00:00Z", 100, 10, session_id="s1"),
            _line("2026-01-24T09:00:00Z", 100, 10, session_id="s1"),
            _line("2026-01-24T20:00:00Z", 100, 10, session_id="s1"),
            "garbage line",
        ])

        result = await _pipeline(tmp_path).run()

        assert result.target_date == date(2026, 1, 24)
        assert [d.date for d in result.daily] == ["2026-01-23", "2026-01-24"]
        assert len(result.hourly) == 24
        assert result.hourly[8].tokens.input_tokens == 100
        assert result.hourly[10].tokens.input_tokens == 0
        assert len(result.sessions) == 2
        assert all(s.display_name == "claude-watch" for s in result.sessions)

    @pytest.mark.asyncio
    async def test_rerun_is_identical(self, tmp_path):
        """Verify an unchanged corpus produces identical results."""
        for index in range(5):
            _write_log(tmp_path / "logs" / f"f{index}.jsonl", [
                _line(f"2026-01-2{index}T1{index}:00:00Z", 100 * index, 7, session_id=f"s{index}"),
                _line(f"2026-01-24T0{index}:30:00Z", 50, 5, session_id="shared"),
            ])
        pipeline = _pipeline(tmp_path)

        first = await pipeline.run()
        second = await pipeline.run()

        assert first == second
        assert repr(first) == repr(second)

    @pytest.mark.asyncio
    async def test_default_range_is_rolling_window(self, tmp_path):
        """Verify events older than the rolling window are left out."""
        _write_log(tmp_path / "logs" / "s.jsonl", [
            _line("2026-01-10T10:00:00Z", 100, 10),
            _line("2026-01-18T00:00:00Z", 100, 10),
            _line("2026-01-24T10:00:00Z", 100, 10),
        ])
        pipeline = _pipeline(tmp_path)

        result = await pipeline.run()
        assert [d.date for d in result.daily] == ["2026-01-18", "2026-01-24"]

        wider = await pipeline.run(since=datetime(2026, 1, 1, tzinfo=UTC))
        assert [d.date for d in wider.daily] == ["2026-01-10", "2026-01-18", "2026-01-24"]

    @pytest.mark.asyncio
    async def test_old_target_date_extends_range(self, tmp_path):
        """Verify a target date before the window is still covered."""
        _write_log(tmp_path / "logs" / "s.jsonl", [
            _line("2026-01-02T10:00:00Z", 100, 10),
        ])

        result = await _pipeline(tmp_path).run(target_date=date(2026, 1, 2))

        assert result.hourly[10].tokens.input_tokens == 100
        assert len(result.sessions) == 1

    @pytest.mark.asyncio
    async def test_damaged_lines_do_not_abort_pass(self, tmp_path):
        """Verify broken bytes, deep nesting and edge timestamps only lose their lines."""
        _write_log(tmp_path / "logs" / "good.jsonl", [_line("2026-01-24T10:00:00Z", 100, 10)])
        good = _line("2026-01-24T11:00:00Z", 100, 10).encode("utf-8")
        (tmp_path / "logs" / "bad.jsonl").write_bytes(
            b"\xff\xfe\xfa\n" + good + b"\n" + b"[" * 200000 + b"\n"
            + _line("0001-01-01T00:00:00+01:00", 1, 1).encode("utf-8") + b"\n"
        )

        result = await _pipeline(tmp_path).run()

        assert result.files_scanned == 2
        assert result.events_parsed == 2

    @pytest.mark.asyncio
    async def test_missing_log_root(self, tmp_path):
        """Verify a first run without logs yields empty views."""
        result = await _pipeline(tmp_path).run()

        assert result.daily == ()
        assert result.sessions == ()
        assert len(result.hourly) == 24
        assert result.files_scanned == 0


    @pytest.mark.asyncio
    async def test_load_events_sorted_across_files(self, tmp_path):
        """Verify events from all files come back in timestamp order."""
        _write_log(tmp_path / "logs" / "a.jsonl", [
            _line("2026-01-24T12:00:00Z", 1, 1),
            _line("2026-01-24T08:00:00Z", 2, 1),
        ])
        _write_log(tmp_path / "logs" / "b.jsonl", [_line("2026-01-24T10:00:00Z", 3, 1)])

        events = await _pipeline(tmp_path).load_events()

        assert [e.tokens.input_tokens for e in events] == [2, 3, 1]


class TestSingleFlight:
    """Test that only one pass runs at a time."""

    @pytest.mark.asyncio
    async def test_concurrent_trigger_is_ignored(self, tmp_path):
        """Verify a trigger during a running pass returns None."""
        resolver = GatedResolver()
        pipeline = _pipeline(tmp_path, resolver=resolver)

        first = asyncio.create_task(pipeline.run())
        await asyncio.sleep(0)
        assert pipeline.is_running
        assert await pipeline.run() is None

        resolver.gate.set()
        result = await first

        assert result is not None
        assert not pipeline.is_running

    @pytest.mark.asyncio
    async def test_flag_cleared_after_failure(self, tmp_path):
        """Verify a failing pass does not block later passes."""
        class BrokenResolver:
            async def get_rates(self):
                raise RuntimeError("boom")

        pipeline = _pipeline(tmp_path, resolver=BrokenResolver())

        with pytest.raises(RuntimeError):
            await pipeline.run()
        assert not pipeline.is_running
