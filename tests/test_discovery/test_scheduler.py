"""Tests for the discovery scheduler."""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from src.discovery.models import ScheduleSpec
from src.discovery.scheduler import (
    DiscoveryScheduler,
    next_interval,
    validate_cron_expression,
)
from src.shared.errors import SchedulingError

NOW = datetime(2024, 3, 5, 10, 30, 30)


class TestNextInterval:
    @pytest.mark.parametrize(
        "now", [NOW, datetime(2024, 1, 1, 0, 0), datetime(2024, 6, 1, 23, 59, 59)]
    )
    def test_every_fifteen_minutes_ignores_now(self, now):
        spec = ScheduleSpec("*/15 * * * *", monitoring_enabled=True)
        assert next_interval(spec, now) == timedelta(minutes=15)

    @pytest.mark.parametrize("cron", ["*/15 * * * *", "H H * * *", "", "0 0 * * *"])
    def test_disabled_is_seven_days(self, cron):
        spec = ScheduleSpec(cron, monitoring_enabled=False)
        assert next_interval(spec, NOW) == timedelta(days=7)

    @pytest.mark.parametrize("cron", ["", "  ", "H H * * *"])
    def test_default_expression_is_daily(self, cron):
        spec = ScheduleSpec(cron, monitoring_enabled=True)
        assert next_interval(spec, NOW) == timedelta(hours=24)

    def test_general_expression_uses_next_fire(self):
        spec = ScheduleSpec("0 * * * *", monitoring_enabled=True)
        assert next_interval(spec, NOW) == timedelta(minutes=29, seconds=30)

    def test_short_delay_clamped_to_one_minute(self):
        spec = ScheduleSpec("* * * * *", monitoring_enabled=True)
        assert next_interval(spec, NOW) == timedelta(seconds=60)

    def test_hash_expression_is_supported(self):
        spec = ScheduleSpec("H 2 * * *", monitoring_enabled=True)
        delay = next_interval(spec, NOW)
        assert timedelta(seconds=60) <= delay <= timedelta(hours=24)

    def test_unparsable_falls_back_to_hourly(self):
        spec = ScheduleSpec("every tuesday", monitoring_enabled=True)
        assert next_interval(spec, NOW) == timedelta(hours=1)


class TestValidateCron:
    def test_daily_has_no_warnings(self):
        assert validate_cron_expression("H H * * *") == []

    def test_frequent_schedule_warns(self):
        assert len(validate_cron_expression("*/5 * * * *")) == 1

    def test_hourly_is_fine(self):
        assert validate_cron_expression("0 * * * *") == []

    def test_empty_raises(self):
        with pytest.raises(SchedulingError):
            validate_cron_expression("  ")

    def test_garbage_raises(self):
        with pytest.raises(SchedulingError):
            validate_cron_expression("not a cron")


class TestDiscoveryScheduler:
    def test_reschedule_arms_single_timer(self):
        scheduler = DiscoveryScheduler(AsyncMock(), clock=lambda: NOW)
        try:
            first = scheduler._generation
            delay = scheduler.reschedule(ScheduleSpec("*/15 * * * *", True))
            scheduler.reschedule(ScheduleSpec("*/30 * * * *", True))
            assert delay == timedelta(minutes=15)
            assert scheduler.pending
            assert scheduler._generation == first + 2
        finally:
            scheduler.shutdown()
        assert not scheduler.pending

    def test_superseded_fire_is_ignored(self):
        scan = AsyncMock()
        scheduler = DiscoveryScheduler(scan, clock=lambda: NOW)
        try:
            scheduler.reschedule(ScheduleSpec("*/15 * * * *", True))
            stale = scheduler._generation
            scheduler.reschedule(ScheduleSpec("*/15 * * * *", True))
            scheduler._fire(stale)
            scan.assert_not_called()
        finally:
            scheduler.shutdown()

    def test_fire_runs_scan_and_rearms_from_provider(self):
        scan = AsyncMock()
        provider_spec = ScheduleSpec("*/5 * * * *", True)
        scheduler = DiscoveryScheduler(scan, spec_provider=lambda: provider_spec, clock=lambda: NOW)
        try:
            scheduler.reschedule(ScheduleSpec("*/15 * * * *", True))
            scheduler._fire(scheduler._generation)
            scan.assert_awaited_once()
            assert scheduler.pending
            assert scheduler._spec == provider_spec
        finally:
            scheduler.shutdown()

    def test_fire_skips_while_scan_running(self):
        scan = AsyncMock()
        scheduler = DiscoveryScheduler(scan, clock=lambda: NOW)
        try:
            scheduler.reschedule(ScheduleSpec("*/15 * * * *", True))
            scheduler._scan_lock.acquire()
            try:
                scheduler._fire(scheduler._generation)
            finally:
                scheduler._scan_lock.release()
            scan.assert_not_called()
            assert scheduler.pending
        finally:
            scheduler.shutdown()

    def test_scan_failure_does_not_stop_scheduling(self):
        scan = AsyncMock(side_effect=RuntimeError("boom"))
        scheduler = DiscoveryScheduler(scan, clock=lambda: NOW)
        try:
            scheduler.reschedule(ScheduleSpec("*/15 * * * *", True))
            scheduler._fire(scheduler._generation)
            assert scheduler.pending
        finally:
            scheduler.shutdown()

    def test_no_rearm_after_shutdown(self):
        scheduler = DiscoveryScheduler(AsyncMock(), clock=lambda: NOW)
        scheduler.shutdown()
        scheduler.reschedule(ScheduleSpec("*/15 * * * *", True))
        assert not scheduler.pending
