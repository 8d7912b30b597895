"""Tests for JobScanner and the name filter."""

from __future__ import annotations

import pytest

from src.discovery.scanner import JobScanner, filter_job_names
from src.shared.config import DiscoveryConfig
from src.shared.errors import ConfigurationError
from tests.conftest import FakeHost, FakeJob, FakeRun


class _BrokenJob(FakeJob):
    @property
    def last_build(self):
        raise OSError("permission denied")

    @last_build.setter
    def last_build(self, value):
        pass


class TestFilter:
    def test_include_exclude_example(self):
        names = ["prod-a", "prod-a-ignore", "dev-a"]
        assert filter_job_names(names, "prod-.*", ".*-ignore") == ["prod-a"]

    def test_full_match_required(self):
        assert filter_job_names(["prod-a", "my-prod-a"], "prod-.*", "") == ["prod-a"]

    def test_empty_include_matches_everything(self):
        assert filter_job_names(["a", "b"], "", "") == ["a", "b"]

    def test_exclude_wins(self):
        assert filter_job_names(["a"], "a", "a") == []

    def test_invalid_pattern_raises(self):
        with pytest.raises(ConfigurationError, match="include"):
            filter_job_names(["a"], "(", "")


class TestScan:
    def test_records(self):
        host = FakeHost(
            jobs=[
                FakeJob(
                    full_name="prod-api",
                    absolute_url="https://ci.example.com/job/prod-api/",
                    last_build=FakeRun(number=12, timestamp_ms=1_700_000_123_000),
                    build_steps=["ArmorCodeReleaseGateBuilder"],
                ),
                FakeJob(full_name="prod-web"),
                FakeJob(full_name="dev-api"),
            ]
        )
        config = DiscoveryConfig(include_pattern="prod-.*")

        records = JobScanner(host).scan(config)

        assert [r.name for r in records] == ["prod-api", "prod-web"]
        api, web = records
        assert api.last_build_number == "12"
        assert api.last_build_timestamp == 1_700_000_123_000
        assert api.job_url == "https://ci.example.com/job/prod-api/"
        assert api.mapped is True
        assert web.last_build_number == "0"
        assert web.last_build_timestamp == 0
        assert web.job_url == "https://ci.example.com/job/prod-web/"
        assert web.mapped is False

    def test_no_root_url_gives_empty_url(self):
        host = FakeHost(jobs=[FakeJob(full_name="a")], root_url=None)
        (record,) = JobScanner(host).scan(DiscoveryConfig())
        assert record.job_url == ""

    def test_unreadable_job_skipped(self):
        host = FakeHost(jobs=[_BrokenJob(full_name="broken"), FakeJob(full_name="ok")])
        records = JobScanner(host).scan(DiscoveryConfig())
        assert [r.name for r in records] == ["ok"]

    def test_legacy_filter_applies(self):
        host = FakeHost(jobs=[FakeJob(full_name=n) for n in ("a", "b", "c")])
        config = DiscoveryConfig(job_filter="a, b, !b")
        assert [r.name for r in JobScanner(host).scan(config)] == ["a"]

    def test_payload_shape(self):
        host = FakeHost(jobs=[FakeJob(full_name="a", last_build=FakeRun(number=3, timestamp_ms=5))])
        (record,) = JobScanner(host).scan(DiscoveryConfig())
        assert record.to_payload() == {
            "jobName": "a",
            "buildNumber": "3",
            "lastBuildTimestamp": 5,
            "buildTool": "JENKINS",
            "jobURL": "https://ci.example.com/job/a/",
            "jobMapped": False,
        }
