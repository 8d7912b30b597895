"""Tests for src.release_gate.cli."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
import yaml
from typer.testing import CliRunner

from src.discovery.detectors import detect_gate_usage
from src.discovery.host import JenkinsHomeHost
from src.discovery.models import BatchResult
from src.release_gate.cli import app
from src.release_gate.models import GateMode, GateOutcome, GateResult, GateStatus
from src.shared.errors import ConfigurationError, RetriesExhaustedError
from tests.conftest import make_response

runner = CliRunner()

ENV = {"ARMORCODE_TOKEN": "tok", "BUILD_NUMBER": "9", "JOB_NAME": "payments"}


def _outcome(result: GateResult) -> GateOutcome:
    return GateOutcome(
        result=result,
        applied_mode=GateMode.BLOCK,
        attempts_used=1,
        last_status=GateStatus.SUCCESS,
    )


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "release-gate.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "base_url": "https://app.armorcode.com",
                "discovery": {
                    "monitoring_enabled": True,
                    "cron_expression": "*/15 * * * *",
                    "jenkins_home": str(tmp_path / "jenkins"),
                },
                "gate": {"product": "p", "sub_products": ["s"], "environment": "e"},
            }
        )
    )
    return path


class TestAppRegistration:
    def test_all_commands_registered(self):
        names = {cmd.name or cmd.callback.__name__ for cmd in app.registered_commands}
        assert {"check", "discover", "schedule", "next-run", "ping", "validate"} <= names

    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "release-gate" in result.output
        assert "1.0.0" in result.output


class TestCheckCommand:
    @pytest.mark.parametrize(
        "result, exit_code",
        [(GateResult.PASS, 0), (GateResult.DEGRADED, 4), (GateResult.FAIL, 1)],
    )
    def test_exit_code_follows_outcome(self, config_file, result, exit_code):
        with patch("src.release_gate.cli.GateStateMachine") as machine_cls:
            machine_cls.return_value.run = AsyncMock(return_value=_outcome(result))
            res = runner.invoke(app, ["check", "--config", str(config_file)], env=ENV)
        assert res.exit_code == exit_code

    def test_options_override_config(self, config_file):
        with patch("src.release_gate.cli.GateStateMachine") as machine_cls:
            machine_cls.return_value.run = AsyncMock(return_value=_outcome(GateResult.PASS))
            runner.invoke(
                app,
                [
                    "check", "--config", str(config_file),
                    "--product", "other", "--sub-product", "a", "--sub-product", "b",
                    "--mode", "warn",
                ],
                env=ENV,
            )
        gate, token, invocation = machine_cls.call_args.args
        assert gate.product == "other"
        assert gate.sub_products == ["a", "b"]
        assert gate.mode == "warn"
        assert gate.environment == "e"
        assert token == "tok"
        assert invocation.build_number == "9"
        assert invocation.job_name == "payments"

    def test_configuration_error_exit_code(self, config_file):
        with patch("src.release_gate.cli.GateStateMachine") as machine_cls:
            machine_cls.return_value.run = AsyncMock(
                side_effect=ConfigurationError("Missing security authentication")
            )
            res = runner.invoke(app, ["check", "--config", str(config_file)], env=ENV)
        assert res.exit_code == 2

    def test_exhausted_exit_code(self, config_file):
        with patch("src.release_gate.cli.GateStateMachine") as machine_cls:
            machine_cls.return_value.run = AsyncMock(side_effect=RetriesExhaustedError(5))
            res = runner.invoke(app, ["check", "--config", str(config_file)], env=ENV)
        assert res.exit_code == 3

    def test_build_dir_derived_from_jenkins_home(self, config_file, tmp_path):
        home = tmp_path / "jenkins"
        (home / "jobs" / "team" / "jobs" / "web").mkdir(parents=True)
        env = {**ENV, "JENKINS_HOME": str(home), "JOB_NAME": "team/web", "BUILD_NUMBER": "12"}
        with patch("src.release_gate.cli.GateStateMachine") as machine_cls:
            machine_cls.return_value.run = AsyncMock(return_value=_outcome(GateResult.PASS))
            runner.invoke(app, ["check", "--config", str(config_file)], env=env)
        invocation = machine_cls.call_args.args[2]
        assert invocation.build_dir == home / "jobs" / "team" / "jobs" / "web" / "builds" / "12"

    def test_no_build_dir_for_unknown_job(self, config_file, tmp_path):
        env = {**ENV, "JENKINS_HOME": str(tmp_path / "jenkins")}
        with patch("src.release_gate.cli.GateStateMachine") as machine_cls:
            machine_cls.return_value.run = AsyncMock(return_value=_outcome(GateResult.PASS))
            runner.invoke(app, ["check", "--config", str(config_file)], env=env)
        assert machine_cls.call_args.args[2].build_dir is None

    def test_gate_run_visible_to_discovery(self, config_file, tmp_path):
        home = tmp_path / "jenkins"
        job_dir = home / "jobs" / "payments"
        job_dir.mkdir(parents=True)
        (job_dir / "config.xml").write_text("<flow-definition/>")
        env = {**ENV, "JENKINS_HOME": str(home)}
        with patch("src.release_gate.runner.GateClient") as client_cls:
            client_cls.return_value.poll = AsyncMock(
                return_value=make_response(GateStatus.SUCCESS)
            )
            res = runner.invoke(app, ["check", "--config", str(config_file)], env=env)

        assert res.exit_code == 0
        (job,) = JenkinsHomeHost(home).all_jobs()
        assert job.last_build.number == 9
        assert job.last_build.parameters["ArmorCode.GateResult"] == "PASS"
        assert detect_gate_usage(job) is True


class TestDiscoveryCommands:
    def test_next_run(self, config_file):
        res = runner.invoke(app, ["next-run", "--config", str(config_file)])
        assert res.exit_code == 0
        assert "0:15:00" in res.output

    def test_discover_without_jenkins_home(self, tmp_path):
        res = runner.invoke(
            app, ["discover", "--config", str(tmp_path / "missing.yaml")], env={"JENKINS_HOME": ""}
        )
        assert res.exit_code == 2

    def test_discover_dry_run_prints_table(self, config_file):
        with patch("src.release_gate.cli.JobScanner") as scanner_cls:
            scanner_cls.return_value.scan.return_value = []
            res = runner.invoke(app, ["discover", "--config", str(config_file), "--dry-run"])
        assert res.exit_code == 0
        assert "Discovered Jobs" in res.output

    def test_discover_partial_failure(self, config_file):
        with patch("src.release_gate.cli.DiscoveryService") as service_cls:
            service_cls.return_value.run_scan = AsyncMock(
                return_value=BatchResult(120, 70, 3, 1)
            )
            res = runner.invoke(app, ["discover", "--config", str(config_file)], env=ENV)
        assert res.exit_code == 1
        assert "70 of 120" in res.output

    @pytest.mark.parametrize("command", ["check", "discover"])
    def test_base_url_env_override_applies(self, tmp_path, command):
        config_path = tmp_path / "release-gate.yaml"
        config_path.write_text(
            yaml.safe_dump(
                {
                    "discovery": {
                        "monitoring_enabled": True,
                        "jenkins_home": str(tmp_path / "jenkins"),
                    },
                    "gate": {"product": "p", "sub_products": ["s"], "environment": "e"},
                }
            )
        )
        env = {**ENV, "ARMORCODE_BASE_URL": "https://onprem.example.com/"}
        with patch("src.release_gate.cli.GateStateMachine") as machine_cls, patch(
            "src.release_gate.cli.DiscoveryService"
        ) as service_cls:
            machine_cls.return_value.run = AsyncMock(return_value=_outcome(GateResult.PASS))
            service_cls.return_value.run_scan = AsyncMock(return_value=None)
            runner.invoke(app, [command, "--config", str(config_path)], env=env)

        if command == "check":
            assert machine_cls.call_args.kwargs["base_url"] == "https://onprem.example.com"
        else:
            store = service_cls.call_args.args[0]
            assert store.snapshot().base_url == "https://onprem.example.com"

    def test_discover_uploads_to_overridden_base_url(self, config_file, tmp_path):
        job_dir = tmp_path / "jenkins" / "jobs" / "api"
        job_dir.mkdir(parents=True)
        (job_dir / "config.xml").write_text("<project/>")
        env = {**ENV, "ARMORCODE_BASE_URL": "https://onprem.example.com"}
        with patch("src.discovery.service.BatchDispatcher") as dispatcher_cls:
            send = dispatcher_cls.return_value.send = AsyncMock(
                return_value=BatchResult(1, 1, 1, 0)
            )
            res = runner.invoke(app, ["discover", "--config", str(config_file)], env=env)

        assert res.exit_code == 0
        _records, base_url, token = send.await_args.args
        assert base_url == "https://onprem.example.com"
        assert token == "tok"


class TestValidateCommand:
    def test_valid_config(self, config_file):
        res = runner.invoke(app, ["validate", str(config_file)])
        assert res.exit_code == 0
        assert "Configuration is valid" in res.output
        assert "more often than once an hour" in res.output

    def test_http_base_url_rejected(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"base_url": "http://insecure.example.com"}))
        res = runner.invoke(app, ["validate", str(path)])
        assert res.exit_code == 2
        assert "https://" in res.output

    def test_bad_cron_rejected(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"discovery": {"cron_expression": "every day"}}))
        res = runner.invoke(app, ["validate", str(path)])
        assert res.exit_code == 2

    def test_missing_file(self, tmp_path):
        res = runner.invoke(app, ["validate", str(tmp_path / "nope.yaml")])
        assert res.exit_code == 2


class TestPingCommand:
    def test_ping_success(self, config_file):
        with patch("src.release_gate.cli.ping_service", new=AsyncMock(return_value=True)):
            res = runner.invoke(app, ["ping", "--config", str(config_file)])
        assert res.exit_code == 0
        assert "successful" in res.output

    def test_ping_failure(self, config_file):
        with patch("src.release_gate.cli.ping_service", new=AsyncMock(return_value=False)):
            res = runner.invoke(app, ["ping", "--config", str(config_file)])
        assert res.exit_code == 1
