"""Data models and CI-host protocols for job discovery."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator, Protocol, runtime_checkable

from src.shared.constants import BUILD_TOOL, DEFAULT_CRON


@dataclass(frozen=True)
class JobRecord:
    """One pipeline as reported by a discovery scan."""
    name: str
    last_build_number: str = "0"
    last_build_timestamp: int = 0
    job_url: str = ""
    mapped: bool = False

    def to_payload(self) -> dict[str, Any]:
        """Wire shape for the discovery endpoint."""
        return {
            "jobName": self.name,
            "buildNumber": self.last_build_number,
            "lastBuildTimestamp": self.last_build_timestamp,
            "buildTool": BUILD_TOOL,
            "jobURL": self.job_url,
            "jobMapped": self.mapped,
        }


@dataclass(frozen=True)
class ScheduleSpec:
    """When discovery runs."""
    cron_expression: str = DEFAULT_CRON
    monitoring_enabled: bool = False


@dataclass(frozen=True)
class BatchResult:
    """Accounting for one :meth:`BatchDispatcher.send` call."""
    total_records: int = 0
    succeeded_records: int = 0
    batches_sent: int = 0
    batches_failed: int = 0

    @property
    def success(self) -> bool:
        return self.succeeded_records == self.total_records


# ---------------------------------------------------------------------------
# CI host protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class BuildRun(Protocol):
    """The last execution of a pipeline."""

    number: int
    timestamp_ms: int
    parameters: dict[str, str]
    build_dir: Path | None
    action_names: list[str]

    def log_lines(self) -> Iterator[str]:
        """Yield the console log line by line."""
        ...


@runtime_checkable
class PipelineJob(Protocol):
    """A pipeline known to the CI host."""

    full_name: str
    absolute_url: str | None
    build_steps: list[str]
    last_build: BuildRun | None
    parent_is_multibranch: bool

    def definition_text(self) -> str:
        """Serialized job definition (``config.xml`` on Jenkins)."""
        ...

    def siblings(self) -> Iterable[PipelineJob]:
        """Other branch jobs of the same multi-branch project."""
        ...


@runtime_checkable
class PipelineHost(Protocol):
    """Enumerates pipelines."""

    root_url: str | None

    def all_jobs(self) -> Iterable[PipelineJob]:
        ...
