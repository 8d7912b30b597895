"""Job scanner: enumerates host pipelines, filters them, and builds records."""

from __future__ import annotations

import logging
import re
from typing import Sequence

from src.discovery.detectors import DEFAULT_DETECTORS, Detector, detect_gate_usage
from src.discovery.models import JobRecord, PipelineHost, PipelineJob
from src.shared.config import DiscoveryConfig
from src.shared.errors import ConfigurationError

logger = logging.getLogger(__name__)


def _compile(pattern: str, label: str) -> re.Pattern[str] | None:
    if not pattern:
        return None
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise ConfigurationError(f"Invalid {label} pattern {pattern!r}: {exc}") from exc


def filter_job_names(
    names: Sequence[str], include_pattern: str, exclude_pattern: str
) -> list[str]:
    """Apply the include/exclude patterns to *names*, preserving order.

    Both patterns must match the whole name.  Exclusion is evaluated
    first; an empty exclude pattern excludes nothing and an empty include
    pattern includes everything.

    Raises:
        ConfigurationError: If either pattern is not a valid regex.
    """
    include = _compile(include_pattern, "include")
    exclude = _compile(exclude_pattern, "exclude")
    selected: list[str] = []
    for name in names:
        if exclude is not None and exclude.fullmatch(name):
            continue
        if include is not None and not include.fullmatch(name):
            continue
        selected.append(name)
    return selected


class JobScanner:
    """Produces one :class:`JobRecord` per selected pipeline on *host*."""

    def __init__(
        self, host: PipelineHost, detectors: Sequence[Detector] | None = None
    ) -> None:
        self.host = host
        self.detectors = tuple(detectors) if detectors is not None else DEFAULT_DETECTORS

    def scan(self, config: DiscoveryConfig) -> list[JobRecord]:
        """Scan the host and return records for jobs passing the filter.

        Raises:
            ConfigurationError: If a pattern is not a valid regex.
        """
        jobs = {job.full_name: job for job in self.host.all_jobs()}
        selected = filter_job_names(
            list(jobs), config.include_pattern, config.exclude_pattern
        )
        logger.info("Selected %d of %d job(s) for discovery", len(selected), len(jobs))

        records: list[JobRecord] = []
        for name in selected:
            try:
                records.append(self._record(jobs[name]))
            except Exception as exc:
                logger.warning("Skipping job %s: %s", name, exc)
        return records

    def _record(self, job: PipelineJob) -> JobRecord:
        run = job.last_build
        return JobRecord(
            name=job.full_name,
            last_build_number=str(run.number) if run is not None else "0",
            last_build_timestamp=run.timestamp_ms if run is not None else 0,
            job_url=self._job_url(job),
            mapped=detect_gate_usage(job, self.detectors),
        )

    def _job_url(self, job: PipelineJob) -> str:
        url = job.absolute_url
        if url:
            return url
        root_url = self.host.root_url
        if root_url:
            return f"{root_url.rstrip('/')}/job/{job.full_name}/"
        logger.warning("No root URL configured; job %s has no URL", job.full_name)
        return ""
