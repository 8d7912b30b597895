"""Shared test fixtures for the release gate test suite."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

import pytest

from src.release_gate.models import GateResponse, GateStatus, Invocation
from src.shared.config import GateConfig


# ---------------------------------------------------------------------------
# In-memory CI host
# ---------------------------------------------------------------------------


@dataclass
class FakeRun:
    number: int = 1
    timestamp_ms: int = 1_700_000_000_000
    parameters: dict[str, str] = field(default_factory=dict)
    build_dir: Path | None = None
    action_names: list[str] = field(default_factory=list)
    log: list[str] = field(default_factory=list)

    def log_lines(self) -> Iterator[str]:
        yield from self.log


@dataclass
class FakeJob:
    full_name: str
    absolute_url: str | None = None
    build_steps: list[str] = field(default_factory=list)
    last_build: FakeRun | None = None
    parent_is_multibranch: bool = False
    definition: str = "<project/>"
    sibling_jobs: list["FakeJob"] = field(default_factory=list)

    def definition_text(self) -> str:
        return self.definition

    def siblings(self) -> list["FakeJob"]:
        return self.sibling_jobs


@dataclass
class FakeHost:
    jobs: list[FakeJob] = field(default_factory=list)
    root_url: str | None = "https://ci.example.com/"

    def all_jobs(self) -> list[FakeJob]:
        return list(self.jobs)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_src_logger() -> Iterator[None]:
    """The CLI installs a non-propagating handler; undo it between tests."""
    yield
    src_logger = logging.getLogger("src")
    src_logger.handlers.clear()
    src_logger.propagate = True
    src_logger.setLevel(logging.NOTSET)


@pytest.fixture
def gate_config() -> GateConfig:
    return GateConfig(
        product="prod-1",
        sub_products=["api", "web"],
        environment="staging",
        mode="block",
        max_retries=3,
        retry_delay=0,
    )


@pytest.fixture
def invocation() -> Invocation:
    return Invocation(
        build_number="42",
        job_name="payments/main",
        job_url="https://ci.example.com/job/payments/job/main/42/",
    )


def make_response(status: GateStatus, **kwargs) -> GateResponse:
    return GateResponse(status=status, raw_status=status.value, **kwargs)
