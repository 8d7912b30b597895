"""Data models for the release gate."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class GateStatus(str, Enum):
    """Remote verdict for a single poll."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    HOLD = "HOLD"
    UNKNOWN = "UNKNOWN"


class Severity(str, Enum):
    """Severity buckets, in reporting order."""
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"

    @property
    def wire_key(self) -> str:
        return self.value

    @property
    def label(self) -> str:
        return self.value


class RiskLevel(str, Enum):
    """Risk buckets, in reporting order."""
    VERY_POOR = "VeryPoor"
    POOR = "Poor"
    FAIR = "Fair"
    GOOD = "Good"

    @property
    def wire_key(self) -> str:
        return self.name

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


class GateMode(str, Enum):
    """How a FAILED verdict is enacted."""
    BLOCK = "block"
    WARN = "warn"

    @classmethod
    def parse(cls, value: str | None) -> GateMode:
        """Case-insensitive parse; anything but ``warn`` means block."""
        if value and value.strip().lower() == cls.WARN.value:
            return cls.WARN
        return cls.BLOCK


class GateResult(str, Enum):
    """Terminal result of one gate invocation."""
    PASS = "PASS"
    FAIL = "FAIL"
    DEGRADED = "DEGRADED"


class Disposition(str, Enum):
    """What the surrounding pipeline must do after the gate."""
    CONTINUE = "continue"
    CONTINUE_UNSTABLE = "continue_unstable"
    HALT = "halt"


@dataclass(frozen=True)
class GateRequest:
    """One validation request.  A fresh instance is built per attempt."""
    product: str
    sub_products: tuple[str, ...]
    environment: str
    build_identifier: str
    job_name: str
    build_url: str
    attempt_index: int
    attempt_ceiling: int

    def to_payload(self) -> dict[str, Any]:
        """Wire body for ``POST /client/build``."""
        return {
            "env": self.environment,
            "product": self.product,
            "subProducts": list(self.sub_products),
            "buildNumber": self.build_identifier,
            "jobName": self.job_name,
            "current": str(self.attempt_index),
            "end": str(self.attempt_ceiling),
            "jobURL": self.build_url,
        }


@dataclass(frozen=True)
class GateResponse:
    """Parsed response of one poll."""
    status: GateStatus
    raw_status: str = ""
    severity_counts: dict[Severity, int] = field(default_factory=dict)
    risk_counts: dict[RiskLevel, int] = field(default_factory=dict)
    failure_reason: str | None = None
    details_link: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_severity_based(self) -> bool:
        return any(count > 0 for count in self.severity_counts.values())

    @property
    def is_risk_based(self) -> bool:
        return any(count > 0 for count in self.risk_counts.values())


@dataclass(frozen=True)
class GateOutcome:
    """The single terminal outcome of a gate invocation."""
    result: GateResult
    applied_mode: GateMode
    attempts_used: int
    last_status: GateStatus
    message: str = ""

    @property
    def disposition(self) -> Disposition:
        if self.result is GateResult.PASS:
            return Disposition.CONTINUE
        if self.result is GateResult.DEGRADED:
            return Disposition.CONTINUE_UNSTABLE
        return Disposition.HALT

    @property
    def halts(self) -> bool:
        return self.disposition is Disposition.HALT

    def to_dict(self) -> dict[str, Any]:
        return {
            "result": self.result.value,
            "applied_mode": self.applied_mode.value,
            "attempts_used": self.attempts_used,
            "last_status": self.last_status.value,
            "disposition": self.disposition.value,
            "message": self.message,
        }


@dataclass
class Invocation:
    """The pipeline run the gate executes inside.

    ``parameters`` is the queryable metadata sink: the gate records its
    verdict there so later steps (and the discovery scanner) can see that
    it ran.  ``build_dir`` is optional; when set, the gate also leaves a
    marker file and an outcome JSON in it.
    """
    build_number: str = "0"
    job_name: str = ""
    job_url: str = ""
    build_dir: Path | None = None
    parameters: dict[str, str] = field(default_factory=dict)
    result: str | None = None

    def add_parameters(self, values: dict[str, str]) -> None:
        self.parameters.update(values)
