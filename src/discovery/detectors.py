"""Gate-usage detectors.

Each detector is one independent heuristic answering "does this job
already run the release gate?".  :func:`detect_gate_usage` evaluates
them in priority order and stops at the first positive vote.  A detector
that raises counts as a negative vote; the remaining detectors still run.

Order:

1. ``BuildStepDetector``        -- gate step configured on the job
2. ``GateParameterDetector``    -- ``ArmorCode.*`` parameters on the last run
3. ``MarkerFileDetector``       -- marker file in the last run's directory
4. ``DefinitionTextDetector``   -- gate signatures in the job definition
5. ``BuildLogDetector``         -- gate banners in the last run's log
6. ``SiblingBranchDetector``    -- another branch of the same
                                   multi-branch project uses the gate
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Protocol, Sequence, runtime_checkable

from src.discovery.models import PipelineJob
from src.shared.constants import (
    BANNER_START,
    BANNER_STATUS,
    GATE_STEP_CLASS,
    GATE_STEP_SYMBOL,
    MARKER_FILE,
    PARAM_GATE_USED,
    PARAM_PREFIX,
)

logger = logging.getLogger(__name__)

# Literal signatures of the gate inside a job definition
DEFINITION_SIGNATURES: tuple[str, ...] = (
    f"{GATE_STEP_SYMBOL}(",
    f"new {GATE_STEP_CLASS}(",
    f"step $class: '{GATE_STEP_CLASS}'",
    PARAM_GATE_USED,
)

# Loosely coupled references such as "ArmorCode ... ReleaseGate"
_LOOSE_REFERENCE_RE = re.compile(r"\bArmorCode\b.*\bReleaseGate\b", re.DOTALL)

# Script-based integrations calling the validation API directly
_SCRIPT_ENDPOINTS: tuple[str, ...] = (
    "armorcode.ai/client/buildvalidation",
    "armorcode.com/client/buildvalidation",
)

_LOG_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(re.escape(BANNER_START)),
    re.compile(re.escape(BANNER_STATUS)),
    re.compile(r"\[INFO\]\s+ArmorCode check passed"),
    re.compile(r"\[BLOCK\]\s+SLA check"),
)

_SIBLING_LOG_TOKENS: tuple[str, ...] = ("ArmorCode", "armorcode", GATE_STEP_SYMBOL)


def definition_mentions_gate(text: str) -> bool:
    """True if a job definition references the gate step or the API."""
    if any(signature in text for signature in DEFINITION_SIGNATURES):
        return True
    if _LOOSE_REFERENCE_RE.search(text):
        return True
    if any(endpoint in text for endpoint in _SCRIPT_ENDPOINTS):
        return True
    return (
        "curl" in text
        and "Authorization: Bearer" in text
        and ("armorcode.ai" in text or "ArmorCode" in text)
    )


def log_line_mentions_gate(line: str) -> bool:
    return any(pattern.search(line) for pattern in _LOG_PATTERNS)


@runtime_checkable
class Detector(Protocol):
    """Protocol for gate-usage detectors."""

    name: str

    def detect(self, job: PipelineJob) -> bool:
        """Return True if *job* shows evidence of gate usage."""
        ...


class BuildStepDetector:
    """The gate is one of the job's configured build steps."""

    name = "build_step"

    def detect(self, job: PipelineJob) -> bool:
        return any(
            step in (GATE_STEP_CLASS, GATE_STEP_SYMBOL) or step.endswith(f".{GATE_STEP_CLASS}")
            for step in job.build_steps
        )


class GateParameterDetector:
    """The last run carries parameters recorded by the gate."""

    name = "gate_parameters"

    def detect(self, job: PipelineJob) -> bool:
        run = job.last_build
        if run is None:
            return False
        return any(key.startswith(PARAM_PREFIX) for key in run.parameters)


class MarkerFileDetector:
    """The gate left its marker file in the last run's directory."""

    name = "marker_file"

    def detect(self, job: PipelineJob) -> bool:
        run = job.last_build
        if run is None or run.build_dir is None:
            return False
        return (Path(run.build_dir) / MARKER_FILE).exists()


class DefinitionTextDetector:
    """The job definition references the gate."""

    name = "definition_text"

    def detect(self, job: PipelineJob) -> bool:
        return definition_mentions_gate(job.definition_text())


class BuildLogDetector:
    """The last run's log contains gate banners or gate actions."""

    name = "build_log"

    def detect(self, job: PipelineJob) -> bool:
        run = job.last_build
        if run is None:
            return False
        for line in run.log_lines():
            if log_line_mentions_gate(line):
                return True
        return any("ArmorCode" in action for action in run.action_names)


class SiblingBranchDetector:
    """Another branch of the same multi-branch project uses the gate."""

    name = "sibling_branch"

    def detect(self, job: PipelineJob) -> bool:
        if not job.parent_is_multibranch:
            return False
        for sibling in job.siblings():
            if sibling.full_name == job.full_name:
                continue
            try:
                if self._sibling_uses_gate(sibling):
                    return True
            except Exception as exc:
                logger.debug(
                    "Error checking sibling branch %s of %s: %s",
                    sibling.full_name,
                    job.full_name,
                    exc,
                )
        return False

    @staticmethod
    def _sibling_uses_gate(sibling: PipelineJob) -> bool:
        run = sibling.last_build
        if run is not None:
            for line in run.log_lines():
                if any(token in line for token in _SIBLING_LOG_TOKENS):
                    return True
        return definition_mentions_gate(sibling.definition_text())


DEFAULT_DETECTORS: tuple[Detector, ...] = (
    BuildStepDetector(),
    GateParameterDetector(),
    MarkerFileDetector(),
    DefinitionTextDetector(),
    BuildLogDetector(),
    SiblingBranchDetector(),
)


def detect_gate_usage(
    job: PipelineJob, detectors: Sequence[Detector] = DEFAULT_DETECTORS
) -> bool:
    """Evaluate *detectors* in order; True on the first positive vote.

    Never raises: a detector's exception is logged and treated as a
    negative vote.
    """
    for detector in detectors:
        try:
            if detector.detect(job):
                logger.debug("Job %s uses the gate (%s)", job.full_name, detector.name)
                return True
        except Exception as exc:
            logger.debug(
                "Detector %s failed for %s: %s",
                getattr(detector, "name", type(detector).__name__),
                getattr(job, "full_name", "?"),
                exc,
            )
    return False
