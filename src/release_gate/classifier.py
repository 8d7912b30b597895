"""Response classification and failure-message rendering.

The remote service reports counts either as nested objects
(``{"severity": {"Critical": 2}}``) or, in older deployments, as
flattened dotted keys (``{"severity.Critical": 2}``).  Both shapes are
accepted; the nested object wins when it is present.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable
from urllib.parse import quote_plus

from src.release_gate.models import GateResponse, GateStatus, RiskLevel, Severity
from src.shared.constants import DEFAULT_DETAILS_LINK, DEFAULT_FAILURE_REASON
from src.shared.errors import ProtocolError

logger = logging.getLogger(__name__)

_SEVERITY_GROUP = "severity"
_RISK_GROUP = "otherProperties"


@dataclass(frozen=True)
class ExplainContext:
    """Identifiers rendered at the top of a failure explanation."""
    product: str
    sub_products: tuple[str, ...]
    environment: str
    build_number: str
    job_name: str


def _to_count(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _read_counts(
    payload: dict[str, Any], group: str, buckets: Iterable[Enum]
) -> dict[Any, int]:
    """Read one count group, nested form first, dotted keys as fallback."""
    nested = payload.get(group)
    counts: dict[Any, int] = {}
    if isinstance(nested, dict):
        for bucket in buckets:
            if bucket.wire_key in nested:
                counts[bucket] = _to_count(nested[bucket.wire_key])
        return counts
    for bucket in buckets:
        key = f"{group}.{bucket.wire_key}"
        if key in payload:
            counts[bucket] = _to_count(payload[key])
    return counts


def _parse_status(value: Any) -> tuple[GateStatus, str]:
    if value is None:
        return GateStatus.UNKNOWN, ""
    if not isinstance(value, str):
        raise ProtocolError(
            f"Expected a string status, got {type(value).__name__}", body=json.dumps(value)
        )
    raw = value.strip()
    upper = raw.upper()
    if not upper or upper == GateStatus.UNKNOWN.value:
        return GateStatus.UNKNOWN, raw
    if upper == GateStatus.FAILED.value:
        return GateStatus.FAILED, raw
    if upper == GateStatus.HOLD.value:
        return GateStatus.HOLD, raw
    # SUCCESS, RELEASE and any other verdict the service may add
    return GateStatus.SUCCESS, raw


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    if not text or text == "null":
        return None
    return text


class ResponseClassifier:
    """Turns raw response bodies into :class:`GateResponse` objects and
    renders the human-readable explanation for a failed gate."""

    def classify(self, raw_body: str | bytes) -> GateResponse:
        """Parse *raw_body*.

        Raises:
            ProtocolError: If the body is not a JSON object.
        """
        try:
            payload = json.loads(raw_body)
        except (TypeError, ValueError) as exc:
            text = raw_body.decode("utf-8", "replace") if isinstance(raw_body, bytes) else raw_body
            raise ProtocolError(f"Response is not valid JSON: {exc}", body=text) from exc
        if not isinstance(payload, dict):
            raise ProtocolError(
                f"Expected a JSON object, got {type(payload).__name__}",
                body=str(payload),
            )

        status, raw_status = _parse_status(payload.get("status"))
        return GateResponse(
            status=status,
            raw_status=raw_status,
            severity_counts=_read_counts(payload, _SEVERITY_GROUP, Severity),
            risk_counts=_read_counts(payload, _RISK_GROUP, RiskLevel),
            failure_reason=_optional_text(payload.get("failureReasonText")),
            details_link=_optional_text(payload.get("detailsLink"))
            or _optional_text(payload.get("link")),
            payload=payload,
        )

    def findings_scope(self, response: GateResponse) -> str:
        """Comma-separated nonzero counts, or ``No findings detected``."""
        if response.is_severity_based:
            counts = response.severity_counts
            order: Iterable[Enum] = Severity
        elif response.is_risk_based:
            counts = response.risk_counts
            order = RiskLevel
        else:
            return "No findings detected"
        parts = [
            f"{counts[bucket]} {bucket.label}"
            for bucket in order
            if counts.get(bucket, 0) > 0
        ]
        return ", ".join(parts)

    def details_link(self, context: ExplainContext, response: GateResponse) -> str:
        """Deep link to the result view filtered to this build and job."""
        base = response.details_link or DEFAULT_DETAILS_LINK
        filters = json.dumps(
            {"buildNumber": [context.build_number], "jobName": [context.job_name]},
            separators=(",", ":"),
        )
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}filters={quote_plus(filters)}"

    def explain(self, context: ExplainContext, response: GateResponse) -> str:
        """Render the multi-line failure explanation."""
        lines = [
            f"Group: {context.product}",
            f"Sub Group: {', '.join(context.sub_products)}",
            f"Environment: {context.environment}",
            f"Findings Scope: {self.findings_scope(response)}",
            f"Reason: {response.failure_reason or DEFAULT_FAILURE_REASON}",
            f"For more details, please refer to: {self.details_link(context, response)}",
        ]
        return "\n".join(lines)
