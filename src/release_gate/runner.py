"""Gate runner: drives the validation state machine for one invocation.

The runner owns the retry loop.  Each attempt polls the remote service
through :class:`GateClient`; the response status decides the next
transition::

    SUCCESS                      -> passed
    HOLD, attempts left          -> hold_wait -> polling
    HOLD, last attempt           -> failed      (same handling as FAILED)
    FAILED                       -> failed
    transport/protocol error     -> hold_wait -> polling, or
                                    error_exhausted on the last attempt

A FAILED verdict is a policy outcome (FAIL or DEGRADED depending on the
mode), never an exception.  Configuration problems and exhausted retries
raise, because the check could not be performed at all.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from src.release_gate import display
from src.release_gate.classifier import ExplainContext, ResponseClassifier
from src.release_gate.client import GateClient, normalize_sub_products, resolve_endpoint
from src.release_gate.models import (
    GateMode,
    GateOutcome,
    GateRequest,
    GateResponse,
    GateResult,
    GateStatus,
    Invocation,
)
from src.release_gate.state_machine import GateModel, create_gate_machine
from src.shared.config import GateConfig
from src.shared.constants import (
    MARKER_FILE,
    OUTCOME_FILE,
    PARAM_ENV,
    PARAM_GATE_RESULT,
    PARAM_GATE_USED,
    PARAM_PRODUCT,
    PARAM_SUB_PRODUCTS,
)
from src.shared.errors import (
    ConfigurationError,
    ProtocolError,
    RetriesExhaustedError,
    TransportError,
)
from src.shared.logging import invocation_id_var
from src.shared.utils import atomic_write_json, is_blank, now_iso

logger = logging.getLogger(__name__)


def record_gate_metadata(
    invocation: Invocation,
    product: str,
    sub_products: list[str],
    environment: str,
    outcome: GateOutcome,
) -> None:
    """Attach the gate verdict to *invocation* as queryable metadata.

    Parameters go into ``invocation.parameters``.  When the invocation has
    a build directory, a marker file and the outcome JSON are written
    there as well; failing to write them is logged, not raised.
    """
    invocation.add_parameters(
        {
            PARAM_GATE_USED: "true",
            PARAM_PRODUCT: product,
            PARAM_SUB_PRODUCTS: ",".join(sub_products),
            PARAM_ENV: environment,
            PARAM_GATE_RESULT: outcome.result.value,
        }
    )
    if invocation.build_dir is None:
        return

    build_dir = Path(invocation.build_dir)
    try:
        build_dir.mkdir(parents=True, exist_ok=True)
        (build_dir / MARKER_FILE).write_text("true\n", encoding="utf-8")
        atomic_write_json(
            build_dir / OUTCOME_FILE,
            {
                "product": product,
                "sub_products": sub_products,
                "environment": environment,
                "build_number": invocation.build_number,
                "job_name": invocation.job_name,
                "recorded_at": now_iso(),
                "parameters": dict(invocation.parameters),
                **outcome.to_dict(),
            },
        )
    except OSError as exc:
        logger.warning("Could not write gate metadata to %s: %s", build_dir, exc)


class GateStateMachine:
    """Runs one release gate check for one pipeline invocation.

    Usage::

        machine = GateStateMachine(config, token, invocation, base_url=url)
        outcome = await machine.run()
        if outcome.halts:
            ...
    """

    def __init__(
        self,
        config: GateConfig,
        token: str,
        invocation: Invocation,
        base_url: str | None = None,
        client: GateClient | None = None,
        classifier: ResponseClassifier | None = None,
    ) -> None:
        self._config = config
        self._token = token
        self._invocation = invocation
        self._base_url = base_url
        self._classifier = classifier or ResponseClassifier()
        self._client = client
        self._sub_products = normalize_sub_products(config.sub_products)
        self._mode = GateMode.parse(config.mode)
        self.model = GateModel(config.max_retries)
        self.machine = create_gate_machine(self.model)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Check preconditions; no network call happens before this passes.

        Raises:
            ConfigurationError: On a missing product, sub-products,
                environment or token.
        """
        if (
            is_blank(self._config.product)
            or not self._sub_products
            or is_blank(self._config.environment)
        ):
            raise ConfigurationError("Incomplete security configuration")
        if is_blank(self._token):
            raise ConfigurationError("Missing security authentication")

    async def run(self) -> GateOutcome:
        """Poll until a terminal outcome is resolved.

        Returns:
            The single :class:`GateOutcome` for this invocation.

        Raises:
            ConfigurationError: Preconditions not met.
            RetriesExhaustedError: Every attempt failed at the transport
                or protocol level.
            asyncio.CancelledError: The invocation was aborted.
        """
        self.validate()
        if self._client is None:
            self._client = GateClient(
                resolve_endpoint(self._config.target_url, self._base_url),
                self._token,
                classifier=self._classifier,
            )

        inv = self._invocation
        ctx_token = invocation_id_var.set(f"{inv.job_name}#{inv.build_number}")
        try:
            display.print_gate_start()
            logger.info(
                "Starting gate check for %s #%s (mode=%s, attempts=%d)",
                inv.job_name,
                inv.build_number,
                self._mode.value,
                self.model.attempt_ceiling,
            )
            return await self._poll_loop()
        except asyncio.CancelledError:
            logger.warning(
                "Gate check interrupted during attempt %d in state '%s'",
                self.model.attempt_index,
                self.model.state,
            )
            raise
        finally:
            invocation_id_var.reset(ctx_token)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_request(self) -> GateRequest:
        return GateRequest(
            product=self._config.product,
            sub_products=tuple(self._sub_products),
            environment=self._config.environment,
            build_identifier=self._invocation.build_number,
            job_name=self._invocation.job_name,
            build_url=self._invocation.job_url,
            attempt_index=self.model.attempt_index,
            attempt_ceiling=self.model.attempt_ceiling,
        )

    async def _poll_loop(self) -> GateOutcome:
        assert self._client is not None
        while True:
            request = self._build_request()
            try:
                response = await self._client.poll(request)
                display.print_gate_status(response.raw_status or response.status.value)
                if response.status is GateStatus.UNKNOWN:
                    raise ProtocolError(
                        "Response did not carry a gate status",
                        body=json.dumps(response.payload),
                    )
            except TransportError as exc:
                await self._handle_request_error(exc)
                continue

            logger.info(
                "Attempt %d/%d returned status %s",
                self.model.attempt_index,
                self.model.attempt_ceiling,
                response.status.value,
            )

            if response.status is GateStatus.HOLD:
                if await self.model.hold():
                    display.print_hold(self._config.retry_delay)
                    await self._wait_and_resume()
                    continue
                display.print_hold_exhausted(self.model.attempt_index)
                return await self._resolve_failure(response)

            if response.status is GateStatus.FAILED:
                return await self._resolve_failure(response)

            return await self._resolve_pass(response)

    async def _handle_request_error(self, exc: TransportError) -> None:
        """Back off and let the loop retry, or raise once attempts run out."""
        logger.warning(
            "Attempt %d/%d failed: %s",
            self.model.attempt_index,
            self.model.attempt_ceiling,
            exc,
        )
        if await self.model.back_off():
            display.print_request_error(exc, self._config.retry_delay)
            await self._wait_and_resume()
            return
        display.print_request_error(exc, None)
        await self.model.exhaust()
        logger.error(
            "Gate check exhausted after %d attempt(s)", self.model.attempt_index
        )
        raise RetriesExhaustedError(self.model.attempt_index, exc) from exc

    async def _wait_and_resume(self) -> None:
        await asyncio.sleep(self._config.retry_delay)
        await self.model.resume_polling()

    async def _resolve_pass(self, response: GateResponse) -> GateOutcome:
        await self.model.pass_gate()
        display.print_passed()
        outcome = GateOutcome(
            result=GateResult.PASS,
            applied_mode=self._mode,
            attempts_used=self.model.attempt_index,
            last_status=response.status,
        )
        return await self._finish(outcome)

    async def _resolve_failure(self, response: GateResponse) -> GateOutcome:
        context = ExplainContext(
            product=self._config.product,
            sub_products=tuple(self._sub_products),
            environment=self._config.environment,
            build_number=self._invocation.build_number,
            job_name=self._invocation.job_name,
        )
        message = self._classifier.explain(context, response)
        display.print_failure_details(message)
        await self.model.fail_gate()

        if self._mode is GateMode.WARN:
            display.print_warned()
            result = GateResult.DEGRADED
            self._invocation.result = "UNSTABLE"
        else:
            display.print_blocked()
            result = GateResult.FAIL
            self._invocation.result = "FAILURE"

        outcome = GateOutcome(
            result=result,
            applied_mode=self._mode,
            attempts_used=self.model.attempt_index,
            last_status=response.status,
            message=message,
        )
        return await self._finish(outcome)

    async def _finish(self, outcome: GateOutcome) -> GateOutcome:
        record_gate_metadata(
            self._invocation,
            self._config.product,
            self._sub_products,
            self._config.environment,
            outcome,
        )
        logger.info(
            "Gate resolved %s after %d attempt(s)",
            outcome.result.value,
            outcome.attempts_used,
        )
        if self._config.post_verdict_delay:
            await asyncio.sleep(self._config.post_verdict_delay)
        return outcome
