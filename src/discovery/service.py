"""Discovery service: one scan from config snapshot to upload."""

from __future__ import annotations

import logging
import uuid

from src.discovery.dispatcher import BatchDispatcher
from src.discovery.models import BatchResult, PipelineHost, ScheduleSpec
from src.discovery.scanner import JobScanner
from src.shared.config import ConfigStore
from src.shared.logging import invocation_id_var
from src.shared.utils import is_blank

logger = logging.getLogger(__name__)


class DiscoveryService:
    """Ties the config store, scanner and dispatcher together."""

    def __init__(
        self,
        config_store: ConfigStore,
        host: PipelineHost,
        token: str,
        scanner: JobScanner | None = None,
        dispatcher: BatchDispatcher | None = None,
    ) -> None:
        self.config_store = config_store
        self.host = host
        self.token = token
        self.scanner = scanner or JobScanner(host)
        self.dispatcher = dispatcher or BatchDispatcher()

    def schedule_spec(self) -> ScheduleSpec:
        discovery = self.config_store.snapshot().discovery
        return ScheduleSpec(
            cron_expression=discovery.cron_expression,
            monitoring_enabled=discovery.monitoring_enabled,
        )

    async def run_scan(self) -> BatchResult | None:
        """Scan and upload once.  Never raises; returns None when skipped."""
        ctx_token = invocation_id_var.set(f"discovery-{uuid.uuid4().hex[:8]}")
        try:
            config = self.config_store.snapshot()
            if not config.discovery.monitoring_enabled:
                logger.info("Job monitoring is disabled; skipping discovery scan")
                return None
            if is_blank(self.token):
                logger.warning("No ArmorCode token configured; skipping discovery scan")
                return None

            records = self.scanner.scan(config.discovery)
            if not records:
                logger.info("No jobs matched the discovery filter")
                return None

            result = await self.dispatcher.send(records, config.base_url, self.token)
            if result.success:
                logger.info("Discovery upload complete: %d job(s)", result.total_records)
            else:
                logger.warning(
                    "Discovery upload partially failed: %d of %d job(s) sent",
                    result.succeeded_records,
                    result.total_records,
                )
            return result
        except Exception:
            logger.exception("Discovery scan failed")
            return None
        finally:
            invocation_id_var.reset(ctx_token)
