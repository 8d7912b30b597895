"""Batch dispatcher for discovery records."""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence

import httpx

from src.discovery.models import BatchResult, JobRecord
from src.shared.constants import (
    BATCH_DELAY_S,
    BATCH_SIZE,
    DISCOVERY_CONNECT_TIMEOUT_S,
    DISCOVERY_PATH,
    DISCOVERY_READ_TIMEOUT_S,
)
from src.shared.errors import truncate_body

logger = logging.getLogger(__name__)


def chunked(records: Sequence[JobRecord], size: int) -> list[Sequence[JobRecord]]:
    """Split *records* into consecutive slices of at most *size* items."""
    return [records[i : i + size] for i in range(0, len(records), size)]


class BatchDispatcher:
    """Uploads discovery records in fixed-size, paced batches.

    A failed batch is logged and counted; the remaining batches are still
    sent.  The returned :class:`BatchResult` tells full from partial
    success.
    """

    def __init__(self, batch_size: int = BATCH_SIZE, delay: float = BATCH_DELAY_S) -> None:
        self.batch_size = max(1, batch_size)
        self.delay = delay

    async def send(
        self, records: Sequence[JobRecord], base_url: str, token: str
    ) -> BatchResult:
        records = list(records)
        if not records:
            return BatchResult()

        url = base_url.rstrip("/") + DISCOVERY_PATH
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
        }
        timeout = httpx.Timeout(DISCOVERY_READ_TIMEOUT_S, connect=DISCOVERY_CONNECT_TIMEOUT_S)
        batches = chunked(records, self.batch_size)

        succeeded = 0
        failed_batches = 0
        async with httpx.AsyncClient(timeout=timeout) as client:
            for index, batch in enumerate(batches, start=1):
                if await self._send_batch(client, url, headers, batch, index, len(batches)):
                    succeeded += len(batch)
                else:
                    failed_batches += 1
                if index < len(batches):
                    await asyncio.sleep(self.delay)

        result = BatchResult(
            total_records=len(records),
            succeeded_records=succeeded,
            batches_sent=len(batches),
            batches_failed=failed_batches,
        )
        logger.info(
            "Sent %d/%d job record(s) in %d batch(es)",
            result.succeeded_records,
            result.total_records,
            result.batches_sent,
        )
        return result

    async def _send_batch(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str],
        batch: Sequence[JobRecord],
        index: int,
        total: int,
    ) -> bool:
        body = {
            "jobsCount": len(batch),
            "jobs": [record.to_payload() for record in batch],
        }
        try:
            resp = await client.post(url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Batch %d/%d failed: %s", index, total, exc)
            return False
        if not 200 <= resp.status_code < 300:
            logger.warning(
                "Batch %d/%d rejected with HTTP %d: %s",
                index,
                total,
                resp.status_code,
                truncate_body(resp.text),
            )
            return False
        logger.debug("Batch %d/%d accepted (%d record(s))", index, total, len(batch))
        return True
