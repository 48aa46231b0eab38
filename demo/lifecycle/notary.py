# Notarization notifiers: record auto-verified grievances on the external ledger

import asyncio
import logging
from typing import Optional

import httpx

from .models import GrievanceRecord

logger = logging.getLogger(__name__)


class LoggingNotary:
    """Used when no ledger endpoint is configured."""

    async def notarize(self, record: GrievanceRecord) -> None:
        logger.info("Grievance %s auto-verified. Notarization endpoint not configured.", record.id)


class HttpNotary:
    def __init__(self, url: str, *, timeout: float = 10.0, max_retries: int = 3,
                 backoff_base: float = 1.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self.transport = transport

    def payload(self, record: GrievanceRecord) -> dict:
        return {"grievanceId": record.id, "status": record.status,
                "verifiedAt": record.updated_at.isoformat()}

    async def notarize(self, record: GrievanceRecord) -> None:
        body = self.payload(record)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for attempt in range(self.max_retries):
                try:
                    resp = await client.post(self.url, json=body)
                    resp.raise_for_status()
                    logger.info("Grievance %s notarized", record.id)
                    return
                except (httpx.TransportError, httpx.HTTPStatusError) as e:
                    logger.warning("Notary retry %d for %s: %s", attempt + 1, record.id, e)
                    if attempt == self.max_retries - 1:
                        raise
                    await asyncio.sleep(self.backoff_base * 2 ** attempt)
