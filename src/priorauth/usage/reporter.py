"""Usage metering: one billable unit per successful agent invocation.

Reporting is fire-and-forget. It runs as a detached task after the answer
is produced, and its failures are logged and never reach the caller.
"""

from __future__ import annotations

import abc
import asyncio
from datetime import UTC, datetime

import httpx
import structlog
from pydantic import BaseModel, Field, ValidationError

logger = structlog.get_logger()

AGENT_USAGE_TYPE = "agent_invocation"

# Strong references to in-flight report tasks; asyncio keeps only weak ones.
_background_tasks: set[asyncio.Task] = set()


class UsageRecord(BaseModel):
    id: str = ""
    user_id: str
    usage_type: str
    quantity: int = 1
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class UsageReporter(abc.ABC):
    @abc.abstractmethod
    async def report(self, user_id: str, usage_type: str, quantity: int = 1) -> UsageRecord | None:
        """Record usage; return the stored record, or None when nothing was stored."""

    async def aclose(self) -> None:
        return None


class NullUsageReporter(UsageReporter):
    """Used when no metering endpoint is configured."""

    async def report(self, user_id: str, usage_type: str, quantity: int = 1) -> UsageRecord | None:
        logger.debug("usage_not_reported", user_id=user_id, usage_type=usage_type)
        return None


class HttpUsageReporter(UsageReporter):
    """POSTs `{user_id, usage_type, quantity}` to a metering endpoint."""

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._url = url
        self._http = httpx.AsyncClient(timeout=timeout_seconds, transport=transport)

    async def report(self, user_id: str, usage_type: str, quantity: int = 1) -> UsageRecord | None:
        payload = {"user_id": user_id, "usage_type": usage_type, "quantity": quantity}
        resp = await self._http.post(self._url, json=payload)
        resp.raise_for_status()
        if not resp.content:
            return None
        try:
            return UsageRecord.model_validate(resp.json())
        except (ValueError, ValidationError):
            logger.warning("usage_response_unparseable", status=resp.status_code)
            return None

    async def aclose(self) -> None:
        await self._http.aclose()


async def _report_safely(reporter: UsageReporter, user_id: str, usage_type: str, quantity: int) -> None:
    try:
        record = await reporter.report(user_id, usage_type, quantity)
    except Exception as exc:
        logger.warning(
            "usage_report_failed",
            user_id=user_id,
            usage_type=usage_type,
            error=f"{type(exc).__name__}: {exc}"[:200],
        )
        return
    logger.info(
        "usage_reported",
        user_id=user_id,
        usage_type=usage_type,
        quantity=quantity,
        record_id=record.id if record else None,
    )


def report_in_background(
    reporter: UsageReporter,
    user_id: str | None,
    usage_type: str = AGENT_USAGE_TYPE,
    quantity: int = 1,
) -> asyncio.Task | None:
    """Schedule one usage report on the running loop. Anonymous requests are not metered."""
    if not user_id:
        return None
    task = asyncio.create_task(_report_safely(reporter, user_id, usage_type, quantity))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task
