"""Unit tests for usage metering."""

from __future__ import annotations

import asyncio
import json

import httpx

from priorauth.usage.reporter import (
    AGENT_USAGE_TYPE,
    HttpUsageReporter,
    NullUsageReporter,
    UsageReporter,
    report_in_background,
)


class RecordingReporter(UsageReporter):
    def __init__(self, exc: Exception | None = None):
        self.exc = exc
        self.calls: list[tuple[str, str, int]] = []

    async def report(self, user_id, usage_type, quantity=1):
        self.calls.append((user_id, usage_type, quantity))
        if self.exc is not None:
            raise self.exc
        return None


class TestHttpUsageReporter:
    def test_posts_payload_and_parses_record(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            body = json.loads(request.content)
            return httpx.Response(201, json={"id": "rec-7", **body})

        async def _run():
            reporter = HttpUsageReporter("https://billing.example.com/usage", transport=httpx.MockTransport(handler))
            try:
                return await reporter.report("user-1", AGENT_USAGE_TYPE)
            finally:
                await reporter.aclose()

        record = asyncio.run(_run())

        assert json.loads(seen[0].content) == {
            "user_id": "user-1",
            "usage_type": "agent_invocation",
            "quantity": 1,
        }
        assert record.id == "rec-7"
        assert record.user_id == "user-1"

    def test_empty_response_body(self):
        async def _run():
            reporter = HttpUsageReporter(
                "https://billing.example.com/usage",
                transport=httpx.MockTransport(lambda request: httpx.Response(204)),
            )
            try:
                return await reporter.report("user-1", AGENT_USAGE_TYPE)
            finally:
                await reporter.aclose()

        assert asyncio.run(_run()) is None


class TestReportInBackground:
    def test_anonymous_requests_not_metered(self):
        reporter = RecordingReporter()

        async def _run():
            return report_in_background(reporter, None)

        assert asyncio.run(_run()) is None
        assert reporter.calls == []

    def test_reports_one_unit(self):
        reporter = RecordingReporter()

        async def _run():
            await report_in_background(reporter, "user-1")

        asyncio.run(_run())
        assert reporter.calls == [("user-1", "agent_invocation", 1)]

    def test_failures_are_swallowed(self):
        reporter = RecordingReporter(exc=httpx.ConnectError("billing down"))

        async def _run():
            task = report_in_background(reporter, "user-1")
            await task
            return task.exception()

        assert asyncio.run(_run()) is None
        assert len(reporter.calls) == 1

    def test_http_error_status_is_swallowed(self):
        async def _run():
            reporter = HttpUsageReporter(
                "https://billing.example.com/usage",
                transport=httpx.MockTransport(lambda request: httpx.Response(500)),
            )
            try:
                await report_in_background(reporter, "user-1")
            finally:
                await reporter.aclose()

        asyncio.run(_run())


def test_null_reporter():
    assert asyncio.run(NullUsageReporter().report("user-1", AGENT_USAGE_TYPE)) is None
