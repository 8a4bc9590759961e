"""CLI entry point for priorauth."""

from __future__ import annotations

import asyncio
import json

import click

from priorauth.config import Settings, load_settings
from priorauth.logging_setup import configure_logging
from priorauth.models.schema import AgentTurn
from priorauth.runtime import build_runtime, failed_preflight_checks, run_preflight
from priorauth.server.transport import steps_payload


def _settings(config_path: str | None) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.log_level, settings.log_json)
    return settings


async def _ask(settings: Settings, question: str, steps: bool) -> None:
    runtime = build_runtime(settings)
    history = [AgentTurn.user(question)]
    try:
        if steps:
            result = await runtime.loop.run(history)
            click.echo(json.dumps(steps_payload(result), indent=2, default=str))
            return
        async for event in runtime.loop.stream(history):
            if event.kind == "model_chunk":
                click.echo(event.content, nl=False)
            elif event.kind == "tool_start":
                click.echo(f"\n[tool] {event.call.name} {json.dumps(event.call.arguments)}", err=True)
        click.echo()
    finally:
        await runtime.aclose()


async def _preflight(settings: Settings) -> bool:
    runtime = build_runtime(settings)
    try:
        results = await run_preflight(runtime.engine, runtime.cms)
    finally:
        await runtime.aclose()
    for r in results:
        mark = "OK  " if r.ok else "FAIL"
        click.echo(f"{mark} {r.name:<20} {r.latency_ms:>7.0f} ms  {r.detail}")
    return not failed_preflight_checks(results)


@click.group()
def main():
    """Prior-authorization coverage assistant (Medicare NCD/LCD/Article, Carelon, Evolent)."""
    pass


@main.command("ask")
@click.argument("question")
@click.option("--steps", is_flag=True, help="Print intermediate tool steps as JSON instead of streaming")
@click.option("--config", "config_path", type=click.Path(exists=True), default=None)
def ask_cmd(question: str, steps: bool, config_path: str | None):
    """Ask one coverage question and print the answer."""
    asyncio.run(_ask(_settings(config_path), question, steps))


@main.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--config", "config_path", type=click.Path(exists=True), default=None)
def serve_cmd(host: str, port: int, config_path: str | None):
    """Run the HTTP API (POST /api/chat/agents)."""
    import uvicorn

    from priorauth.server.app import create_app

    settings = _settings(config_path)
    uvicorn.run(create_app(settings=settings), host=host, port=port)


@main.command("preflight")
@click.option("--config", "config_path", type=click.Path(exists=True), default=None)
def preflight_cmd(config_path: str | None):
    """Check the model endpoint and CMS Coverage API are reachable."""
    ok = asyncio.run(_preflight(_settings(config_path)))
    if not ok:
        raise SystemExit(1)
