"""Command-line interface for the reliability pipeline.

Usage:
    workflow-reliability generate "send me a daily email digest"
    workflow-reliability generate "alert me when my site is down" --email ops@acme.io
    workflow-reliability deploy "forward webhook payloads to our API" --activate
    workflow-reliability cache-cleanup
    workflow-reliability templates

Configuration comes from the environment or a .env file (see config.py,
client/config.py and reasoning.py).
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from argparse import ArgumentParser, Namespace
from typing import Any

from dotenv import load_dotenv

from workflow_reliability.client import Settings, WorkflowEngineClient
from workflow_reliability.config import ReliabilitySettings
from workflow_reliability.pipeline.deployment import DeploymentRunner
from workflow_reliability.pipeline.orchestrator import ReliabilityPipeline
from workflow_reliability.reasoning import ReasoningSettings, create_engine


def _context(args: Namespace) -> dict[str, Any]:
    return {"user_id": args.user_id, "email": args.email, "url": args.url}


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _generate(args: Namespace, settings: ReliabilitySettings) -> int:
    async with ReliabilityPipeline.from_settings(settings) as pipeline:
        result = await pipeline.generate(args.intent, _context(args))
    _print(result.to_dict() if args.verbose else {
        "template_id": result.template_id,
        "confidence": result.confidence,
        "repaired": result.repaired,
        "fallback": result.fallback,
        "reason": result.reason,
        "workflow": result.workflow.to_workflow_json(),
    })
    return 0


async def _deploy(args: Namespace, settings: ReliabilitySettings) -> int:
    llm = create_engine(ReasoningSettings.from_env())
    client = WorkflowEngineClient(Settings.from_env())
    try:
        async with ReliabilityPipeline.from_settings(settings, llm=llm) as pipeline:
            runner = DeploymentRunner(pipeline, client, activate=args.activate)
            report = await runner.run(args.intent, _context(args))
    finally:
        await client.close()
    _print(report.to_dict() if args.verbose else {
        "deployed": report.deployed,
        "workflow_id": report.workflow_id,
        "attempts": report.attempts,
        "activated": report.activated,
        "template_id": report.generation.template_id,
        "error": report.error,
    })
    return 0 if report.deployed else 1


async def _cache_cleanup(args: Namespace, settings: ReliabilitySettings) -> int:
    async with ReliabilityPipeline.from_settings(settings) as pipeline:
        if args.all:
            removed = await pipeline.cache.invalidate()
            _print({"invalidated": removed})
        else:
            _print(await pipeline.cache.cleanup())
    return 0


async def _templates(args: Namespace, settings: ReliabilitySettings) -> int:
    async with ReliabilityPipeline.from_settings(settings) as pipeline:
        _print([
            {
                "id": t.id,
                "name": t.name,
                "category": t.category,
                "complexity": t.complexity.value,
                "success_rate": t.success_rate,
                "usage_count": t.usage_count,
                "source": t.source.value,
            }
            for t in pipeline.library.all()
        ])
    return 0


_COMMANDS = {
    "generate": _generate,
    "deploy": _deploy,
    "cache-cleanup": _cache_cleanup,
    "templates": _templates,
}


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="workflow-reliability",
        description="Generate, validate and deploy workflows from free-text intent",
    )
    parser.add_argument("--log-level", default="WARNING", help="logging level (default: WARNING)")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    for name, help_text in (
        ("generate", "Generate a validated workflow and print it"),
        ("deploy", "Generate a workflow and deploy it to the engine"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("intent", help="Natural-language description of the automation")
        p.add_argument("--user-id", dest="user_id", default=None)
        p.add_argument("--email", default=None, help="recipient for email steps")
        p.add_argument("--url", default=None, help="endpoint for HTTP steps")
        p.add_argument("-v", "--verbose", action="store_true", help="print the full result")
        if name == "deploy":
            p.add_argument("--activate", action="store_true", help="activate after deploying")

    cleanup_p = sub.add_parser("cache-cleanup", help="Purge expired template cache entries")
    cleanup_p.add_argument("--all", action="store_true", help="drop every entry, not just expired ones")

    sub.add_parser("templates", help="List library templates and their statistics")
    return parser


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
    )

    command = _COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        sys.exit(1)
    sys.exit(asyncio.run(command(args, ReliabilitySettings())))


if __name__ == "__main__":
    main()
