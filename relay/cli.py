"""Command-line interface for running convergence sessions."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from typing import Optional

from convergence.core.errors import ConvergenceError
from relay.config import RunnerConfig
from relay.models import ConvergeRequest, ConvergeResponse, ProviderType
from relay.providers import (
    default_models,
    missing_api_keys,
    provider_for_model,
    provider_status,
)
from relay.service import converge
from relay.templates import TEMPLATES, all_templates

PREVIEW_CHARS = 200

_PROVIDERS = tuple(p.value for p in ProviderType)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relay",
        description="Converge a draft through Writer/Collaborator rounds.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run one convergence session.")
    run.add_argument("idea", help="What the artifact should achieve.")
    run.add_argument("--context", help="Optional background for both roles.")
    run.add_argument(
        "--template",
        default="email-reply",
        choices=sorted(TEMPLATES),
        help="Artifact template id.",
    )
    run.add_argument("--writer-provider", choices=_PROVIDERS, help="Writer back-end.")
    run.add_argument("--collaborator-provider", choices=_PROVIDERS, help="Collaborator back-end.")
    run.add_argument("--writer-model", help="Writer model id. Defaults per template.")
    run.add_argument("--collaborator-model", help="Collaborator model id. Defaults per template.")
    run.add_argument("--max-rounds", type=int, help="Override the template's round limit.")
    run.add_argument("--threshold", type=float, help="Override the template's score threshold.")
    run.add_argument("--timeout", type=float, help="Wall-clock limit in seconds.")
    run.add_argument("--show-log", action="store_true", help="Print every round's feedback.")
    run.add_argument("--json", action="store_true", help="Print the full response as JSON.")

    sub.add_parser("templates", help="List available templates.")
    sub.add_parser("health", help="Show which provider API keys are set.")
    return parser


def _resolve_provider(explicit: Optional[str], model: str) -> ProviderType:
    if explicit:
        return ProviderType(explicit)
    inferred = provider_for_model(model)
    if inferred is None:
        raise ConvergenceError(
            f"Cannot infer provider for model '{model}'; pass it explicitly."
        )
    return inferred


def request_from_args(args: argparse.Namespace) -> ConvergeRequest:
    writer_default, collaborator_default = default_models(args.template)
    writer_model = args.writer_model or writer_default
    collaborator_model = args.collaborator_model or collaborator_default
    return ConvergeRequest(
        idea=args.idea,
        context=args.context,
        template_id=args.template,
        writer_provider=_resolve_provider(args.writer_provider, writer_model),
        collaborator_provider=_resolve_provider(args.collaborator_provider, collaborator_model),
        writer_model=writer_model,
        collaborator_model=collaborator_model,
        max_rounds=args.max_rounds,
        score_threshold=args.threshold,
        show_log=args.show_log,
    )


def format_summary(response: ConvergeResponse, show_log: bool = False) -> str:
    """Human-readable report of one response."""
    lines: list[str] = []
    if response.error:
        lines.append(f"Error: {response.error}")
    result = response.data
    if result is None:
        return "\n".join(lines)

    lines.append(f"Stop Reason: {result.stop_reason.value}")
    lines.append(f"Rounds: {len(result.rounds)}")
    lines.append(f"Time: {result.total_time_ms / 1000:.2f}s")

    if show_log:
        for r in result.rounds:
            fb = r.feedback
            ready = " (ready)" if fb.ready else ""
            lines.append(f"\n--- Round {r.round_num}: {fb.score}/10{ready} ---")
            for item in fb.must_fix:
                lines.append(f"  must fix: {item}")
            for item in fb.should_improve:
                lines.append(f"  improve:  {item}")
            for item in fb.questions:
                lines.append(f"  question: {item}")

    preview = result.final[:PREVIEW_CHARS]
    if len(result.final) > PREVIEW_CHARS:
        preview += "..."
    lines += ["", "Final Output Preview:", "-" * 22, preview, "-" * 22]
    return "\n".join(lines)


def _cmd_run(args: argparse.Namespace) -> int:
    request = request_from_args(args)
    missing = missing_api_keys([request.writer_provider, request.collaborator_provider])
    if missing:
        print(f"Error: missing API keys: {', '.join(missing)}", file=sys.stderr)
        return 2
    config = RunnerConfig()
    if args.timeout is not None:
        config = dataclasses.replace(config, timeout_seconds=args.timeout)
    response = asyncio.run(converge(request, config=config))
    if args.json:
        print(json.dumps(response.to_dict(), indent=2))
    else:
        print(format_summary(response, show_log=request.show_log))
    return 0 if response.success else 1


def _cmd_templates() -> int:
    for template in all_templates():
        policy = template.convergence_policy
        print(
            f"{template.id:<16} {template.name} "
            f"(max_rounds={policy.max_rounds}, threshold={policy.score_threshold})"
        )
    return 0


def _cmd_health() -> int:
    print(json.dumps({"status": "ok", "env": provider_status()}, indent=2))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        if args.command == "templates":
            return _cmd_templates()
        if args.command == "health":
            return _cmd_health()
        return _cmd_run(args)
    except ConvergenceError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
