# SPDX-License-Identifier: Apache-2.0
"""
Command-line entrypoint.

    seedforge run --target path/to/module.py --cycles 3
    seedforge run --forever
    seedforge status --limit 20
    seedforge serve --port 8080
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import signal
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping

from seedforge.app.orchestrator import MutationOrchestrator
from seedforge.runtime.config import EvolutionConfig, load_config
from seedforge.runtime.evolution.evolution_log import EvolutionLog
from seedforge.runtime.evolution.pattern_import import GitHubPatternSource
from seedforge.runtime.intelligence.fleet import FleetMember, OracleFleet
from seedforge.runtime.intelligence.llm_provider import AnthropicOracle, load_provider_config
from seedforge.runtime.intelligence.oracle import Oracle


def build_orchestrator(
    config: EvolutionConfig,
    env: Mapping[str, str] | None = None,
    oracle: Oracle | None = None,
) -> MutationOrchestrator:
    source = os.environ if env is None else env
    evaluator: Oracle | None = None
    if oracle is None:
        fleet = OracleFleet([FleetMember(AnthropicOracle(load_provider_config(source)), priority=1)])
        oracle = fleet
        evaluator = fleet.view(1)
    pattern_source = GitHubPatternSource(token=(source.get("SEEDFORGE_GITHUB_TOKEN") or "").strip())
    return MutationOrchestrator(oracle, config, evaluator=evaluator, pattern_source=pattern_source)


def _config_from_args(args: argparse.Namespace) -> EvolutionConfig:
    config = load_config()
    overrides: Dict[str, Any] = {}
    if getattr(args, "state_dir", None):
        overrides["state_dir"] = Path(args.state_dir)
    if getattr(args, "target", None):
        overrides["targets"] = tuple(Path(item) for item in args.target)
    return config.with_overrides(**overrides) if overrides else config


async def _run(orchestrator: MutationOrchestrator, cycles: int, forever: bool) -> list[Dict[str, Any]]:
    if forever:
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, stop.set)
            except (NotImplementedError, RuntimeError):
                continue
        await orchestrator.run_forever(stop)
        return []
    results = []
    for _ in range(cycles):
        entry = await orchestrator.run_one_cycle()
        results.append(entry.to_dict() if entry else {"outcome": None})
    return results


def _cmd_run(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    if not config.targets:
        print(json.dumps({"ok": False, "error": "no_targets"}))
        return 2
    orchestrator = build_orchestrator(config)
    results = asyncio.run(_run(orchestrator, args.cycles, args.forever))
    print(json.dumps({"ok": True, "results": results, "status": orchestrator.status()}, ensure_ascii=False, default=str))
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    log = EvolutionLog(config.evolution_log_path, config.log_capacity)
    payload = {
        "config": config.to_dict(),
        "entries": len(log),
        "outcomes": log.outcome_counts(),
        "recent": [entry.to_dict() for entry in log.tail(args.limit)],
    }
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from seedforge.server import create_app

    uvicorn.run(create_app(_config_from_args(args)), host=args.host, port=args.port, log_level="info")
    return 0


def _parse_args(argv: Iterable[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="seedforge", description="Governed self-mutation pipeline.")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run mutation cycles against target files")
    run.add_argument("--target", action="append", help="Target source file (repeatable)")
    run.add_argument("--state-dir", help="Directory for the evolution log and novelty archive")
    run.add_argument("--cycles", type=int, default=1, help="Number of evolution cycles to run")
    run.add_argument("--forever", action="store_true", help="Run scheduled cycles until interrupted")
    run.set_defaults(handler=_cmd_run)

    status = sub.add_parser("status", help="Show persisted evolution history")
    status.add_argument("--state-dir", help="Directory for the evolution log and novelty archive")
    status.add_argument("--limit", type=int, default=20)
    status.set_defaults(handler=_cmd_status)

    serve = sub.add_parser("serve", help="Serve the read-only status API")
    serve.add_argument("--state-dir", help="Directory for the evolution log and novelty archive")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8080)
    serve.set_defaults(handler=_cmd_serve)

    return parser.parse_args(list(argv) if argv is not None else None)


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_args(argv)
    return int(args.handler(args))


if __name__ == "__main__":
    raise SystemExit(main())


__all__ = ["build_orchestrator", "main"]
