# SPDX-License-Identifier: Apache-2.0
"""
Read-only status API for the mutation pipeline.

Serves persisted state (evolution log, novelty archive) and, when an
orchestrator is attached in-process, its live status. Nothing here can
trigger or alter a mutation.
"""

from __future__ import annotations

import json
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Query

from seedforge import __version__
from seedforge.app.orchestrator import MutationOrchestrator
from seedforge.runtime import metrics
from seedforge.runtime.config import EvolutionConfig, load_config
from seedforge.runtime.evolution.evolution_log import EvolutionLog
from seedforge.runtime.timeutils import now_iso

SERVICE_PROTOCOL = "seedforge-status/1.0"


def _archive_summary(config: EvolutionConfig) -> Dict[str, Any]:
    path = config.novelty_archive_path
    if not path.exists():
        return {"present": False, "size": 0}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {"present": True, "readable": False, "size": 0}
    records = payload.get("records") if isinstance(payload, dict) else None
    return {
        "present": True,
        "readable": True,
        "size": len(records or []),
        "saved_at": payload.get("saved_at") if isinstance(payload, dict) else None,
    }


def create_app(config: EvolutionConfig | None = None, orchestrator: MutationOrchestrator | None = None) -> FastAPI:
    cfg = config or (orchestrator.config if orchestrator else load_config())
    app = FastAPI(title="SeedForge Status Server", version=__version__)

    def _log() -> EvolutionLog:
        if orchestrator is not None:
            return orchestrator.evolution_log
        return EvolutionLog(cfg.evolution_log_path, cfg.log_capacity)

    @app.get("/api/health")
    def health() -> Dict[str, Any]:
        state_dir = cfg.state_dir
        return {
            "ok": True,
            "ts": now_iso(),
            "protocol": SERVICE_PROTOCOL,
            "version": __version__,
            "state_dir_present": state_dir.exists(),
            "orchestrator_attached": orchestrator is not None,
        }

    @app.get("/api/evolution/status")
    def evolution_status() -> Dict[str, Any]:
        if orchestrator is not None:
            return {"live": True, **orchestrator.status()}
        log = _log()
        return {
            "live": False,
            "log_entries": len(log),
            "outcomes": log.outcome_counts(),
            "archive": _archive_summary(cfg),
            "targets": [str(path) for path in cfg.targets],
        }

    @app.get("/api/evolution/log")
    def evolution_log(limit: int = Query(50, ge=1, le=500), outcome: str | None = None) -> Dict[str, Any]:
        entries = _log().entries()
        if outcome:
            entries = [entry for entry in entries if entry.outcome == outcome]
        return {"count": len(entries), "entries": [entry.to_dict() for entry in entries[-limit:]]}

    @app.get("/api/evolution/log/{cycle}")
    def evolution_log_entry(cycle: int) -> Dict[str, Any]:
        for entry in reversed(_log().entries()):
            if entry.cycle == cycle:
                return entry.to_dict()
        raise HTTPException(status_code=404, detail=f"cycle {cycle} not found")

    @app.get("/api/metrics/tail")
    def metrics_tail(limit: int = Query(50, ge=1, le=1000), event: str | None = None) -> Dict[str, Any]:
        return {"entries": metrics.tail(limit=limit, event=event)}

    @app.get("/api/metrics/summary")
    def metrics_summary(limit: int = Query(1000, ge=1, le=10000)) -> Dict[str, Any]:
        return {"window": limit, "events": metrics.event_counts(limit)}

    return app


__all__ = ["SERVICE_PROTOCOL", "create_app"]
