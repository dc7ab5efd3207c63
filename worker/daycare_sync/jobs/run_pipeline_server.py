"""HTTP entrypoint that triggers directory sync runs (Cloud Run friendly)."""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from daycare_sync.core.config import get_settings
from daycare_sync.core.store import DaycareStore
from daycare_sync.jobs.run_pipeline import run_pipeline
from daycare_sync.models import SOURCE_ORDER

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & executor ----------
app = Flask(__name__)
# One worker: two runs must never merge into the directory at the same time.
_executor = ThreadPoolExecutor(max_workers=1)
_state_lock = threading.Lock()
_current: Optional[Future] = None
_stop_event = threading.Event()
_latest_summary: Optional[Dict[str, Any]] = None

# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    """Simple root to avoid 404 on GET /"""
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Lightweight health endpoint; reads settings only, never touches the DB."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": getattr(settings, "worker_port", None),
                "run_in_progress": _run_in_progress(),
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.post("/runs")
def enqueue_run() -> Any:
    """
    Queue a pipeline run.
    Optional JSON fields: sources (list of source ids), resume (bool)
    """
    global _current
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    sources = payload.get("sources") or list(SOURCE_ORDER)
    if not isinstance(sources, list) or not all(isinstance(s, str) for s in sources):
        return jsonify({"error": "sources must be a list of source ids"}), 400
    unknown = [s for s in sources if s not in SOURCE_ORDER]
    if unknown:
        return jsonify({"error": f"unknown sources: {', '.join(unknown)}"}), 400
    resume = bool(payload.get("resume", False))

    with _state_lock:
        if _run_in_progress():
            return jsonify({"error": "a run is already in progress"}), 409
        _stop_event.clear()
        job_args = dict(sources=sources, resume=resume)
        logger.info("Queueing pipeline run: %s", job_args)
        _current = _executor.submit(_run_job_safe, job_args)

    return jsonify({"data": {"status": "queued", **job_args}}), 202


@app.get("/runs/latest")
def latest_run() -> Any:
    if _latest_summary is None:
        return jsonify({"data": None, "running": _run_in_progress()}), 404
    return jsonify({"data": _latest_summary, "running": _run_in_progress()}), 200


@app.post("/runs/stop")
def stop_run() -> Any:
    """Ask the current run to stop at the next source boundary."""
    if not _run_in_progress():
        return jsonify({"data": {"status": "idle"}}), 200
    _stop_event.set()
    logger.info("Stop requested for the current run")
    return jsonify({"data": {"status": "stopping"}}), 202


# ---------- Internals ----------


def _run_in_progress() -> bool:
    return _current is not None and not _current.done()


def _run_job_safe(job_args: Dict[str, Any]) -> None:
    global _latest_summary
    try:
        summary = run_pipeline(get_settings(), DaycareStore(), stop_event=_stop_event, **job_args)
        _latest_summary = summary.to_dict(detailed=True)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Pipeline run failed: %s", exc)
        _latest_summary = {"status": "aborted", "error": str(exc), "sources": {}}


def main() -> None:
    """Cloud Run injects PORT; locally fall back to WORKER_PORT."""
    env_port = os.getenv("PORT")
    logger.info("[BOOT] ENV PORT=%s", env_port)

    port = int(env_port or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
