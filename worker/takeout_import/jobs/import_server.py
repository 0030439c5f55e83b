"""HTTP entrypoint that starts Takeout imports and reports their progress."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from flask import Flask, current_app, jsonify, request

from takeout_import.core.config import get_settings
from takeout_import.core.db import init_pool
from takeout_import.core.errors import FatalJobError
from takeout_import.jobs.controller import ImportJobController, build_controller
from takeout_import.models import ListSelection

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"


def create_app(controller: ImportJobController, upload_dir: Optional[str] = None) -> Flask:
    app = Flask(__name__)
    app.config["IMPORT_CONTROLLER"] = controller
    app.config["UPLOAD_DIR"] = Path(upload_dir or get_settings().upload_dir).resolve()

    # ---------- Routes ----------

    @app.get("/")
    def root() -> Any:
        """Simple root to avoid 404 on GET /"""
        return "ok", 200

    @app.get("/healthz")
    def healthcheck() -> Any:
        return (
            jsonify(
                {
                    "status": "ok",
                    "lookupQueue": _controller().queue_status(),
                    "revision": os.getenv("K_REVISION", "unknown"),
                }
            ),
            200,
        )

    @app.post("/import/analyze")
    def analyze_archive() -> Any:
        """List the saved lists in an uploaded archive.

        Required JSON fields: filePath
        """
        if _user_id() is None:
            return jsonify({"error": "authentication required"}), 401

        payload: Dict[str, Any] = request.get_json(silent=True) or {}
        archive_path = _resolve_upload(payload.get("filePath"))
        if archive_path is None:
            return jsonify({"error": "filePath must name an uploaded archive"}), 400

        try:
            lists = _controller().analyze(str(archive_path))
        except FatalJobError as exc:
            return jsonify({"error": str(exc)}), 422

        return jsonify({"totalLists": len(lists), "lists": lists}), 200

    @app.post("/import/process")
    def enqueue_import() -> Any:
        """
        Start an import job in the background.
        Required JSON fields: filePath
        Optional: selectedLists [{name, displayName?, monetize|isPaid, price}], skipGeocoding (bool)
        """
        user_id = _user_id()
        if user_id is None:
            return jsonify({"error": "authentication required"}), 401

        payload: Dict[str, Any] = request.get_json(silent=True) or {}
        archive_path = _resolve_upload(payload.get("filePath"))
        if archive_path is None:
            return jsonify({"error": "filePath must name an uploaded archive"}), 400

        raw_selections = payload.get("selectedLists") or []
        if not isinstance(raw_selections, list):
            return jsonify({"error": "selectedLists must be a list"}), 400
        try:
            selections: List[ListSelection] = [ListSelection.from_dict(item) for item in raw_selections]
        except (AttributeError, ValueError) as exc:
            return jsonify({"error": f"invalid selectedLists entry: {exc}"}), 400

        job_id = _controller().submit(
            str(archive_path),
            user_id,
            selections=selections,
            skip_lookup=bool(payload.get("skipGeocoding", False)),
        )
        logger.info("Queued import job %s (%d selected lists)", job_id, len(selections))

        return jsonify({"jobId": job_id, "status": "queued"}), 202

    @app.get("/import/status/<job_id>")
    def import_status(job_id: str) -> Any:
        user_id = _user_id()
        if user_id is None:
            return jsonify({"error": "authentication required"}), 401

        status = _controller().status(job_id, user_id=user_id)
        if status is None:
            return jsonify({"error": "job not found"}), 404
        return jsonify(status), 200

    return app


# ---------- Internals ----------


def _controller() -> ImportJobController:
    return current_app.config["IMPORT_CONTROLLER"]


def _user_id() -> Optional[str]:
    user_id = (request.headers.get(USER_HEADER) or "").strip()
    return user_id or None


def _resolve_upload(raw_path: Any) -> Optional[Path]:
    """Resolve a client-supplied path, accepting only files inside the upload dir."""
    if not raw_path or not isinstance(raw_path, str):
        return None
    upload_dir: Path = current_app.config["UPLOAD_DIR"]
    candidate = Path(raw_path)
    if not candidate.is_absolute():
        # Uploads are stored flat, so "uploads/takeout-1.zip" and "takeout-1.zip" name the same file.
        candidate = upload_dir / candidate.name
    resolved = candidate.resolve()
    if not resolved.is_relative_to(upload_dir) or not resolved.is_file():
        return None
    return resolved


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
    settings = get_settings()
    init_pool()
    controller = build_controller(settings)
    app = create_app(controller, settings.upload_dir)

    port = int(os.getenv("PORT") or settings.worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    try:
        app.run(host="0.0.0.0", port=port)
    finally:
        controller.shutdown(wait=False)


if __name__ == "__main__":
    main()
