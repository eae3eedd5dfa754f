import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from flask import Flask, jsonify, request

logger = logging.getLogger(__name__)


def create_health_app(started_at: Optional[float] = None, env: str = "development", clock: Callable[[], float] = time.time) -> Flask:
    """Liveness endpoint for the host platform; the bot itself talks to Slack over Socket Mode."""
    started = started_at if started_at is not None else clock()
    app = Flask(__name__)

    @app.route("/health", methods=["GET"])
    def health_check():
        return jsonify({
            "success": True,
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(clock() - started, 3),
            "env": env,
        }), 200

    @app.errorhandler(404)
    def _not_found(error):
        return jsonify({"success": False, "error": "Not Found", "path": request.path}), 404

    return app


def serve_in_background(app: Flask, port: int) -> threading.Thread:
    t = threading.Thread(
        target=app.run,
        kwargs={"host": "0.0.0.0", "port": port, "use_reloader": False},
        name="health-server",
        daemon=True,
    )
    t.start()
    logger.info("[health] listening on :%d/health", port)
    return t
