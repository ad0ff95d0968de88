import logging
import os
import threading
import time
from datetime import datetime, timezone

import psutil
from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)

SERVICE_NAME = "project-tracker-bot"
VERSION = "1.0.0"


class HealthMonitor:
    """Request and 5xx counters plus process memory for /status."""

    def __init__(self) -> None:
        self.started = time.monotonic()
        self.process = psutil.Process(os.getpid())
        self.request_count = 0
        self.error_count = 0
        self._lock = threading.Lock()

    def record(self, status_code: int) -> None:
        with self._lock:
            self.request_count += 1
            if status_code >= 500:
                self.error_count += 1

    def memory_usage(self) -> dict:
        """Resident and virtual size of this process, in MB."""
        info = self.process.memory_info()
        return {
            "rss_mb": round(info.rss / 1024 / 1024, 1),
            "vms_mb": round(info.vms / 1024 / 1024, 1),
        }

    def stats(self) -> dict:
        with self._lock:
            count, errors = self.request_count, self.error_count
        return {
            "uptime": time.monotonic() - self.started,
            "request_count": count,
            "error_count": errors,
            "error_rate": round(errors / count * 100, 2) if count else 0.0,
        }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_server(bot) -> Flask:
    """
    `bot` provides: settings, db, slack_status() and trigger_digest() -> bool.
    Slack traffic goes over socket mode; this app only serves ops endpoints.
    """
    flask_app = Flask(__name__)
    monitor = HealthMonitor()
    flask_app.extensions["health_monitor"] = monitor

    @flask_app.before_request
    def log_request():
        g.started = time.monotonic()
        logger.info("📥 %s %s", request.method, request.path)

    @flask_app.after_request
    def log_response(response):
        duration_ms = (time.monotonic() - g.get("started", time.monotonic())) * 1000
        monitor.record(response.status_code)
        level = logging.ERROR if response.status_code >= 500 else (
            logging.WARNING if response.status_code >= 400 else logging.INFO
        )
        logger.log(level, "📤 %s %s %s %.0fms", request.method, request.path, response.status_code, duration_ms)
        return response

    @flask_app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Not Found", "message": "The requested endpoint does not exist"}), 404

    @flask_app.errorhandler(Exception)
    def unexpected_error(error):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.name, "message": error.description}), error.code
        logger.exception("Unhandled HTTP error")
        message = str(error) if bot.settings.is_development else "Something went wrong"
        return jsonify({"error": "Internal Server Error", "message": message}), 500

    @flask_app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "name": "Project Tracker Bot",
            "description": "Slack bot for project management with a SQL store and OpenAI integration",
            "version": VERSION,
            "environment": bot.settings.app_env,
            "endpoints": {
                "health": "/health",
                "database_health": "/health/database",
                "status": "/status",
                "trigger_digest": "POST /trigger-digest",
            },
        })

    @flask_app.route("/health", methods=["GET"])
    def health():
        # no database call here so platform probes stay cheap
        return jsonify({
            "status": "healthy",
            "timestamp": _now(),
            "uptime": round(monitor.stats()["uptime"], 1),
            "environment": bot.settings.app_env,
            "slack": bot.slack_status(),
        })

    @flask_app.route("/health/database", methods=["GET"])
    def database_health():
        try:
            ok = bot.db.ping()
        except Exception as e:
            logger.error("Database health check failed: %r", e)
            return jsonify({
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(e),
                "timestamp": _now(),
            }), 503
        return jsonify({
            "status": "healthy" if ok else "unhealthy",
            "database": "connected" if ok else "disconnected",
            "timestamp": _now(),
        }), 200 if ok else 503

    @flask_app.route("/status", methods=["GET"])
    def status():
        stats = monitor.stats()
        return jsonify({
            "service": SERVICE_NAME,
            "version": VERSION,
            "status": "running",
            "timestamp": _now(),
            "uptime": int(stats["uptime"]),
            "slack": bot.slack_status(),
            "database": "connected" if bot.db.is_open else "disconnected",
            "monitoring": {
                "request_count": stats["request_count"],
                "error_count": stats["error_count"],
                "error_rate": stats["error_rate"],
                "memory_usage": monitor.memory_usage(),
            },
            "features": {
                "slash_commands": ["/project-new", "/project-update", "/project-list"],
                "weekly_digest": True,
                "ai_analysis": bot.settings.ai_enabled,
            },
        })

    @flask_app.route("/trigger-digest", methods=["POST"])
    def trigger_digest():
        if not bot.slack_status().get("is_running"):
            return jsonify({"error": "Slack app not initialized"}), 503

        try:
            sent = bot.trigger_digest()
        except Exception as e:
            logger.error("Error triggering manual digest: %r", e)
            return jsonify({"error": "Failed to trigger digest", "message": str(e)}), 500

        if not sent:
            return jsonify({"error": "Failed to trigger digest", "message": "Digest could not be generated or posted"}), 500
        logger.info("Manual digest trigger requested")
        return jsonify({"success": True, "message": "Weekly digest triggered successfully"})

    return flask_app
