"""Health check endpoints."""
from flask import Blueprint, current_app, jsonify

from admin_console.core.health import HealthStatus, run_probes

bp = Blueprint("health", __name__)


@bp.route("/health")
def health_check():
    """Liveness: the process is up."""
    return ("ok", 200, {"Content-Type": "text/plain"})


@bp.route("/ready")
def readiness_check():
    """Readiness: aggregate of every dependency probe."""
    overall, reports = run_probes(current_app.extensions["admin_console"].probes)
    status_code = 503 if overall is HealthStatus.UNHEALTHY else 200
    return jsonify({
        "status": overall.value,
        "checks": {name: report.to_dict() for name, report in reports.items()},
    }), status_code


@bp.route("/health/<probe_name>")
def probe_check(probe_name: str):
    """Single dependency probe (``directory`` or ``secrets``)."""
    for probe in current_app.extensions["admin_console"].probes:
        if probe.name == probe_name:
            report = probe.check()
            return jsonify(report.to_dict()), 503 if report.status is HealthStatus.UNHEALTHY else 200
    return jsonify({"error": "Not Found", "message": f"Unknown probe '{probe_name}'"}), 404
