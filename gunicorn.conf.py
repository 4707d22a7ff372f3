"""Gunicorn configuration file.

Run with:
    gunicorn -c gunicorn.conf.py 'admin_console.flask_app:wsgi_app()'

Each worker owns one role engine (store, directory sync adapter, audit
recorder and transition worker pool). Requests inside a worker are served
by threads; the orchestrator is safe to share between them because every
write is a compare-and-swap on the account version.
"""
import os

bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:8000")
workers = int(os.environ.get("GUNICORN_WORKERS", "2"))
threads = int(os.environ.get("GUNICORN_THREADS", "4"))
worker_class = "gthread"
# Directory retries with backoff can take several seconds
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "60"))
accesslog = "-"


def post_fork(server, worker):
    """
    Called just after a worker has been forked.

    Reports where secrets will be read from. ``load_settings`` prefers the
    secrets mount and falls back to environment variables.
    """
    from pathlib import Path

    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"
    secrets_dir = Path(os.environ.get("SECRETS_DIR", "/run/secrets"))
    if secrets_dir.exists() and secrets_dir.is_dir():
        secret_files = [p for p in secrets_dir.glob("*") if p.is_file()]
        worker.log.info(f"Found {len(secret_files)} secrets in {secrets_dir}")
        return

    if demo_mode:
        worker.log.info(f"No secrets mount at {secrets_dir} (demo mode, using generated defaults)")
    else:
        worker.log.warning(f"No secrets mount at {secrets_dir}; falling back to environment variables")


def worker_exit(server, worker):
    """Drain in-flight role transitions before the worker goes away."""
    app = getattr(worker, "wsgi", None)
    services = getattr(app, "extensions", {}).get("admin_console") if app is not None else None
    if services is None:
        return
    worker.log.info("Waiting for pending role transitions")
    services.orchestrator.shutdown()
