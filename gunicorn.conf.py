"""Gunicorn configuration.

Run with: gunicorn -c gunicorn.conf.py "user_service.flask_app:create_app()"

Each worker builds its own app (store, Keycloak client, JWKS cache). Neither
store is shared between workers: the in-memory one lives in the process and
the JSON file store (USER_STORE_PATH) is read once at startup, then rewritten
whole on every change, so two workers would overwrite each other. Keep
GUNICORN_WORKERS=1 and scale with GUNICORN_THREADS.
"""
import os

bind = os.environ.get("GUNICORN_BIND", "0.0.0.0:8000")
workers = int(os.environ.get("GUNICORN_WORKERS", "1"))
threads = int(os.environ.get("GUNICORN_THREADS", "4"))
timeout = int(os.environ.get("GUNICORN_TIMEOUT", "30"))
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info")


def post_fork(server, worker):
    """Report where secrets come from once per worker."""
    from pathlib import Path

    secrets_dir = Path("/run/secrets")
    if secrets_dir.is_dir():
        secret_files = list(secrets_dir.glob("*"))
        if secret_files:
            worker.log.info(f"Found {len(secret_files)} secrets in /run/secrets")
            return
    worker.log.info("No /run/secrets mount, settings read from environment")
