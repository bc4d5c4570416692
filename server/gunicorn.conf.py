"""Gunicorn configuration for production deployment.

Reads the same environment variables as core/config.py.

Usage:
    gunicorn main:app -c gunicorn.conf.py

Each worker runs its own delay scheduler and watchdog. With
DISPATCH_MODE=http steps are spread across workers through the internal
advance endpoint; with DISPATCH_MODE=local a step stays in the worker
that dispatched it.
"""
import os
import multiprocessing

host = os.getenv("HOST", "0.0.0.0")
port = os.getenv("PORT", "3020")
workers_env = os.getenv("WORKERS", "0")  # 0 = auto-calculate
log_level = os.getenv("LOG_LEVEL", "INFO").lower()
debug = os.getenv("DEBUG", "false").lower() == "true"

bind = f"{host}:{port}"

# WORKERS=0 means auto (cpu + 1), WORKERS=N means use N
workers_count = int(workers_env)
workers = workers_count if workers_count > 0 else (multiprocessing.cpu_count() + 1)
worker_class = "uvicorn.workers.UvicornWorker"

# Steps run after the advance response is sent, so the request timeout only
# bounds the accept path; STEP_LEASE_SECONDS bounds the step itself.
timeout = int(os.getenv("GUNICORN_TIMEOUT", "120"))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNICORN_KEEPALIVE", "5"))

max_requests = int(os.getenv("GUNICORN_MAX_REQUESTS", "10000"))
max_requests_jitter = int(os.getenv("GUNICORN_MAX_REQUESTS_JITTER", "1000"))

accesslog = "-" if not debug else None
errorlog = "-"
loglevel = log_level

proc_name = "automation-engine"

# The scheduler and watchdog start in the lifespan hook, i.e. per worker,
# so preloading the app is safe.
preload_app = not debug
