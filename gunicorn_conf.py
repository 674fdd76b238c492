"""
Gunicorn Configuration for the Wager Ledger
Uvicorn workers serving webhook_server.create_app()

Run with: gunicorn -c gunicorn_conf.py
"""
import logging
import os

from webhook_server import configure_logging

# Application
wsgi_app = "webhook_server:create_app()"

# Server socket
bind = f"0.0.0.0:{os.getenv('PORT', '3001')}"
backlog = 2048

# Worker processes
# The in-memory store is per process; run more than one worker only with LEDGER_STORE_BACKEND=sql
workers = int(os.getenv("WEB_CONCURRENCY", "1"))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
max_requests = 10000
max_requests_jitter = 1000
timeout = 60
keepalive = 30

# Logging
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Process naming
proc_name = "wager_ledger"

daemon = False
preload_app = False

logger = logging.getLogger("gunicorn_conf")


def on_starting(server):
    """Called just before the master process is initialized."""
    configure_logging()
    if workers > 1 and os.getenv("LEDGER_STORE_BACKEND", "memory").lower() != "sql":
        logger.warning("⚠️ Multiple workers with the in-memory store: each worker keeps its own balances")
    logger.info("🚀 Gunicorn master process starting...")


def when_ready(server):
    """Called just after the server is started."""
    logger.info(f"✅ Gunicorn ready with {workers} uvicorn workers on {bind}")


def post_fork(server, worker):
    """Called just after a worker has been forked."""
    configure_logging()
    logger.info(f"🔧 Worker {worker.pid} started")


def worker_abort(worker):
    """Called when a worker receives the SIGABRT signal."""
    logger.error(f"❌ Worker {worker.pid} aborted")


def worker_exit(server, worker):
    """Called just after a worker has been exited."""
    logger.info(f"👋 Worker {worker.pid} exited")
