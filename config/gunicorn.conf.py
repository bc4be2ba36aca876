"""
Gunicorn Configuration für HourInbox
Production WSGI Server Setup

Usage:
    gunicorn -c config/gunicorn.conf.py "hourinbox.app_factory:create_app()"
"""

import multiprocessing
import os

# Server Socket (TLS terminiert der Reverse Proxy, BEHIND_REVERSE_PROXY=true)
bind = os.getenv("GUNICORN_BIND", "127.0.0.1:5000")
backlog = 2048

# Worker Processes
# Sync-Worker: jeder Request läuft auf genau einem Worker bis zum Ende.
# Geteilter Zustand liegt ausschließlich in Redis und der Datenbank.
workers = int(os.getenv("GUNICORN_WORKERS", multiprocessing.cpu_count() * 2 + 1))
worker_class = "sync"
max_requests = 1000  # Restart worker after 1000 requests (memory leak prevention)
max_requests_jitter = 50
timeout = 60  # > IMAP-Connect-Timeout (10s) + Mailbox-Lock-Wartezeit (30s)
keepalive = 2

# Logging (Request-Log schreibt die App selbst, Logger "hourinbox.access")
accesslog = None
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()

# Process Naming
proc_name = "hourinbox"

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190

# Server Mechanics
daemon = False  # Run in foreground (systemd handles daemonization)
pidfile = None
umask = 0o007

raw_env = [
    "FLASK_ENV=production",
]


def on_starting(server):
    """Called just before the master process is initialized."""
    print("🚀 Starting Gunicorn server...")


def when_ready(server):
    """Called just after the server is started."""
    print(f"✅ Gunicorn ready with {workers} workers on {bind}")


def on_exit(server):
    """Called just before exiting Gunicorn."""
    print("👋 Shutting down Gunicorn...")
