# hourinbox/app_factory.py
"""Flask Application Factory for Blueprint-based architecture."""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env.local first (priority), then .env (fallback)
project_root = Path(__file__).parent.parent
load_dotenv(project_root / ".env.local", override=True)
load_dotenv(project_root / ".env", override=False)

from flask import Flask, g, request
from flask_limiter import Limiter
from flask_limiter.errors import RateLimitExceeded
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix
from datetime import datetime
import importlib
import logging
import time

import redis
from imapclient import IMAPClient

from hourinbox.errors import HourInboxError
from hourinbox.helpers.context import EXTENSION_KEY, ServiceRegistry
from hourinbox.helpers.database import init_engine
from hourinbox.helpers.responses import api_error
from hourinbox.services.connection_probe import probe_connection
from hourinbox.services.login_guard import LoginGuard
from hourinbox.services.mail_cache import MailCache
from hourinbox.services.session_store import SessionStore
from hourinbox.services.smtp_sender import default_smtp_factory

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("hourinbox.access")

# Global limiter instance - initialized in create_app()
limiter = None

DEFAULT_REDIS_URL = "redis://localhost:6391"
MAX_UPLOAD_BYTES = 25 * 1024 * 1024


def _configure_logging():
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(config_name="production", redis_client=None, imap_client_factory=None,
               smtp_factory=None, connection_probe=None, database_url=None):
    """Create and configure the Flask application.

    Args:
        config_name: "production", "development" oder "testing"
        redis_client: Fertiger Redis-Client (Tests: fakeredis), sonst REDIS_URL
        imap_client_factory: Ersatz für imapclient.IMAPClient (Tests)
        smtp_factory: Ersatz für die smtplib-Verbindung (Tests)
        connection_probe: Ersatz für den Erreichbarkeits-Test (Tests)
        database_url: SQLAlchemy-URL, sonst DATABASE_URL
    """
    _configure_logging()
    testing = config_name == "testing"

    if not testing:
        env_validator = importlib.import_module(".00_env_validator", "hourinbox")
        env_validator.validate_environment(production=config_name == "production")

    app = Flask(__name__)

    if os.getenv("BEHIND_REVERSE_PROXY", "false").lower() == "true":
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=1, x_proto=1, x_host=1, x_prefix=1,
        )
        logger.info("🔄 ProxyFix aktiviert - App läuft hinter Reverse Proxy")

    app.config["TESTING"] = testing
    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")
    app.config["SESSION_COOKIE_SECURE"] = (
        os.getenv("SESSION_COOKIE_SECURE", "false" if testing else "true").lower() == "true"
    )
    app.config["MAX_CONTENT_LENGTH"] = MAX_UPLOAD_BYTES
    app.config["RATELIMIT_ENABLED"] = not testing

    # Relationaler Store (Organisationen, Einstellungen, Signaturen)
    init_engine(database_url)

    if redis_client is None:
        redis_client = redis.Redis.from_url(
            os.getenv("REDIS_URL", DEFAULT_REDIS_URL),
            decode_responses=True,
            socket_connect_timeout=5,
        )

    encryption = importlib.import_module(".08_encryption", "hourinbox")
    env_validator = importlib.import_module(".00_env_validator", "hourinbox")
    vault = encryption.CredentialVault(os.getenv("SESSION_SECRET") or env_validator.DEV_SECRET)

    # Redis-Locks nur mit echtem Redis (fakeredis hat ohne Lua keine Lock-Skripte)
    use_redis_locks = os.getenv("MAILBOX_LOCKS", "local" if testing else "redis") == "redis"

    app.extensions[EXTENSION_KEY] = ServiceRegistry(
        redis=redis_client,
        vault=vault,
        sessions=SessionStore(redis_client, vault),
        cache=MailCache(redis_client),
        login_guard=LoginGuard(redis_client),
        imap_client_factory=imap_client_factory or IMAPClient,
        smtp_factory=smtp_factory or default_smtp_factory,
        connection_probe=connection_probe or probe_connection,
        lock_redis=redis_client if use_redis_locks else None,
        imap_timeout=float(os.getenv("IMAP_CONNECT_TIMEOUT", "10")),
    )

    rate_limit_storage = os.getenv("RATE_LIMIT_STORAGE", "memory://")

    global limiter
    limiter = Limiter(
        app=app,
        key_func=get_remote_address,
        default_limits=[],  # nur explizite Limits per Route
        storage_uri=rate_limit_storage,
    )
    app.limiter = limiter
    logger.info("🛡️  Rate Limiting aktiviert")

    @app.before_request
    def start_timer():
        g.request_started = time.perf_counter()

    @app.after_request
    def set_security_headers(response):
        """Set security headers"""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if request.path.startswith(("/auth", "/mail", "/settings")):
            response.headers["Cache-Control"] = "no-store"
        return response

    @app.after_request
    def log_request(response):
        started = g.get("request_started")
        duration_ms = int((time.perf_counter() - started) * 1000) if started else 0
        access_logger.info(
            f"[{datetime.now().strftime('%Y-%m-%d %H:%M:%S')}] {request.method} {request.path} "
            f"{response.status_code} {duration_ms}ms {request.remote_addr}"
        )
        return response

    @app.errorhandler(HourInboxError)
    def handle_domain_error(e):
        if e.status_code >= 500:
            logger.error(f"❌ {e.code}: {e.message}")
        return api_error(e.message, code=e.code, status_code=e.status_code)

    @app.errorhandler(RateLimitExceeded)
    def handle_rate_limit(e):
        return api_error("Too many requests", code="RATE_LIMITED", status_code=429)

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return api_error(e.description or e.name, code=e.name.upper().replace(" ", "_"),
                         status_code=e.code or 500)

    @app.errorhandler(redis.RedisError)
    def handle_redis_error(e):
        logger.error(f"❌ Redis nicht erreichbar: {e}")
        return api_error("Session store unavailable", code="SESSION_STORE_UNAVAILABLE", status_code=503)

    from .blueprints import auth_bp, mail_bp, settings_bp, org_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(mail_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(org_bp)

    # IP-basierte Limits zusätzlich zum LoginGuard (pro Mail-Adresse)
    app.view_functions["auth.login"] = limiter.limit("20 per minute")(app.view_functions["auth.login"])
    app.view_functions["org.register_org"] = limiter.limit("10 per hour")(app.view_functions["org.register_org"])

    logger.info("✅ Flask App mit Blueprint-Architektur initialisiert")
    return app


def start_server(host="0.0.0.0", port=5000, debug=False):
    """Start Flask development server (Produktion: gunicorn, siehe config/gunicorn.conf.py)."""
    _app = create_app("development" if debug else "production")
    _app.run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    start_server(debug=os.getenv("FLASK_DEBUG", "false").lower() == "true")
