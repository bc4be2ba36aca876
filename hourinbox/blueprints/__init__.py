# hourinbox/blueprints/__init__.py
"""Blueprint registration module.

Blueprint Overview:
    auth_bp      - Authentication (6 routes): login, logout, switch, accounts
    mail_bp      - Mail (17 routes): folders, messages, search, send, drafts, contacts
    settings_bp  - Settings (6 routes): settings, signatures
    org_bp       - Organizations (3 routes): lookup, update, register
"""

from .auth import auth_bp
from .mail import mail_bp
from .settings import settings_bp
from .org import org_bp

__all__ = ["auth_bp", "mail_bp", "settings_bp", "org_bp"]
