# hourinbox/services/connection_probe.py
"""Erreichbarkeits-Test für IMAP/SMTP-Hosts (Organisations-Registrierung).

Öffnet nur einen TCP- bzw. TLS-Socket, ohne Protokoll-Handshake.
"""

import logging
import socket
import ssl

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 10.0


def probe_connection(host: str, port: int, tls_mode: str = "tls",
                     reject_unauthorized: bool = True, timeout: float = PROBE_TIMEOUT) -> dict:
    """Returns ``{"success": bool, "error": str | None}``"""
    try:
        with socket.create_connection((host, port), timeout=timeout) as sock:
            if tls_mode == "tls":
                context = ssl.create_default_context()
                if not reject_unauthorized:
                    context.check_hostname = False
                    context.verify_mode = ssl.CERT_NONE
                with context.wrap_socket(sock, server_hostname=host):
                    pass
        return {"success": True, "error": None}
    except socket.timeout:
        logger.warning(f"⏳ Timeout beim Verbinden zu {host}:{port}")
        return {"success": False, "error": f"Connection to {host}:{port} timed out after {int(timeout)}s"}
    except OSError as e:
        logger.warning(f"🔌 {host}:{port} nicht erreichbar: {e}")
        return {"success": False, "error": f"Cannot reach {host}:{port}: {e}"}
