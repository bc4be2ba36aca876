"""
HourInbox - Environment Validator
Prüft ob alle erforderlichen Umgebungsvariablen beim Start gesetzt sind
"""

import os
import sys
from urllib.parse import urlparse

DEV_SECRET = "dev-session-secret-change-in-production"


class EnvironmentValidator:
    """Validiert Umgebungsvariablen abhängig von der Umgebung (production/development)"""

    CRITICAL_VARS = {
        "SESSION_SECRET": {
            "description": "Schlüsselmaterial für die Passwort-Verschlüsselung (PRODUKTION erforderlich!)",
            "hint": 'Generiere mit: python -c "import secrets; print(secrets.token_hex(32))"',
        },
    }

    REDIS_SCHEMES = ("redis", "rediss", "unix")

    @staticmethod
    def _is_production() -> bool:
        return os.getenv("FLASK_ENV", "production").lower() == "production"

    @staticmethod
    def validate(production: bool = None):
        """Hauptvalidierungs-Methode

        Args:
            production: überschreibt FLASK_ENV (None = aus der Umgebung)
        """
        if production is None:
            production = EnvironmentValidator._is_production()

        errors = []
        warnings = []

        critical = EnvironmentValidator._check_critical_vars()
        if production:
            errors.extend(critical)
        else:
            warnings.extend(f"{e['var']} nicht gesetzt - Entwicklungs-Secret aktiv" for e in critical)

        errors.extend(EnvironmentValidator._check_redis_url())

        if errors:
            EnvironmentValidator._print_errors(errors, warnings)
            sys.exit(1)

        if warnings:
            EnvironmentValidator._print_warnings(warnings)

        print("✅ Alle erforderlichen Umgebungsvariablen sind gesetzt\n")
        return True

    @staticmethod
    def _check_critical_vars():
        """Prüft kritische Variablen (fehlend, Platzhalter oder Dev-Default)"""
        errors = []

        for var, info in EnvironmentValidator.CRITICAL_VARS.items():
            value = os.getenv(var)
            if not value or value.startswith("your-") or value == DEV_SECRET:
                errors.append(
                    {
                        "var": var,
                        "description": info["description"],
                        "hint": info["hint"],
                        "severity": "CRITICAL",
                    }
                )

        return errors

    @staticmethod
    def _check_redis_url():
        value = os.getenv("REDIS_URL")
        if not value:
            return []
        if urlparse(value).scheme not in EnvironmentValidator.REDIS_SCHEMES:
            return [
                {
                    "var": "REDIS_URL",
                    "description": f"Ungültige Redis-URL: {value}",
                    "hint": "Format: redis://host:port/db",
                    "severity": "CRITICAL",
                }
            ]
        return []

    @staticmethod
    def _print_errors(errors, warnings):
        """Gibt Fehler formatiert aus"""
        print("\n" + "=" * 70)
        print("🚨 FEHLER: Kritische Umgebungsvariablen fehlen oder sind ungültig")
        print("=" * 70 + "\n")

        for i, error in enumerate(errors, 1):
            print(f"{i}. ❌ {error['var']}")
            print(f"   Beschreibung: {error['description']}")
            print(f"   💡 Hinweis: {error['hint']}")
            print()

        print("=" * 70)
        print("📋 Lösung: .env bzw. .env.local anlegen und Werte setzen:\n")
        for error in errors:
            print(f"   {error['var']}=<wert>")
        print()

        if warnings:
            EnvironmentValidator._print_warnings(warnings)

    @staticmethod
    def _print_warnings(warnings):
        """Gibt Warnungen aus"""
        print("\n⚠️  WARNUNGEN:\n")
        for warning in warnings:
            print(f"  ⚠️  {warning}")
        print()


def validate_environment(production: bool = None):
    """Entry-Point für Environment Validation"""
    EnvironmentValidator.validate(production)


if __name__ == "__main__":
    validate_environment()
