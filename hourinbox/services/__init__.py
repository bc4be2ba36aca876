# hourinbox/services/__init__.py
