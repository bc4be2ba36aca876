# hourinbox/services/client_mirror.py
"""Client Mirror Cache - Referenzmodell des Browser-Caches.

Der Browser hält eine Schattenkopie der Ordner-Seiten (Key ``<folder>:<page>``)
für sofortiges Rendern mit anschließendem Refresh (stale-while-revalidate).
Der Mirror ist nie Quelle der Wahrheit: er lässt sich jederzeit aus dem
Nichts neu aufbauen und wird über die ``invalidate``-Hinweise der
Mutations-Antworten geleert.

Optimistische Aktionen (Flag, Move, Delete, Send) werden pro Entität als
expliziter Zustand modelliert: Idle → Pending(prev) → Committed | Failed(prev, error).
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

MAX_AGE = 5 * 60


def page_key(folder: str, page: int) -> str:
    return f"{folder}:{page}"


@dataclass
class CachedPage:
    payload: Any
    fetched_at: float


class MirrorCache:
    def __init__(self, clock=time.time, max_age: float = MAX_AGE):
        self.clock = clock
        self.max_age = max_age
        self._entries: Dict[str, CachedPage] = {}

    def get(self, key: str):
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.clock() - entry.fetched_at >= self.max_age:
            del self._entries[key]
            return None
        return entry.payload

    def set(self, key: str, payload):
        self._entries[key] = CachedPage(payload=payload, fetched_at=self.clock())

    def invalidate_folder(self, folder: str):
        prefix = f"{folder}:"
        for key in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[key]

    def clear_all(self):
        self._entries.clear()

    def keys(self):
        return list(self._entries)

    def apply_hint(self, hint: Optional[dict]):
        """Server-Hinweis ``{"scope": "account"}`` / ``{"scope": "folders", "folders": [...]}``"""
        if not hint:
            return
        if hint.get("scope") == "account":
            self.clear_all()
        elif hint.get("scope") == "folders":
            for folder in hint.get("folders", []):
                self.invalidate_folder(folder)

    def revalidate(self, key: str, fetch: Callable[[], Any], still_current: Callable[[], bool]):
        """Liefert sofort den Cache-Stand, holt frisch nach und ersetzt nur,
        wenn der Benutzer noch auf derselben Ansicht ist.

        Returns:
            (sofort angezeigter Wert, frischer Wert)
        """
        shown = self.get(key)
        fresh = fetch()
        self.set(key, fresh)
        return shown, (fresh if still_current() else shown)


# =============================================================================
# Optimistische Updates
# =============================================================================


@dataclass(frozen=True)
class Idle:
    value: Any


@dataclass(frozen=True)
class Pending:
    prev: Any
    value: Any


@dataclass(frozen=True)
class Committed:
    value: Any


@dataclass(frozen=True)
class Failed:
    prev: Any
    value: Any
    error: str


class InvalidTransition(Exception):
    pass


class OptimisticUpdate:
    """Zustandsautomat für eine optimistisch geänderte Entität"""

    def __init__(self, value):
        self.state = Idle(value)

    @property
    def value(self):
        return self.state.value

    def begin(self, new_value):
        if isinstance(self.state, Pending):
            raise InvalidTransition("Update already pending")
        self.state = Pending(prev=self.state.value, value=new_value)
        return self.state

    def commit(self):
        if not isinstance(self.state, Pending):
            raise InvalidTransition("Nothing pending to commit")
        self.state = Committed(value=self.state.value)
        return self.state

    def fail(self, error: str):
        if not isinstance(self.state, Pending):
            raise InvalidTransition("Nothing pending to fail")
        self.state = Failed(prev=self.state.prev, value=self.state.value, error=error)
        return self.state

    def revert(self):
        """Zurück auf den Wert vor der Aktion (nur aus Failed)"""
        if not isinstance(self.state, Failed):
            raise InvalidTransition("Only failed updates can be reverted")
        self.state = Idle(self.state.prev)
        return self.state
