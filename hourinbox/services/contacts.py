# hourinbox/services/contacts.py
"""Kontakt-Import/Export (vCard 3.0 und CSV)."""

import csv
import io
from typing import Iterable, List


def _clean(value: str) -> str:
    return (value or "").strip().strip("\"'").strip()


def parse_vcard(content: str) -> List[dict]:
    """FN + EMAIL je VCARD-Block; Blöcke ohne EMAIL werden übersprungen"""
    contacts = []
    for block in content.split("BEGIN:VCARD"):
        if "END:VCARD" not in block:
            continue
        name = ""
        email = ""
        for line in block.splitlines():
            upper = line.upper()
            if upper.startswith(("FN:", "FN;")):
                name = line.split(":", 1)[1].strip()
            elif upper.startswith(("EMAIL:", "EMAIL;")) and not email:
                email = line.split(":", 1)[1].strip()
        if email:
            contacts.append({"name": name, "address": email})
    return contacts


def parse_csv(content: str) -> List[dict]:
    """``name,email`` oder ``email,name``, mit oder ohne Kopfzeile"""
    rows = [row for row in csv.reader(io.StringIO(content)) if any(c.strip() for c in row)]
    if not rows:
        return []

    name_col, email_col, start = 0, 1, 0
    header = [_clean(c).lower() for c in rows[0]]

    if any("name" in h or "mail" in h for h in header):
        start = 1
        email_idx = next((i for i, h in enumerate(header) if "email" in h or "e-mail" in h), None)
        name_idx = next((i for i, h in enumerate(header) if "name" in h), None)
        if email_idx is not None:
            email_col = email_idx
        if name_idx is not None:
            name_col = name_idx
    elif header and "@" in header[0]:
        email_col, name_col = 0, 1

    contacts = []
    for row in rows[start:]:
        email = _clean(row[email_col]) if email_col < len(row) else ""
        name = _clean(row[name_col]) if name_col < len(row) else ""
        if "@" in email:
            contacts.append({"name": name, "address": email})
    return contacts


def parse_contacts_file(filename: str, content: str) -> List[dict]:
    if (filename or "").lower().endswith(".csv"):
        return parse_csv(content)
    return parse_vcard(content)


def dedupe(contacts: Iterable[dict]) -> List[dict]:
    """Erster Eintrag pro Adresse (case-insensitive) gewinnt"""
    seen = set()
    result = []
    for contact in contacts:
        address = (contact.get("address") or "").strip()
        key = address.lower()
        if not address or key in seen:
            continue
        seen.add(key)
        result.append({"name": contact.get("name") or "", "address": address})
    return result


def sort_contacts(contacts: List[dict]) -> List[dict]:
    return sorted(contacts, key=lambda c: (c["name"] or c["address"]).lower())


def generate_vcard(contacts: Iterable[dict]) -> str:
    cards = []
    for contact in contacts:
        address = contact["address"]
        display = contact.get("name") or address.split("@", 1)[0] or address
        cards.append(f"BEGIN:VCARD\r\nVERSION:3.0\r\nFN:{display}\r\nEMAIL:{address}\r\nEND:VCARD")
    return "\r\n".join(cards)
