# hourinbox/helpers/message_id.py
"""URL-Slugs für Message-IDs.

Ein Slug ist die base64url-Kodierung (ohne Padding) der Message-ID ohne
spitze Klammern. Rein numerische Identifier sind UIDs.
"""

import base64
import binascii

from hourinbox.errors import ValidationError


def is_numeric_uid(identifier: str) -> bool:
    return identifier.isascii() and identifier.isdigit()


def strip_brackets(message_id: str) -> str:
    message_id = message_id.strip()
    if message_id.startswith("<") and message_id.endswith(">"):
        return message_id[1:-1]
    return message_id


def encode_message_id(message_id: str) -> str:
    raw = strip_brackets(message_id).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_message_id(slug: str) -> str:
    padding = "=" * (-len(slug) % 4)
    try:
        decoded = base64.urlsafe_b64decode(slug + padding).decode("utf-8")
    except (binascii.Error, ValueError, UnicodeDecodeError):
        raise ValidationError("Invalid message identifier")
    if not decoded:
        raise ValidationError("Invalid message identifier")
    return decoded
