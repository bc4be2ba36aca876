"""
HourInbox - Credential Vault
AES-256-GCM Verschlüsselung der IMAP/SMTP-Passwörter pro Session-Token
"""

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.backends import default_backend
from cryptography.exceptions import InvalidTag
import binascii
import os
import base64
import logging
import hashlib

from hourinbox.errors import IntegrityError

logger = logging.getLogger(__name__)


class CredentialVault:
    """Verschlüsselt Passwörter mit AES-256-GCM

    Format: ``iv:authTag:ciphertext`` (jeweils Base64). Der Schlüssel wird per
    SHA-256 aus dem konfigurierten Secret abgeleitet.
    """

    IV_LENGTH = 12
    TAG_LENGTH = 16

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("Secret darf nicht leer sein")
        self._key = hashlib.sha256(secret.encode()).digest()

    def encrypt(self, plaintext) -> str:
        """Verschlüsselt str oder bytes

        Returns:
            ``iv:authTag:ciphertext`` als Base64-Teile
        """
        if isinstance(plaintext, str):
            plaintext = plaintext.encode()

        iv = os.urandom(self.IV_LENGTH)
        cipher = Cipher(algorithms.AES(self._key), modes.GCM(iv), backend=default_backend())
        encryptor = cipher.encryptor()
        ciphertext = encryptor.update(plaintext) + encryptor.finalize()

        return ":".join(
            base64.b64encode(part).decode()
            for part in (iv, encryptor.tag, ciphertext)
        )

    def decrypt_bytes(self, blob: str) -> bytes:
        """Entschlüsselt zu bytes

        Raises:
            IntegrityError: IV/Tag fehlerhaft oder Authentifizierung fehlgeschlagen
        """
        parts = blob.split(":")
        if len(parts) != 3:
            return self._decode_legacy(blob)

        try:
            iv, tag, ciphertext = (base64.b64decode(p, validate=True) for p in parts)
        except (binascii.Error, ValueError) as e:
            raise IntegrityError(f"Malformed ciphertext: {e}")

        if len(iv) != self.IV_LENGTH or len(tag) != self.TAG_LENGTH:
            raise IntegrityError("Malformed ciphertext: invalid IV or tag length")

        try:
            cipher = Cipher(
                algorithms.AES(self._key), modes.GCM(iv, tag), backend=default_backend()
            )
            decryptor = cipher.decryptor()
            return decryptor.update(ciphertext) + decryptor.finalize()
        except InvalidTag:
            logger.warning("⚠️ SECURITY[DECRYPT_FAILED] Authentifizierung des Ciphertexts fehlgeschlagen")
            raise IntegrityError("Ciphertext authentication failed")

    def decrypt(self, blob: str) -> str:
        try:
            return self.decrypt_bytes(blob).decode("utf-8")
        except UnicodeDecodeError as e:
            raise IntegrityError(f"Decrypted value is not UTF-8: {e}")

    @staticmethod
    def _decode_legacy(blob: str) -> bytes:
        # Altformat: reines Base64 ohne Authentifizierung
        logger.warning("⚠️ SECURITY[LEGACY_CIPHERTEXT] Passwort im Base64-Altformat gefunden")
        try:
            return base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError) as e:
            raise IntegrityError(f"Malformed legacy ciphertext: {e}")
