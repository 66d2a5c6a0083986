# Overview: Field-level encryption for protected (PHI) columns.

"""
Transparent field encryption.

AES-256-GCM with a random 96-bit nonce per call. Stored form is
base64(nonce || ciphertext || tag). The empty string is stored as the empty
string and NULL stays NULL, so "absent" and "empty" remain distinguishable
for optional fields.

The key is an explicit object built once at startup and handed to whoever
needs it. There is no module-level key.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import EncryptionError


REQUIRED_SECRET_LENGTH = 32
NONCE_SIZE = 12
TAG_SIZE = 16


class EncryptionKey:
    """Immutable 256-bit key derived from an operator secret."""
    __slots__ = ("_material",)

    def __init__(self, material: bytes):
        if len(material) != 32:
            raise EncryptionError("encryption key material must be 32 bytes")
        self._material = bytes(material)

    @classmethod
    def from_secret(cls, secret: str | None) -> "EncryptionKey":
        # SHA-256 would accept any length; the length check catches misconfiguration.
        if secret is None or len(secret) != REQUIRED_SECRET_LENGTH:
            raise EncryptionError(
                f"encryption key must be exactly {REQUIRED_SECRET_LENGTH} characters long"
            )
        return cls(hashlib.sha256(secret.encode("utf-8")).digest())

    @property
    def material(self) -> bytes:
        return self._material

    def __repr__(self) -> str:
        return "<EncryptionKey sha256>"


class FieldCipher:
    """Encrypt/decrypt individual string values with one EncryptionKey."""

    def __init__(self, key: EncryptionKey | None):
        self._key = key
        self._aead = AESGCM(key.material) if key is not None else None

    @property
    def ready(self) -> bool:
        return self._aead is not None

    def _require_key(self) -> AESGCM:
        if self._aead is None:
            raise EncryptionError("encryption key not initialized")
        return self._aead

    def encrypt(self, plaintext: str) -> str:
        aead = self._require_key()
        if plaintext == "":
            return ""

        nonce = os.urandom(NONCE_SIZE)
        sealed = aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        aead = self._require_key()
        if ciphertext == "":
            return ""

        try:
            data = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise EncryptionError("ciphertext is not valid base64") from exc

        if len(data) < NONCE_SIZE + TAG_SIZE:
            raise EncryptionError("ciphertext too short")

        nonce, sealed = data[:NONCE_SIZE], data[NONCE_SIZE:]
        try:
            plaintext = aead.decrypt(nonce, sealed, None)
        except InvalidTag as exc:
            raise EncryptionError("ciphertext failed authentication") from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EncryptionError("decrypted value is not UTF-8") from exc


class EncryptedField:
    """
    Plaintext/ciphertext pair for one encrypted string column.

    - set() encrypts immediately.
    - A field built from plaintext encrypts lazily in to_column().
    - A field loaded from a column decrypts lazily on the first get() and
      caches the plaintext for the lifetime of the object.

    None means absent (NULL column). "" is stored as "".
    """
    __slots__ = ("_cipher", "_value", "_encrypted")

    def __init__(self, cipher: FieldCipher, value: str | None = None):
        self._cipher = cipher
        self._value = value
        self._encrypted: str | None = None

    @classmethod
    def from_column(cls, cipher: FieldCipher, ciphertext: str | None) -> "EncryptedField":
        field = cls(cipher)
        field._encrypted = ciphertext
        return field

    @classmethod
    def from_json(cls, cipher: FieldCipher, value: str | None) -> "EncryptedField":
        field = cls(cipher)
        field.set(value)
        return field

    def set(self, value: str | None) -> "EncryptedField":
        """Encrypt and hold value. None clears both sides: an absent field has neither."""
        if value is None:
            self._value = None
            self._encrypted = None
            return self
        encrypted = self._cipher.encrypt(value)
        self._value = value
        self._encrypted = encrypted
        return self

    def get(self) -> str | None:
        if self._value is not None:
            return self._value
        if self._encrypted is None:
            return None
        self._value = self._cipher.decrypt(self._encrypted)
        return self._value

    def to_column(self) -> str | None:
        if self._encrypted is None and self._value is not None:
            self._encrypted = self._cipher.encrypt(self._value)
        return self._encrypted

    def to_json(self) -> str | None:
        return self.get()

    @property
    def is_set(self) -> bool:
        return self._value is not None or self._encrypted is not None

    def __repr__(self) -> str:
        return f"<EncryptedField {'set' if self.is_set else 'unset'}>"


class EncryptedListField:
    """
    Encrypted list of strings, stored as one ciphertext of its JSON form.

    An empty list is stored as "" and a missing column reads back as [].
    """
    __slots__ = ("_cipher", "_value", "_encrypted")

    def __init__(self, cipher: FieldCipher, value: list[str] | None = None):
        self._cipher = cipher
        self._value = _check_list(value) if value is not None else None
        self._encrypted: str | None = None

    @classmethod
    def from_column(cls, cipher: FieldCipher, ciphertext: str | None) -> "EncryptedListField":
        field = cls(cipher)
        field._encrypted = ciphertext
        return field

    @classmethod
    def from_json(cls, cipher: FieldCipher, value: list[str] | None) -> "EncryptedListField":
        field = cls(cipher)
        field.set(value or [])
        return field

    def set(self, value: list[str]) -> "EncryptedListField":
        items = _check_list(value)
        if not items:
            self._value = []
            self._encrypted = ""
            return self
        encrypted = self._cipher.encrypt(json.dumps(items))
        self._value = items
        self._encrypted = encrypted
        return self

    def get(self) -> list[str]:
        if self._value is not None:
            return list(self._value)
        if not self._encrypted:
            return []

        decrypted = self._cipher.decrypt(self._encrypted)
        try:
            items = json.loads(decrypted)
        except json.JSONDecodeError as exc:
            raise EncryptionError("decrypted list is not valid JSON") from exc
        if not isinstance(items, list) or not all(isinstance(i, str) for i in items):
            raise EncryptionError("decrypted list must contain only strings")

        self._value = items
        return list(items)

    def to_column(self) -> str | None:
        if self._encrypted is None and self._value is not None:
            self._encrypted = self._cipher.encrypt(json.dumps(self._value)) if self._value else ""
        return self._encrypted

    def to_json(self) -> list[str]:
        return self.get()

    def __repr__(self) -> str:
        return "<EncryptedListField>"


def _check_list(value) -> list[str]:
    if not isinstance(value, (list, tuple)) or not all(isinstance(i, str) for i in value):
        raise EncryptionError("encrypted list values must be strings")
    return list(value)
