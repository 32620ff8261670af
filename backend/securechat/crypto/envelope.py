"""
Message content envelope.

    SEC1:<urlsafe-base64(nonce || AES-256-GCM ciphertext || tag)>

The key is derived once from the shared MESSAGE_SECRET (PBKDF2, fixed salt),
so the envelope protects stored content against the storage provider. It is
not end-to-end encryption: there is no forward secrecy, and anyone holding
the shared secret can open every envelope.

open() never raises. Anything that is not a valid envelope under this key is
handed back unchanged, which lets rooms mix encrypted and plaintext history.
"""
from __future__ import annotations

import base64
import binascii
import logging
import os
from urllib.parse import unquote

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from securechat.crypto.kdf import Pbkdf2Params, derive_key_from_secret

logger = logging.getLogger(__name__)

ENVELOPE_TAG = "SEC1:"
LEGACY_TAG = "ENC_"
_AAD = b"securechat/message/v1"
_NONCE_LEN = 12
_TAG_LEN = 16


class DecodeError(ValueError):
    """Payload is not a valid envelope. Never leaves this module."""


def is_envelope(value: str) -> bool:
    return isinstance(value, str) and value.startswith(ENVELOPE_TAG)


class CryptoEnvelope:
    def __init__(self, secret: str, salt: str, iterations: int):
        # Immutable after construction; safe to share between tasks.
        self._aead = AESGCM(derive_key_from_secret(secret, Pbkdf2Params(salt=salt, iterations=iterations)))

    @classmethod
    def from_settings(cls, settings) -> CryptoEnvelope:
        return cls(settings.MESSAGE_SECRET, settings.KDF_SALT, settings.KDF_ITERATIONS)

    def seal(self, plaintext: str) -> str:
        blob = self._seal_blob(plaintext.encode("utf-8"))
        return ENVELOPE_TAG + base64.urlsafe_b64encode(blob).decode("ascii")

    def open(self, envelope: str) -> str:
        if not isinstance(envelope, str):
            return envelope
        try:
            if envelope.startswith(ENVELOPE_TAG):
                return self._open_envelope(envelope)
            if envelope.startswith(LEGACY_TAG):
                return _open_legacy(envelope)
        except DecodeError as exc:
            logger.debug("Returning undecodable payload as plaintext: %s", exc)
        return envelope

    def _open_envelope(self, envelope: str) -> str:
        body = envelope[len(ENVELOPE_TAG):]
        try:
            blob = base64.b64decode(body.encode("ascii"), altchars=b"-_", validate=True)
            return self._open_blob(blob).decode("utf-8")
        except (binascii.Error, ValueError, InvalidTag, UnicodeError) as exc:
            raise DecodeError(type(exc).__name__) from exc

    def _seal_blob(self, data: bytes) -> bytes:
        """nonce || ciphertext || tag under a fresh random nonce."""
        nonce = os.urandom(_NONCE_LEN)
        return nonce + self._aead.encrypt(nonce, data, _AAD)

    def _open_blob(self, blob: bytes) -> bytes:
        if len(blob) < _NONCE_LEN + _TAG_LEN:
            raise ValueError("Envelope too short")
        return self._aead.decrypt(blob[:_NONCE_LEN], blob[_NONCE_LEN:], _AAD)


def _open_legacy(value: str) -> str:
    # Earlier clients stored base64(encodeURIComponent(text)) behind ENC_.
    try:
        raw = base64.b64decode(value[len(LEGACY_TAG):].encode("ascii"), validate=True)
        return unquote(raw.decode("ascii"), errors="strict")
    except (binascii.Error, ValueError, UnicodeError) as exc:
        raise DecodeError(type(exc).__name__) from exc
