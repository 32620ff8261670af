# securechat/crypto/kdf.py
from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

MIN_ITERATIONS = 100_000

@dataclass(frozen=True)
class Pbkdf2Params:
    salt: str
    iterations: int = MIN_ITERATIONS
    length: int = 32
    hash: str = "sha256"

def derive_key_from_secret(secret: str, params: Pbkdf2Params) -> bytes:
    """
    Deterministic key from a shared secret and a fixed salt.

    The same inputs always give the same key, so every process holding the
    secret can read every envelope. There is no per-conversation key and no
    forward secrecy.
    """
    if not isinstance(secret, str) or not secret:
        raise ValueError("Secret required")
    if params.iterations < MIN_ITERATIONS:
        raise ValueError(f"PBKDF2 needs at least {MIN_ITERATIONS} iterations")
    if params.hash != "sha256":
        raise ValueError(f"Unsupported hash: {params.hash}")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=params.length,
        salt=params.salt.encode("utf-8"),
        iterations=params.iterations,
    )
    return kdf.derive(secret.encode("utf-8"))
