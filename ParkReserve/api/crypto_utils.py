import os
import base64
from typing import Optional
from cryptography.hazmat.primitives.ciphers.aead import AESGCM


def load_key(b64: str) -> bytes:
    if not b64:
        raise RuntimeError("PARKRESERVE_AES_KEY not set. Provide base64-encoded 32-byte key.")
    try:
        key = base64.b64decode(b64, validate=True)
    except Exception:
        raise RuntimeError("PARKRESERVE_AES_KEY is not valid base64")
    if len(key) not in (16, 24, 32):
        raise RuntimeError("Invalid AES key length. Use 16/24/32 bytes (base64-encoded).")
    return key


def mask_value(value: str, keep: int = 2) -> str:
    if value is None:
        return None
    if len(value) <= keep + 1:
        return "*" * len(value)
    return value[:keep] + "*" * (len(value) - keep)


class PlateCipher:
    """AES-GCM encryption for license plates stored at rest."""

    ASSOCIATED_DATA = b"reservations.license_plate"

    def __init__(self, key: bytes):
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_b64(cls, b64: str) -> "PlateCipher":
        return cls(load_key(b64))

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        if plaintext is None:
            return None
        nonce = os.urandom(12)
        ct = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), self.ASSOCIATED_DATA)
        return base64.b64encode(nonce + ct).decode("ascii")

    def decrypt(self, b64payload: Optional[str]) -> Optional[str]:
        if b64payload is None:
            return None
        try:
            data = base64.b64decode(b64payload)
        except Exception:
            raise ValueError("Payload is not valid base64-encoded encrypted data")
        if len(data) < 13:
            raise ValueError("Payload is too short to be valid encrypted data")
        nonce = data[:12]
        ct = data[12:]
        pt = self._aesgcm.decrypt(nonce, ct, self.ASSOCIATED_DATA)
        return pt.decode("utf-8")
