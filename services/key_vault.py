"""
Non-Custodial Key Vault
Encrypts a link's spend key so that only the holder of the link id can recover it.

- Key: PBKDF2-HMAC-SHA256 over the link id with an application-wide salt
- Cipher: AES-256-GCM, fresh 96-bit IV per encryption
- Storage: hex(ciphertext || tag), base64 IV, base64 salt

The server stores ciphertext only. Possessing a row without the link id does
not allow decryption; possessing the link id (the shareable link) does.
"""

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import Config
from utils.exceptions import DecryptionFailed

logger = logging.getLogger(__name__)

MIN_ITERATIONS = 100_000
KEY_LENGTH = 32  # AES-256
IV_LENGTH = 12   # 96-bit GCM nonce
TAG_LENGTH = 16


@dataclass(frozen=True)
class EncryptedSpendKey:
    """Fields persisted on the PaymentLink row"""
    ciphertext: str  # hex, auth tag appended
    iv: str          # base64
    salt: str        # base64 of the application salt, kept for audit


class KeyVault:
    """Deterministic link-id key derivation plus authenticated encryption"""

    def __init__(self, salt: Optional[str] = None, iterations: Optional[int] = None):
        self.salt = (salt if salt is not None else Config.KEY_DERIVATION_SALT).encode("utf-8")
        self.iterations = iterations if iterations is not None else Config.KEY_DERIVATION_ITERATIONS
        if not self.salt:
            raise ValueError("Key derivation salt must not be empty")
        if self.iterations < MIN_ITERATIONS:
            raise ValueError(f"Key derivation needs at least {MIN_ITERATIONS} iterations, got {self.iterations}")

    def derive_key(self, link_id: str) -> bytes:
        """
        Derive the 256-bit key for a link.

        Same link id and salt always give the same key. CPU-bound and
        deliberately slow; keep it off latency-sensitive paths.
        """
        if not link_id:
            raise ValueError("link_id is required for key derivation")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=self.salt,
            iterations=self.iterations,
        )
        return kdf.derive(link_id.encode("utf-8"))

    def encrypt(self, plaintext_key: str, link_id: str) -> EncryptedSpendKey:
        if not plaintext_key:
            raise ValueError("Spend key to encrypt must not be empty")
        key = self.derive_key(link_id)
        iv = os.urandom(IV_LENGTH)
        # AESGCM appends the 16-byte tag to the ciphertext
        sealed = AESGCM(key).encrypt(iv, plaintext_key.encode("utf-8"), None)
        return EncryptedSpendKey(
            ciphertext=sealed.hex(),
            iv=base64.b64encode(iv).decode("ascii"),
            salt=base64.b64encode(self.salt).decode("ascii"),
        )

    def decrypt(self, ciphertext: str, iv: str, link_id: str) -> str:
        """
        Recover the plaintext spend key.

        Raises:
            DecryptionFailed: tag did not verify (tampering, wrong link id,
                changed application salt) or the stored fields are malformed
        """
        try:
            sealed = bytes.fromhex(ciphertext)
            iv_bytes = base64.b64decode(iv, validate=True)
        except (ValueError, TypeError, binascii.Error):
            raise DecryptionFailed("Encrypted spend key is malformed", link_id=link_id)

        if len(sealed) < TAG_LENGTH or not iv_bytes:
            raise DecryptionFailed("Encrypted spend key is malformed", link_id=link_id)

        key = self.derive_key(link_id)
        try:
            plaintext = AESGCM(key).decrypt(iv_bytes, sealed, None)
        except InvalidTag:
            logger.warning(f"🔐 KEY_VAULT: Authentication failed for link {link_id[:8]}...")
            raise DecryptionFailed("Spend key authentication failed", link_id=link_id)

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionFailed("Decrypted spend key is not valid text", link_id=link_id)

    def verify(self, ciphertext: str, iv: str, link_id: str) -> bool:
        """True if the stored material decrypts under this link id"""
        try:
            self.decrypt(ciphertext, iv, link_id)
        except DecryptionFailed:
            return False
        return True
