import json
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Optional

from eth_account import Account
from eth_utils import to_checksum_address

from ..config import KDF, MIN_PASSWORD_LENGTH, ROUNDS, Config
from .crypto_utils import (
    encrypt_private_key, decrypt_private_key,
    CryptoError, BadCredentials, PasswordTooShort
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnlockedKey:
    """A keystore together with the secrets recovered from it."""
    keystore: dict
    private_key: bytes
    derived_key: bytes
    address: str


def keystore_address(private_key: bytes) -> str:
    """Keystore-style address: lowercase hex, no 0x prefix."""
    return Account.from_key(private_key).address[2:].lower()


class KeyManager:
    """
    Creates and decrypts password-protected (v3) keystores.

    New keystores use the configured KDF (scrypt by default, PBKDF2 as an
    alternative). Decryption always reads the KDF and its parameters from
    the keystore itself, so records stay readable when defaults change.
    """

    def __init__(self, kdf: str = KDF, rounds: int = ROUNDS, storage_path: Optional[str] = None):
        self.kdf = kdf
        self.rounds = rounds
        self.storage_path = storage_path or "keystore.json"

    @classmethod
    def from_config(cls, config: Config, storage_path: Optional[str] = None) -> 'KeyManager':
        return cls(kdf=config.kdf, rounds=config.rounds, storage_path=storage_path)

    # ---------------- keystore lifecycle ----------------

    def create(self, password: str) -> UnlockedKey:
        """
        Generate a new private key and wrap it in a keystore.

        Raises:
            PasswordTooShort: password has fewer than 6 characters
            CryptoError: the underlying primitive failed
        """
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise PasswordTooShort()

        acct = Account.create()
        crypto, derived_key = encrypt_private_key(acct.key, password, self.kdf, self.rounds)
        keystore = {
            "address": acct.address[2:].lower(),
            "crypto": crypto,
            "version": 3,
            "id": str(uuid.uuid4()),
        }
        logger.debug("created %s keystore for %s", self.kdf, acct.address)
        return UnlockedKey(
            keystore=keystore,
            private_key=bytes(acct.key),
            derived_key=derived_key,
            address=acct.address,
        )

    def unlock(self, password: str, keystore: dict) -> UnlockedKey:
        """
        Decrypt a keystore and check that it belongs to the address it claims.

        Raises:
            BadCredentials: wrong password, corrupted or mismatched keystore
        """
        if not password:
            raise BadCredentials()
        if not isinstance(keystore, dict) or "crypto" not in keystore:
            raise BadCredentials()

        private_key, derived_key = decrypt_private_key(password, keystore["crypto"])

        try:
            address = keystore_address(private_key)
        except (ValueError, TypeError) as e:
            raise BadCredentials() from e
        recorded = str(keystore.get("address", "")).lower()
        if recorded.startswith("0x"):
            recorded = recorded[2:]
        if recorded != address:
            raise BadCredentials()

        return UnlockedKey(
            keystore=keystore,
            private_key=private_key,
            derived_key=derived_key,
            address=to_checksum_address("0x" + address),
        )

    def recover(self, password: str, keystore: dict) -> bytes:
        """Return the private key stored in ``keystore``."""
        return self.unlock(password, keystore).private_key

    # ---------------- JSON import/export ----------------

    def export_keystore(self, keystore: dict, dest_path: Optional[str] = None) -> str:
        dest_path = dest_path or self.storage_path
        try:
            with open(dest_path, "w") as f:
                json.dump(keystore, f, indent=2)
        except OSError as e:
            raise CryptoError(f"Export keystore failed: {e}") from e
        return dest_path

    def import_keystore(self, src_path: Optional[str] = None) -> dict:
        src_path = src_path or self.storage_path
        if not os.path.exists(src_path):
            raise FileNotFoundError("Keystore not found.")

        try:
            with open(src_path, "r") as f:
                keystore = json.load(f)
        except ValueError as e:
            raise CryptoError(f"Import keystore failed: {e}") from e

        if not isinstance(keystore, dict) or keystore.get("version") != 3:
            raise CryptoError("Import keystore failed: not a version 3 keystore.")
        return keystore
