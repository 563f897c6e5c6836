"""
Session account: the single identity currently logged in.
Handles register, import, login and logout, and hands out read-only
snapshots of the active account.
"""
from typing import Optional, Dict, Any
from dataclasses import dataclass, field, replace
import copy
import logging

from eth_utils import to_checksum_address

from .keymanager.keyManager import KeyManager, UnlockedKey
from .keymanager.loginId import LoginIdCodec
from .keymanager.crypto_utils import BadCredentials
from .nonce import PendingTransactionLedger

logger = logging.getLogger(__name__)


class NotLoggedIn(PermissionError):
    code = 407

    def __init__(self, message="Not logged in."):
        super().__init__(message)


@dataclass(frozen=True)
class Account:
    """
    Snapshot of a logged-in identity.

    Instances handed to callers are deep copies; changing one never affects
    the session that produced it.
    """
    name: str
    login_id: str
    address: str
    keystore: Dict[str, Any]
    private_key: bytes = field(repr=False)
    derived_key: bytes = field(repr=False)

    def to_dict(self) -> Dict[str, Any]:
        """Export for local persistence (keys hex-encoded)."""
        return {
            'name': self.name,
            'login_id': self.login_id,
            'address': self.address,
            'keystore': copy.deepcopy(self.keystore),
            'private_key': self.private_key.hex(),
            'derived_key': self.derived_key.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        """Create Account instance from dict."""
        private_key = data['private_key']
        derived_key = data['derived_key']
        if isinstance(private_key, str):
            private_key = bytes.fromhex(private_key.replace("0x", ""))
        if isinstance(derived_key, str):
            derived_key = bytes.fromhex(derived_key.replace("0x", ""))
        return cls(
            name=data.get('name', ""),
            login_id=data['login_id'],
            address=to_checksum_address("0x" + data['keystore']['address'].lower().replace("0x", "")),
            keystore=copy.deepcopy(data['keystore']),
            private_key=bytes(private_key),
            derived_key=bytes(derived_key),
        )


class Session:
    """
    Owns the active Account and the identity-scoped pending transaction ledger.

    Only one identity is active at a time. A later login replaces the
    current one; logout clears it along with the ledger and nonce watermark.

    Usage:
        session = Session()
        account = session.register("alice", "secret1")
        session.logout()
        account = session.login(account.login_id, "secret1")
    """

    def __init__(
        self,
        key_manager: Optional[KeyManager] = None,
        login_codec: Optional[LoginIdCodec] = None,
        ledger: Optional[PendingTransactionLedger] = None
    ):
        self.key_manager = key_manager or KeyManager()
        self.login_codec = login_codec or LoginIdCodec()
        self.ledger = ledger if ledger is not None else PendingTransactionLedger()
        self._account: Optional[Account] = None

    @property
    def account(self) -> Optional[Account]:
        """Copy of the active account, or None when logged out."""
        if self._account is None:
            return None
        return copy.deepcopy(self._account)

    @property
    def is_logged_in(self) -> bool:
        return self._account is not None

    def require_account(self) -> Account:
        """
        Raises:
            NotLoggedIn: no identity is active
        """
        if self._account is None:
            raise NotLoggedIn()
        return self.account

    def _install(self, name: str, login_id: str, unlocked: UnlockedKey) -> Account:
        if self._account is not None and self._account.address != unlocked.address:
            # different identity: its nonces must not leak into this one
            self.ledger.clear()

        self._account = Account(
            name=name,
            login_id=login_id,
            address=unlocked.address,
            keystore=copy.deepcopy(unlocked.keystore),
            private_key=unlocked.private_key,
            derived_key=unlocked.derived_key,
        )
        return self.account

    # ============================================
    # Lifecycle
    # ============================================

    def register(self, name: str, password: str) -> Account:
        """
        Create a new keystore and log in with it.

        Raises:
            PasswordTooShort: password has fewer than 6 characters
        """
        unlocked = self.key_manager.create(password)
        login_id = self.login_codec.encode(unlocked.keystore, name)
        account = self._install(name, login_id, unlocked)
        logger.info("registered %s", account.address)
        return account

    def import_account(self, name: str, password: str, keystore: Dict[str, Any]) -> Account:
        """
        Log in with an externally supplied keystore under a new display name.

        Raises:
            BadCredentials: blank or wrong password, corrupted keystore
        """
        unlocked = self.key_manager.unlock(password, keystore)
        login_id = self.login_codec.encode(unlocked.keystore, name)
        account = self._install(name, login_id, unlocked)
        logger.info("imported %s", account.address)
        return account

    def login(self, login_id: str, password: str) -> Account:
        """
        Raises:
            BadCredentials: malformed login ID, blank or wrong password
        """
        if not password:
            raise BadCredentials()
        payload = self.login_codec.unwrap(login_id)
        unlocked = self.key_manager.unlock(password, payload["keystore"])
        account = self._install(payload["name"], login_id, unlocked)
        logger.info("logged in %s", account.address)
        return account

    def load_local_account(self, data: Dict[str, Any]) -> Account:
        """
        Restore a session from a snapshot saved with ``Account.to_dict()``.

        The key is not re-derived; the snapshot is trusted as-is.
        """
        try:
            restored = Account.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise BadCredentials() from e
        unlocked = UnlockedKey(
            keystore=restored.keystore,
            private_key=restored.private_key,
            derived_key=restored.derived_key,
            address=restored.address,
        )
        return self._install(restored.name, restored.login_id, unlocked)

    def change_account_name(self, new_name: str) -> Account:
        if self._account is None:
            raise NotLoggedIn()
        self._account = replace(self._account, name=new_name)
        return self.account

    def logout(self):
        """Forget the active identity and everything keyed to it."""
        if self._account is not None:
            logger.info("logged out %s", self._account.address)
        self._account = None
        self.ledger.clear()

    def __repr__(self):
        address = self._account.address if self._account else None
        return f"<Session address={address} pending={len(self.ledger)}>"
