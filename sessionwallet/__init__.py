"""
sessionwallet - Keystore-backed session account and transaction signer

Core modules:
- KeyManager: Password-protected (v3) keystore creation and recovery
- LoginIdCodec: Portable login ID tokens wrapping a keystore
- Session: The single logged-in identity
- NonceSequencer: Lock-guarded nonce assignment over the pending ledger
- Wallet: Transaction signing and submission
"""

from .keymanager.keyManager import KeyManager, UnlockedKey
from .keymanager.loginId import LoginIdCodec
from .keymanager.crypto_utils import CryptoError, PasswordTooShort, BadCredentials
from .config import Config, NetworkConfig
from .account import Account, Session, NotLoggedIn
from .nonce import LedgerEntry, NonceSequencer, PendingTransactionLedger
from .transport import Faucet, FaucetError, TransportError, Web3Transport
from .wallet import (
    Wallet,
    TransactionError,
    TransactionFailed,
    TransactionInvalid,
    RawTransactionError,
    RlpEncodingError,
    NonceRetriesExhausted,
)
from .logging_config import setup_logging

__version__ = "0.1.0"

__all__ = [
    # Key Management
    "KeyManager",
    "UnlockedKey",
    "LoginIdCodec",
    "CryptoError",
    "PasswordTooShort",
    "BadCredentials",

    # Configuration
    "Config",
    "NetworkConfig",
    "setup_logging",

    # Session
    "Account",
    "Session",
    "NotLoggedIn",

    # Nonces
    "LedgerEntry",
    "NonceSequencer",
    "PendingTransactionLedger",

    # Transport
    "Web3Transport",
    "TransportError",
    "Faucet",
    "FaucetError",

    # Signing
    "Wallet",
    "TransactionError",
    "TransactionFailed",
    "TransactionInvalid",
    "RawTransactionError",
    "RlpEncodingError",
    "NonceRetriesExhausted",
]
