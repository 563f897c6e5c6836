"""
Wallet: signs and submits transactions for the active session.
Sequences nonces through NonceSequencer and retries when the node reports
"nonce too low".
"""
from typing import Dict, Optional, Any, Tuple
import asyncio
import logging

import aiohttp
from eth_account import Account as EthAccount
from eth_utils import to_checksum_address, to_hex, to_int
from hexbytes import HexBytes
from rlp.exceptions import SerializationError

from .account import Account, Session
from .config import DEFAULT_GAS, MAX_NONCE_RETRIES, NetworkConfig
from .nonce import NonceSequencer
from .transport import Faucet, TransportError, Web3Transport

logger = logging.getLogger(__name__)


class TransactionError(Exception):
    """
    Base class for send failures.

    ``response`` holds the node's error when one caused the failure and
    ``packaged`` the transaction that was being sent.
    """
    code = 500

    def __init__(self, message: str, response: Optional[Dict[str, Any]] = None,
                 packaged: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.response = response
        self.packaged = packaged


class TransactionFailed(TransactionError):
    code = 500


class TransactionInvalid(TransactionError):
    code = 501


class RawTransactionError(TransactionError):
    code = 502


class RlpEncodingError(TransactionError):
    code = 503


class NonceRetriesExhausted(TransactionError):
    code = 504


def _to_int(value) -> int:
    """Payload numbers are ints, 0x-prefixed hex strings or decimal strings."""
    if isinstance(value, bool):
        raise TypeError(f"Not a number: {value!r}")
    if isinstance(value, str):
        if value[:2].lower() == "0x":
            return to_int(hexstr=value)
        return int(value, 10)
    return int(value)


def _to_uint(value, field: str) -> int:
    number = _to_int(value)
    if number < 0:
        raise ValueError(f"{field} cannot be negative: {number}")
    return number


class Wallet:
    """
    Signs transactions with the session's private key and hands them to
    the transport.

    Usage:
        session = Session()
        session.login(login_id, password)

        wallet = Wallet.from_network(session, config.get_network("local"))
        tx_hash = await wallet.invoke({"send": True, "to": "0x...", "value": 10**18})
    """

    def __init__(
        self,
        session: Session,
        transport,
        chain_id: Optional[int] = None,
        default_gas: int = DEFAULT_GAS,
        max_nonce_retries: int = MAX_NONCE_RETRIES,
        faucet: Optional[Faucet] = None
    ):
        """
        Args:
            session: Session whose active account signs
            transport: node client (see Web3Transport)
            chain_id: EIP-155 chain ID; unprotected signatures when None
            default_gas: gas limit used when the payload gives none
            max_nonce_retries: resubmissions allowed after "nonce too low"
            faucet: test-network faucet, if any
        """
        if not isinstance(session, Session):
            raise TypeError("session must be a Session instance")
        self.session = session
        self.transport = transport
        self.chain_id = chain_id
        self.default_gas = default_gas
        self.max_nonce_retries = max_nonce_retries
        self.faucet = faucet
        self.sequencer = NonceSequencer(transport, session.ledger)

    @classmethod
    def from_network(cls, session: Session, network: NetworkConfig) -> 'Wallet':
        return cls(
            session,
            Web3Transport.from_network(network),
            chain_id=network.chain_id,
            default_gas=network.default_gas,
            max_nonce_retries=network.max_nonce_retries,
            faucet=Faucet(network.faucet_url) if network.faucet_url else None,
        )

    @property
    def ledger(self):
        return self.session.ledger

    # ============================================
    # Invoke
    # ============================================

    async def invoke(self, payload: Dict[str, Any]) -> Any:
        """
        Run a call or send a transaction.

        Payloads without a truthy ``send`` are read-only calls and go
        straight to the node. Otherwise the transaction is packaged, given
        a nonce, signed and submitted.

        Payload keys: send, to, data, value, gas, gasPrice, nonce.

        Returns:
            The call result, or the transaction hash for sends

        Raises:
            NotLoggedIn: sending without an active session
            TransactionFailed: malformed payload or gas price unavailable
            TransactionInvalid: the signed transaction failed validation
            RawTransactionError: the node returned no hash
            RlpEncodingError: the node rejected the serialization
            NonceRetriesExhausted: "nonce too low" kept coming back
            TransportError: any other node error, unchanged
        """
        if isinstance(payload, dict) and not payload.get("send"):
            return await self.transport.execute_read_only_call(payload)

        account = self.session.require_account()
        if not isinstance(payload, dict):
            raise TransactionFailed("Transaction payload must be a dict.")

        logger.debug("payload: %s", payload)
        packaged = self.package(payload, account)
        if packaged["gasPrice"] <= 0:
            packaged["gasPrice"] = await self._resolve_gas_price()

        return await self._submit(packaged, account)

    def package(self, payload: Dict[str, Any], account: Account) -> Dict[str, Any]:
        """Build the signable envelope for ``payload``."""
        try:
            packaged = {
                "from": account.address,
                "nonce": _to_uint(payload["nonce"], "nonce") if payload.get("nonce") is not None else None,
                "value": _to_uint(payload.get("value") or 0, "value"),
                "gasLimit": _to_uint(payload.get("gas") or self.default_gas, "gas"),
                "gasPrice": _to_uint(payload.get("gasPrice") or 0, "gasPrice"),
                "data": to_hex(HexBytes(payload.get("data") or b"")),
            }
            if payload.get("to"):
                packaged["to"] = to_checksum_address(payload["to"])
        except (TypeError, ValueError) as e:
            raise TransactionFailed(f"Malformed transaction payload: {e}") from e
        return packaged

    async def _resolve_gas_price(self) -> int:
        try:
            return await self.transport.get_gas_price()
        except TransportError as e:
            raise TransactionFailed("Gas price unavailable.", response=e.response) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransactionFailed(f"Gas price unavailable: {e}") from e

    def sign(self, packaged: Dict[str, Any], account: Account) -> Tuple[str, int]:
        """
        Sign the envelope with the session key.

        Returns:
            (raw transaction hex, up-front cost bound gasLimit * gasPrice)
        """
        tx = {
            "nonce": packaged["nonce"],
            "gasPrice": packaged["gasPrice"],
            "gas": packaged["gasLimit"],
            "value": packaged["value"],
            "data": packaged["data"],
        }
        if "to" in packaged:
            tx["to"] = packaged["to"]
        if self.chain_id is not None:
            tx["chainId"] = self.chain_id

        try:
            signed = EthAccount.sign_transaction(tx, account.private_key)
            sender = EthAccount.recover_transaction(signed.raw_transaction)
        except (TypeError, ValueError, SerializationError) as e:
            raise TransactionInvalid(f"Transaction invalid: {e}", packaged=packaged) from e

        if sender != account.address:
            raise TransactionInvalid("Transaction signature does not match sender.", packaged=packaged)

        cost = packaged["gasLimit"] * packaged["gasPrice"]
        return to_hex(signed.raw_transaction), cost

    async def _submit(self, packaged: Dict[str, Any], account: Account) -> str:
        for attempt in range(self.max_nonce_retries + 1):
            await self.sequencer.resolve(packaged, account.address)
            raw_tx, cost = self.sign(packaged, account)

            try:
                tx_hash = await self.transport.send_raw_transaction(raw_tx)
            except TransportError as e:
                if e.is_rlp_error():
                    raise RlpEncodingError(
                        "RLP encoding error.", response=e.response, packaged=dict(packaged)
                    ) from e
                if e.is_nonce_too_low():
                    logger.debug(
                        "bad nonce, retrying: %s nonce=%d max=%d",
                        e.message, packaged["nonce"], self.ledger.max_nonce,
                    )
                    self.sequencer.bump_watermark()
                    packaged["nonce"] = None
                    continue
                raise

            if not tx_hash:
                raise RawTransactionError("No transaction hash returned.", packaged=dict(packaged))

            # indexed even if the transaction is later dropped
            self.ledger.record(tx_hash, packaged, cost)
            return tx_hash

        raise NonceRetriesExhausted(
            f"Nonce still too low after {self.max_nonce_retries} retries.", packaged=dict(packaged)
        )

    # ============================================
    # Funding
    # ============================================

    async def send_ether(self, to: str, value: int, gas_price: Optional[int] = None) -> str:
        """Transfer ``value`` wei from the session account."""
        payload = {"send": True, "to": to, "value": value, "gas": 21000}
        if gas_price:
            payload["gasPrice"] = gas_price
        return await self.invoke(payload)

    async def fund_from_faucet(self, address: Optional[str] = None) -> str:
        """
        Ask the test-network faucet to fund ``address`` (default: session account).

        Returns:
            The funded address
        """
        if self.faucet is None:
            raise ValueError("No faucet configured for this network.")
        if address is None:
            address = self.session.require_account().address
        await self.faucet.fund(address)
        return address

    def __repr__(self):
        return f"<Wallet session={self.session!r} chain_id={self.chain_id}>"
