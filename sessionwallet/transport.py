"""
Transport collaborators: JSON-RPC access to an execution node and the
test-network faucet.
"""
import logging
from typing import Any, Dict, Optional

import aiohttp
from eth_utils import is_address, to_hex, to_int
from web3 import AsyncWeb3
from web3.types import RPCEndpoint

from .config import NetworkConfig

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120

CALL_FIELDS = ("from", "to", "data", "value", "gas", "gasPrice")


class TransportError(Exception):
    """A JSON-RPC error returned by the node, kept verbatim."""

    def __init__(self, response: Dict[str, Any]):
        self.response = response
        self.code = response.get("code")
        self.message = str(response.get("message", ""))
        super().__init__(self.message or repr(response))

    def is_nonce_too_low(self) -> bool:
        return "nonce too low" in self.message.lower()

    def is_rlp_error(self) -> bool:
        return "rlp" in self.message.lower()


class FaucetError(Exception):
    code = 502

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class Web3Transport:
    """
    Thin async JSON-RPC client over web3's AsyncHTTPProvider.

    Raw provider responses are used so node error messages (``nonce too
    low``, rlp failures) reach the signer unaltered.
    """

    def __init__(self, rpc_url: str, timeout: int = DEFAULT_TIMEOUT):
        if not rpc_url:
            raise ValueError("RPC URL cannot be empty")
        self.rpc_url = rpc_url
        self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
            rpc_url,
            request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)},
        ))

    @classmethod
    def from_network(cls, network: NetworkConfig, timeout: int = DEFAULT_TIMEOUT) -> 'Web3Transport':
        return cls(network.rpc_url, timeout=timeout)

    async def _request(self, method: str, params: list) -> Any:
        response = await self.w3.provider.make_request(RPCEndpoint(method), params)
        if response.get("error"):
            error = response["error"]
            if not isinstance(error, dict):
                error = {"message": str(error)}
            raise TransportError(error)
        return response.get("result")

    async def send_raw_transaction(self, raw_tx: str) -> Optional[str]:
        """Broadcast a signed transaction; returns its hash."""
        result = await self._request("eth_sendRawTransaction", [raw_tx])
        logger.debug("sendRawTransaction response: %s", result)
        return result

    async def pending_transaction_count(self, address: str) -> int:
        result = await self._request("eth_getTransactionCount", [address, "pending"])
        return to_int(hexstr=result)

    async def get_gas_price(self) -> int:
        result = await self._request("eth_gasPrice", [])
        return to_int(hexstr=result)

    async def execute_read_only_call(self, payload: Dict[str, Any], block: str = "latest") -> Any:
        call = {}
        for field in CALL_FIELDS:
            value = payload.get(field)
            if value is None:
                continue
            call[field] = to_hex(value) if isinstance(value, (int, bytes)) else value
        return await self._request("eth_call", [call, block])

    def __repr__(self):
        return f"<Web3Transport rpc={self.rpc_url}>"


class Faucet:
    """Test-network faucet: ``GET <url><address>`` answers 200 on success."""

    def __init__(self, url: str, timeout: int = DEFAULT_TIMEOUT, session_factory=aiohttp.ClientSession):
        if not url:
            raise ValueError("Faucet URL cannot be empty")
        self.url = url
        self.timeout = timeout
        self._session_factory = session_factory

    async def fund(self, address: str) -> None:
        """
        Request free test ether for ``address``.

        Raises:
            FaucetError: bad address, network failure or non-200 response
        """
        if not isinstance(address, str) or not is_address(address):
            raise FaucetError(f"Invalid address: {address!r}")

        url = self.url + address.lower()
        try:
            async with self._session_factory(timeout=aiohttp.ClientTimeout(total=self.timeout)) as http:
                async with http.get(url) as response:
                    status = response.status
        except aiohttp.ClientError as e:
            raise FaucetError(f"Faucet request failed: {e}") from e

        if status != 200:
            raise FaucetError(f"Faucet returned HTTP {status}", status=status)
        logger.info("faucet funded %s", address)
