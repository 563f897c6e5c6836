import aiohttp
import pytest

from sessionwallet import Wallet
from sessionwallet.transport import Faucet, FaucetError, TransportError, Web3Transport

ADDRESS = "0x1111111111111111111111111111111111111111"


class FakeProvider:
    def __init__(self, responses):
        self.responses = responses
        self.requests = []

    async def make_request(self, method, params):
        self.requests.append((method, params))
        return self.responses[method]


@pytest.fixture
def rpc(monkeypatch):
    transport = Web3Transport("http://127.0.0.1:8545")
    provider = FakeProvider({
        "eth_getTransactionCount": {"jsonrpc": "2.0", "id": 1, "result": "0x1a"},
        "eth_gasPrice": {"jsonrpc": "2.0", "id": 2, "result": "0x3b9aca00"},
        "eth_sendRawTransaction": {"jsonrpc": "2.0", "id": 3, "result": "0x" + "ab" * 32},
        "eth_call": {"jsonrpc": "2.0", "id": 4, "result": "0x01"},
    })
    monkeypatch.setattr(transport.w3.provider, "make_request", provider.make_request)
    transport.fake = provider
    return transport


def test_transport_requires_url():
    with pytest.raises(ValueError):
        Web3Transport("")


@pytest.mark.asyncio
async def test_pending_transaction_count(rpc):
    assert await rpc.pending_transaction_count(ADDRESS) == 26
    assert rpc.fake.requests == [("eth_getTransactionCount", [ADDRESS, "pending"])]


@pytest.mark.asyncio
async def test_gas_price(rpc):
    assert await rpc.get_gas_price() == 10**9


@pytest.mark.asyncio
async def test_send_raw_transaction(rpc):
    assert await rpc.send_raw_transaction("0xf86c") == "0x" + "ab" * 32


@pytest.mark.asyncio
async def test_read_only_call_hex_encodes_ints(rpc):
    result = await rpc.execute_read_only_call({"to": ADDRESS, "data": "0x1234", "value": 16, "send": False})

    assert result == "0x01"
    method, params = rpc.fake.requests[0]
    assert method == "eth_call"
    assert params == [{"to": ADDRESS, "data": "0x1234", "value": "0x10"}, "latest"]


@pytest.mark.asyncio
async def test_rpc_error_raised_verbatim(rpc):
    rpc.fake.responses["eth_sendRawTransaction"] = {
        "jsonrpc": "2.0", "id": 3, "error": {"code": -32000, "message": "nonce too low"},
    }

    with pytest.raises(TransportError) as exc:
        await rpc.send_raw_transaction("0xf86c")

    assert exc.value.code == -32000
    assert exc.value.response == {"code": -32000, "message": "nonce too low"}
    assert exc.value.is_nonce_too_low()


@pytest.mark.parametrize("message,nonce,rlp", [
    ("Nonce too low", True, False),
    ("NONCE TOO LOW: next nonce 5", True, False),
    ("rlp: input string too long", False, True),
    ("insufficient funds", False, False),
])
def test_transport_error_classification(message, nonce, rlp):
    error = TransportError({"message": message})
    assert error.is_nonce_too_low() is nonce
    assert error.is_rlp_error() is rlp


class FakeResponse:
    def __init__(self, status):
        self.status = status

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeClientSession:
    status = 200
    error = None
    urls = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def get(self, url):
        if self.error is not None:
            raise self.error
        FakeClientSession.urls.append(url)
        return FakeResponse(self.status)


@pytest.fixture
def client_session():
    FakeClientSession.status = 200
    FakeClientSession.error = None
    FakeClientSession.urls = []
    return FakeClientSession


@pytest.mark.asyncio
async def test_faucet_success(client_session):
    faucet = Faucet("https://faucet.example/faucet/", session_factory=client_session)
    await faucet.fund("0x" + "AB" * 20)

    assert client_session.urls == ["https://faucet.example/faucet/0x" + "ab" * 20]


@pytest.mark.asyncio
async def test_faucet_non_200(client_session):
    client_session.status = 503
    faucet = Faucet("https://faucet.example/faucet/", session_factory=client_session)

    with pytest.raises(FaucetError) as exc:
        await faucet.fund(ADDRESS)
    assert exc.value.status == 503


@pytest.mark.asyncio
async def test_faucet_network_error(client_session):
    client_session.error = aiohttp.ClientConnectionError("refused")
    faucet = Faucet("https://faucet.example/faucet/", session_factory=client_session)

    with pytest.raises(FaucetError):
        await faucet.fund(ADDRESS)


@pytest.mark.asyncio
@pytest.mark.parametrize("address", [None, 42, "", "not-an-address"])
async def test_faucet_rejects_bad_address(client_session, address):
    faucet = Faucet("https://faucet.example/faucet/", session_factory=client_session)

    with pytest.raises(FaucetError):
        await faucet.fund(address)
    assert client_session.urls == []


@pytest.mark.asyncio
async def test_wallet_fund_from_faucet(session, transport, alice, client_session):
    wallet = Wallet(session, transport,
                    faucet=Faucet("https://faucet.example/faucet/", session_factory=client_session))

    assert await wallet.fund_from_faucet() == alice.address
    assert client_session.urls == ["https://faucet.example/faucet/" + alice.address.lower()]
