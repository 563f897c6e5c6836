import asyncio

import pytest
from eth_utils import keccak, to_hex

from sessionwallet import Config, KeyManager, Session


class FakeTransport:
    """In-memory node: records broadcasts and answers with canned values."""

    def __init__(self, pending_count=0, gas_price=20 * 10**9):
        self.pending_count = pending_count
        self.gas_price = gas_price
        self.count_error = None
        self.gas_error = None
        self.rejections = []
        self.no_result = False
        self.sent = []
        self.calls = []
        self.count_queries = 0
        self.gas_queries = 0

    async def pending_transaction_count(self, address):
        self.count_queries += 1
        await asyncio.sleep(0)
        if self.count_error is not None:
            raise self.count_error
        return self.pending_count

    async def get_gas_price(self):
        self.gas_queries += 1
        await asyncio.sleep(0)
        if self.gas_error is not None:
            raise self.gas_error
        return self.gas_price

    async def send_raw_transaction(self, raw_tx):
        await asyncio.sleep(0)
        self.sent.append(raw_tx)
        if self.rejections:
            raise self.rejections.pop(0)
        if self.no_result:
            return None
        return to_hex(keccak(hexstr=raw_tx))

    async def execute_read_only_call(self, payload):
        self.calls.append(payload)
        return "0x0000000000000000000000000000000000000000000000000000000000000001"


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def key_manager():
    return KeyManager(kdf="scrypt", rounds=1024)


@pytest.fixture
def session(key_manager):
    return Session(key_manager=key_manager)


@pytest.fixture
def alice(session):
    return session.register("alice", "secret1")


@pytest.fixture
def fresh_config(tmp_path):
    Config._instance = None
    config = Config(config_path=str(tmp_path / "config.json"))
    yield config
    Config._instance = None
