import asyncio

import aiohttp
import pytest

from sessionwallet.nonce import NonceSequencer, PendingTransactionLedger
from sessionwallet.transport import TransportError

ADDRESS = "0x1111111111111111111111111111111111111111"


@pytest.fixture
def ledger():
    return PendingTransactionLedger()


@pytest.fixture
def sequencer(transport, ledger):
    return NonceSequencer(transport, ledger)


def test_ledger_record_and_status(ledger):
    entry = ledger.record("0xaa", {"nonce": 4, "gasLimit": 21000}, 420000)

    assert "0xaa" in ledger
    assert len(ledger) == 1
    assert entry.nonce == 4
    assert entry.status == "pending"
    assert ledger.has_live_nonce(4)

    ledger.set_status("0xaa", "failed")
    assert ledger.get("0xaa").status == "failed"
    assert not ledger.has_live_nonce(4)


@pytest.mark.parametrize("status", ["failed", "dropped", "replaced"])
def test_released_statuses_free_the_nonce(ledger, status):
    ledger.record("0xaa", {"nonce": 1}, 0)
    ledger.set_status("0xaa", status)
    assert not ledger.has_live_nonce(1)


@pytest.mark.parametrize("status", ["pending", "mined", "confirmed"])
def test_other_statuses_hold_the_nonce(ledger, status):
    ledger.record("0xaa", {"nonce": 1}, 0)
    ledger.set_status("0xaa", status)
    assert ledger.has_live_nonce(1)


def test_ledger_unknown_hash(ledger):
    with pytest.raises(KeyError):
        ledger.set_status("0xmissing", "failed")


def test_ledger_record_copies_tx(ledger):
    tx = {"nonce": 1}
    ledger.record("0xaa", tx, 0)
    tx["nonce"] = 99
    assert ledger.get("0xaa").nonce == 1


def test_ledger_clear(ledger):
    ledger.record("0xaa", {"nonce": 1}, 0)
    ledger.max_nonce = 1
    ledger.clear()
    assert len(ledger) == 0
    assert ledger.max_nonce == -1


@pytest.mark.asyncio
async def test_seeds_from_pending_count(sequencer, transport, ledger):
    transport.pending_count = 7
    packaged = {"nonce": None}

    assert await sequencer.resolve(packaged, ADDRESS) == 7
    assert packaged["nonce"] == 7
    assert ledger.max_nonce == 7


@pytest.mark.asyncio
async def test_first_nonce_is_zero(sequencer, transport):
    transport.pending_count = 0
    assert await sequencer.resolve({"nonce": None}, ADDRESS) == 0


@pytest.mark.asyncio
async def test_preassigned_nonce_skips_query(sequencer, transport):
    assert await sequencer.resolve({"nonce": 12}, ADDRESS) == 12
    assert transport.count_queries == 0


@pytest.mark.asyncio
async def test_explicit_zero_nonce_is_preassigned(sequencer, transport, ledger):
    transport.pending_count = 5

    assert await sequencer.resolve({"nonce": 0}, ADDRESS) == 0
    assert transport.count_queries == 0
    assert ledger.max_nonce == 0


@pytest.mark.asyncio
async def test_stale_count_never_goes_backwards(sequencer, transport, ledger):
    ledger.max_nonce = 10
    transport.pending_count = 3

    assert await sequencer.resolve({"nonce": None}, ADDRESS) == 11
    assert ledger.max_nonce == 11


@pytest.mark.asyncio
async def test_live_collision_bumps_past_watermark(sequencer, transport, ledger):
    ledger.record("0xaa", {"nonce": 12}, 0)
    ledger.max_nonce = 12
    transport.pending_count = 12

    assert await sequencer.resolve({"nonce": None}, ADDRESS) == 13


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    TransportError({"code": -32000, "message": "boom"}),
    aiohttp.ClientConnectionError("refused"),
    asyncio.TimeoutError(),
])
async def test_count_failure_falls_back_to_local(sequencer, transport, ledger, error):
    transport.count_error = error
    ledger.max_nonce = 4

    assert await sequencer.resolve({"nonce": None}, ADDRESS) == 5


@pytest.mark.asyncio
async def test_concurrent_resolves_are_distinct(sequencer, transport):
    transport.pending_count = 5
    packages = [{"nonce": None} for _ in range(10)]

    nonces = await asyncio.gather(*(sequencer.resolve(p, ADDRESS) for p in packages))

    assert sorted(nonces) == list(range(5, 15))
    assert len(set(nonces)) == 10


def test_bump_watermark(sequencer, ledger):
    ledger.max_nonce = 2
    sequencer.bump_watermark()
    assert ledger.max_nonce == 3
