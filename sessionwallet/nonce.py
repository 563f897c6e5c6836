"""
Pending transaction ledger and nonce sequencing.

Nonces are decided under an asyncio.Lock so that concurrent ``invoke()``
calls, whose network lookups may interleave, never share a nonce. Only the
decision/update step is locked; network I/O happens outside it.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Tuple

import aiohttp

from .transport import TransportError

logger = logging.getLogger(__name__)

# Entries in these states no longer hold their nonce.
RELEASED_STATUSES = frozenset({"failed", "dropped", "replaced"})


@dataclass
class LedgerEntry:
    tx: Dict[str, Any]
    cost: int
    status: str = "pending"

    @property
    def nonce(self) -> Optional[int]:
        return self.tx.get("nonce")

    @property
    def live(self) -> bool:
        return self.status not in RELEASED_STATUSES


class PendingTransactionLedger:
    """
    Transactions submitted by the current identity, keyed by transaction hash,
    plus the ``max_nonce`` watermark (highest nonce assigned locally).
    """

    def __init__(self):
        self._entries: Dict[str, LedgerEntry] = {}
        self.max_nonce = -1

    def record(self, tx_hash: str, tx: Dict[str, Any], cost: int) -> LedgerEntry:
        entry = LedgerEntry(tx=dict(tx), cost=cost)
        self._entries[tx_hash] = entry
        return entry

    def get(self, tx_hash: str) -> LedgerEntry:
        if tx_hash not in self._entries:
            raise KeyError(f"Transaction {tx_hash} not in ledger")
        return self._entries[tx_hash]

    def set_status(self, tx_hash: str, status: str):
        """Record the outcome reported by an external confirmation tracker."""
        self.get(tx_hash).status = status

    def has_live_nonce(self, nonce: int) -> bool:
        return any(entry.live and entry.nonce == nonce for entry in self._entries.values())

    def clear(self):
        self._entries.clear()
        self.max_nonce = -1

    def items(self) -> Iterator[Tuple[str, LedgerEntry]]:
        return iter(list(self._entries.items()))

    def __contains__(self, tx_hash) -> bool:
        return tx_hash in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self):
        return f"<PendingTransactionLedger entries={len(self._entries)} max_nonce={self.max_nonce}>"


class NonceSequencer:
    """
    Assigns each packaged transaction a nonce that is unique among live
    ledger entries and strictly above the watermark.

    Nonces come out in the order calls reach the lock, not the order the
    calls were started.
    """

    def __init__(self, transport, ledger: PendingTransactionLedger):
        self.transport = transport
        self.ledger = ledger
        self._lock = asyncio.Lock()

    async def resolve(self, packaged: Dict[str, Any], address: str) -> int:
        """
        Seed the nonce from the node's pending count (unless the caller
        pre-assigned one), then fix it under the lock.
        """
        if packaged.get("nonce") is None:
            try:
                count = await self.transport.pending_transaction_count(address)
            except (TransportError, aiohttp.ClientError, asyncio.TimeoutError) as e:
                # local sequencing only
                logger.warning("pending transaction count unavailable for %s: %s", address, e)
            else:
                logger.debug("pending transaction count for %s: %d", address, count)
                packaged["nonce"] = count
        return await self.assign(packaged)

    async def assign(self, packaged: Dict[str, Any]) -> int:
        async with self._lock:
            nonce = packaged.get("nonce") or 0
            if self.ledger.has_live_nonce(nonce):
                nonce = self.ledger.max_nonce + 1
                logger.debug("duplicate nonce, incremented: %d (max %d)", nonce, self.ledger.max_nonce)
            if nonce <= self.ledger.max_nonce:
                self.ledger.max_nonce += 1
                nonce = self.ledger.max_nonce
            else:
                self.ledger.max_nonce = nonce
            packaged["nonce"] = nonce
            logger.debug("nonce: %d (max %d)", nonce, self.ledger.max_nonce)
            return nonce

    def bump_watermark(self):
        """Skip past a nonce the node reported as already used."""
        self.ledger.max_nonce += 1
