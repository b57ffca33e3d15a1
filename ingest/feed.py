# ingest/feed.py

import asyncio, logging
from typing import Iterable, List, Optional

from hexbytes import HexBytes
from web3 import AsyncWeb3, Web3, WebSocketProvider
from web3.exceptions import Web3Exception
from web3.utils.subscriptions import NewHeadsSubscription
from websockets.exceptions import ConnectionClosedError

from healthwatch.models import BlockEvent, LogEntry, TransactionEvent
from ingest.events import qualifying_events

logger = logging.getLogger(__name__)

RECONNECT_DELAY = 5  # seconds
MAX_LOG_RANGE   = 1000   # blocks per eth_getLogs backfill request


def _hex(value) -> str:
    return value if isinstance(value, str) else Web3.to_hex(value)


def group_transactions(logs: Iterable) -> List[TransactionEvent]:
    """Group RPC logs into per-transaction events, in (block, log index) order."""
    txs: dict = {}
    for log in sorted(logs, key=lambda l: (l.get("blockNumber", 0), l.get("logIndex", 0))):
        tx_hash = _hex(log["transactionHash"])
        tx = txs.get(tx_hash)
        if tx is None:
            tx = txs[tx_hash] = TransactionEvent(hash=tx_hash)
        address = log["address"].lower()
        tx.addresses.add(address)
        tx.logs.append(LogEntry(
            address=address,
            topics=[bytes(HexBytes(t)) for t in log["topics"]],
            data=bytes(HexBytes(log["data"])),
        ))
    return list(txs.values())


def build_block_event(header, logs: Iterable) -> BlockEvent:
    """Group a block's pool logs into per-transaction events, in log order."""
    return BlockEvent(
        number=int(header["number"]),
        timestamp=int(header.get("timestamp", 0)),
        hash=_hex(header.get("hash", b"")),
        transactions=group_transactions(logs),
    )


def _log_filter(pool_address: str, pool_version: str) -> dict:
    return {
        "address": Web3.to_checksum_address(pool_address),
        "topics": [[HexBytes(t) for t in qualifying_events(pool_version)]],
    }


async def fetch_pool_logs(w3: AsyncWeb3, block_hash, pool_address: str,
                          pool_version: str = "v2") -> List:
    return await w3.eth.get_logs({"blockHash": block_hash, **_log_filter(pool_address, pool_version)})


class BlockFollower:
    """Turns newHeads into monitor blocks and backfills pool logs for heads missed while offline."""

    def __init__(self, monitor, pool_address: str, pool_version: str = "v2"):
        self.monitor = monitor
        self.pool_address = pool_address
        self.pool_version = pool_version
        self.last_block: Optional[int] = None

    async def on_head(self, w3: AsyncWeb3, header):
        number = int(header["number"])
        if self.last_block is not None and number > self.last_block + 1:
            await self.backfill(w3, self.last_block + 1, number - 1)
        logs = await fetch_pool_logs(w3, header["hash"], self.pool_address, self.pool_version)
        await self.monitor.handle_block(build_block_event(header, logs))
        self.last_block = max(number, self.last_block or 0)

    async def backfill(self, w3: AsyncWeb3, start: int, end: int) -> int:
        """Ingest pool logs from blocks ``start..end``; the next head's cycle evaluates them."""
        logger.info(f"⏪ Backfilling pool logs for blocks {start}–{end}")
        added = 0
        for lo in range(start, end + 1, MAX_LOG_RANGE):
            hi = min(lo + MAX_LOG_RANGE - 1, end)
            logs = await w3.eth.get_logs({
                "fromBlock": lo, "toBlock": hi, **_log_filter(self.pool_address, self.pool_version),
            })
            added += len(await self.monitor.ingest_transactions(group_transactions(logs)))
            self.last_block = hi
        return added


async def run_feed(ws_url: str, pool_address: str, monitor, pool_version: str = "v2"):
    """Drive ``monitor.handle_block`` from newHeads until interrupted; reconnects on drops."""
    follower = BlockFollower(monitor, pool_address, pool_version)
    while True:
        w3 = None
        try:
            w3 = AsyncWeb3(WebSocketProvider(ws_url))
            await w3.provider.connect()
            logger.info("🌐 Connected to Ethereum WS")

            async def handle_head(ctx):
                await follower.on_head(w3, ctx.result)

            subscription = NewHeadsSubscription(label="pool health heads", handler=handle_head)
            await w3.subscription_manager.subscribe([subscription])
            logger.info("⛽ Subscribed – evaluating tracked accounts on every block…")

            await w3.subscription_manager.handle_subscriptions()

        except (ConnectionClosedError, asyncio.IncompleteReadError, Web3Exception) as e:
            logger.warning(f"⚠️  WebSocket dropped: {e!r}. Reconnecting in {RECONNECT_DELAY}s…")
            await asyncio.sleep(RECONNECT_DELAY)
            continue

        finally:
            if w3 is not None:
                try:
                    await w3.provider.disconnect()
                except (Web3Exception, OSError) as e:
                    logger.debug(f"disconnect failed: {e!r}")
