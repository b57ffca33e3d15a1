# healthwatch/monitor.py
import asyncio, logging
from typing import List, Optional, Set

from healthwatch.config import EvaluationConfig
from healthwatch.ledger import AccountLedger
from healthwatch.models import BlockEvent, Finding, TransactionEvent
from healthwatch.persistence import PersistenceBackend, PersistenceError
from healthwatch.reader import BatchReader
from healthwatch.scheduler import CycleScheduler
from ingest.events import EventIngester

logger = logging.getLogger(__name__)


class HealthMonitor:
    """Owns the ledger and wires ingestion, evaluation cycles and checkpoints together.

    ``initialize()`` must run before the first block so a restarted monitor
    resumes with the accounts (and alert flags) it had before.
    """

    def __init__(self, config: EvaluationConfig, reader: BatchReader, sink=None,
                 backend: Optional[PersistenceBackend] = None,
                 checkpoint_key: str = "health-monitor-accounts",
                 alert_id: str = "HEALTH-FACTOR-1", emit_clears: bool = False,
                 ledger: Optional[AccountLedger] = None):
        self.config = config
        self.ledger = ledger if ledger is not None else AccountLedger()
        self.ingester = EventIngester(self.ledger, config.pool_address, config.pool_version)
        self.scheduler = CycleScheduler(self.ledger, reader, config, sink,
                                        alert_id=alert_id, emit_clears=emit_clears)
        self.backend = backend
        self.checkpoint_key = checkpoint_key
        self._persisted_version = self.ledger.version
        self._block_lock = asyncio.Lock()

    def initialize(self) -> int:
        if self.backend is None:
            return 0
        try:
            data = self.backend.load(self.checkpoint_key)
        except PersistenceError as e:
            logger.error(f"❌ checkpoint load failed, starting with an empty ledger: {e}")
            data = {}
        try:
            restored = self.ledger.restore(data.get("accounts", []))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"❌ checkpoint {self.checkpoint_key} is corrupt, starting empty: {e!r}")
            self.ledger.reset()
            restored = 0
        self._persisted_version = self.ledger.version
        logger.info(f"restored {restored} tracked account(s) from checkpoint")
        return restored

    def handle_transaction(self, tx: TransactionEvent) -> Set[str]:
        return self.ingester.ingest(tx)

    async def handle_block(self, block: BlockEvent) -> List[Finding]:
        async with self._block_lock:
            try:
                for tx in block.transactions:
                    self.handle_transaction(tx)
                result = await self.scheduler.run_cycle(block)
                return result.findings
            finally:
                await self._checkpoint_off_loop()

    async def ingest_transactions(self, transactions) -> Set[str]:
        """Ingest without running a cycle; the next block evaluates what was added."""
        added: Set[str] = set()
        async with self._block_lock:
            try:
                for tx in transactions:
                    added |= self.handle_transaction(tx)
                return added
            finally:
                await self._checkpoint_off_loop()

    def checkpoint(self) -> bool:
        if self.backend is None or self.ledger.version == self._persisted_version:
            return False
        version = self.ledger.version
        if not self._persist(self.ledger.to_records()):
            return False
        self._persisted_version = version
        return True

    async def _checkpoint_off_loop(self) -> bool:
        # records are captured on the loop; only the backend write runs in a worker thread
        if self.backend is None or self.ledger.version == self._persisted_version:
            return False
        version = self.ledger.version
        if not await asyncio.to_thread(self._persist, self.ledger.to_records()):
            return False
        self._persisted_version = version
        return True

    def _persist(self, records) -> bool:
        try:
            self.backend.persist(self.checkpoint_key, {"accounts": records})
        except PersistenceError as e:
            logger.error(f"❌ checkpoint write failed, restart recovery is stale: {e}")
            return False
        return True
