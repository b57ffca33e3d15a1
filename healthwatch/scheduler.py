# healthwatch/scheduler.py
import asyncio, logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from healthwatch.config import EvaluationConfig
from healthwatch.evaluator import evaluate
from healthwatch.ledger import AccountLedger
from healthwatch.models import Action, BlockEvent, Evaluation, Finding, Severity
from healthwatch.reader import BatchReadError, BatchReader

logger = logging.getLogger(__name__)


class CycleState(str, Enum):
    IDLE       = "idle"
    FETCHING   = "fetching"
    EVALUATING = "evaluating"
    APPLYING   = "applying"


@dataclass
class CycleResult:
    block_number: int
    evaluations: List[Evaluation] = field(default_factory=list)
    findings: List[Finding] = field(default_factory=list)
    skipped: bool = False
    failed: bool = False


class CycleScheduler:
    """Runs one fetch -> evaluate -> apply pass per block, one at a time."""

    def __init__(self, ledger: AccountLedger, reader: BatchReader, config: EvaluationConfig,
                 sink=None, alert_id: str = "HEALTH-FACTOR-1", emit_clears: bool = False):
        self.ledger = ledger
        self.reader = reader
        self.config = config
        self.sink = sink
        self.alert_id = alert_id
        self.emit_clears = emit_clears
        self.state = CycleState.IDLE
        self._lock = asyncio.Lock()

    async def run_cycle(self, block: BlockEvent) -> CycleResult:
        async with self._lock:
            try:
                return await self._run(block)
            finally:
                self.state = CycleState.IDLE

    async def _run(self, block: BlockEvent) -> CycleResult:
        result = CycleResult(block_number=block.number)
        if self.ledger.is_empty():
            logger.debug(f"block {block.number}: no tracked accounts, skipping read")
            result.skipped = True
            return result

        self.state = CycleState.FETCHING
        accounts = self.ledger.snapshot()
        try:
            batch = await self.reader.fetch([a.address for a in accounts], block.number)
        except BatchReadError as e:
            logger.warning(f"⚠️  block {block.number}: batched read failed, cycle dropped: {e}")
            result.failed = True
            return result

        self.state = CycleState.EVALUATING
        result.evaluations = [
            evaluate(account, raw, batch.rate, self.config)
            for account, raw in zip(accounts, batch.accounts)
        ]

        self.state = CycleState.APPLYING
        for ev in result.evaluations:
            if ev.action is Action.DROP:
                self.ledger.remove(ev.address)
            elif ev.action is Action.ALERT:
                self.ledger.set_alerted(ev.address, True)
            elif ev.action is Action.CLEAR:
                self.ledger.set_alerted(ev.address, False)

        # emission reads post-apply state only
        for ev in result.evaluations:
            finding = self._finding(ev, block.number)
            if finding is None:
                continue
            result.findings.append(finding)
            if self.sink is not None:
                await asyncio.to_thread(self.sink.emit, finding)

        counts = {a: sum(1 for ev in result.evaluations if ev.action is a) for a in Action}
        logger.info(
            f"block {block.number}: {len(accounts)} evaluated, "
            f"{counts[Action.ALERT]} alert / {counts[Action.CLEAR]} clear / "
            f"{counts[Action.DROP]} drop, {len(self.ledger)} tracked"
        )
        return result

    def _finding(self, ev: Evaluation, block_number: int) -> Optional[Finding]:
        snap = ev.snapshot
        if ev.action is Action.ALERT:
            severity = Severity.CRITICAL if snap.risk_ratio < Decimal(1) else Severity.HIGH
            return Finding(
                address=ev.address,
                risk_ratio=snap.risk_ratio,
                collateral_usd=snap.collateral_usd,
                severity=severity,
                alert_id=self.alert_id,
                block_number=block_number,
            )
        if ev.action is Action.CLEAR and self.emit_clears:
            return Finding(
                address=ev.address,
                risk_ratio=snap.risk_ratio,
                collateral_usd=snap.collateral_usd,
                severity=Severity.INFO,
                alert_id=f"{self.alert_id}-RESOLVED",
                block_number=block_number,
                resolved=True,
            )
        return None
