# healthwatch/models.py
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Union

from web3 import Web3

BlockRef = Union[int, str]


def normalize_address(address) -> str:
    """Canonical form used as the ledger key: lower-case 0x-prefixed hex."""
    if isinstance(address, (bytes, bytearray)) and len(address) == 20:
        address = "0x" + bytes(address).hex()
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ValueError(f"not an address: {address!r}")
    return address.lower()


@dataclass(frozen=True)
class TrackedAccount:
    address: str
    alerted: bool = False


@dataclass(frozen=True)
class RawAccountData:
    """getUserAccountData() output, native units (collateral/debt in wei, HF in wad)."""
    total_collateral: int
    total_debt: int
    available_borrows: int
    liquidation_threshold: int
    ltv: int
    health_factor: int


@dataclass(frozen=True)
class BatchResult:
    accounts: List[RawAccountData]
    rate: Optional[Decimal]          # USD per 1 native unit
    block: BlockRef = "latest"


@dataclass(frozen=True)
class RiskSnapshot:
    collateral_usd: Decimal
    debt_usd: Decimal
    risk_ratio: Decimal


class Action(str, Enum):
    NONE  = "none"
    ALERT = "alert"
    CLEAR = "clear"
    DROP  = "drop"


@dataclass(frozen=True)
class Evaluation:
    address: str
    snapshot: RiskSnapshot
    action: Action


class Severity(str, Enum):
    INFO     = "info"
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Finding:
    address: str
    risk_ratio: Decimal
    collateral_usd: Decimal
    severity: Severity
    alert_id: str
    block_number: Optional[int] = None
    resolved: bool = False

    def __post_init__(self):
        object.__setattr__(self, "address", normalize_address(self.address))
        for name in ("risk_ratio", "collateral_usd"):
            value = getattr(self, name)
            if not isinstance(value, Decimal) or not value.is_finite() or value < 0:
                raise ValueError(f"{name} must be a finite non-negative Decimal, got {value!r}")
        if not isinstance(self.severity, Severity):
            raise ValueError(f"severity must be a Severity, got {self.severity!r}")
        if not isinstance(self.alert_id, str) or not self.alert_id.strip():
            raise ValueError("alert_id must be a non-empty string")

    @property
    def description(self) -> str:
        if self.resolved:
            return f"{self.address} health factor recovered to {self.risk_ratio:.4f}"
        return (f"{self.address} health factor {self.risk_ratio:.4f} "
                f"with ${self.collateral_usd:,.2f} collateral")

    def to_dict(self) -> Dict[str, object]:
        return {
            "alert_id":       self.alert_id,
            "address":        self.address,
            "risk_ratio":     str(self.risk_ratio),
            "collateral_usd": str(self.collateral_usd),
            "severity":       self.severity.value,
            "block":          self.block_number,
            "resolved":       self.resolved,
        }


# ── feed objects ────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class LogEntry:
    address: str
    topics: List[bytes]
    data: bytes = b""


@dataclass
class TransactionEvent:
    hash: str
    addresses: set = field(default_factory=set)
    logs: List[LogEntry] = field(default_factory=list)

    def involves(self, address: str) -> bool:
        return address.lower() in self.addresses


@dataclass
class BlockEvent:
    number: int
    timestamp: int = 0
    hash: str = ""
    transactions: List[TransactionEvent] = field(default_factory=list)
