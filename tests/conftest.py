from decimal import Decimal

import pytest
from eth_abi import decode, encode

from healthwatch.config import EvaluationConfig
from healthwatch.models import LogEntry, TransactionEvent
from healthwatch.reader import ACCOUNT_DATA_SELECTOR, ReadProviderError
from ingest.events import BORROW_V2_SIG
from web3 import Web3

ETH_TO_USD = 200_000_000_000   # 2000 USD, 8 decimals


def addr(n: int) -> str:
    return f"0x{n:040x}"


POOL = addr(0x2001)
FEED = addr(0xFEED)
USER = addr(0x1)


def wad(value) -> int:
    return int(Decimal(str(value)) * 10**18)


def usd_to_wei(value, answer=ETH_TO_USD) -> int:
    return int(Decimal(str(value)) * 10**26 / answer)


class FakeProvider:
    """Answers aggregate() calls from a table of USD-denominated account values."""

    def __init__(self, answer=ETH_TO_USD):
        self.answer = answer
        self.accounts = {}
        self.calls = []
        self.fail = False

    def set(self, address, collateral_usd, debt_usd, health_factor):
        self.accounts[address.lower()] = (collateral_usd, debt_usd, health_factor)

    def set_all(self, collateral_usd, debt_usd, health_factor):
        for address in list(self.accounts):
            self.set(address, collateral_usd, debt_usd, health_factor)

    async def aggregate(self, calls, block):
        self.calls.append((list(calls), block))
        if self.fail:
            raise ReadProviderError("connection reset")
        out = []
        for target, data in calls:
            if data[:4] == bytes(ACCOUNT_DATA_SELECTOR):
                (who,) = decode(["address"], data[4:])
                coll, debt, hf = self.accounts.get(who.lower(), (0, 0, 0))
                out.append(encode(["uint256"] * 6, [
                    usd_to_wei(coll, self.answer), usd_to_wei(debt, self.answer), 0, 0, 0, wad(hf),
                ]))
            else:
                out.append(encode(["int256"], [self.answer]))
        return out


class ListSink:
    def __init__(self):
        self.findings = []

    def emit(self, finding):
        self.findings.append(finding)


def borrow_log(pool, account, reserve=addr(0xAAAA)) -> LogEntry:
    return LogEntry(
        address=pool,
        topics=[
            bytes(Web3.keccak(text=BORROW_V2_SIG)),
            encode(["address"], [reserve]),
            encode(["address"], [account]),
            encode(["uint16"], [0]),
        ],
        data=encode(["address", "uint256", "uint256", "uint256"], [account, 10**18, 2, 0]),
    )


def borrow_tx(pool, *accounts, tx_hash="0xabc") -> TransactionEvent:
    logs = [borrow_log(pool, a) for a in accounts]
    return TransactionEvent(hash=tx_hash, addresses={pool.lower()}, logs=logs)


@pytest.fixture
def config():
    return EvaluationConfig(
        ignore_threshold="20",
        risk_ratio_threshold="1.05",
        collateral_upper_threshold="2000000",
        price_feed_address=FEED,
        pool_address=POOL,
    )


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def sink():
    return ListSink()
