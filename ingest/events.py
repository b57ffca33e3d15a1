# ingest/events.py
import logging
from typing import Dict, Set

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from hexbytes import HexBytes
from web3 import Web3

from healthwatch.ledger import AccountLedger
from healthwatch.models import LogEntry, TrackedAccount, TransactionEvent, normalize_address

logger = logging.getLogger(__name__)

# Borrow(reserve indexed, user, onBehalfOf indexed, amount, rateMode, borrowRate, referral indexed)
BORROW_V2_SIG = "Borrow(address,address,address,uint256,uint256,uint256,uint16)"
BORROW_V3_SIG = "Borrow(address,address,address,uint256,uint8,uint256,uint16)"

BORROW_SIGS = {"v2": BORROW_V2_SIG, "v3": BORROW_V3_SIG}


def qualifying_events(pool_version: str = "v2") -> Dict[bytes, int]:
    """topic0 -> position of the topic holding the account whose position changed."""
    return {bytes(Web3.keccak(text=BORROW_SIGS[pool_version])): 2}


QUALIFYING_EVENTS = qualifying_events("v2")


def account_from_log(log: LogEntry, events: Dict[bytes, int] = QUALIFYING_EVENTS):
    """Address of the account a qualifying pool log acts for, else None."""
    if not log.topics:
        return None
    topic0 = bytes(HexBytes(log.topics[0]))
    position = events.get(topic0)
    if position is None:
        return None
    (account,) = decode(["address"], bytes(HexBytes(log.topics[position])))
    return normalize_address(account)


class EventIngester:
    """Registers every account that borrows from the monitored pool."""

    def __init__(self, ledger: AccountLedger, pool_address: str, pool_version: str = "v2"):
        self.ledger = ledger
        self.pool_address = normalize_address(pool_address)
        self.events = qualifying_events(pool_version)

    def ingest(self, tx: TransactionEvent) -> Set[str]:
        added: Set[str] = set()
        if not tx.involves(self.pool_address):
            return added

        for log in tx.logs:
            if log.address.lower() != self.pool_address:
                continue
            try:
                account = account_from_log(log, self.events)
            except (DecodingError, IndexError, TypeError, ValueError) as e:
                logger.debug(f"skipping malformed pool log in {tx.hash}: {e!r}")
                continue
            if account and self.ledger.add(TrackedAccount(account)):
                added.add(account)

        if added:
            logger.info(f"tx {tx.hash}: tracking {len(added)} new account(s), {len(self.ledger)} total")
        return added
