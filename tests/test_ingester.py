from eth_abi import encode
from web3 import Web3

from healthwatch.ledger import AccountLedger
from healthwatch.models import LogEntry, TrackedAccount, TransactionEvent
from ingest.events import BORROW_V3_SIG, EventIngester

from conftest import POOL, USER, addr, borrow_log, borrow_tx


def test_empty_transaction_adds_nothing():
    ledger = AccountLedger()
    assert EventIngester(ledger, POOL).ingest(TransactionEvent(hash="0x1")) == set()
    assert ledger.is_empty()


def test_borrow_from_pool_tracks_on_behalf_of_accounts():
    ledger = AccountLedger()
    added = EventIngester(ledger, POOL).ingest(borrow_tx(POOL, USER, addr(2)))

    assert added == {USER, addr(2)}
    assert ledger.snapshot() == [TrackedAccount(USER, False), TrackedAccount(addr(2), False)]


def test_borrow_from_other_contract_is_ignored():
    ledger = AccountLedger()
    other = addr(0x0)
    tx = TransactionEvent(hash="0x1", addresses={other, POOL}, logs=[borrow_log(other, USER)])
    assert EventIngester(ledger, POOL).ingest(tx) == set()
    assert ledger.is_empty()


def test_ingesting_twice_is_idempotent():
    ledger = AccountLedger()
    ingester = EventIngester(ledger, POOL)
    tx = borrow_tx(POOL, USER, USER)

    assert ingester.ingest(tx) == {USER}
    before = ledger.snapshot()
    assert ingester.ingest(tx) == set()
    assert ledger.snapshot() == before


def test_existing_alert_flag_is_not_reset():
    ledger = AccountLedger([TrackedAccount(USER, alerted=True)])
    EventIngester(ledger, POOL).ingest(borrow_tx(POOL, USER))
    assert ledger.get(USER).alerted is True


def v3_borrow_tx():
    log = borrow_log(POOL, USER)
    v3 = LogEntry(POOL, [bytes(Web3.keccak(text=BORROW_V3_SIG))] + log.topics[1:], log.data)
    return TransactionEvent("0x1", {POOL}, [v3])


def test_v3_borrow_ignored_by_v2_ingester():
    ledger = AccountLedger()
    assert EventIngester(ledger, POOL).ingest(v3_borrow_tx()) == set()
    assert ledger.is_empty()


def test_v3_ingester_tracks_only_v3_borrows():
    ledger = AccountLedger()
    ingester = EventIngester(ledger, POOL, pool_version="v3")
    assert ingester.ingest(borrow_tx(POOL, addr(9))) == set()
    assert ingester.ingest(v3_borrow_tx()) == {USER}


def test_malformed_logs_are_skipped():
    good = borrow_log(POOL, addr(5))
    truncated = LogEntry(POOL, good.topics[:2], good.data)
    dirty_topic = LogEntry(POOL, good.topics[:2] + [b"\xff" * 32] + good.topics[3:], good.data)
    unrelated = LogEntry(POOL, [b"\x00" * 32, encode(["address"], [USER])])
    tx = TransactionEvent("0x1", {POOL}, [truncated, dirty_topic, unrelated, LogEntry(POOL, []), good])

    ledger = AccountLedger()
    assert EventIngester(ledger, POOL).ingest(tx) == {addr(5)}
