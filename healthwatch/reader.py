# healthwatch/reader.py
import asyncio, logging
from decimal import Decimal
from typing import List, Protocol, Sequence, Tuple

import aiohttp
from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import Web3Exception

from healthwatch.models import BatchResult, BlockRef, RawAccountData

logger = logging.getLogger(__name__)

PRICE_DECIMALS = 8   # Chainlink USD feeds

ACCOUNT_DATA_SELECTOR = Web3.keccak(text="getUserAccountData(address)")[:4]
LATEST_ANSWER_SELECTOR = Web3.keccak(text="latestAnswer()")[:4]
ACCOUNT_DATA_TYPES = ["uint256"] * 6

MULTICALL_ABI = [{
    "name": "aggregate",
    "type": "function",
    "stateMutability": "payable",
    "inputs": [{
        "name": "calls",
        "type": "tuple[]",
        "components": [
            {"name": "target",   "type": "address"},
            {"name": "callData", "type": "bytes"},
        ],
    }],
    "outputs": [
        {"name": "blockNumber", "type": "uint256"},
        {"name": "returnData",  "type": "bytes[]"},
    ],
}]

Call = Tuple[str, bytes]


class ReadProviderError(Exception):
    """The provider could not serve the batched read."""


class BatchReadError(Exception):
    """A cycle's batched read failed as a whole; nothing was returned."""


class ReadProvider(Protocol):
    async def aggregate(self, calls: Sequence[Call], block: BlockRef) -> List[bytes]:
        ...


class MulticallReadProvider:
    """Runs a list of (target, callData) pairs as one Multicall ``aggregate`` eth_call."""

    def __init__(self, w3: AsyncWeb3, multicall_address: str):
        self.w3 = w3
        self.contract = w3.eth.contract(
            address=Web3.to_checksum_address(multicall_address), abi=MULTICALL_ABI
        )

    @classmethod
    def from_url(cls, http_url: str, multicall_address: str, timeout: float = 15.0, **provider_kwargs):
        w3 = AsyncWeb3(AsyncHTTPProvider(
            http_url,
            request_kwargs={"timeout": aiohttp.ClientTimeout(total=timeout)},
            **provider_kwargs,
        ))
        return cls(w3, multicall_address)

    async def aggregate(self, calls: Sequence[Call], block: BlockRef) -> List[bytes]:
        payload = [(Web3.to_checksum_address(target), bytes(data)) for target, data in calls]
        try:
            _, results = await self.contract.functions.aggregate(payload).call(block_identifier=block)
        except (Web3Exception, aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
            raise ReadProviderError(f"multicall aggregate failed at block {block}: {e!r}") from e
        return [bytes(r) for r in results]


def account_data_call(address: str) -> bytes:
    return bytes(ACCOUNT_DATA_SELECTOR) + encode(["address"], [address])


def latest_answer_call() -> bytes:
    return bytes(LATEST_ANSWER_SELECTOR)


class BatchReader:
    """One round trip per cycle: every account's data plus the price, same block."""

    def __init__(self, provider: ReadProvider, pool_address: str, price_feed_address: str):
        self.provider = provider
        self.pool_address = pool_address
        self.price_feed_address = price_feed_address

    def build_calls(self, addresses: Sequence[str]) -> List[Call]:
        calls = [(self.pool_address, account_data_call(a)) for a in addresses]
        calls.append((self.price_feed_address, latest_answer_call()))
        return calls

    async def fetch(self, addresses: Sequence[str], block: BlockRef = "latest") -> BatchResult:
        addresses = list(addresses)
        if not addresses:
            return BatchResult(accounts=[], rate=None, block=block)
        if len(set(a.lower() for a in addresses)) != len(addresses):
            raise ValueError("addresses must be distinct")

        try:
            results = await self.provider.aggregate(self.build_calls(addresses), block)
        except ReadProviderError as e:
            raise BatchReadError(str(e)) from e

        if len(results) != len(addresses) + 1:
            raise BatchReadError(
                f"expected {len(addresses) + 1} results at block {block}, got {len(results)}"
            )

        try:
            accounts = [RawAccountData(*decode(ACCOUNT_DATA_TYPES, r)) for r in results[:-1]]
            (answer,) = decode(["int256"], results[-1])
        except (DecodingError, TypeError) as e:
            raise BatchReadError(f"malformed multicall result at block {block}: {e}") from e
        if answer <= 0:
            raise BatchReadError(f"price feed returned non-positive answer {answer}")

        logger.debug(f"fetched {len(accounts)} accounts at block {block}")
        return BatchResult(
            accounts=accounts,
            rate=Decimal(answer).scaleb(-PRICE_DECIMALS),
            block=block,
        )
