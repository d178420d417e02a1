"""Channel oracle backed by the DrainChannel contract through web3.py."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar
from types import TracebackType

from eth_account import Account
from web3 import AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from ...crypto.voucher_codec import parse_channel_id, parse_signature
from ...domain.entities import Channel
from ...domain.errors import OnChainFailure
from .abi import CHANNEL_OPENED_SIGNATURE, DRAIN_CHANNEL_ABI, ERC20_ABI

logger = logging.getLogger(__name__)

T = TypeVar("T")

CHANNEL_OPENED_TOPIC = Web3.to_hex(Web3.keccak(text=CHANNEL_OPENED_SIGNATURE))


def _hex(value: Any) -> str:
    text = Web3.to_hex(value)
    return text.lower()


class Web3ChannelOracle:
    """Reads and writes DrainChannel state on an EVM chain.

    Reads get a per-attempt timeout and a small retry budget. Writes are
    submitted once and then awaited; they are never retried here because a
    transaction may have been mined even when the client gave up waiting.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        chain_id: int,
        private_key: str,
        *,
        token_address: Optional[str] = None,
        read_retries: int = 2,
        read_timeout: float = 10.0,
        tx_timeout: float = 120.0,
        w3: Optional[AsyncWeb3] = None,
    ) -> None:
        self._owns_provider = w3 is None
        self._w3 = w3 or AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": read_timeout})
        )
        self._chain_id = chain_id
        self._contract_address = Web3.to_checksum_address(contract_address)
        self._account = Account.from_key(private_key)
        self._contract = self._w3.eth.contract(
            address=self._contract_address, abi=DRAIN_CHANNEL_ABI
        )
        self._token = (
            self._w3.eth.contract(
                address=Web3.to_checksum_address(token_address), abi=ERC20_ABI
            )
            if token_address
            else None
        )
        self.read_retries = read_retries
        self.read_timeout = read_timeout
        self.tx_timeout = tx_timeout

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def chain_id(self) -> int:
        return self._chain_id

    @property
    def contract_address(self) -> str:
        return self._contract_address

    def _require_token(self):
        if self._token is None:
            raise ValueError("Token address is not configured")
        return self._token

    async def _read(self, description: str, call: Callable[[], Awaitable[T]]) -> T:
        attempts = self.read_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.wait_for(call(), timeout=self.read_timeout)
            except ContractLogicError as e:
                raise OnChainFailure(f"{description} reverted: {e}", reason="reverted") from e
            except Exception as e:
                if attempt == attempts:
                    raise OnChainFailure(
                        f"{description} failed after {attempts} attempts: {e}",
                        reason="rpc",
                    ) from e
                logger.warning(
                    "%s failed (attempt %d/%d): %s", description, attempt, attempts, e
                )
        raise AssertionError("unreachable")

    async def _transact(self, description: str, function: Any) -> Tuple[str, Any]:
        """Sign, submit and wait for a contract call. Returns (tx_hash, receipt)."""
        try:
            nonce = await self._w3.eth.get_transaction_count(self.address, "pending")
            tx = await function.build_transaction(
                {"from": self.address, "nonce": nonce, "chainId": self._chain_id}
            )
            signed = self._account.sign_transaction(tx)
            raw_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        except ContractLogicError as e:
            raise OnChainFailure(f"{description} would revert: {e}", reason="reverted") from e
        except Exception as e:
            raise OnChainFailure(f"{description} submission failed: {e}", reason="rpc") from e

        tx_hash = _hex(raw_hash)
        logger.info("%s submitted: %s", description, tx_hash)
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                raw_hash, timeout=self.tx_timeout
            )
        except TimeExhausted as e:
            raise OnChainFailure(
                f"{description} not confirmed within {self.tx_timeout}s",
                reason="timeout",
                tx_hash=tx_hash,
            ) from e
        except Exception as e:
            raise OnChainFailure(
                f"{description} receipt lookup failed: {e}", reason="rpc", tx_hash=tx_hash
            ) from e

        if receipt["status"] != 1:
            raise OnChainFailure(
                f"{description} reverted", reason="reverted", tx_hash=tx_hash
            )
        return tx_hash, receipt

    # Reads

    async def get_channel(self, channel_id: str) -> Channel:
        channel_bytes = parse_channel_id(channel_id)
        consumer, provider, deposit, claimed, expiry = await self._read(
            f"getChannel({channel_id})",
            lambda: self._contract.functions.getChannel(channel_bytes).call(),
        )
        return Channel(
            id=channel_id.lower(),
            consumer=consumer,
            provider=provider,
            deposit=deposit,
            claimed=claimed,
            expiry=expiry,
        )

    async def get_balance(self, channel_id: str) -> int:
        channel_bytes = parse_channel_id(channel_id)
        return await self._read(
            f"getBalance({channel_id})",
            lambda: self._contract.functions.getBalance(channel_bytes).call(),
        )

    async def get_allowance(self, owner: str) -> int:
        token = self._require_token()
        owner = Web3.to_checksum_address(owner)
        return await self._read(
            "allowance",
            lambda: token.functions.allowance(owner, self._contract_address).call(),
        )

    async def get_token_balance(self, owner: str) -> int:
        token = self._require_token()
        owner = Web3.to_checksum_address(owner)
        return await self._read(
            "balanceOf", lambda: token.functions.balanceOf(owner).call()
        )

    # Writes

    async def approve(self, amount: int) -> str:
        token = self._require_token()
        tx_hash, _ = await self._transact(
            "approve", token.functions.approve(self._contract_address, amount)
        )
        return tx_hash

    async def open_channel(
        self, provider: str, amount: int, duration: int
    ) -> tuple[str, str]:
        tx_hash, receipt = await self._transact(
            "open",
            self._contract.functions.open(
                Web3.to_checksum_address(provider), amount, duration
            ),
        )
        for log in receipt["logs"]:
            topics = log["topics"]
            if (
                len(topics) >= 2
                and log["address"].lower() == self._contract_address.lower()
                and _hex(topics[0]) == CHANNEL_OPENED_TOPIC.lower()
            ):
                return _hex(topics[1]), tx_hash
        raise OnChainFailure(
            "Open confirmed but no ChannelOpened event found",
            reason="reverted",
            tx_hash=tx_hash,
        )

    async def claim(
        self, channel_id: str, amount: int, nonce: int, signature: str
    ) -> str:
        tx_hash, _ = await self._transact(
            f"claim({channel_id})",
            self._contract.functions.claim(
                parse_channel_id(channel_id), amount, nonce, parse_signature(signature)
            ),
        )
        return tx_hash

    async def close(self, channel_id: str) -> str:
        tx_hash, _ = await self._transact(
            f"close({channel_id})",
            self._contract.functions.close(parse_channel_id(channel_id)),
        )
        return tx_hash

    def invalidate(self, channel_id: Optional[str] = None) -> None:
        # nothing cached at this layer
        return None

    # Context Manager Support

    async def aclose(self) -> None:
        if self._owns_provider:
            await self._w3.provider.disconnect()

    async def __aenter__(self) -> "Web3ChannelOracle":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        await self.aclose()
