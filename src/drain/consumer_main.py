from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from .application.consumer.use_cases.channel_client import ConsumerChannelClient
from .application.consumer.use_cases.paid_chat import PaidChatClient
from .domain.units import format_usdc, parse_usdc
from .envs.consumer_env import Settings, get_settings
from .infrastructure.chain.web3_oracle import Web3ChannelOracle
from .infrastructure.provider.provider_client import ProviderClient


def _build_oracle(settings: Settings) -> Web3ChannelOracle:
    return Web3ChannelOracle(
        settings.rpc_url,
        settings.contract_address,
        settings.chain_id,
        settings.consumer_private_key,
        token_address=settings.usdc_address,
        tx_timeout=settings.tx_timeout_seconds,
    )


async def show_balance(client: ConsumerChannelClient) -> None:
    balance = await client.get_token_balance()
    allowance = await client.get_allowance()
    print(f"Address:   {client.address}")
    print(f"Balance:   {format_usdc(balance)} USDC")
    print(f"Allowance: {format_usdc(allowance)} USDC")


async def open_channel(
    client: ConsumerChannelClient,
    settings: Settings,
    provider: Optional[str],
    deposit: str,
    duration: str,
    auto_approve: bool,
) -> None:
    if provider is None:
        async with ProviderClient(settings.provider_base_url) as provider_api:
            provider = (await provider_api.get_pricing()).provider
    result = await client.open_channel(
        provider, parse_usdc(deposit), duration, auto_approve=auto_approve
    )
    print(f"Channel:  {result.channel_id}")
    print(f"Deposit:  {format_usdc(result.channel.deposit)} USDC")
    print(f"Expiry:   {result.channel.expiry}")
    print(f"Tx:       {result.tx_hash}")


async def chat(
    client: ConsumerChannelClient,
    settings: Settings,
    channel_id: str,
    model: str,
    prompt: str,
    max_tokens: Optional[int],
    last_nonce: int,
    spent: str,
) -> None:
    # Counters live in process memory; resume from the values printed last time.
    await client.track_channel(
        channel_id, last_nonce=last_nonce, cumulative_spend=parse_usdc(spent)
    )
    messages: List[Dict[str, Any]] = [{"role": "user", "content": prompt}]
    body: Dict[str, Any] = {"model": model, "messages": messages}
    if max_tokens:
        body["max_tokens"] = max_tokens

    async with ProviderClient(settings.provider_base_url) as provider_api:
        paid_chat = PaidChatClient(client, provider_api)
        response = await paid_chat.chat(channel_id, body)

    for choice in response.body.get("choices", []):
        print((choice.get("message") or {}).get("content", ""))
    print()
    spending = client.get_spending(channel_id)
    if response.receipt is not None:
        print(f"Cost:      {format_usdc(response.receipt.cost)} USDC")
        print(f"Total:     {format_usdc(response.receipt.total)} USDC")
        print(f"Remaining: {format_usdc(response.receipt.remaining)} USDC")
    print(f"Resume with: --nonce {spending.last_nonce} --spent {format_usdc(spending.cumulative_spend)}")


async def close_channel(client: ConsumerChannelClient, channel_id: str) -> None:
    await client.track_channel(channel_id)
    result = await client.close_channel(channel_id)
    print(f"Closed {result.channel_id}, refund {format_usdc(result.refund)} USDC")
    print(f"Tx: {result.tx_hash}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="drain-consumer")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("balance", help="Show USDC balance and allowance")

    approve = commands.add_parser("approve", help="Approve the channel contract")
    approve.add_argument("amount", help="USDC amount, e.g. 10.5")

    open_ = commands.add_parser("open", help="Open a channel")
    open_.add_argument("deposit", help="USDC amount, e.g. 5")
    open_.add_argument("duration", help="Seconds or <n>s|m|h|d, e.g. 1d")
    open_.add_argument("--provider", help="Provider address (default: from /v1/pricing)")
    open_.add_argument("--approve", action="store_true", help="Approve if allowance is short")

    chat_ = commands.add_parser("chat", help="Send one paid chat completion")
    chat_.add_argument("channel_id")
    chat_.add_argument("prompt")
    chat_.add_argument("--model", default="gpt-4o-mini")
    chat_.add_argument("--max-tokens", type=int)
    chat_.add_argument("--nonce", type=int, default=0, help="Last nonce used on this channel")
    chat_.add_argument("--spent", default="0", help="Last voucher amount in USDC")

    close = commands.add_parser("close", help="Close an expired channel")
    close.add_argument("channel_id")

    commands.add_parser("pricing", help="Show the provider's prices")
    return parser


async def run(args: argparse.Namespace) -> None:
    settings = get_settings()

    if args.command == "pricing":
        async with ProviderClient(settings.provider_base_url) as provider_api:
            pricing = await provider_api.get_pricing()
        print(json.dumps(pricing.model_dump(by_alias=True), indent=2))
        return

    async with _build_oracle(settings) as oracle:
        client = ConsumerChannelClient(oracle, settings.consumer_private_key)
        if args.command == "balance":
            await show_balance(client)
        elif args.command == "approve":
            tx_hash = await client.approve(parse_usdc(args.amount))
            print(f"Approved {args.amount} USDC: {tx_hash}")
        elif args.command == "open":
            await open_channel(
                client, settings, args.provider, args.deposit, args.duration, args.approve
            )
        elif args.command == "chat":
            await chat(
                client,
                settings,
                args.channel_id,
                args.model,
                args.prompt,
                args.max_tokens,
                args.nonce,
                args.spent,
            )
        elif args.command == "close":
            await close_channel(client, args.channel_id)


def main() -> None:
    """Main entry point for the consumer command line."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    asyncio.run(run(build_parser().parse_args()))


if __name__ == "__main__":
    main()
