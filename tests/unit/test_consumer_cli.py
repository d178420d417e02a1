"""Unit tests for the consumer command line."""

from __future__ import annotations

import pytest

from drain.consumer_main import build_parser, close_channel, show_balance


class TestParser:
    def test_chat_resume_flags(self) -> None:
        args = build_parser().parse_args(
            ["chat", "0xabc", "hello", "--nonce", "4", "--spent", "0.25"]
        )
        assert args.command == "chat"
        assert (args.nonce, args.spent) == (4, "0.25")
        assert args.model == "gpt-4o-mini"
        assert args.max_tokens is None

    def test_open_defaults(self) -> None:
        args = build_parser().parse_args(["open", "5", "1d"])
        assert (args.deposit, args.duration) == ("5", "1d")
        assert args.provider is None
        assert args.approve is False

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


@pytest.mark.asyncio
async def test_show_balance(channel_client, chain, capsys) -> None:
    chain.mint(channel_client.address, 12_500_000)
    await channel_client.approve(1_000_000)

    await show_balance(channel_client)

    out = capsys.readouterr().out
    assert "Balance:   12.5 USDC" in out
    assert "Allowance: 1 USDC" in out


@pytest.mark.asyncio
async def test_close_expired_channel(channel_client, chain, clock, provider_oracle, capsys) -> None:
    channel_id = chain.add_channel(
        channel_client.address, provider_oracle.address, 2_000_000, duration=10
    )
    clock.advance(10)

    await close_channel(channel_client, channel_id)

    assert f"Closed {channel_id}, refund 2 USDC" in capsys.readouterr().out
