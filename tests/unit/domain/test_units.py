"""Unit tests for token unit and duration helpers."""

import pytest

from drain.domain.units import format_usdc, parse_duration, parse_usdc


class TestUsdcUnits:
    @pytest.mark.parametrize(
        "text,units",
        [("0", 0), ("1", 1_000_000), ("10.5", 10_500_000), ("0.000001", 1)],
    )
    def test_parse(self, text: str, units: int) -> None:
        assert parse_usdc(text) == units

    def test_format_strips_trailing_zeros(self) -> None:
        assert format_usdc(10_500_000) == "10.5"
        assert format_usdc(7_500) == "0.0075"
        assert format_usdc(2_000_000) == "2"

    def test_too_many_decimals_rejected(self) -> None:
        with pytest.raises(ValueError, match="decimals"):
            parse_usdc("0.0000001")

    @pytest.mark.parametrize("text", ["-1", "abc", "NaN", "Infinity"])
    def test_invalid_amounts_rejected(self, text: str) -> None:
        with pytest.raises(ValueError):
            parse_usdc(text)


class TestParseDuration:
    @pytest.mark.parametrize(
        "value,seconds",
        [(3600, 3600), ("90", 90), ("30s", 30), ("5m", 300), ("24h", 86_400), ("7d", 604_800)],
    )
    def test_valid(self, value, seconds: int) -> None:
        assert parse_duration(value) == seconds

    @pytest.mark.parametrize("value", [0, -5, "0h", "1w", "h", "", True])
    def test_invalid(self, value) -> None:
        with pytest.raises(ValueError):
            parse_duration(value)
