"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from cardswap.config import Settings
from cardswap.models.card import Rarity


class TestPackSettings:
    def test_default_hit_rarity(self) -> None:
        assert Settings().pack_min_hit_rarity is Rarity.RARE

    def test_hit_rarity_from_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("PACK_MIN_HIT_RARITY", "Ultra Rare")

        assert Settings().pack_min_hit_rarity is Rarity.ULTRA_RARE

    @pytest.mark.parametrize("value", ["rare", "Legendary", ""])
    def test_unknown_hit_rarity_fails_at_startup(self, monkeypatch, value) -> None:
        """A misspelled rarity is rejected instead of disabling the hit slot."""
        monkeypatch.setenv("PACK_MIN_HIT_RARITY", value)

        with pytest.raises(ValidationError):
            Settings()


class TestTradeRequestSettings:
    def test_accept_status_is_restricted(self, monkeypatch) -> None:
        monkeypatch.setenv("TRADE_REQUEST_ACCEPT_STATUS", "completed")

        with pytest.raises(ValidationError):
            Settings()
