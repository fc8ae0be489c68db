from decimal import Decimal

import pytest
from pydantic import ValidationError

from coinbet.core.exceptions import InvalidSettings
from coinbet.core.tiers import (
    SETTINGS_KEY,
    get_default_game_settings,
    load_game_settings,
    parse_game_settings,
    save_game_settings,
)


def tiers_payload(*tiers):
    return [
        {"id": i, "payout_multiplier": m, "win_probability_percent": p} for i, m, p in tiers
    ]


def test_default_tiers():
    game_settings = get_default_game_settings()

    assert [t.id for t in game_settings.tiers] == [1, 2, 3]
    assert game_settings.get_tier(1).payout_multiplier == Decimal("1.9")
    assert game_settings.get_tier(1).win_probability_percent == Decimal("50")
    assert game_settings.get_tier(3).payout_multiplier == Decimal("9.9")
    assert game_settings.get_tier(4) is None
    assert game_settings.min_stake == Decimal("1.5")


def test_tiers_are_sorted_by_id():
    game_settings = parse_game_settings(
        {"min_stake": 1, "tiers": tiers_payload((2, 3, 20), (1, 2, 40))}
    )
    assert [t.id for t in game_settings.tiers] == [1, 2]


@pytest.mark.parametrize(
    "tiers",
    [
        [],
        tiers_payload((1, 2, 40), (1, 3, 20)),  # duplicate ids
        tiers_payload((1, 2, 40), (2, 2, 20)),  # multiplier not increasing
        tiers_payload((1, 2, 40), (2, 3, 40)),  # probability not decreasing
        tiers_payload((1, 1, 40)),  # multiplier must exceed 1
        tiers_payload((1, 2, 101)),  # probability above 100
        tiers_payload((1, 2, -1)),
        tiers_payload((1, 1000000, 40)),  # multiplier too large
        tiers_payload((1, 1.23456, 40)),  # too many decimal places
    ],
)
def test_invalid_tier_sets_are_rejected(tiers):
    with pytest.raises(InvalidSettings):
        parse_game_settings({"min_stake": 1.5, "tiers": tiers})


def test_invalid_min_stake_is_rejected():
    with pytest.raises(InvalidSettings):
        parse_game_settings({"min_stake": 0, "tiers": tiers_payload((1, 2, 40))})
    with pytest.raises(InvalidSettings):
        parse_game_settings("not an object")


def test_settings_are_immutable():
    game_settings = get_default_game_settings()
    with pytest.raises(ValidationError):
        game_settings.min_stake = Decimal("0.01")


def test_load_falls_back_to_defaults(db):
    assert load_game_settings(db) == get_default_game_settings()


def test_save_and_load(db):
    saved = save_game_settings(
        db, {"min_stake": 5, "tiers": tiers_payload((1, 2, 45), (2, 6, 15))}
    )
    loaded = load_game_settings(db)

    assert loaded == saved
    assert loaded.min_stake == Decimal("5")
    assert loaded.get_tier(2).payout_multiplier == Decimal("6")


def test_save_rejects_invalid_settings_and_keeps_previous(db):
    with pytest.raises(InvalidSettings):
        save_game_settings(db, {"min_stake": 5, "tiers": tiers_payload((1, 2, 45), (2, 1.5, 15))})
    assert db.get_setting(SETTINGS_KEY) is None


def test_corrupt_stored_settings_fall_back_to_defaults(db):
    db.set_setting(SETTINGS_KEY, {"min_stake": -1, "tiers": []})
    assert load_game_settings(db) == get_default_game_settings()
