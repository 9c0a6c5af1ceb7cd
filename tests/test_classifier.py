"""Line classifier tests."""

import pytest

from CombatLogStats import (
    EffectEvent, EventKind, MalformedLineError, NumericEvent, classify_line, parse_number,
)


def test_damage_line_amount_is_absolute():
    event = classify_line("100,DMG,Alice,Bob,Fireball,-450,Magic,Crit")
    assert isinstance(event, NumericEvent)
    assert event.kind == EventKind.DMG
    assert event.amount == 450
    assert (event.source, event.target, event.skill) == ("Alice", "Bob", "Fireball")
    assert (event.pool, event.hit_type) == ("Magic", "Crit")
    assert event.timestamp == 100


def test_fields_are_trimmed():
    event = classify_line("  20 , HEAL , Carol , Dave , Regen , 20 , Health , Normal \r")
    assert event.kind == EventKind.HEAL
    assert event.source == "Carol"
    assert event.target == "Dave"
    assert event.amount == 20


def test_extra_fields_are_ignored():
    event = classify_line("5,DOT,A,B,Poison,3.5,Nature,Tick,extra,more")
    assert event.kind == EventKind.DOT
    assert event.amount == 3.5


def test_blank_line_is_not_an_event():
    assert classify_line("") is None
    assert classify_line("   \t ") is None


@pytest.mark.parametrize("line, reason", [
    ("abc,DMG,A,B,Skill,10,Pool,Hit", "bad_timestamp"),
    ("10", "too_few_fields"),
    ("10,DMG,A,B,Skill,10,Pool", "too_few_fields"),
    ("10,BUFF,A,B,Shield", "too_few_fields"),
    ("10,KILL,A,B,Skill,10,Pool,Hit", "unknown_kind"),
    ("10,dmg,A,B,Skill,10,Pool,Hit", "unknown_kind"),
    ("10,HEAL,A,B,Skill,lots,Pool,Hit", "bad_amount"),
    ("10,HEAL,A,B,Skill,nan,Pool,Hit", "bad_amount"),
    ("10,HEAL,A,B,Skill,,Pool,Hit", "bad_amount"),
])
def test_malformed_lines_report_reason(line, reason):
    with pytest.raises(MalformedLineError) as exc_info:
        classify_line(line)
    assert exc_info.value.reason == reason


def test_effect_id_numeric_or_raw():
    event = classify_line("7,BUFF,Priest,Tank,Shield,12345")
    assert isinstance(event, EffectEvent)
    assert event.effect_id == 12345
    assert event.effect_name == "Shield"

    event = classify_line("7,DEBUFF,Mage,Boss,Slow,slow-2")
    assert event.kind == EventKind.DEBUFF
    assert event.effect_id == "slow-2"


def test_parse_number():
    assert parse_number("42") == 42
    assert isinstance(parse_number("42.0"), int)
    assert parse_number("-1.5") == -1.5
    assert parse_number("1e3") == 1000
    assert parse_number("inf") is None
    assert parse_number("1_000") is None
    assert parse_number("") is None
