"""Config, formatting and command line tests."""

import json

import pytest

from CombatLogStats import (
    CombatLogSession, LogFileError, config_int, format_amount, format_amount_short,
    format_timestamp, load_config, load_log_file, main, parse_time_input, render_summary,
    save_config,
)

LOG_TEXT = "\n".join([
    "0,DMG,Alice,Bob,Fireball,-50,Magic,Crit",
    "3600,HEAL,Carol,Alice,Mend,25,Health,Normal",
    "7200,DMG,Bob,Alice,Smash,70,Phys,Normal",
    "7200,BUFF,Carol,Alice,Shield,9,",
    "junk",
])


@pytest.fixture
def log_path(tmp_path):
    path = tmp_path / "combat.log"
    path.write_text(LOG_TEXT, encoding="utf-8")
    return path


@pytest.fixture
def config_path(tmp_path):
    return str(tmp_path / "missing.cfg")


def test_load_config_defaults_and_roundtrip(tmp_path):
    path = str(tmp_path / "settings.cfg")
    config = load_config(path)
    assert config['timezone'] == 'UTC'
    assert config_int(config, 'window_minutes', 0) == 30

    config['timezone'] = 'EST (UTC-5)'
    config['window_minutes'] = 'soon'
    save_config(config, path)

    loaded = load_config(path)
    assert loaded['timezone'] == 'EST (UTC-5)'
    assert config_int(loaded, 'window_minutes', 30) == 30
    assert config_int(loaded, 'not_there', 7) == 7


def test_formatting_helpers():
    assert format_amount(1234567) == "1,234,567"
    assert format_amount(12.5) == "12.50"
    assert format_amount_short(1500) == "1.5K"
    assert format_amount_short(2_500_000) == "2.5M"
    assert format_amount_short(999) == "999"
    assert format_timestamp(0) == "1970-01-01 00:00:00"
    assert format_timestamp(0, -5) == "1969-12-31 19:00:00"
    assert format_timestamp(None) == "n/a"


def test_parse_time_input():
    assert parse_time_input("1704067200") == 1704067200
    assert parse_time_input("2024-01-01T00:00") == 1704067200
    assert parse_time_input("2024-01-01 00:00:30") == 1704067230
    assert parse_time_input("2024-01-01T00:00", -5) == 1704067200 + 5 * 3600
    with pytest.raises(ValueError):
        parse_time_input("yesterday")


def test_render_summary():
    session = CombatLogSession()
    report = session.ingest(LOG_TEXT)
    assert render_summary(report.stats, "combat.log") == (
        "File: combat.log | Total lines: 5 | Parsed: 4 | Skipped: 1 | "
        "By type: DMG: 2, HEAL: 1, BUFF: 1"
    )


def test_load_log_file_failure_keeps_session(tmp_path, log_path):
    session = CombatLogSession()
    load_log_file(session, str(log_path))

    with pytest.raises(LogFileError):
        load_log_file(session, str(tmp_path / "nope.log"))
    assert session.registry.names() == ['Alice', 'Bob', 'Carol']
    assert session.stats.parsed_lines == 4


def test_main_prints_rankings(log_path, config_path, capsys):
    assert main([str(log_path), "--config", config_path]) == 0
    out = capsys.readouterr().out
    assert "Total lines: 5" in out
    assert "Damage Done" in out
    assert "Bob" in out
    assert "Current filter: 1970-01-01 01:30:00 -> 1970-01-01 02:00:00" in out


def test_main_full_range_and_entity(log_path, config_path, capsys):
    assert main([str(log_path), "--full-range", "--entity", "Alice", "--config", config_path]) == 0
    out = capsys.readouterr().out
    assert "full range" in out
    assert "Fireball" in out
    assert "Damage received (by attacker)" in out


def test_main_missing_file(tmp_path, config_path, capsys):
    assert main([str(tmp_path / "nope.log"), "--config", config_path]) == 1
    assert "Could not read log file" in capsys.readouterr().err


def test_main_rejects_inverted_window(log_path, config_path, capsys):
    assert main([str(log_path), "--start", "500", "--end", "100", "--config", config_path]) == 2
    assert "after end" in capsys.readouterr().err


def test_main_unknown_entity(log_path, config_path, capsys):
    assert main([str(log_path), "--entity", "Nobody", "--config", config_path]) == 3
    assert "Entity not found: Nobody" in capsys.readouterr().err


def test_main_json(log_path, config_path, capsys):
    assert main([str(log_path), "--json", "--start", "0", "--end", "3600",
                 "--config", config_path]) == 0
    snapshot = json.loads(capsys.readouterr().out)
    assert snapshot['time_filter'] == {'enabled': True, 'start': 0, 'end': 3600}
    assert snapshot['global_stats']['skipped_by_reason'] == {'too_few_fields': 1}


def test_load_config_undecodable_file_uses_defaults(tmp_path):
    path = tmp_path / "broken.cfg"
    path.write_bytes(b"timezone=\xff\xfe\x80\n")
    assert load_config(str(path)) == {'timezone': 'UTC', 'window_minutes': '30', 'top_sources': '10'}


def test_format_timestamp_out_of_range_shows_raw_number():
    assert format_timestamp(1700000000000) == "1700000000000"


def test_main_millisecond_timestamps(tmp_path, config_path, capsys):
    path = tmp_path / "ms.log"
    path.write_text("1700000000000,DMG,A,B,S,5,P,N\n", encoding="utf-8")
    assert main([str(path), "--config", config_path]) == 0
    out = capsys.readouterr().out
    assert "Earliest: 1700000000000 | Latest: 1700000000000" in out


def test_window_totals_line(tmp_path, config_path, capsys):
    path = tmp_path / "big.log"
    path.write_text("10,DMG,A,B,S,1500,P,N\n20,HEAL,A,A,S,2500000,P,N\n", encoding="utf-8")
    assert main([str(path), "--config", config_path]) == 0
    out = capsys.readouterr().out
    assert "Window totals | Damage: 1.5K | Healing: 2.5M | Damage received: 1.5K" in out
