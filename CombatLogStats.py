#!/usr/bin/env python3
"""
Combat Log Stats v1
Windowed damage, healing and effect statistics for comma-delimited combat logs.

Features:
- Classifies DMG, DOT, HEAL, ENERGIZE, BUFF and DEBUFF records, skipping malformed lines
- Per-entity event histories kept in memory, one session object per loaded log
- Full-log totals plus recomputation for any time window without re-parsing
- Rankings with percent of total, per-skill breakdowns, top attackers, applied effects
- Default window is the last 30 minutes of the log
- Timezone offset setting for displayed timestamps (default: UTC)

Record layout:
    <ts>,<DMG|DOT|HEAL|ENERGIZE>,<source>,<target>,<skill>,<amount>,<pool>,<hitType>
    <ts>,<BUFF|DEBUFF>,<source>,<target>,<effectName>,<effectId>
"""

import argparse
import json
import logging
import math
import os
import re
import sys
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd

logger = logging.getLogger(__name__)

# ============================================================================
# CONFIGURATION
# ============================================================================

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
CONFIG_PATH = os.path.join(SCRIPT_DIR, 'combat_log_stats.cfg')

DEFAULT_WINDOW_SECONDS = 30 * 60
DEFAULT_TOP_SOURCES = 10

NO_SKILL_LABEL = '(no skill)'
UNKNOWN_LABEL = '(unknown)'

# Regex patterns - compiled once
LINE_SPLIT_PATTERN = re.compile(r'\r?\n')
# Empty fields do not match: a blank timestamp or amount is a skipped line, not 0
NUMBER_PATTERN = re.compile(r'^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$')

NUMERIC_MIN_FIELDS = 8
EFFECT_MIN_FIELDS = 6

METRICS = ('damage_done', 'healing_done', 'damage_received')

DEFAULT_CONFIG = {
    'timezone': 'UTC',
    'window_minutes': '30',
    'top_sources': str(DEFAULT_TOP_SOURCES),
}

# Timezone offsets
TIMEZONE_OPTIONS = {
    'UTC': 0,
    'EST (UTC-5)': -5,
    'EDT (UTC-4)': -4,
    'CST (UTC-6)': -6,
    'CDT (UTC-5)': -5,
    'MST (UTC-7)': -7,
    'MDT (UTC-6)': -6,
    'PST (UTC-8)': -8,
    'PDT (UTC-7)': -7,
    'CET (UTC+1)': 1,
    'CEST (UTC+2)': 2,
}

Number = Union[int, float]

# ============================================================================
# ERRORS
# ============================================================================

class CombatLogError(Exception):
    """Base class for everything this module raises on purpose."""


class MalformedLineError(CombatLogError, ValueError):
    """Raised by the classifier when a non-blank line cannot be decoded."""

    def __init__(self, reason: str, line: str = ''):
        super().__init__(f"{reason}: {line!r}")
        self.reason = reason
        self.line = line


class InvalidWindowError(CombatLogError, ValueError):
    """Raised when a requested time window is rejected."""

    def __init__(self, violation: str, message: str):
        super().__init__(message)
        self.violation = violation


class EntityNotFoundError(CombatLogError, LookupError):
    def __init__(self, name: str):
        super().__init__(f"Entity not found: {name}")
        self.name = name


class LogFileError(CombatLogError):
    """Raised when the log file cannot be read."""

# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def load_config(path: str = CONFIG_PATH) -> Dict[str, str]:
    """Load configuration from file, falling back to defaults."""
    config = dict(DEFAULT_CONFIG)
    if not os.path.exists(path):
        return config
    try:
        with open(path, 'r', encoding='utf-8') as f:
            for line in f:
                if '=' in line:
                    key, value = line.strip().split('=', 1)
                    config[key.strip()] = value.strip()
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Could not read config %s: %s", path, e)
        return dict(DEFAULT_CONFIG)
    return config


def save_config(config: Dict[str, str], path: str = CONFIG_PATH):
    """Save configuration to file."""
    with open(path, 'w', encoding='utf-8') as f:
        for key, value in config.items():
            f.write(f"{key}={value}\n")


def config_int(config: Dict[str, str], key: str, default: int) -> int:
    value = config.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Config value %s=%r is not an integer, using %d", key, value, default)
        return default


def parse_number(text: str) -> Optional[Number]:
    """Parse a decimal number, returning an int when it is integral."""
    if not NUMBER_PATTERN.match(text):
        return None
    value = float(text)
    if not math.isfinite(value):
        return None
    return int(value) if value.is_integer() else value


def percent_of_total(value: Number, total: Number) -> float:
    """Share of total in percent; 0 for every row when the total is not positive."""
    if total <= 0:
        return 0.0
    return value / total * 100


def group_and_accumulate(items: Iterable[Any], key: Callable[[Any], str],
                         accumulate: Callable[[Number, Any], Number],
                         initial: Number = 0) -> Dict[str, Number]:
    """Fold items into buckets keyed by key(item), in first-seen key order."""
    groups: Dict[str, Number] = {}
    for item in items:
        k = key(item)
        groups[k] = accumulate(groups.get(k, initial), item)
    return groups


def group_and_sum(items: Iterable[Any], key: Callable[[Any], str]) -> Dict[str, Number]:
    return group_and_accumulate(items, key, lambda total, item: total + item.amount)


def group_and_count(items: Iterable[Any], key: Callable[[Any], str]) -> Dict[str, Number]:
    return group_and_accumulate(items, key, lambda count, _item: count + 1)


def rank_groups(groups: Dict[str, Number], limit: Optional[int] = None) -> List['BreakdownRow']:
    """Sort groups by value, descending and stable, and attach percentages of the kept rows."""
    ordered = sorted(groups.items(), key=lambda kv: kv[1], reverse=True)
    if limit is not None:
        ordered = ordered[:limit]
    total = sum(value for _, value in ordered)
    return [BreakdownRow(label=label, value=value, percent=percent_of_total(value, total))
            for label, value in ordered]

# ============================================================================
# DATA CLASSES
# ============================================================================

class EventKind(str, Enum):
    DMG = 'DMG'
    DOT = 'DOT'
    HEAL = 'HEAL'
    ENERGIZE = 'ENERGIZE'
    BUFF = 'BUFF'
    DEBUFF = 'DEBUFF'


NUMERIC_KINDS = frozenset([EventKind.DMG, EventKind.DOT, EventKind.HEAL, EventKind.ENERGIZE])


@dataclass(frozen=True)
class NumericEvent:
    kind: EventKind
    timestamp: Number
    source: str
    target: str
    skill: str
    amount: Number  # always >= 0
    pool: str
    hit_type: str


@dataclass(frozen=True)
class EffectEvent:
    kind: EventKind
    timestamp: Number
    source: str
    target: str
    effect_name: str
    effect_id: Union[int, float, str]


Event = Union[NumericEvent, EffectEvent]


@dataclass
class Entity:
    """A named participant and everything it did or received, in arrival order."""
    name: str

    # full-log totals, unaffected by the time window
    damage_done: Number = 0
    healing_done: Number = 0
    damage_received: Number = 0

    damage_events: List[NumericEvent] = field(default_factory=list)
    heal_events: List[NumericEvent] = field(default_factory=list)
    damage_taken_events: List[NumericEvent] = field(default_factory=list)
    buffs_applied: List[EffectEvent] = field(default_factory=list)
    debuffs_applied: List[EffectEvent] = field(default_factory=list)
    buffs_received: List[EffectEvent] = field(default_factory=list)
    debuffs_received: List[EffectEvent] = field(default_factory=list)


@dataclass
class GlobalStats:
    total_lines: int = 0
    parsed_lines: int = 0
    skipped_lines: int = 0
    by_kind: Dict[str, int] = field(default_factory=lambda: {kind.value: 0 for kind in EventKind})
    skipped_by_reason: Dict[str, int] = field(default_factory=dict)

    def record_skip(self, reason: str):
        self.skipped_lines += 1
        self.skipped_by_reason[reason] = self.skipped_by_reason.get(reason, 0) + 1

    def record_parsed(self, kind: EventKind):
        self.parsed_lines += 1
        self.by_kind[kind.value] += 1

    def snapshot(self) -> Dict[str, Any]:
        return {
            'total_lines': self.total_lines,
            'parsed_lines': self.parsed_lines,
            'skipped_lines': self.skipped_lines,
            'by_kind': dict(self.by_kind),
            'skipped_by_reason': dict(self.skipped_by_reason),
        }


@dataclass
class TimeBounds:
    min: Optional[Number] = None
    max: Optional[Number] = None

    @property
    def is_empty(self) -> bool:
        return self.min is None or self.max is None

    def widen(self, timestamp: Number):
        if self.min is None or timestamp < self.min:
            self.min = timestamp
        if self.max is None or timestamp > self.max:
            self.max = timestamp


@dataclass
class TimeWindow:
    """Inclusive [start, end] filter; when disabled every timestamp passes."""
    enabled: bool = False
    start: Optional[Number] = None
    end: Optional[Number] = None

    def contains(self, timestamp: Number) -> bool:
        if not self.enabled:
            return True
        return self.start <= timestamp <= self.end


@dataclass
class IngestReport:
    stats: Dict[str, Any]
    bounds: TimeBounds
    window: TimeWindow
    entity_count: int


@dataclass
class EntityTotals:
    name: str
    damage_done: Number = 0
    healing_done: Number = 0
    damage_received: Number = 0


@dataclass
class RankedRow:
    rank: int
    name: str
    value: Number
    percent: float


@dataclass
class BreakdownRow:
    label: str
    value: Number
    percent: float


@dataclass
class EntityReport:
    """Everything the entity details view shows, for the current window."""
    name: str
    window: TimeWindow
    totals: EntityTotals
    damage_by_skill: List[BreakdownRow]
    healing_by_skill: List[BreakdownRow]
    top_damage_sources: List[BreakdownRow]
    buffs_applied: List[BreakdownRow]
    debuffs_applied: List[BreakdownRow]

# ============================================================================
# LINE CLASSIFIER
# ============================================================================

def classify_line(line: str) -> Optional[Event]:
    """
    Decode one raw log line.

    Returns None for a blank line, the decoded event otherwise.
    Raises MalformedLineError for any line that must be counted as skipped.
    """
    trimmed = line.strip()
    if not trimmed:
        return None

    parts = [p.strip() for p in trimmed.split(',')]
    if len(parts) < 2:
        raise MalformedLineError('too_few_fields', trimmed)

    timestamp = parse_number(parts[0])
    if timestamp is None:
        raise MalformedLineError('bad_timestamp', trimmed)

    try:
        kind = EventKind(parts[1])
    except ValueError:
        raise MalformedLineError('unknown_kind', trimmed) from None

    if kind in NUMERIC_KINDS:
        return _decode_numeric(kind, timestamp, parts, trimmed)
    return _decode_effect(kind, timestamp, parts, trimmed)


def _decode_numeric(kind: EventKind, timestamp: Number, parts: List[str], line: str) -> NumericEvent:
    if len(parts) < NUMERIC_MIN_FIELDS:
        raise MalformedLineError('too_few_fields', line)

    amount = parse_number(parts[5])
    if amount is None:
        raise MalformedLineError('bad_amount', line)

    return NumericEvent(
        kind=kind,
        timestamp=timestamp,
        source=parts[2],
        target=parts[3],
        skill=parts[4],
        amount=abs(amount),
        pool=parts[6],
        hit_type=parts[7],
    )


def _decode_effect(kind: EventKind, timestamp: Number, parts: List[str], line: str) -> EffectEvent:
    if len(parts) < EFFECT_MIN_FIELDS:
        raise MalformedLineError('too_few_fields', line)

    raw_id = parts[5]
    effect_id = parse_number(raw_id)

    return EffectEvent(
        kind=kind,
        timestamp=timestamp,
        source=parts[2],
        target=parts[3],
        effect_name=parts[4],
        effect_id=raw_id if effect_id is None else effect_id,
    )

# ============================================================================
# ENTITY REGISTRY
# ============================================================================

class EntityRegistry:
    """Owns every Entity of one log, keyed by name in first-seen order."""

    def __init__(self):
        self._entities: Dict[str, Entity] = {}

    def get_or_create(self, name: str) -> Entity:
        entity = self._entities.get(name)
        if entity is None:
            entity = Entity(name=name)
            self._entities[name] = entity
        return entity

    def get(self, name: str) -> Optional[Entity]:
        return self._entities.get(name)

    def clear(self):
        self._entities.clear()

    def names(self) -> List[str]:
        """Names in insertion order."""
        return list(self._entities)

    def list(self) -> List[str]:
        """Names sorted for display, case-insensitively."""
        return sorted(self._entities, key=lambda n: (n.casefold(), n))

    def __iter__(self):
        return iter(self._entities.values())

    def __len__(self) -> int:
        return len(self._entities)

    def __contains__(self, name: str) -> bool:
        return name in self._entities

# ============================================================================
# INGESTION PIPELINE
# ============================================================================

class LogIngestor:
    """Feeds lines through the classifier into a fresh registry, stats and bounds."""

    def __init__(self):
        self.registry = EntityRegistry()
        self.stats = GlobalStats()
        self.bounds = TimeBounds()

    def feed_text(self, text: str):
        for line in LINE_SPLIT_PATTERN.split(text):
            self.feed_line(line)

    def feed_line(self, line: str) -> Optional[Event]:
        try:
            event = classify_line(line)
        except MalformedLineError as e:
            self.stats.total_lines += 1
            self.stats.record_skip(e.reason)
            logger.debug("Skipped line (%s): %r", e.reason, e.line)
            return None

        if event is None:
            return None

        self.stats.total_lines += 1
        self.stats.record_parsed(event.kind)
        self.bounds.widen(event.timestamp)
        self._store(event)
        return event

    def _store(self, event: Event):
        kind = event.kind
        source = self.registry.get_or_create(event.source)
        target = self.registry.get_or_create(event.target)

        if kind == EventKind.ENERGIZE:
            # counted, but not kept in any history
            return

        if kind in (EventKind.DMG, EventKind.DOT):
            source.damage_done += event.amount
            target.damage_received += event.amount
            source.damage_events.append(event)
            target.damage_taken_events.append(event)
        elif kind == EventKind.HEAL:
            source.healing_done += event.amount
            source.heal_events.append(event)
        elif kind == EventKind.BUFF:
            source.buffs_applied.append(event)
            target.buffs_received.append(event)
        elif kind == EventKind.DEBUFF:
            source.debuffs_applied.append(event)
            target.debuffs_received.append(event)
        else:
            raise AssertionError(f"unhandled event kind {kind!r}")

# ============================================================================
# COMBAT LOG SESSION
# ============================================================================

class CombatLogSession:
    """
    All state for one loaded log: entities, counters, bounds and time window.

    Key optimization: events stay in per-entity lists; the windowed totals
    query builds one pandas DataFrame lazily and reuses it until the next
    ingest, so moving the window never re-parses the log.
    """

    def __init__(self, default_window_seconds: int = DEFAULT_WINDOW_SECONDS,
                 top_sources_limit: int = DEFAULT_TOP_SOURCES):
        self.default_window_seconds = default_window_seconds
        self.top_sources_limit = top_sources_limit

        self.registry = EntityRegistry()
        self.stats = GlobalStats()
        self.bounds = TimeBounds()
        self.window = TimeWindow()

        self._amounts_df_cache: Optional[pd.DataFrame] = None

    def reset(self):
        """Drop everything from the previous log."""
        self.registry = EntityRegistry()
        self.stats = GlobalStats()
        self.bounds = TimeBounds()
        self.window = TimeWindow()
        self._amounts_df_cache = None

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest(self, text: str) -> IngestReport:
        """Replace the session contents with the events parsed from text."""
        self.reset()

        ingestor = LogIngestor()
        ingestor.feed_text(text)

        self.registry = ingestor.registry
        self.stats = ingestor.stats
        self.bounds = ingestor.bounds
        self.reset_window_to_default()

        logger.info(
            "Ingested %d lines: %d parsed, %d skipped, %d entities",
            self.stats.total_lines, self.stats.parsed_lines,
            self.stats.skipped_lines, len(self.registry)
        )

        return IngestReport(
            stats=self.stats.snapshot(),
            bounds=replace(self.bounds),
            window=replace(self.window),
            entity_count=len(self.registry),
        )

    # ------------------------------------------------------------------
    # Time window
    # ------------------------------------------------------------------

    def is_in_window(self, timestamp: Number) -> bool:
        return self.window.contains(timestamp)

    def default_window(self) -> TimeWindow:
        """Last default_window_seconds of the log, clamped to the first event."""
        if self.bounds.is_empty:
            return TimeWindow()
        start = max(self.bounds.max - self.default_window_seconds, self.bounds.min)
        return TimeWindow(enabled=True, start=start, end=self.bounds.max)

    def full_range_window(self) -> TimeWindow:
        return TimeWindow(enabled=False, start=self.bounds.min, end=self.bounds.max)

    def reset_window_to_default(self) -> TimeWindow:
        self.window = self.default_window()
        return self.window

    def reset_window_to_full_range(self) -> TimeWindow:
        self.window = self.full_range_window()
        return self.window

    def set_window(self, start: Number, end: Number) -> TimeWindow:
        """
        Apply an explicit [start, end] window.

        Both ends must lie inside the log's bounds and start must not be after
        end. On rejection InvalidWindowError is raised and the current window
        is kept.
        """
        if self.bounds.is_empty:
            raise InvalidWindowError('no_events', "No timestamped events loaded")

        lo, hi = self.bounds.min, self.bounds.max
        if not lo <= start <= hi:
            logger.warning("Rejected window start %s outside [%s, %s]", start, lo, hi)
            raise InvalidWindowError(
                'start_out_of_range', f"Start {start} is outside the log range [{lo}, {hi}]"
            )
        if not lo <= end <= hi:
            logger.warning("Rejected window end %s outside [%s, %s]", end, lo, hi)
            raise InvalidWindowError(
                'end_out_of_range', f"End {end} is outside the log range [{lo}, {hi}]"
            )
        if start > end:
            logger.warning("Rejected inverted window %s > %s", start, end)
            raise InvalidWindowError('inverted', f"Start {start} is after end {end}")

        self.window = TimeWindow(enabled=True, start=start, end=end)
        return self.window

    def _windowed(self, events: Iterable[Event]) -> List[Event]:
        return [e for e in events if self.window.contains(e.timestamp)]

    # ------------------------------------------------------------------
    # Windowed totals and rankings
    # ------------------------------------------------------------------

    def _get_amounts_df(self) -> pd.DataFrame:
        """Get one row per (entity, metric, event), rebuilding from histories if needed."""
        if self._amounts_df_cache is None:
            rows = []
            for entity in self.registry:
                for metric, events in (
                    ('damage_done', entity.damage_events),
                    ('healing_done', entity.heal_events),
                    ('damage_received', entity.damage_taken_events),
                ):
                    for e in events:
                        rows.append({
                            'entity': entity.name,
                            'metric': metric,
                            'timestamp': e.timestamp,
                            'amount': e.amount,
                        })
            if rows:
                self._amounts_df_cache = pd.DataFrame(rows)
            else:
                self._amounts_df_cache = pd.DataFrame(columns=['entity', 'metric', 'timestamp', 'amount'])
        return self._amounts_df_cache

    def entity_totals(self) -> List[EntityTotals]:
        """Windowed damage done, healing done and damage received for every entity."""
        names = self.registry.names()
        if not names:
            return []

        amounts_df = self._get_amounts_df()
        if self.window.enabled and len(amounts_df):
            mask = amounts_df['timestamp'].between(self.window.start, self.window.end)
            amounts_df = amounts_df.loc[mask]

        if len(amounts_df) == 0:
            return [EntityTotals(name=name) for name in names]

        grouped = (
            amounts_df.groupby(['entity', 'metric'])['amount'].agg(_sum_in_order)
            .unstack(fill_value=0)
            .reindex(index=names, columns=list(METRICS), fill_value=0)
        )

        results = []
        for name, row in zip(names, grouped.itertuples(index=False)):
            results.append(EntityTotals(
                name=name,
                damage_done=_plain_number(row.damage_done),
                healing_done=_plain_number(row.healing_done),
                damage_received=_plain_number(row.damage_received),
            ))
        return results

    def rank_by(self, metric: str, totals: Optional[List[EntityTotals]] = None) -> List[RankedRow]:
        """Entities with a positive value for metric, largest first, ties in registry order."""
        if metric not in METRICS:
            raise ValueError(f"Unknown metric: {metric}")
        if totals is None:
            totals = self.entity_totals()

        rows = []
        for t in totals:
            value = getattr(t, metric)
            if isinstance(value, (int, float)) and value > 0:
                rows.append((t.name, value))
        rows.sort(key=lambda r: r[1], reverse=True)

        total = sum(value for _, value in rows)
        return [
            RankedRow(rank=i, name=name, value=value, percent=percent_of_total(value, total))
            for i, (name, value) in enumerate(rows, start=1)
        ]

    def rankings(self) -> Dict[str, List[RankedRow]]:
        totals = self.entity_totals()
        return {metric: self.rank_by(metric, totals) for metric in METRICS}

    # ------------------------------------------------------------------
    # Per-entity breakdowns
    # ------------------------------------------------------------------

    def _require_entity(self, name: str) -> Entity:
        entity = self.registry.get(name)
        if entity is None:
            raise EntityNotFoundError(name)
        return entity

    def damage_by_skill(self, name: str) -> List[BreakdownRow]:
        entity = self._require_entity(name)
        groups = group_and_sum(self._windowed(entity.damage_events),
                               key=lambda e: e.skill or NO_SKILL_LABEL)
        return rank_groups(groups)

    def healing_by_skill(self, name: str) -> List[BreakdownRow]:
        entity = self._require_entity(name)
        groups = group_and_sum(self._windowed(entity.heal_events),
                               key=lambda e: e.skill or NO_SKILL_LABEL)
        return rank_groups(groups)

    def top_damage_sources(self, name: str, limit: Optional[int] = None) -> List[BreakdownRow]:
        """Attackers of name by windowed damage, capped at limit."""
        entity = self._require_entity(name)
        if limit is None:
            limit = self.top_sources_limit
        groups = group_and_sum(self._windowed(entity.damage_taken_events),
                               key=lambda e: e.source or UNKNOWN_LABEL)
        return rank_groups(groups, limit=limit)

    def applied_effects(self, name: str) -> Tuple[List[BreakdownRow], List[BreakdownRow]]:
        """(buffs, debuffs) applied by name, each counted per effect name."""
        entity = self._require_entity(name)
        buffs = group_and_count(self._windowed(entity.buffs_applied),
                                key=lambda e: e.effect_name or UNKNOWN_LABEL)
        debuffs = group_and_count(self._windowed(entity.debuffs_applied),
                                  key=lambda e: e.effect_name or UNKNOWN_LABEL)
        return rank_groups(buffs), rank_groups(debuffs)

    def entity_report(self, name: str) -> EntityReport:
        self._require_entity(name)
        buffs, debuffs = self.applied_effects(name)
        totals = next(t for t in self.entity_totals() if t.name == name)
        return EntityReport(
            name=name,
            window=replace(self.window),
            totals=totals,
            damage_by_skill=self.damage_by_skill(name),
            healing_by_skill=self.healing_by_skill(name),
            top_damage_sources=self.top_damage_sources(name),
            buffs_applied=buffs,
            debuffs_applied=debuffs,
        )

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def entity_names(self) -> List[str]:
        return self.registry.list()

    def stats_snapshot(self) -> Dict[str, Any]:
        return self.stats.snapshot()

    def bounds_snapshot(self) -> Dict[str, Optional[Number]]:
        return {'min': self.bounds.min, 'max': self.bounds.max}

    def debug_snapshot(self) -> Dict[str, Any]:
        """Whole session as plain JSON-serializable data."""
        entities = {}
        for entity in self.registry:
            data = asdict(entity)
            for events in data.values():
                if isinstance(events, list):
                    for e in events:
                        e['kind'] = e['kind'].value
            entities[entity.name] = data
        return {
            'global_stats': self.stats.snapshot(),
            'time_bounds': self.bounds_snapshot(),
            'time_filter': asdict(self.window),
            'entities': entities,
        }


def _sum_in_order(amounts: pd.Series) -> Number:
    """Left-to-right sum in arrival order, the same order the running totals use."""
    return sum(amounts.tolist())


def _plain_number(value: Any) -> Number:
    """numpy scalar -> int or float."""
    value = float(value)
    return int(value) if value.is_integer() else value

# ============================================================================
# FILE LOADER
# ============================================================================

def read_log_file(path: str) -> str:
    """Read a whole log file as text, ignoring undecodable bytes."""
    try:
        with open(path, 'r', encoding='utf-8', errors='ignore', newline='') as f:
            return f.read()
    except OSError as e:
        raise LogFileError(f"Could not read log file {path}: {e}") from e


def load_log_file(session: CombatLogSession, path: str) -> IngestReport:
    """Read path and ingest it; the session is untouched if reading fails."""
    text = read_log_file(path)
    return session.ingest(text)

# ============================================================================
# TEXT REPORT
# ============================================================================

def format_amount(value: Number) -> str:
    if isinstance(value, float) and not value.is_integer():
        return f"{value:,.2f}"
    return f"{int(value):,}"


def format_amount_short(value: Number) -> str:
    """Format amounts as K/M for compact display."""
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}M"
    elif value >= 1_000:
        return f"{value / 1_000:.1f}K"
    return format_amount(value)


def format_percent(value: float) -> str:
    return f"{value:.1f}%"


def format_timestamp(ts: Optional[Number], tz_offset_hours: int = 0) -> str:
    if ts is None:
        return "n/a"
    try:
        dt = datetime.fromtimestamp(ts, tz=timezone.utc) + timedelta(hours=tz_offset_hours)
    except (ValueError, OverflowError, OSError):
        # outside datetime's range, e.g. millisecond epochs
        return str(ts)
    return dt.strftime('%Y-%m-%d %H:%M:%S')


def parse_time_input(value: str, tz_offset_hours: int = 0) -> Number:
    """Epoch seconds, or a local 'YYYY-MM-DDTHH:MM[:SS]' string, to epoch seconds."""
    value = value.strip()
    number = parse_number(value)
    if number is not None:
        return number
    for fmt in ('%Y-%m-%dT%H:%M:%S', '%Y-%m-%dT%H:%M', '%Y-%m-%d %H:%M:%S', '%Y-%m-%d %H:%M'):
        try:
            dt = datetime.strptime(value, fmt)
        except ValueError:
            continue
        dt = dt.replace(tzinfo=timezone.utc) - timedelta(hours=tz_offset_hours)
        return int(dt.timestamp())
    raise ValueError(f"Invalid date format: {value!r}")


def describe_window(window: TimeWindow, tz_offset_hours: int = 0) -> str:
    span = (f"{format_timestamp(window.start, tz_offset_hours)} -> "
            f"{format_timestamp(window.end, tz_offset_hours)}")
    if not window.enabled:
        return f"Current filter: full range ({span})"
    return f"Current filter: {span}"


def render_summary(stats: Dict[str, Any], file_name: Optional[str] = None) -> str:
    parts = [
        "File: " + (file_name or "n/a"),
        f"Total lines: {stats['total_lines']}",
        f"Parsed: {stats['parsed_lines']}",
        f"Skipped: {stats['skipped_lines']}",
    ]
    kind_counts = [f"{kind}: {count}" for kind, count in stats['by_kind'].items() if count > 0]
    if kind_counts:
        parts.append("By type: " + ", ".join(kind_counts))
    return " | ".join(parts)


def render_window_totals(rankings: Dict[str, List[RankedRow]]) -> str:
    """One compact line of window totals, e.g. 'Damage: 1.5K'."""
    labels = (('damage_done', 'Damage'), ('healing_done', 'Healing'),
              ('damage_received', 'Damage received'))
    parts = [f"{label}: {format_amount_short(sum(r.value for r in rankings[metric]))}"
             for metric, label in labels]
    return "Window totals | " + " | ".join(parts)


def render_ranking(title: str, rows: List[RankedRow], include_percent: bool = True) -> str:
    lines = [title]
    if not rows:
        lines.append("  No data.")
        return "\n".join(lines)
    width = max(len(r.name) for r in rows)
    for r in rows:
        line = f"  {r.rank:>3}  {r.name:<{width}}  {format_amount(r.value):>14}"
        if include_percent:
            line += f"  {format_percent(r.percent):>6}"
        lines.append(line)
    return "\n".join(lines)


def _render_breakdown(title: str, rows: List[BreakdownRow], empty: str,
                      include_percent: bool = True) -> List[str]:
    lines = [f"  {title}"]
    if not rows:
        lines.append(f"    {empty}")
        return lines
    width = max(len(r.label) for r in rows)
    for r in rows:
        line = f"    {r.label:<{width}}  {format_amount(r.value):>14}"
        if include_percent:
            line += f"  {format_percent(r.percent):>6}"
        lines.append(line)
    return lines


def render_entity_report(report: EntityReport, tz_offset_hours: int = 0) -> str:
    lines = [
        f"{report.name} ({describe_window(report.window, tz_offset_hours)})",
        f"  Damage done: {format_amount(report.totals.damage_done)} | "
        f"Healing done: {format_amount(report.totals.healing_done)} | "
        f"Damage received: {format_amount(report.totals.damage_received)}",
    ]
    lines += _render_breakdown("Damage (by skill)", report.damage_by_skill, "No damage done.")
    lines += _render_breakdown("Healing (by skill)", report.healing_by_skill, "No healing done.")
    lines += _render_breakdown("Damage received (by attacker)", report.top_damage_sources,
                               "No damage taken.")
    lines += _render_breakdown(f"Buffs applied by {report.name}", report.buffs_applied,
                               "No buffs applied.", include_percent=False)
    lines += _render_breakdown(f"Debuffs applied by {report.name}", report.debuffs_applied,
                               "No debuffs applied.", include_percent=False)
    return "\n".join(lines)

# ============================================================================
# MAIN
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="combat-log-stats",
        description="Ranked damage/healing statistics for a combat log over a time window",
    )
    parser.add_argument("logfile", help="Path to the combat log")
    parser.add_argument("--start", help="Window start (epoch seconds or YYYY-MM-DDTHH:MM)")
    parser.add_argument("--end", help="Window end (epoch seconds or YYYY-MM-DDTHH:MM)")
    parser.add_argument("--full-range", action="store_true",
                        help="Disable the time filter and use the whole log")
    parser.add_argument("--entity", help="Show details for one entity")
    parser.add_argument("--top", type=int, default=None,
                        help="Max attackers listed in entity details")
    parser.add_argument("--json", action="store_true",
                        help="Dump the whole session as JSON instead of tables")
    parser.add_argument("--config", default=CONFIG_PATH, help="Path to the config file")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Load a log, apply the requested window and print the report.

    Exit Codes:
        0: Success
        1: Log file could not be read
        2: Window rejected
        3: Unknown entity
    """
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.config)
    tz_offset = TIMEZONE_OPTIONS.get(config.get('timezone', 'UTC'), 0)
    session = CombatLogSession(
        default_window_seconds=config_int(config, 'window_minutes', 30) * 60,
        top_sources_limit=args.top if args.top is not None
        else config_int(config, 'top_sources', DEFAULT_TOP_SOURCES),
    )

    try:
        report = load_log_file(session, args.logfile)
    except LogFileError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.full_range:
        session.reset_window_to_full_range()
    elif args.start is not None or args.end is not None:
        try:
            start = parse_time_input(args.start, tz_offset) if args.start else session.window.start
            end = parse_time_input(args.end, tz_offset) if args.end else session.window.end
            session.set_window(start, end)
        except (ValueError, TypeError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2

    if args.json:
        print(json.dumps(session.debug_snapshot(), indent=2))
        return 0

    print(render_summary(report.stats, os.path.basename(args.logfile)))
    if session.bounds.is_empty:
        print("No timestamped events found.")
    else:
        print(f"Earliest: {format_timestamp(session.bounds.min, tz_offset)} | "
              f"Latest: {format_timestamp(session.bounds.max, tz_offset)}")
        print(describe_window(session.window, tz_offset))

    rankings = session.rankings()
    print(render_window_totals(rankings))
    print()
    print(render_ranking("Damage Done", rankings['damage_done']))
    print()
    print(render_ranking("Healing Done", rankings['healing_done']))
    print()
    print(render_ranking("Damage Received", rankings['damage_received'], include_percent=False))

    if args.entity:
        print()
        try:
            print(render_entity_report(session.entity_report(args.entity), tz_offset))
        except EntityNotFoundError as e:
            print(str(e), file=sys.stderr)
            return 3

    return 0


if __name__ == '__main__':
    sys.exit(main())
