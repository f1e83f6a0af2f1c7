from __future__ import annotations
# cleanup_rules.py
# Correction rule builders and rule-set configuration for ofdb-cleanup

import json
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, Final, List, Tuple, Union

import structlog
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, ValidationError

from cleanup_utils import (
    MILLIS_THRESHOLD,
    MIN_KEY_LENGTH,
    ConfigurationError,
    is_identifier,
    quote_identifier,
)

logger = structlog.get_logger(__name__)

MILLIS_PER_SECOND: Final[int] = 1000


# --- MODELS ---
class RuleCategory(Enum):
    TIMESTAMP_NORMALIZATION = "timestamp_normalization"
    INVALID_KEY_DELETION = "invalid_key_deletion"
    ORPHAN_DELETION = "orphan_deletion"
    BACKFILL_INSERT = "backfill_insert"


class CleanupBaseModel(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class CorrectionRule(CleanupBaseModel):
    """One idempotent corrective statement, applied in list order."""
    description: str = Field(..., min_length=1)
    category: RuleCategory
    table: str
    sql: str = Field(..., min_length=1)
    params: Tuple[Any, ...] = ()


def _check_identifier(v: str) -> str:
    if not is_identifier(v):
        raise ValueError(f"not a plain SQL identifier: {v!r}")
    return v


Identifier = Annotated[str, AfterValidator(_check_identifier)]


class TimestampSpec(CleanupBaseModel):
    table: Identifier
    column: Identifier
    nullable: bool = False


class KeySpec(CleanupBaseModel):
    table: Identifier
    column: Identifier


class OrphanSpec(CleanupBaseModel):
    table: Identifier
    parent: Identifier
    # child column -> parent column, in comparison order
    keys: Dict[Identifier, Identifier] = Field(..., min_length=1)


class BackfillSpec(CleanupBaseModel):
    table: Identifier
    column: Identifier
    lookup_table: Identifier
    lookup_column: Identifier


class RuleSetConfig(CleanupBaseModel):
    """
    A complete rule set expressed as data.
    Sections expand in a fixed order: timestamps, invalid keys, orphans,
    backfill. Invalid keys must go before the orphan sweep and the orphan
    sweep before backfill, otherwise deleted relations would resurrect tags.
    """
    name: str = "custom"
    millis_threshold: int = Field(MILLIS_THRESHOLD, gt=0)
    min_key_length: int = Field(MIN_KEY_LENGTH, ge=1)
    timestamps: List[TimestampSpec] = Field(default_factory=list)
    invalid_keys: List[KeySpec] = Field(default_factory=list)
    orphans: List[OrphanSpec] = Field(default_factory=list)
    backfill: List[BackfillSpec] = Field(default_factory=list)


# --- RULE BUILDERS ---
def normalize_timestamps(
    table: str,
    column: str,
    threshold: int = MILLIS_THRESHOLD,
    nullable: bool = False,
) -> CorrectionRule:
    """Divide millisecond values above ``threshold`` by 1000."""
    t, c = quote_identifier(table), quote_identifier(column)
    where = f"{c} > ?"
    if nullable:
        where = f"{c} IS NOT NULL AND {where}"
    return CorrectionRule(
        description=f"Normalize millisecond timestamps in {table}.{column}",
        category=RuleCategory.TIMESTAMP_NORMALIZATION,
        table=table,
        sql=f"UPDATE {t} SET {c} = {c} / ? WHERE {where}",
        params=(MILLIS_PER_SECOND, threshold),
    )


def delete_invalid_keys(table: str, column: str, min_length: int = MIN_KEY_LENGTH) -> CorrectionRule:
    t, c = quote_identifier(table), quote_identifier(column)
    return CorrectionRule(
        description=f"Delete invalid keys from {table}.{column} (length < {min_length})",
        category=RuleCategory.INVALID_KEY_DELETION,
        table=table,
        sql=f"DELETE FROM {t} WHERE length({c}) < ?",
        params=(min_length,),
    )


def delete_orphans(table: str, parent: str, keys: Dict[str, str]) -> CorrectionRule:
    """Delete rows of ``table`` whose key columns match no row of ``parent``.

    ``keys`` maps child columns to parent columns; several entries form a
    composite key. Rows with a NULL in any key column reference nothing and
    are kept.
    """
    if not keys:
        raise ConfigurationError(f"Orphan sweep on {table} needs at least one key column")
    t, p = quote_identifier(table), quote_identifier(parent)
    conditions = " AND ".join(
        f"p.{quote_identifier(parent_col)} = {t}.{quote_identifier(child_col)}"
        for child_col, parent_col in keys.items()
    )
    not_null = " AND ".join(f"{t}.{quote_identifier(child_col)} IS NOT NULL" for child_col in keys)
    return CorrectionRule(
        description=f"Delete orphaned {table} rows without matching {parent} ({', '.join(keys)})",
        category=RuleCategory.ORPHAN_DELETION,
        table=table,
        sql=f"DELETE FROM {t} WHERE {not_null} AND NOT EXISTS (SELECT 1 FROM {p} AS p WHERE {conditions})",
    )


def backfill_keys(table: str, column: str, lookup_table: str, lookup_column: str) -> CorrectionRule:
    """Insert every referenced key missing from the lookup table, once."""
    t, c = quote_identifier(table), quote_identifier(column)
    lt, lc = quote_identifier(lookup_table), quote_identifier(lookup_column)
    return CorrectionRule(
        description=f"Backfill missing {lookup_table}.{lookup_column} from {table}.{column}",
        category=RuleCategory.BACKFILL_INSERT,
        table=lookup_table,
        sql=(
            f"INSERT INTO {lt} ({lc}) "
            f"SELECT DISTINCT r.{c} FROM {t} AS r "
            f"WHERE r.{c} IS NOT NULL "
            f"AND NOT EXISTS (SELECT 1 FROM {lt} AS l WHERE l.{lc} = r.{c})"
        ),
    )


def build_rules(config: RuleSetConfig) -> List[CorrectionRule]:
    rules: List[CorrectionRule] = []
    for ts in config.timestamps:
        rules.append(normalize_timestamps(ts.table, ts.column, config.millis_threshold, ts.nullable))
    for key in config.invalid_keys:
        rules.append(delete_invalid_keys(key.table, key.column, config.min_key_length))
    for orphan in config.orphans:
        rules.append(delete_orphans(orphan.table, orphan.parent, orphan.keys))
    for bf in config.backfill:
        rules.append(backfill_keys(bf.table, bf.column, bf.lookup_table, bf.lookup_column))
    logger.debug("Rules built", rule_set=config.name, count=len(rules))
    return rules


# --- RULE SETS ---
# Early releases (until 2018-01-19) wrote millisecond timestamps, e.g. 1516382882521.
OFDB_RULE_SET = RuleSetConfig(
    name="ofdb",
    timestamps=[
        TimestampSpec(table="categories", column="created"),
        TimestampSpec(table="comments", column="created"),
        TimestampSpec(table="comments", column="archived", nullable=True),
        TimestampSpec(table="entries", column="created"),
        TimestampSpec(table="entries", column="archived", nullable=True),
        TimestampSpec(table="events", column="archived", nullable=True),
        TimestampSpec(table="ratings", column="created"),
        TimestampSpec(table="ratings", column="archived", nullable=True),
    ],
    invalid_keys=[
        KeySpec(table="entry_tag_relations", column="tag_id"),
        KeySpec(table="event_tag_relations", column="tag_id"),
        KeySpec(table="org_tag_relations", column="tag_id"),
        KeySpec(table="tags", column="id"),
    ],
    orphans=[
        OrphanSpec(
            table="entry_tag_relations",
            parent="entries",
            keys={"entry_id": "id", "entry_version": "version"},
        ),
        OrphanSpec(table="event_tag_relations", parent="events", keys={"event_id": "id"}),
        OrphanSpec(table="org_tag_relations", parent="organizations", keys={"org_id": "id"}),
    ],
    backfill=[
        BackfillSpec(table="entry_tag_relations", column="tag_id", lookup_table="tags", lookup_column="id"),
        BackfillSpec(table="event_tag_relations", column="tag_id", lookup_table="tags", lookup_column="id"),
        BackfillSpec(table="org_tag_relations", column="tag_id", lookup_table="tags", lookup_column="id"),
    ],
)

RULE_SETS: Dict[str, RuleSetConfig] = {
    OFDB_RULE_SET.name: OFDB_RULE_SET,
}


def get_rule_set(name: str) -> RuleSetConfig:
    try:
        return RULE_SETS[name]
    except KeyError:
        known = ", ".join(sorted(RULE_SETS))
        raise ConfigurationError(f"Unknown rule set '{name}' (known: {known})") from None


def load_rule_set(path: Union[str, Path]) -> RuleSetConfig:
    """Loads a rule set from a JSON file shaped like RuleSetConfig."""
    path = Path(path)
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read rule set {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Rule set {path} is not valid JSON: {e}") from e

    if isinstance(data, dict):
        data.setdefault("name", path.stem)
    try:
        config = RuleSetConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Rule set {path} is invalid: {e}") from e
    logger.info("Rule set loaded", path=str(path), rule_set=config.name)
    return config
