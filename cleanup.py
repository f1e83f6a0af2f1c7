#!/usr/bin/env python3
from __future__ import annotations
# cleanup.py
# Transactional repair runner for OpenFairDB SQLite stores

"""
ofdb-cleanup - one-shot data repair for OpenFairDB databases.

Applies an ordered list of idempotent correction rules (timestamp
normalization, invalid tag deletion, orphan sweep, tag backfill) inside a
single transaction. Either every rule is persisted or none is.

Usage:
  python cleanup.py --db openfair.db               # Repair and commit
  python cleanup.py --db openfair.db --dry-run     # Report only, roll back
  python cleanup.py --db openfair.db --check       # Exit 1 if anything would change
  python cleanup.py --rules my_rules.json --list-rules
"""
import argparse
import logging
import sys
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import structlog

from cleanup_db import CleanupDB
from cleanup_rules import (
    RULE_SETS,
    CorrectionRule,
    RuleCategory,
    RuleSetConfig,
    build_rules,
    get_rule_set,
    load_rule_set,
)
from cleanup_utils import (
    DEFAULT_RULE_SET,
    CleanupException,
    CommitError,
    ConfigurationError,
    RuleExecutionError,
    StoreConnectionError,
    get_db_path,
)

__all__ = [
    "CleanupDB",
    "CleanupException",
    "CommitError",
    "ConfigurationError",
    "CorrectionRule",
    "RepairRunner",
    "RuleCategory",
    "RuleExecutionError",
    "RuleResult",
    "RuleSetConfig",
    "RunResult",
    "StoreConnectionError",
    "check",
    "main",
    "run",
]

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ERROR = 2


# --- RESULTS ---
@dataclass
class RuleResult:
    index: int
    description: str
    rows_affected: int


@dataclass
class RunResult:
    success: bool = False
    dry_run: bool = False
    rule_results: List[RuleResult] = field(default_factory=list)
    failed_index: Optional[int] = None
    failed_description: Optional[str] = None
    error: Optional[CleanupException] = None
    rolled_back: bool = False

    @property
    def total_rows_affected(self) -> int:
        return sum(r.rows_affected for r in self.rule_results)

    @property
    def is_clean(self) -> bool:
        """True when the run succeeded without touching a single row."""
        return self.success and self.total_rows_affected == 0

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


# --- RUNNER ---
class RepairRunner:
    """
    Applies correction rules in order inside one transaction.

    Rule and commit failures are reported through the returned RunResult
    after a full rollback. A store that cannot be reached raises
    StoreConnectionError before any rule runs.
    """
    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run
        self.logger = structlog.get_logger(self.__class__.__name__)

    def run(self, store: CleanupDB, rules: Sequence[CorrectionRule]) -> RunResult:
        rules = list(rules)
        result = RunResult(dry_run=self.dry_run)

        store.begin()
        self.logger.info("Repair run started", rules=len(rules), dry_run=self.dry_run)
        try:
            for index, rule in enumerate(rules):
                try:
                    affected = store.execute(rule.sql, rule.params)
                except Exception as e:
                    result.failed_index = index
                    result.failed_description = rule.description
                    self._abort(store, result, RuleExecutionError(index, rule.description, e))
                    return result

                result.rule_results.append(RuleResult(index, rule.description, affected))
                self.logger.info(
                    "Rule applied",
                    rule_index=index,
                    category=rule.category.value,
                    description=rule.description,
                    rows_affected=affected,
                )

            if self.dry_run:
                store.rollback()
                result.rolled_back = True
                self.logger.info("Dry run rolled back", total_rows_affected=result.total_rows_affected)
            else:
                try:
                    store.commit()
                except Exception as e:
                    self._abort(store, result, CommitError("Transaction commit failed", e))
                    return result
                self.logger.info("Repair run committed", total_rows_affected=result.total_rows_affected)
        except BaseException:
            # Interrupted mid-run, leave nothing behind
            store.rollback()
            raise

        result.success = True
        return result

    def _abort(self, store: CleanupDB, result: RunResult, error: CleanupException) -> None:
        result.success = False
        result.error = error
        try:
            store.rollback()
            result.rolled_back = True
        except Exception as e:
            self.logger.error("Rollback failed", error=str(e))
        self.logger.error(
            "Repair run aborted",
            failed_index=result.failed_index,
            error=str(error),
            rolled_back=result.rolled_back,
        )


def run(store: CleanupDB, rules: Sequence[CorrectionRule]) -> RunResult:
    return RepairRunner().run(store, rules)


def check(store: CleanupDB, rules: Sequence[CorrectionRule]) -> RunResult:
    """Dry run; the store is clean when ``result.is_clean``."""
    return RepairRunner(dry_run=True).run(store, rules)


# --- CLI ---
def configure_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))


def print_rules(config: RuleSetConfig, rules: Sequence[CorrectionRule]) -> None:
    print(f"Rule set '{config.name}' ({len(rules)} rules)")
    for index, rule in enumerate(rules):
        print(f"  {index:>3}  [{rule.category.value}] {rule.description}")


def print_summary(result: RunResult) -> None:
    print(f"\n{'=' * 60}")
    for r in result.rule_results:
        print(f"  {r.index:>3}  {r.rows_affected:>7}  {r.description}")
    print(f"{'=' * 60}")

    if not result.success:
        if result.failed_index is not None:
            print(f"❌ FAILED at rule {result.failed_index}: {result.error}")
        else:
            print(f"❌ FAILED: {result.error}")
        print("Rolled back, no changes persisted." if result.rolled_back else "WARNING: rollback failed.")
    elif result.dry_run:
        print(f"DRY RUN: Would change {result.total_rows_affected} rows.")
    else:
        print(f"✅ Committed {result.total_rows_affected} row changes.")


def _resolve_rule_set(args: argparse.Namespace) -> RuleSetConfig:
    if args.rules:
        return load_rule_set(args.rules)
    return get_rule_set(args.rule_set or DEFAULT_RULE_SET)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Repair timestamps and tag relations in an OpenFairDB database")
    parser.add_argument("--db", default=get_db_path(), help="Path to the SQLite database (default: $OFDB_DB_PATH or openfair.db)")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--rule-set", default=None, choices=sorted(RULE_SETS), help=f"Built-in rule set to apply (default: {DEFAULT_RULE_SET})")
    source.add_argument("--rules", help="JSON file describing a custom rule set")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--dry-run", action="store_true", help="Apply inside a transaction, report, then roll back")
    mode.add_argument("--check", action="store_true", help="Dry run that exits 1 if any row would change")
    parser.add_argument("--list-rules", action="store_true", help="Print the rules in order and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

    try:
        config = _resolve_rule_set(args)
        rules = build_rules(config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_ERROR

    if args.list_rules:
        print_rules(config, rules)
        return EXIT_OK

    runner = RepairRunner(dry_run=args.dry_run or args.check)
    try:
        with CleanupDB(args.db) as store:
            result = runner.run(store, rules)
    except StoreConnectionError as e:
        print(f"Connection error: {e}", file=sys.stderr)
        return EXIT_ERROR

    print_summary(result)

    if not result.success:
        return EXIT_FAILED
    if args.check:
        if result.is_clean:
            print("Database is clean.")
            return EXIT_OK
        return EXIT_FAILED
    return EXIT_OK


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
