#!/usr/bin/env python3
"""Compare two OpenFairDB files table by table.

Useful to confirm a repaired copy matches a reference, or that a dry run
left the database untouched.

Run: python3 scripts/db_shadow_compare.py repaired.db reference.db [--table tags ...]
"""
import argparse
import sys
from pathlib import Path

# Add root to path so we can import the cleanup modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from cleanup_db import CleanupDB
from cleanup_utils import StoreConnectionError


def compare_databases(db1_path, db2_path, tables=None):
    with CleanupDB(db1_path) as db1, CleanupDB(db2_path) as db2:
        if not tables:
            tables = sorted(set(db1.table_names()) | set(db2.table_names()))

        mismatches = []

        print(f"Comparing {db1_path} vs {db2_path}")
        print("-" * 60)

        for table in tables:
            hash1, count1 = db1.table_checksum(table)
            hash2, count2 = db2.table_checksum(table)

            status = "OK"
            if hash1 != hash2:
                status = "MISMATCH"
                mismatches.append(table)

            print(f"Table: {table:20s} | {status:8s} | Count1: {count1:6d} | Count2: {count2:6d}")
            if status == "MISMATCH" and hash1 and hash2:
                rows1 = set(db1.table_rows(table))
                rows2 = set(db2.table_rows(table))
                only_in_1 = sorted(rows1 - rows2, key=repr)
                only_in_2 = sorted(rows2 - rows1, key=repr)
                if only_in_1:
                    print(f"  Only in {db1_path} (first 10): {only_in_1[:10]}")
                if only_in_2:
                    print(f"  Only in {db2_path} (first 10): {only_in_2[:10]}")

    return len(mismatches) == 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="Shadow DB integrity comparison")
    parser.add_argument("db1", help="Path to first database (e.g., repaired copy)")
    parser.add_argument("db2", help="Path to second database (e.g., reference snapshot)")
    parser.add_argument("--table", action="append", dest="tables", help="Limit comparison to this table (repeatable)")
    args = parser.parse_args(argv)

    try:
        success = compare_databases(args.db1, args.db2, args.tables)
    except StoreConnectionError as e:
        print(f"Error: {e}")
        return 2
    return 0 if success else 1


if __name__ == "__main__":
    sys.exit(main())
