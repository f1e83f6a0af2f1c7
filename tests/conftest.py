import sqlite3

import pytest

from cleanup_db import CleanupDB

SCHEMA = """
CREATE TABLE categories (id TEXT PRIMARY KEY, created INTEGER NOT NULL, name TEXT);
CREATE TABLE comments (id TEXT PRIMARY KEY, created INTEGER NOT NULL, archived INTEGER, text TEXT);
CREATE TABLE entries (
    id TEXT NOT NULL,
    version INTEGER NOT NULL,
    created INTEGER NOT NULL,
    archived INTEGER,
    title TEXT,
    PRIMARY KEY (id, version)
);
CREATE TABLE events (id TEXT PRIMARY KEY, created INTEGER NOT NULL, archived INTEGER, title TEXT);
CREATE TABLE ratings (id TEXT PRIMARY KEY, created INTEGER NOT NULL, archived INTEGER);
CREATE TABLE organizations (id TEXT PRIMARY KEY, name TEXT);
CREATE TABLE tags (id TEXT PRIMARY KEY NOT NULL);
CREATE TABLE entry_tag_relations (
    entry_id TEXT,
    entry_version INTEGER,
    tag_id TEXT,
    PRIMARY KEY (entry_id, entry_version, tag_id)
);
CREATE TABLE event_tag_relations (event_id TEXT, tag_id TEXT, PRIMARY KEY (event_id, tag_id));
CREATE TABLE org_tag_relations (org_id TEXT, tag_id TEXT, PRIMARY KEY (org_id, tag_id));
"""

MILLIS = 1516382882521
SECONDS = 1516382882


def insert_dirty_rows(conn):
    conn.executemany("INSERT INTO categories (id, created) VALUES (?, ?)", [
        ("c1", MILLIS),
        ("c2", 1000000000),
    ])
    conn.executemany("INSERT INTO comments (id, created, archived) VALUES (?, ?, ?)", [
        ("m1", MILLIS, None),
        ("m2", 1516000000, MILLIS),
    ])
    conn.executemany("INSERT INTO entries (id, version, created, archived) VALUES (?, ?, ?, ?)", [
        ("e1", 1, MILLIS, None),
        ("e1", 2, 1600000000, None),
        ("e2", 1, 1600000000, MILLIS),
    ])
    conn.executemany("INSERT INTO events (id, created, archived) VALUES (?, ?, ?)", [
        ("v1", 1600000000, None),
        ("v2", 1600000000, MILLIS),
    ])
    conn.execute("INSERT INTO ratings (id, created, archived) VALUES ('r1', ?, NULL)", (MILLIS,))
    conn.execute("INSERT INTO organizations (id, name) VALUES ('o1', 'Org One')")
    conn.executemany("INSERT INTO tags (id) VALUES (?)", [("ab",), ("x",), ("",)])
    conn.executemany("INSERT INTO entry_tag_relations VALUES (?, ?, ?)", [
        ("e1", 1, "ab"),
        ("e1", 1, "x"),          # invalid key
        ("e1", 2, "newtag"),     # missing tag, referenced twice
        ("e2", 1, "newtag"),
        ("e9", 1, "ghost"),      # entry does not exist
        ("e1", 3, "ab"),         # entry exists, version does not
    ])
    conn.executemany("INSERT INTO event_tag_relations VALUES (?, ?)", [
        ("v1", "ab"),
        ("v1", ""),              # invalid key
        ("v9", "lost"),          # event does not exist
    ])
    conn.executemany("INSERT INTO org_tag_relations VALUES (?, ?)", [
        ("o1", "orgtag"),        # missing tag
        ("o2", "zz"),            # organization does not exist
    ])


@pytest.fixture
def empty_db(tmp_path):
    db_file = tmp_path / "openfair.db"
    conn = sqlite3.connect(str(db_file))
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()
    return db_file


@pytest.fixture
def db_path(empty_db):
    conn = sqlite3.connect(str(empty_db))
    insert_dirty_rows(conn)
    conn.commit()
    conn.close()
    return empty_db


@pytest.fixture
def store(db_path):
    db = CleanupDB(str(db_path))
    db.connect()
    yield db
    db.close()


@pytest.fixture
def fetch():
    def _fetch(db_file, sql, params=()):
        conn = sqlite3.connect(str(db_file))
        try:
            return conn.execute(sql, params).fetchall()
        finally:
            conn.close()
    return _fetch
