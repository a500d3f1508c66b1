# storage/db.py
import sqlite3
import os
from pathlib import Path


_DEFAULT_DB_PATH = Path.home() / ".chapterflow" / "chapterflow.db"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS chapters (
    id                 TEXT    PRIMARY KEY,
    story_id           TEXT    NOT NULL,
    chapter_number     INTEGER NOT NULL,
    title              TEXT    NOT NULL DEFAULT '',
    original_content   TEXT    NOT NULL DEFAULT '',
    translated_content TEXT,
    status             TEXT    NOT NULL DEFAULT 'pending',
    created_at         TEXT    NOT NULL,
    updated_at         TEXT    NOT NULL,
    UNIQUE (story_id, chapter_number)
);

CREATE INDEX IF NOT EXISTS idx_chapters_status ON chapters (status, created_at);

CREATE TABLE IF NOT EXISTS chapter_logs (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    chapter_id TEXT    NOT NULL,
    timestamp  TEXT    NOT NULL,
    level      TEXT    NOT NULL,
    message    TEXT    NOT NULL,
    data_json  TEXT,
    FOREIGN KEY (chapter_id) REFERENCES chapters(id)
);

CREATE TABLE IF NOT EXISTS story_contexts (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    story_id     TEXT    NOT NULL,
    version      INTEGER NOT NULL,
    content_json TEXT    NOT NULL,
    updated_at   TEXT    NOT NULL,
    UNIQUE (story_id, version)
);

CREATE TABLE IF NOT EXISTS quota_usage (
    model       TEXT    NOT NULL,
    date        TEXT    NOT NULL,
    tokens_used INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (model, date)
);
"""


def get_connection(db_path: str | None = None) -> sqlite3.Connection:
    """
    Abre y configura la conexión a SQLite.
    Siempre devuelve rows como dicts (row_factory).
    La conexión se comparte entre hilos — el Repository serializa el acceso.
    """
    path = db_path or os.environ.get("CHAPTERFLOW_DB_PATH") or str(_DEFAULT_DB_PATH)

    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Crea las tablas si no existen. Idempotente."""
    with conn:
        conn.executescript(_SCHEMA)
