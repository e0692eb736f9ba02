#!/usr/bin/env python3
"""Apply sql/migrations/*.sql in name order, each once."""

import sys
from pathlib import Path

import psycopg2
from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from api.services.db import get_dsn  # noqa: E402


def pending_migrations(migrations_dir: Path, applied: set[str]) -> list[Path]:
    files = sorted(p for p in migrations_dir.glob("*.sql") if p.is_file())
    return [f for f in files if f.name not in applied]


def main() -> None:
    load_dotenv()
    conn = psycopg2.connect(get_dsn())
    try:
        cur = conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
              version TEXT PRIMARY KEY,
              applied_at TIMESTAMPTZ DEFAULT now()
            )
            """
        )
        cur.execute("SELECT version FROM schema_migrations")
        applied = {r[0] for r in cur.fetchall()}

        for f in pending_migrations(ROOT / "sql" / "migrations", applied):
            cur.execute(f.read_text(encoding="utf-8"))
            cur.execute("INSERT INTO schema_migrations(version) VALUES(%s)", (f.name,))
            conn.commit()
            print(f"[migrate] applied {f.name}")

        print("[migrate] complete")
    finally:
        conn.close()


if __name__ == "__main__":
    main()
