from __future__ import annotations

import hashlib
import importlib.util
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from db.errors import SchemaError


MIGRATION_RE = re.compile(r"^(\d{4})_([a-zA-Z0-9_]+)\.py$")
DEFAULT_MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "migrations")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _checksum_file(path: Path) -> str:
    data = path.read_bytes()
    return hashlib.sha256(data).hexdigest()


def _ensure_migration_table(conn: Any) -> None:
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version VARCHAR(16) PRIMARY KEY,
            name VARCHAR(255) NOT NULL,
            checksum VARCHAR(64) NOT NULL,
            applied_at_utc VARCHAR(64) NOT NULL
        )
        """
    )
    conn.commit()


def _load_applied(conn: Any) -> dict[str, tuple[str, str, str]]:
    cur = conn.cursor()
    cur.execute("SELECT version, name, checksum, applied_at_utc FROM schema_migrations")
    out: dict[str, tuple[str, str, str]] = {}
    for version, name, checksum, applied_at_utc in cur.fetchall():
        out[str(version)] = (str(name), str(checksum), str(applied_at_utc))
    return out


def _run_py(conn: Any, dialect, path: Path) -> None:
    mod_name = f"threadkeeper_migration_{path.stem}"
    spec = importlib.util.spec_from_file_location(mod_name, str(path))
    if spec is None or spec.loader is None:
        raise SchemaError(f"Could not load migration module: {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    upgrade = getattr(module, "upgrade", None)
    if not callable(upgrade):
        raise SchemaError(f"Python migration missing upgrade(conn, dialect): {path}")
    upgrade(conn, dialect)


def list_migration_files(migrations_dir: str) -> list[tuple[str, str, Path]]:
    base = Path(migrations_dir)
    if not base.exists():
        raise SchemaError(f"Migrations directory not found: {migrations_dir}")
    files: list[tuple[str, str, Path]] = []
    for p in sorted(base.iterdir()):
        if not p.is_file():
            continue
        m = MIGRATION_RE.match(p.name)
        if not m:
            continue
        files.append((m.group(1), m.group(2), p))
    return files


def apply_migrations(conn: Any, dialect, migrations_dir: str = DEFAULT_MIGRATIONS_DIR) -> list[str]:
    """
    Apply every migration not yet recorded in schema_migrations, in order.

    Returns the versions applied by this call. A recorded version whose file
    changed since it was applied is fatal.
    """
    try:
        _ensure_migration_table(conn)
        applied = _load_applied(conn)
    except dialect.driver_error as exc:
        raise SchemaError(f"failed to read schema_migrations: {exc}") from exc

    newly_applied: list[str] = []
    for version, name, path in list_migration_files(migrations_dir):
        checksum = _checksum_file(path)
        existing = applied.get(version)
        if existing:
            old_name, old_checksum, _applied_at = existing
            if old_name != name or old_checksum != checksum:
                raise SchemaError(
                    f"Migration version {version} already applied with different content "
                    f"(existing name={old_name}, file name={name})."
                )
            continue

        print(f"[DB] Applying migration {version}_{name}.py")
        try:
            _run_py(conn, dialect, path)
            cur = conn.cursor()
            cur.execute(
                dialect.sql(
                    """
                    INSERT INTO schema_migrations (version, name, checksum, applied_at_utc)
                    VALUES (?, ?, ?, ?)
                    """
                ),
                (version, name, checksum, _utc_now_iso()),
            )
            conn.commit()
        except SchemaError:
            conn.rollback()
            raise
        except dialect.driver_error as exc:
            conn.rollback()
            raise SchemaError(f"migration {version}_{name} failed: {exc}") from exc
        newly_applied.append(version)
    return newly_applied


def list_schema_migrations(conn: Any, limit: int = 200) -> list[tuple[str, str, str]]:
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT version, name, applied_at_utc
        FROM schema_migrations
        ORDER BY version DESC
        LIMIT {max(1, min(int(limit), 500))}
        """
    )
    return cur.fetchall()
