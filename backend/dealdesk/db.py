from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from dealdesk.config import settings
from dealdesk.errors import PersistenceError, ReferenceConflict

ARTIFACT_STATUS_GENERATING = "generating"
ARTIFACT_STATUS_GENERATED = "generated"
ARTIFACT_STATUS_FAILED = "failed"
_VERSION_RESERVATION_ATTEMPTS = 3


def _database_path() -> Path:
    prefix = "sqlite:///"
    if not settings.database_url.startswith(prefix):
        raise RuntimeError("Only sqlite:/// DATABASE_URL is supported.")
    return Path(settings.database_url[len(prefix) :])


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def init_db() -> None:
    db_path = _database_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA foreign_keys = ON")
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS clients (
                client_id INTEGER PRIMARY KEY AUTOINCREMENT,
                client_name TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_clients_name ON clients(client_name COLLATE NOCASE);

            CREATE TABLE IF NOT EXISTS responsibles (
                responsible_id INTEGER PRIMARY KEY AUTOINCREMENT,
                responsible_name TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 1
            );

            CREATE TABLE IF NOT EXISTS opportunities (
                opportunity_id INTEGER PRIMARY KEY AUTOINCREMENT,
                opportunity_name TEXT NOT NULL,
                description TEXT,
                client_id INTEGER NOT NULL,
                responsible_id INTEGER NOT NULL,
                status TEXT NOT NULL DEFAULT 'OPEN',
                generated_at TEXT NOT NULL,
                generated_by TEXT,
                FOREIGN KEY(client_id) REFERENCES clients(client_id),
                FOREIGN KEY(responsible_id) REFERENCES responsibles(responsible_id)
            );

            CREATE TABLE IF NOT EXISTS inputs (
                input_id INTEGER PRIMARY KEY AUTOINCREMENT,
                opportunity_id INTEGER NOT NULL,
                input_name TEXT NOT NULL,
                storage_path TEXT NOT NULL,
                file_size_kb INTEGER,
                uploaded_at TEXT NOT NULL,
                uploaded_by TEXT,
                FOREIGN KEY(opportunity_id) REFERENCES opportunities(opportunity_id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_inputs_opportunity
                ON inputs(opportunity_id, uploaded_at DESC);

            CREATE TABLE IF NOT EXISTS artifacts (
                artifact_id INTEGER PRIMARY KEY AUTOINCREMENT,
                opportunity_id INTEGER NOT NULL,
                artifact_name TEXT NOT NULL,
                artifact_type TEXT NOT NULL,
                artifact_url TEXT NOT NULL DEFAULT '',
                storage_path TEXT NOT NULL DEFAULT '',
                version INTEGER NOT NULL,
                status TEXT NOT NULL,
                generated_at TEXT NOT NULL,
                generated_by TEXT,
                gdrive_file_name TEXT,
                gdrive_web_url TEXT,
                FOREIGN KEY(opportunity_id) REFERENCES opportunities(opportunity_id) ON DELETE CASCADE,
                UNIQUE(opportunity_id, artifact_type, version)
            );

            CREATE INDEX IF NOT EXISTS idx_artifacts_opportunity_type
                ON artifacts(opportunity_id, artifact_type, version DESC);
            """
        )


@contextmanager
def get_conn() -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(_database_path())
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        yield conn
        conn.commit()
    finally:
        conn.close()


@contextmanager
def _immediate_transaction() -> Iterator[sqlite3.Connection]:
    # BEGIN IMMEDIATE takes the write lock up front so a read-then-insert cannot interleave.
    conn = sqlite3.connect(_database_path(), isolation_level=None)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def _normalize_name(value: str) -> str:
    return " ".join(value.split())


# Clients


def create_client(name: str) -> dict[str, object]:
    client = {"client_name": _normalize_name(name), "created_at": _utc_now_iso()}
    with get_conn() as conn:
        cursor = conn.execute(
            "INSERT INTO clients (client_name, created_at) VALUES (:client_name, :created_at)",
            client,
        )
    return {"client_id": int(cursor.lastrowid), **client}


def get_client(client_id: int) -> dict[str, object] | None:
    with get_conn() as conn:
        row = conn.execute(
            "SELECT client_id, client_name, created_at FROM clients WHERE client_id = ?",
            (client_id,),
        ).fetchone()
    return dict(row) if row is not None else None


def list_clients() -> list[dict[str, object]]:
    with get_conn() as conn:
        rows = conn.execute(
            "SELECT client_id, client_name, created_at FROM clients ORDER BY client_name COLLATE NOCASE ASC"
        ).fetchall()
    return [dict(row) for row in rows]


def update_client(client_id: int, name: str) -> dict[str, object] | None:
    with get_conn() as conn:
        cursor = conn.execute(
            "UPDATE clients SET client_name = ? WHERE client_id = ?",
            (_normalize_name(name), client_id),
        )
    if cursor.rowcount == 0:
        return None
    return get_client(client_id)


def delete_client(client_id: int) -> bool:
    with get_conn() as conn:
        referenced = conn.execute(
            "SELECT COUNT(*) AS total FROM opportunities WHERE client_id = ?",
            (client_id,),
        ).fetchone()
        if int(referenced["total"]) > 0:
            raise ReferenceConflict(
                f"Client {client_id} is referenced by {int(referenced['total'])} opportunities."
            )
        cursor = conn.execute("DELETE FROM clients WHERE client_id = ?", (client_id,))
    return cursor.rowcount > 0


def get_or_create_client(name: str) -> tuple[dict[str, object], bool]:
    normalized = _normalize_name(name)
    with _immediate_transaction() as conn:
        row = conn.execute(
            """
            SELECT client_id, client_name, created_at
            FROM clients
            WHERE LOWER(client_name) = LOWER(?)
            ORDER BY client_id ASC
            LIMIT 1
            """,
            (normalized,),
        ).fetchone()
        if row is not None:
            return dict(row), False
        created_at = _utc_now_iso()
        cursor = conn.execute(
            "INSERT INTO clients (client_name, created_at) VALUES (?, ?)",
            (normalized, created_at),
        )
    return {"client_id": int(cursor.lastrowid), "client_name": normalized, "created_at": created_at}, True


# Responsibles


def _responsible_from_row(row: sqlite3.Row) -> dict[str, object]:
    item = dict(row)
    item["is_active"] = bool(item["is_active"])
    return item


def create_responsible(name: str, is_active: bool = True) -> dict[str, object]:
    normalized = _normalize_name(name)
    with get_conn() as conn:
        cursor = conn.execute(
            "INSERT INTO responsibles (responsible_name, is_active) VALUES (?, ?)",
            (normalized, 1 if is_active else 0),
        )
    return {"responsible_id": int(cursor.lastrowid), "responsible_name": normalized, "is_active": is_active}


def get_responsible(responsible_id: int) -> dict[str, object] | None:
    with get_conn() as conn:
        row = conn.execute(
            "SELECT responsible_id, responsible_name, is_active FROM responsibles WHERE responsible_id = ?",
            (responsible_id,),
        ).fetchone()
    return _responsible_from_row(row) if row is not None else None


def list_responsibles(active_only: bool = False) -> list[dict[str, object]]:
    query = "SELECT responsible_id, responsible_name, is_active FROM responsibles"
    if active_only:
        query += " WHERE is_active = 1"
    query += " ORDER BY responsible_name COLLATE NOCASE ASC"
    with get_conn() as conn:
        rows = conn.execute(query).fetchall()
    return [_responsible_from_row(row) for row in rows]


def update_responsible(
    responsible_id: int,
    *,
    name: str | None = None,
    is_active: bool | None = None,
) -> dict[str, object] | None:
    assignments: list[str] = []
    params: list[object] = []
    if name is not None:
        assignments.append("responsible_name = ?")
        params.append(_normalize_name(name))
    if is_active is not None:
        assignments.append("is_active = ?")
        params.append(1 if is_active else 0)
    if not assignments:
        return get_responsible(responsible_id)

    params.append(responsible_id)
    with get_conn() as conn:
        cursor = conn.execute(
            f"UPDATE responsibles SET {', '.join(assignments)} WHERE responsible_id = ?",
            tuple(params),
        )
    if cursor.rowcount == 0:
        return None
    return get_responsible(responsible_id)


def get_or_create_responsible(name: str) -> tuple[dict[str, object], bool]:
    """Match an active responsible by name, or create one, under a single write lock."""

    normalized = _normalize_name(name)
    with _immediate_transaction() as conn:
        row = conn.execute(
            """
            SELECT responsible_id, responsible_name, is_active
            FROM responsibles
            WHERE LOWER(responsible_name) = LOWER(?) AND is_active = 1
            ORDER BY responsible_id ASC
            LIMIT 1
            """,
            (normalized,),
        ).fetchone()
        if row is not None:
            return _responsible_from_row(row), False
        cursor = conn.execute(
            "INSERT INTO responsibles (responsible_name, is_active) VALUES (?, 1)",
            (normalized,),
        )
    return {"responsible_id": int(cursor.lastrowid), "responsible_name": normalized, "is_active": True}, True


# Opportunities

_OPPORTUNITY_SELECT = """
    SELECT
        o.opportunity_id,
        o.opportunity_name,
        o.description,
        o.client_id,
        o.responsible_id,
        o.status,
        o.generated_at,
        o.generated_by,
        c.client_name,
        c.created_at AS client_created_at,
        r.responsible_name,
        r.is_active AS responsible_is_active,
        (SELECT COUNT(*) FROM inputs i WHERE i.opportunity_id = o.opportunity_id) AS input_count,
        (
            SELECT COUNT(*) FROM artifacts a
            WHERE a.opportunity_id = o.opportunity_id AND a.status = 'generated'
        ) AS artifact_count
    FROM opportunities o
    JOIN clients c ON c.client_id = o.client_id
    JOIN responsibles r ON r.responsible_id = o.responsible_id
"""


def _opportunity_from_row(row: sqlite3.Row) -> dict[str, object]:
    item = dict(row)
    client = {
        "client_id": item["client_id"],
        "client_name": item.pop("client_name"),
        "created_at": item.pop("client_created_at"),
    }
    responsible = {
        "responsible_id": item["responsible_id"],
        "responsible_name": item.pop("responsible_name"),
        "is_active": bool(item.pop("responsible_is_active")),
    }
    item["client"] = client
    item["responsible"] = responsible
    return item


def create_opportunity(
    *,
    name: str,
    description: str | None,
    client_id: int,
    responsible_id: int,
    generated_by: str | None,
    status: str = "OPEN",
) -> dict[str, object]:
    with get_conn() as conn:
        cursor = conn.execute(
            """
            INSERT INTO opportunities (
                opportunity_name, description, client_id, responsible_id, status, generated_at, generated_by
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                _normalize_name(name),
                description,
                client_id,
                responsible_id,
                status,
                _utc_now_iso(),
                generated_by,
            ),
        )
    created = get_opportunity(int(cursor.lastrowid))
    if created is None:
        raise PersistenceError("Opportunity insert did not persist.")
    return created


def get_opportunity(opportunity_id: int) -> dict[str, object] | None:
    with get_conn() as conn:
        row = conn.execute(
            _OPPORTUNITY_SELECT + " WHERE o.opportunity_id = ?",
            (opportunity_id,),
        ).fetchone()
    return _opportunity_from_row(row) if row is not None else None


def list_opportunities() -> list[dict[str, object]]:
    with get_conn() as conn:
        rows = conn.execute(_OPPORTUNITY_SELECT + " ORDER BY o.generated_at DESC, o.opportunity_id DESC").fetchall()
    return [_opportunity_from_row(row) for row in rows]


def update_opportunity(opportunity_id: int, fields: dict[str, object]) -> dict[str, object] | None:
    allowed = ("opportunity_name", "description", "client_id", "responsible_id", "status")
    assignments = [f"{column} = ?" for column in allowed if column in fields]
    params = [fields[column] for column in allowed if column in fields]
    if assignments:
        params.append(opportunity_id)
        with get_conn() as conn:
            cursor = conn.execute(
                f"UPDATE opportunities SET {', '.join(assignments)} WHERE opportunity_id = ?",
                tuple(params),
            )
        if cursor.rowcount == 0:
            return None
    return get_opportunity(opportunity_id)


def delete_opportunity(opportunity_id: int) -> bool:
    with get_conn() as conn:
        conn.execute("DELETE FROM artifacts WHERE opportunity_id = ?", (opportunity_id,))
        conn.execute("DELETE FROM inputs WHERE opportunity_id = ?", (opportunity_id,))
        cursor = conn.execute("DELETE FROM opportunities WHERE opportunity_id = ?", (opportunity_id,))
    return cursor.rowcount > 0


# Inputs

_INPUT_COLUMNS = "input_id, opportunity_id, input_name, storage_path, file_size_kb, uploaded_at, uploaded_by"


def create_input(
    *,
    opportunity_id: int,
    input_name: str,
    storage_path: str,
    file_size_kb: int | None,
    uploaded_by: str | None,
) -> dict[str, object]:
    record = {
        "opportunity_id": opportunity_id,
        "input_name": input_name,
        "storage_path": storage_path,
        "file_size_kb": file_size_kb,
        "uploaded_at": _utc_now_iso(),
        "uploaded_by": uploaded_by,
    }
    with get_conn() as conn:
        cursor = conn.execute(
            """
            INSERT INTO inputs (opportunity_id, input_name, storage_path, file_size_kb, uploaded_at, uploaded_by)
            VALUES (:opportunity_id, :input_name, :storage_path, :file_size_kb, :uploaded_at, :uploaded_by)
            """,
            record,
        )
    return {"input_id": int(cursor.lastrowid), **record}


def get_input(input_id: int) -> dict[str, object] | None:
    with get_conn() as conn:
        row = conn.execute(f"SELECT {_INPUT_COLUMNS} FROM inputs WHERE input_id = ?", (input_id,)).fetchone()
    return dict(row) if row is not None else None


def list_inputs(opportunity_id: int) -> list[dict[str, object]]:
    with get_conn() as conn:
        rows = conn.execute(
            f"""
            SELECT {_INPUT_COLUMNS}
            FROM inputs
            WHERE opportunity_id = ?
            ORDER BY uploaded_at DESC, input_id DESC
            """,
            (opportunity_id,),
        ).fetchall()
    return [dict(row) for row in rows]


def delete_input(input_id: int) -> bool:
    with get_conn() as conn:
        cursor = conn.execute("DELETE FROM inputs WHERE input_id = ?", (input_id,))
    return cursor.rowcount > 0


# Artifacts

_ARTIFACT_COLUMNS = (
    "artifact_id, opportunity_id, artifact_name, artifact_type, artifact_url, storage_path, version, "
    "status, generated_at, generated_by, gdrive_file_name, gdrive_web_url"
)


def reserve_artifact_version(
    *,
    opportunity_id: int,
    artifact_type: str,
    artifact_name: str,
    generated_by: str | None,
) -> dict[str, object]:
    """Insert a placeholder row holding the next version for (opportunity, type).

    The next version is the highest existing one plus one, so failed versions
    are never reused. It is computed and inserted under one write lock, and the
    UNIQUE(opportunity_id, artifact_type, version) constraint turns any
    remaining collision into a retry.
    """

    last_error: sqlite3.IntegrityError | None = None
    for _ in range(_VERSION_RESERVATION_ATTEMPTS):
        try:
            with _immediate_transaction() as conn:
                row = conn.execute(
                    """
                    SELECT COALESCE(MAX(version), 0) AS latest
                    FROM artifacts
                    WHERE opportunity_id = ? AND artifact_type = ?
                    """,
                    (opportunity_id, artifact_type),
                ).fetchone()
                version = int(row["latest"]) + 1
                generated_at = _utc_now_iso()
                cursor = conn.execute(
                    """
                    INSERT INTO artifacts (
                        opportunity_id, artifact_name, artifact_type, version, status, generated_at, generated_by
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        opportunity_id,
                        artifact_name,
                        artifact_type,
                        version,
                        ARTIFACT_STATUS_GENERATING,
                        generated_at,
                        generated_by,
                    ),
                )
                artifact_id = int(cursor.lastrowid)
        except sqlite3.IntegrityError as exc:
            last_error = exc
            continue
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to reserve artifact version: {exc}") from exc
        return {
            "artifact_id": artifact_id,
            "opportunity_id": opportunity_id,
            "artifact_type": artifact_type,
            "artifact_name": artifact_name,
            "version": version,
            "status": ARTIFACT_STATUS_GENERATING,
            "generated_at": generated_at,
            "generated_by": generated_by,
        }

    raise PersistenceError(f"Failed to reserve a unique artifact version: {last_error}")


def release_artifact_reservation(artifact_id: int) -> None:
    try:
        with get_conn() as conn:
            conn.execute(
                "DELETE FROM artifacts WHERE artifact_id = ? AND status = ?",
                (artifact_id, ARTIFACT_STATUS_GENERATING),
            )
    except sqlite3.Error as exc:
        raise PersistenceError(f"Failed to release artifact {artifact_id}: {exc}") from exc


def abandon_artifact_reservation(artifact_id: int, *, storage_path: str) -> None:
    """Keep an unfinished reservation as ``failed`` so its version is never handed out again.

    Used once the object may already be in storage under that version's path.
    """

    try:
        with get_conn() as conn:
            conn.execute(
                "UPDATE artifacts SET status = ?, storage_path = ? WHERE artifact_id = ? AND status = ?",
                (ARTIFACT_STATUS_FAILED, storage_path, artifact_id, ARTIFACT_STATUS_GENERATING),
            )
    except sqlite3.Error as exc:
        raise PersistenceError(f"Failed to mark artifact {artifact_id} as failed: {exc}") from exc


def finalize_artifact(
    artifact_id: int,
    *,
    artifact_url: str,
    storage_path: str,
) -> dict[str, object]:
    try:
        with get_conn() as conn:
            cursor = conn.execute(
                """
                UPDATE artifacts
                SET artifact_url = ?, storage_path = ?, status = ?
                WHERE artifact_id = ? AND status = ?
                """,
                (artifact_url, storage_path, ARTIFACT_STATUS_GENERATED, artifact_id, ARTIFACT_STATUS_GENERATING),
            )
    except sqlite3.Error as exc:
        raise PersistenceError(f"Failed to record artifact {artifact_id}: {exc}") from exc
    if cursor.rowcount == 0:
        raise PersistenceError(f"Artifact {artifact_id} disappeared before it could be recorded.")

    artifact = get_artifact(artifact_id)
    if artifact is None:
        raise PersistenceError(f"Artifact {artifact_id} disappeared before it could be recorded.")
    return artifact


def get_artifact(
    artifact_id: int,
    opportunity_id: int | None = None,
    *,
    status: str | None = None,
) -> dict[str, object] | None:
    query = f"SELECT {_ARTIFACT_COLUMNS} FROM artifacts WHERE artifact_id = ?"
    params: list[object] = [artifact_id]
    if opportunity_id is not None:
        query += " AND opportunity_id = ?"
        params.append(opportunity_id)
    if status is not None:
        query += " AND status = ?"
        params.append(status)
    with get_conn() as conn:
        row = conn.execute(query, tuple(params)).fetchone()
    return dict(row) if row is not None else None


def list_artifacts(opportunity_id: int, *, include_unfinished: bool = False) -> list[dict[str, object]]:
    """Generated artifacts, newest version first.

    ``include_unfinished`` adds reservations that are still generating or failed,
    which is what cleanup needs to find every stored object.
    """

    query = f"SELECT {_ARTIFACT_COLUMNS} FROM artifacts WHERE opportunity_id = ?"
    params: list[object] = [opportunity_id]
    if not include_unfinished:
        query += " AND status = ?"
        params.append(ARTIFACT_STATUS_GENERATED)
    query += " ORDER BY version DESC, artifact_id DESC"
    with get_conn() as conn:
        rows = conn.execute(query, tuple(params)).fetchall()
    return [dict(row) for row in rows]


def update_artifact_delivery(artifact_id: int, *, gdrive_file_name: str, gdrive_web_url: str) -> bool:
    with get_conn() as conn:
        cursor = conn.execute(
            "UPDATE artifacts SET gdrive_file_name = ?, gdrive_web_url = ? WHERE artifact_id = ?",
            (gdrive_file_name, gdrive_web_url, artifact_id),
        )
    return cursor.rowcount > 0
