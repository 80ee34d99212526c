# hopeai/database.py
from __future__ import annotations

import os
import json
import sqlite3
from uuid import uuid4
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from hopeai.config import DB_PATH, logger

# Columns holding JSON documents, decoded on read
_JSON_COLUMNS = {
    "medications": list,
    "previous_diagnosis": list,
    "result_details": dict,
    "response_json": None,
    "references_json": None,
    "tags": list,
    "feedback_tags": list,
}

PATIENT_FIELDS = (
    "name", "age", "gender", "occupation", "status", "evaluation_date", "psychologist",
    "consult_reason", "clinical_history", "medications", "previous_diagnosis", "evaluation_draft",
)
QUERY_FIELDS = (
    "answer", "response_json", "confidence_score", "references", "is_favorite", "tags",
    "feedback_rating", "feedback_comment", "feedback_tags", "has_feedback",
)
DEFAULT_PATIENT_STATUS = "New patient"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def get_conn():
    # Ensure parent directory exists
    db_dir = os.path.dirname(DB_PATH) or "."
    os.makedirs(db_dir, exist_ok=True)

    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


def init_db() -> None:
    """Create tables if they don't exist."""
    with get_conn() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS patients (
                id                 TEXT PRIMARY KEY,
                name               TEXT NOT NULL,
                age                INTEGER,
                gender             TEXT,
                occupation         TEXT,
                status             TEXT NOT NULL DEFAULT 'New patient',
                evaluation_date    TEXT,
                psychologist       TEXT,
                consult_reason     TEXT,
                clinical_history   TEXT,
                medications        TEXT,
                previous_diagnosis TEXT,
                evaluation_draft   TEXT,
                created_at         TEXT NOT NULL,
                updated_at         TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS test_results (
                id             INTEGER PRIMARY KEY AUTOINCREMENT,
                patient_id     TEXT NOT NULL,
                name           TEXT NOT NULL,
                score          TEXT,
                test_date      TEXT,
                interpretation TEXT,
                result_details TEXT,
                created_by     TEXT,
                created_at     TEXT NOT NULL,
                updated_at     TEXT NOT NULL,
                FOREIGN KEY(patient_id) REFERENCES patients(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS clinical_queries (
                id               INTEGER PRIMARY KEY AUTOINCREMENT,
                patient_id       TEXT NOT NULL,
                question         TEXT NOT NULL,
                answer           TEXT,
                response_json    TEXT,
                confidence_score REAL,
                references_json  TEXT,
                is_favorite      INTEGER NOT NULL DEFAULT 0,
                tags             TEXT,
                feedback_rating  INTEGER,
                feedback_comment TEXT,
                feedback_tags    TEXT,
                has_feedback     INTEGER NOT NULL DEFAULT 0,
                created_by       TEXT,
                created_at       TEXT NOT NULL,
                updated_at       TEXT NOT NULL,
                FOREIGN KEY(patient_id) REFERENCES patients(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_queries_patient ON clinical_queries(patient_id, created_at);

            CREATE TABLE IF NOT EXISTS meta (
                key   TEXT PRIMARY KEY,
                value TEXT
            );
            """
        )


def check_connection() -> bool:
    try:
        with get_conn() as conn:
            conn.execute("SELECT 1").fetchone()
        return True
    except sqlite3.Error as e:
        logger.error(f"Database connection failed: {e}")
        return False


def list_tables() -> List[str]:
    with get_conn() as conn:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        ).fetchall()
        return [r["name"] for r in rows]


def _get_meta(conn: sqlite3.Connection, key: str, default: Optional[str] = None) -> Optional[str]:
    row = conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else default


def _set_meta(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        """
        INSERT INTO meta(key, value) VALUES(?, ?)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value
        """,
        (key, value),
    )


def seed_demo() -> None:
    """Insert a small set of demo patients once."""
    with get_conn() as conn:
        if _get_meta(conn, "seeded", "0") == "1":
            return
        if conn.execute("SELECT COUNT(*) AS n FROM patients").fetchone()["n"] > 0:
            _set_meta(conn, "seeded", "1")
            return

        now = _now_iso()
        conn.executemany(
            """
            INSERT INTO patients(id, name, age, status, evaluation_date, psychologist,
                                 consult_reason, evaluation_draft, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                ("PS005", "Laura Fernández", 32, "New patient", "2024-03-12", "Dr. María González",
                 "Anxiety and sleep problems",
                 "Initial psychological evaluation\n\n"
                 "Reason for consultation:\n"
                 "The patient reports anxiety symptoms and sleep problems persisting for the last 3 months.\n\n"
                 "Brief clinical history:\n"
                 "- No previous psychological treatment.\n"
                 "- Reports increased work stress over the last 6 months.\n"
                 "- Denies substance use or relevant medical conditions.",
                 now, now),
                ("PS006", "Javier Morales", 45, "Waiting list", None, None,
                 "Pending initial evaluation", "", now, now),
                ("PS007", "Isabel Torres", 28, "Evaluation pending", "2024-03-16", "Dr. Carlos Mendoza",
                 "Depressive symptoms", "", now, now),
            ],
        )
        conn.executemany(
            """
            INSERT INTO test_results(patient_id, name, score, interpretation, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                ("PS005", "Beck Anxiety Inventory (BAI)", "25", "Moderate anxiety", now, now),
                ("PS005", "Hamilton Depression Rating Scale", "12", "Mild depression", now, now),
            ],
        )
        _set_meta(conn, "seeded", "1")
        logger.info("Demo patients loaded")


# -----------------------
# Row helpers
# -----------------------
def _encode(value: Any) -> Optional[str]:
    return None if value is None else json.dumps(value, ensure_ascii=False)


def _row_to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    data = dict(row)
    for column, empty in _JSON_COLUMNS.items():
        if column not in data:
            continue
        raw = data[column]
        if raw is None:
            data[column] = empty() if empty else None
        else:
            data[column] = json.loads(raw)
    if "references_json" in data:
        data["references"] = data.pop("references_json")
    for flag in ("is_favorite", "has_feedback"):
        if flag in data:
            data[flag] = bool(data[flag])
    return data


# -----------------------
# Patients
# -----------------------
def patient_exists(patient_id: str) -> bool:
    with get_conn() as conn:
        row = conn.execute("SELECT 1 FROM patients WHERE id = ?", (patient_id,)).fetchone()
        return bool(row)


def list_patients() -> List[Dict[str, Any]]:
    with get_conn() as conn:
        rows = conn.execute("SELECT * FROM patients ORDER BY created_at DESC, id DESC").fetchall()
        return [_row_to_dict(r) for r in rows]


def get_patient(patient_id: str, include_test_results: bool = False) -> Optional[Dict[str, Any]]:
    with get_conn() as conn:
        patient = _row_to_dict(conn.execute("SELECT * FROM patients WHERE id = ?", (patient_id,)).fetchone())
    if patient and include_test_results:
        patient["test_results"] = list_test_results(patient_id)
    return patient


def create_patient(name: str, patient_id: Optional[str] = None, **fields) -> Dict[str, Any]:
    """
    Insert a patient. A short id is generated when none is given.
    Unknown fields are ignored.
    """
    patient_id = patient_id or f"PS{uuid4().hex[:8].upper()}"
    values = {k: v for k, v in fields.items() if k in PATIENT_FIELDS and k != "name" and v is not None}
    values.setdefault("status", DEFAULT_PATIENT_STATUS)
    for column in ("medications", "previous_diagnosis"):
        values[column] = _encode(values.get(column, []))

    now = _now_iso()
    columns = ["id", "name", *values.keys(), "created_at", "updated_at"]
    params = [patient_id, name, *values.values(), now, now]
    with get_conn() as conn:
        conn.execute(
            f"INSERT INTO patients({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
            params,
        )
    return get_patient(patient_id)


def update_patient(patient_id: str, **fields) -> Optional[Dict[str, Any]]:
    """Update the given columns only. Returns None for an unknown patient."""
    values = {k: v for k, v in fields.items() if k in PATIENT_FIELDS}
    for column in ("medications", "previous_diagnosis"):
        if column in values:
            values[column] = _encode(values[column] or [])
    if not patient_exists(patient_id):
        return None
    if values:
        assignments = ", ".join(f"{column} = ?" for column in values)
        with get_conn() as conn:
            conn.execute(
                f"UPDATE patients SET {assignments}, updated_at = ? WHERE id = ?",
                [*values.values(), _now_iso(), patient_id],
            )
    return get_patient(patient_id)


# -----------------------
# Test results
# -----------------------
def list_test_results(patient_id: str) -> List[Dict[str, Any]]:
    with get_conn() as conn:
        rows = conn.execute(
            "SELECT * FROM test_results WHERE patient_id = ? ORDER BY COALESCE(test_date, created_at) DESC, id DESC",
            (patient_id,),
        ).fetchall()
        return [_row_to_dict(r) for r in rows]


def add_test_result(patient_id: str, name: str, score=None, test_date: Optional[str] = None,
                    interpretation: Optional[str] = None, result_details: Optional[dict] = None,
                    created_by: Optional[str] = None) -> Optional[Dict[str, Any]]:
    if not patient_exists(patient_id):
        return None
    now = _now_iso()
    with get_conn() as conn:
        cur = conn.execute(
            """
            INSERT INTO test_results(patient_id, name, score, test_date, interpretation,
                                     result_details, created_by, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (patient_id, name, None if score is None else str(score), test_date, interpretation,
             _encode(result_details or {}), created_by, now, now),
        )
        row = conn.execute("SELECT * FROM test_results WHERE id = ?", (cur.lastrowid,)).fetchone()
    return _row_to_dict(row)


# -----------------------
# Clinical queries
# -----------------------
def create_query(patient_id: str, question: str, tags: Optional[List[str]] = None,
                 created_by: Optional[str] = None) -> Dict[str, Any]:
    now = _now_iso()
    with get_conn() as conn:
        cur = conn.execute(
            """
            INSERT INTO clinical_queries(patient_id, question, tags, is_favorite, created_by, created_at, updated_at)
            VALUES (?, ?, ?, 0, ?, ?, ?)
            """,
            (patient_id, question, _encode(tags or []), created_by or "system", now, now),
        )
        query_id = cur.lastrowid
    return get_query(query_id)


def get_query(query_id: int) -> Optional[Dict[str, Any]]:
    with get_conn() as conn:
        row = conn.execute("SELECT * FROM clinical_queries WHERE id = ?", (query_id,)).fetchone()
        return _row_to_dict(row)


def list_queries(patient_id: str, limit: int = 20, offset: int = 0, tag: Optional[str] = None,
                 favorite: bool = False) -> Tuple[List[Dict[str, Any]], int]:
    """Return one page of a patient's queries (newest first) and the total count."""
    where = ["patient_id = ?"]
    params: List[Any] = [patient_id]
    if tag:
        where.append("EXISTS (SELECT 1 FROM json_each(clinical_queries.tags) WHERE json_each.value = ?)")
        params.append(tag)
    if favorite:
        where.append("is_favorite = 1")
    clause = " AND ".join(where)

    with get_conn() as conn:
        total = conn.execute(f"SELECT COUNT(*) AS n FROM clinical_queries WHERE {clause}", params).fetchone()["n"]
        rows = conn.execute(
            f"SELECT * FROM clinical_queries WHERE {clause} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        ).fetchall()
    return [_row_to_dict(r) for r in rows], total


def list_answered_queries(patient_id: str, limit: int, exclude_id: Optional[int] = None,
                          exclude_answers: Tuple[str, ...] = ()) -> List[Dict[str, Any]]:
    sql = "SELECT * FROM clinical_queries WHERE patient_id = ? AND answer IS NOT NULL AND answer != ''"
    params: List[Any] = [patient_id]
    if exclude_id is not None:
        sql += " AND id != ?"
        params.append(exclude_id)
    for answer in exclude_answers:
        sql += " AND answer != ?"
        params.append(answer)
    sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
    params.append(limit)
    with get_conn() as conn:
        return [_row_to_dict(r) for r in conn.execute(sql, params).fetchall()]


def update_query(query_id: int, **fields) -> Optional[Dict[str, Any]]:
    """Update the given query columns. JSON fields are encoded here."""
    values = {}
    for key, value in fields.items():
        if key not in QUERY_FIELDS:
            continue
        if key == "references":
            values["references_json"] = _encode(value)
        elif key in ("response_json", "tags", "feedback_tags"):
            values[key] = _encode(value)
        elif key in ("is_favorite", "has_feedback"):
            values[key] = int(bool(value))
        else:
            values[key] = value
    if get_query(query_id) is None:
        return None
    if values:
        assignments = ", ".join(f"{column} = ?" for column in values)
        with get_conn() as conn:
            conn.execute(
                f"UPDATE clinical_queries SET {assignments}, updated_at = ? WHERE id = ?",
                [*values.values(), _now_iso(), query_id],
            )
    return get_query(query_id)


def delete_query(query_id: int) -> bool:
    with get_conn() as conn:
        cur = conn.execute("DELETE FROM clinical_queries WHERE id = ?", (query_id,))
        return cur.rowcount > 0


def toggle_favorite(query_id: int) -> Optional[Dict[str, Any]]:
    query = get_query(query_id)
    if query is None:
        return None
    return update_query(query_id, is_favorite=not query["is_favorite"])


def record_feedback(query_id: int, rating: int, comment: Optional[str], tags: List[str]) -> Optional[Dict[str, Any]]:
    return update_query(
        query_id,
        feedback_rating=rating,
        feedback_comment=comment,
        feedback_tags=tags,
        has_feedback=True,
    )
