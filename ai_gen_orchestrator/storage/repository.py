"""
Repository pattern for data access.

Schema creation, job history records and the persisted cost policy.
"""

import json
import logging
import sqlite3
import time
from datetime import datetime
from typing import Callable, List, Optional

from ai_gen_orchestrator.core.errors import ErrorKind
from ai_gen_orchestrator.core.jobs import JobStatus
from ai_gen_orchestrator.core.pricing import (
    DEFAULT_COST_POLICY,
    CostPolicy,
    cost_policy_to_dict,
    parse_cost_policy,
)

from .db import DEFAULT_DB_PATH, get_connection
from .models import JobLedgerRecord, from_units, to_units

logger = logging.getLogger(__name__)

COST_POLICY_KEY = "usage_costs"

_JOB_COLUMNS = (
    "id", "user_id", "model_id", "variant_id", "provider", "prompt", "status",
    "cost_units", "charged", "created_at", "updated_at", "negative_prompt",
    "resolution", "duration", "aspect_ratio", "provider_task_id", "result_url",
    "artifact_data_url", "error_kind", "error_message",
    "needs_materialization_retry", "needs_billing_reconciliation", "corrected",
    "poll_attempts",
)


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create all tables if they don't exist.

    ledger_entry is an append-only ledger: no UPDATE or DELETE is ever
    performed on it. users.balance_units is the maintained running sum.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                balance_units INTEGER NOT NULL DEFAULT 0 CHECK (balance_units >= 0),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS ledger_entry (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL REFERENCES users(id),
                amount_units INTEGER NOT NULL,
                kind TEXT NOT NULL,
                description TEXT NOT NULL,
                job_id TEXT,
                timestamp TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_ledger_entry_user
                ON ledger_entry (user_id, timestamp);

            CREATE TABLE IF NOT EXISTS generation_job (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                model_id TEXT NOT NULL,
                variant_id TEXT NOT NULL,
                provider TEXT NOT NULL,
                prompt TEXT NOT NULL,
                status TEXT NOT NULL,
                cost_units INTEGER NOT NULL,
                charged INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                negative_prompt TEXT,
                resolution TEXT,
                duration TEXT,
                aspect_ratio TEXT,
                provider_task_id TEXT,
                result_url TEXT,
                artifact_data_url TEXT,
                error_kind TEXT,
                error_message TEXT,
                needs_materialization_retry INTEGER NOT NULL DEFAULT 0,
                needs_billing_reconciliation INTEGER NOT NULL DEFAULT 0,
                corrected INTEGER NOT NULL DEFAULT 0,
                poll_attempts INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS idx_generation_job_user
                ON generation_job (user_id, created_at);

            CREATE TABLE IF NOT EXISTS system_settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
        """)
        conn.commit()
    finally:
        conn.close()


def _record_to_row(record: JobLedgerRecord) -> tuple:
    return (
        record.id,
        record.user_id,
        record.model_id,
        record.variant_id,
        record.provider,
        record.prompt,
        record.status.value,
        to_units(record.cost),
        int(record.charged),
        record.created_at.isoformat(),
        record.updated_at.isoformat(),
        record.negative_prompt,
        record.resolution,
        record.duration,
        record.aspect_ratio,
        record.provider_task_id,
        record.result_url,
        record.artifact_data_url,
        record.error_kind.value if record.error_kind else None,
        record.error_message,
        int(record.needs_materialization_retry),
        int(record.needs_billing_reconciliation),
        int(record.corrected),
        record.poll_attempts,
    )


def _row_to_record(row: tuple) -> JobLedgerRecord:
    values = dict(zip(_JOB_COLUMNS, row))
    return JobLedgerRecord(
        id=values["id"],
        user_id=values["user_id"],
        model_id=values["model_id"],
        variant_id=values["variant_id"],
        provider=values["provider"],
        prompt=values["prompt"],
        status=JobStatus(values["status"]),
        cost=from_units(values["cost_units"]),
        charged=bool(values["charged"]),
        created_at=datetime.fromisoformat(values["created_at"]),
        updated_at=datetime.fromisoformat(values["updated_at"]),
        negative_prompt=values["negative_prompt"],
        resolution=values["resolution"],
        duration=values["duration"],
        aspect_ratio=values["aspect_ratio"],
        provider_task_id=values["provider_task_id"],
        result_url=values["result_url"],
        artifact_data_url=values["artifact_data_url"],
        error_kind=ErrorKind(values["error_kind"]) if values["error_kind"] else None,
        error_message=values["error_message"],
        needs_materialization_retry=bool(values["needs_materialization_retry"]),
        needs_billing_reconciliation=bool(values["needs_billing_reconciliation"]),
        corrected=bool(values["corrected"]),
        poll_attempts=values["poll_attempts"],
    )


class JobRecordRepository:
    """Repository for generation job history.

    A record is inserted once, when its job is terminal, and may be
    corrected exactly once afterwards.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def insert_job_record(self, record: JobLedgerRecord) -> None:
        """Insert a terminal job record.

        Raises:
            ValueError: If the record is not terminal
            sqlite3.IntegrityError: If a record with the same id exists
        """
        if not record.is_terminal:
            raise ValueError(f"Job {record.id} is not terminal ({record.status.value})")

        placeholders = ", ".join("?" for _ in _JOB_COLUMNS)
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                f"INSERT INTO generation_job ({', '.join(_JOB_COLUMNS)}) VALUES ({placeholders})",
                _record_to_row(record),
            )
            conn.commit()
        finally:
            conn.close()

    def get_job_record(self, job_id: str) -> Optional[JobLedgerRecord]:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"SELECT {', '.join(_JOB_COLUMNS)} FROM generation_job WHERE id = ?",
                (job_id,),
            )
            row = cursor.fetchone()
            return _row_to_record(row) if row else None
        finally:
            conn.close()

    def correct_job_status(
        self,
        job_id: str,
        status: JobStatus,
        error_kind: Optional[ErrorKind] = None,
        error_message: Optional[str] = None
    ) -> JobLedgerRecord:
        """Apply the single allowed terminal-state correction.

        Used when a provider reports a late failure for a job already
        recorded as succeeded, or the reverse after reconciliation.

        Args:
            job_id: Job identifier
            status: New terminal status
            error_kind: Failure category, if the new status is a failure
            error_message: Failure detail

        Returns:
            The corrected record

        Raises:
            ValueError: If the status is not terminal, the job is unknown,
                or the record was already corrected
        """
        if not status.is_terminal:
            raise ValueError(f"Correction status must be terminal, got {status.value}")

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                """
                UPDATE generation_job
                SET status = ?, error_kind = ?, error_message = ?,
                    corrected = 1, updated_at = ?
                WHERE id = ? AND corrected = 0
                """,
                (
                    status.value,
                    error_kind.value if error_kind else None,
                    error_message,
                    datetime.now().isoformat(),
                    job_id,
                ),
            )
            conn.commit()
            updated = cursor.rowcount
        finally:
            conn.close()

        record = self.get_job_record(job_id)
        if record is None:
            raise ValueError(f"Unknown job: {job_id}")
        if updated == 0:
            raise ValueError(f"Job {job_id} has already been corrected")
        return record

    def fetch_job_history(
        self,
        user_id: Optional[str] = None,
        status: Optional[JobStatus] = None,
        flagged_only: bool = False,
        limit: int = 50
    ) -> List[JobLedgerRecord]:
        """Fetch job records, newest first.

        Args:
            user_id: Optional filter for a specific user
            status: Optional filter for a terminal status
            flagged_only: Only jobs needing materialization retry or billing
                reconciliation, plus timed-out jobs
            limit: Maximum number of records to return

        Returns:
            List of job records ordered by creation time (newest first)
        """
        query = f"SELECT {', '.join(_JOB_COLUMNS)} FROM generation_job"
        params: list = []
        conditions = []

        if user_id:
            conditions.append("user_id = ?")
            params.append(user_id)
        if status:
            conditions.append("status = ?")
            params.append(status.value)
        if flagged_only:
            conditions.append(
                "(needs_materialization_retry = 1 OR needs_billing_reconciliation = 1 "
                "OR status = 'timed_out')"
            )

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(query, params)
            return [_row_to_record(row) for row in cursor.fetchall()]
        finally:
            conn.close()


class CostPolicyStore:
    """Persisted cost policy with a time-bounded cache.

    Falls back to the compiled-in default when nothing is stored or the
    store cannot be read. Fallbacks are not cached.
    """

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.db_path = db_path
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cached: Optional[CostPolicy] = None
        self._loaded_at = 0.0

    def invalidate(self) -> None:
        self._cached = None

    def load(self) -> CostPolicy:
        """Return the active cost policy."""
        if self._cached is not None and self._clock() - self._loaded_at < self.ttl_seconds:
            return self._cached

        try:
            conn = get_connection(self.db_path)
            try:
                row = conn.execute(
                    "SELECT value FROM system_settings WHERE key = ?",
                    (COST_POLICY_KEY,),
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            logger.warning("Cost policy store unreachable, using default policy: %s", exc)
            return DEFAULT_COST_POLICY

        if row is None:
            logger.debug("No stored cost policy, using default policy")
            return DEFAULT_COST_POLICY

        try:
            policy = parse_cost_policy(json.loads(row[0]))
        except ValueError as exc:
            logger.error("Stored cost policy is invalid, using default policy: %s", exc)
            return DEFAULT_COST_POLICY

        self._cached = policy
        self._loaded_at = self._clock()
        return policy

    def save(self, policy: CostPolicy) -> None:
        """Persist a policy, replacing the stored one."""
        value = json.dumps(cost_policy_to_dict(policy), sort_keys=True)
        conn = get_connection(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO system_settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (COST_POLICY_KEY, value, datetime.now().isoformat()),
            )
            conn.commit()
        finally:
            conn.close()
        self.invalidate()
        logger.info("Cost policy saved")
