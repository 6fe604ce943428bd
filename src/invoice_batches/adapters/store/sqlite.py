"""SQLite store for jobs, invoices and price alerts."""

import json
import logging
import re
import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import closing, contextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path

from ...domain.exceptions import InvalidStatusTransition, RecordNotFoundError
from ...domain.models import (
    AlertStatus,
    IngestionSummary,
    Invoice,
    InvoiceItem,
    Job,
    JobError,
    JobStatus,
    Material,
    PriceAlert,
    PriceObservation,
    Provider,
    RequestCounts,
    utcnow,
)
from ...domain.status import resolve_transition
from ...ports.repository import InvoiceRepository, JobRepository

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    total_documents INTEGER NOT NULL DEFAULT 0,
    processed_count INTEGER NOT NULL DEFAULT 0,
    success_count INTEGER NOT NULL DEFAULT 0,
    failure_count INTEGER NOT NULL DEFAULT 0,
    blocked_count INTEGER NOT NULL DEFAULT 0,
    errors TEXT NOT NULL DEFAULT '[]',
    retry_attempts INTEGER NOT NULL DEFAULT 0,
    retried_document_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS job_documents (
    job_id TEXT NOT NULL REFERENCES jobs(id),
    position INTEGER NOT NULL,
    document_key TEXT NOT NULL,
    PRIMARY KEY (job_id, document_key)
);

CREATE TABLE IF NOT EXISTS providers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tax_id TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    email TEXT,
    phone TEXT,
    address TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS materials (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    code TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    description TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS invoices (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    code TEXT NOT NULL,
    provider_id INTEGER NOT NULL REFERENCES providers(id),
    issue_date TEXT NOT NULL,
    total_amount TEXT NOT NULL,
    has_totals_mismatch INTEGER NOT NULL DEFAULT 0,
    document_key TEXT,
    job_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (provider_id, code)
);

CREATE TABLE IF NOT EXISTS invoice_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    invoice_id INTEGER NOT NULL REFERENCES invoices(id) ON DELETE CASCADE,
    material_id INTEGER NOT NULL REFERENCES materials(id),
    quantity TEXT NOT NULL,
    unit_price TEXT NOT NULL,
    total_price TEXT NOT NULL,
    item_date TEXT NOT NULL,
    work_order TEXT
);

CREATE TABLE IF NOT EXISTS material_providers (
    material_id INTEGER NOT NULL REFERENCES materials(id),
    provider_id INTEGER NOT NULL REFERENCES providers(id),
    last_price TEXT NOT NULL,
    last_price_date TEXT NOT NULL,
    invoice_item_id INTEGER,
    PRIMARY KEY (material_id, provider_id)
);

CREATE TABLE IF NOT EXISTS price_alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    material_id INTEGER NOT NULL REFERENCES materials(id),
    provider_id INTEGER NOT NULL REFERENCES providers(id),
    old_price TEXT NOT NULL,
    new_price TEXT NOT NULL,
    percentage TEXT NOT NULL,
    effective_date TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'PENDING',
    created_at TEXT NOT NULL,
    reviewed_at TEXT,
    UNIQUE (material_id, provider_id, effective_date, old_price, new_price)
);

CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);
CREATE INDEX IF NOT EXISTS idx_invoices_job ON invoices(job_id);
CREATE INDEX IF NOT EXISTS idx_items_material ON invoice_items(material_id, item_date);
CREATE INDEX IF NOT EXISTS idx_alerts_status ON price_alerts(status);
"""

_SLUG_NOISE = re.compile(r"[^a-z0-9]+")
MAX_CODE_LENGTH = 50


def slugify(name: str, max_length: int = MAX_CODE_LENGTH) -> str:
    slug = _SLUG_NOISE.sub("-", name.lower()).strip("-")[:max_length].strip("-")
    return slug or "material"


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_job(row: sqlite3.Row) -> Job:
    return Job(
        id=row["id"],
        status=JobStatus(row["status"]),
        total_documents=row["total_documents"],
        processed_count=row["processed_count"],
        success_count=row["success_count"],
        failure_count=row["failure_count"],
        blocked_count=row["blocked_count"],
        errors=[
            JobError.from_dict({**e, "job_id": row["id"]}) for e in json.loads(row["errors"] or "[]")
        ],
        retry_attempts=row["retry_attempts"],
        retried_document_count=row["retried_document_count"],
        created_at=_parse_ts(row["created_at"]),
        started_at=_parse_ts(row["started_at"]),
        completed_at=_parse_ts(row["completed_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


def _row_to_provider(row: sqlite3.Row) -> Provider:
    return Provider(
        id=row["id"],
        tax_id=row["tax_id"],
        name=row["name"],
        email=row["email"],
        phone=row["phone"],
        address=row["address"],
    )


def _row_to_material(row: sqlite3.Row) -> Material:
    return Material(id=row["id"], code=row["code"], name=row["name"], description=row["description"])


def _row_to_invoice(row: sqlite3.Row) -> Invoice:
    return Invoice(
        id=row["id"],
        code=row["code"],
        provider_id=row["provider_id"],
        issue_date=date.fromisoformat(row["issue_date"]),
        total_amount=Decimal(row["total_amount"]),
        has_totals_mismatch=bool(row["has_totals_mismatch"]),
        document_key=row["document_key"],
        job_id=row["job_id"],
    )


def _row_to_item(row: sqlite3.Row) -> InvoiceItem:
    return InvoiceItem(
        id=row["id"],
        invoice_id=row["invoice_id"],
        material_id=row["material_id"],
        quantity=Decimal(row["quantity"]),
        unit_price=Decimal(row["unit_price"]),
        total_price=Decimal(row["total_price"]),
        item_date=date.fromisoformat(row["item_date"]),
        work_order=row["work_order"],
    )


def _row_to_alert(row: sqlite3.Row) -> PriceAlert:
    return PriceAlert(
        id=row["id"],
        material_id=row["material_id"],
        provider_id=row["provider_id"],
        old_price=Decimal(row["old_price"]),
        new_price=Decimal(row["new_price"]),
        percentage=Decimal(row["percentage"]),
        effective_date=date.fromisoformat(row["effective_date"]),
        status=AlertStatus(row["status"]),
        created_at=_parse_ts(row["created_at"]),
    )


class SqliteStore(JobRepository, InvoiceRepository):
    """Both repositories over one SQLite database file.

    Every call opens its own connection unless it runs inside transaction(),
    in which case the calls on that thread share the transaction's connection.
    """

    def __init__(self, path: Path, timeout: float = 30.0) -> None:
        self.path = path
        self.timeout = timeout
        self._local = threading.local()

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_db(self) -> None:
        """Create the schema if it does not exist yet."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self.connect()) as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA)
            conn.commit()
        logger.info(f"Database initialized at {self.path}")

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if getattr(self._local, "conn", None) is not None:
            yield
            return

        with closing(self.connect()) as conn:
            conn.execute("BEGIN IMMEDIATE")
            self._local.conn = conn
            try:
                with conn:
                    yield
            finally:
                self._local.conn = None

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            yield conn
            return

        with closing(self.connect()) as conn:
            with conn:
                yield conn

    # Jobs

    def register_job(
        self,
        job_id: str,
        document_keys: Sequence[str],
        blocked: int = 0,
        created_at: datetime | None = None,
    ) -> Job:
        keys = list(dict.fromkeys(document_keys))
        created = created_at or utcnow()
        with self.transaction(), self._connection() as conn:
            cur = conn.execute(
                """
                INSERT INTO jobs (id, status, total_documents, blocked_count, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO NOTHING
                """,
                (job_id, JobStatus.PENDING.value, len(keys) + blocked, blocked, _ts(created), _ts(created)),
            )
            if cur.rowcount:
                conn.executemany(
                    "INSERT OR IGNORE INTO job_documents (job_id, position, document_key) VALUES (?, ?, ?)",
                    [(job_id, position, key) for position, key in enumerate(keys)],
                )
                logger.info(f"Registered job {job_id} with {len(keys)} documents")
            else:
                logger.info(f"Job {job_id} already registered")
        return self._require_job(job_id)

    def get_job(self, job_id: str) -> Job | None:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return _row_to_job(row) if row else None

    def list_jobs(
        self, statuses: Sequence[JobStatus] | None = None, limit: int | None = None
    ) -> list[Job]:
        query = "SELECT * FROM jobs"
        params: list = []
        if statuses:
            query += f" WHERE status IN ({', '.join('?' for _ in statuses)})"
            params.extend(s.value for s in statuses)
        query += " ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_job(row) for row in rows]

    def document_keys(self, job_id: str) -> list[str]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT document_key FROM job_documents WHERE job_id = ? ORDER BY position",
                (job_id,),
            ).fetchall()
        return [row["document_key"] for row in rows]

    def update_progress(
        self,
        job_id: str,
        status: JobStatus,
        counts: RequestCounts | None,
        at: datetime,
    ) -> Job:
        with self.transaction(), self._connection() as conn:
            job = self._require_job(job_id)
            if job.status.is_terminal:
                return job

            new_status = resolve_transition(job.status, status)
            if new_status is not status:
                logger.debug(f"Job {job_id}: ignoring stale status {status.value}")

            started_at = job.started_at
            if new_status is not JobStatus.PENDING and started_at is None:
                started_at = at
            completed_at = job.completed_at
            if new_status in (JobStatus.FAILED, JobStatus.CANCELLED) and completed_at is None:
                completed_at = at

            total, processed, success, failure = (
                job.total_documents,
                job.processed_count,
                job.success_count,
                job.failure_count,
            )
            if counts is not None:
                if not total and counts.total is not None:
                    total = counts.total
                processed = counts.processed
                success = counts.completed if counts.completed is not None else success
                failure = counts.failed if counts.failed is not None else failure

            conn.execute(
                """
                UPDATE jobs SET status = ?, total_documents = ?, processed_count = ?,
                    success_count = ?, failure_count = ?, started_at = ?, completed_at = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    new_status.value,
                    total,
                    processed,
                    success,
                    failure,
                    _ts(started_at),
                    _ts(completed_at),
                    _ts(at),
                    job_id,
                ),
            )
            if new_status is not job.status:
                logger.info(f"Job {job_id}: {job.status.value} -> {new_status.value}")
            return self._require_job(job_id)

    def claim_completion(self, job_id: str, at: datetime) -> bool:
        with self._connection() as conn:
            cur = conn.execute(
                """
                UPDATE jobs SET status = ?, completed_at = ?,
                    started_at = COALESCE(started_at, ?), updated_at = ?
                WHERE id = ? AND completed_at IS NULL AND status IN (?, ?)
                """,
                (
                    JobStatus.COMPLETED.value,
                    _ts(at),
                    _ts(at),
                    _ts(at),
                    job_id,
                    JobStatus.PENDING.value,
                    JobStatus.PROCESSING.value,
                ),
            )
            return cur.rowcount == 1

    def mark_failed(self, job_id: str, error: JobError, at: datetime) -> None:
        with self.transaction(), self._connection() as conn:
            job = self._require_job(job_id)
            errors = [e.to_dict() for e in job.errors] + [error.to_dict()]
            conn.execute(
                """
                UPDATE jobs SET status = ?, completed_at = COALESCE(completed_at, ?),
                    errors = ?, updated_at = ?
                WHERE id = ?
                """,
                (JobStatus.FAILED.value, _ts(at), json.dumps(errors), _ts(at), job_id),
            )
        logger.warning(f"Job {job_id} marked failed: {error.message}")

    def append_errors(self, job_id: str, errors: Sequence[JobError]) -> None:
        if not errors:
            return
        with self.transaction(), self._connection() as conn:
            job = self._require_job(job_id)
            merged = [e.to_dict() for e in job.errors] + [e.to_dict() for e in errors]
            conn.execute(
                "UPDATE jobs SET errors = ?, updated_at = ? WHERE id = ?",
                (json.dumps(merged), _ts(utcnow()), job_id),
            )

    def record_ingestion(self, job_id: str, summary: IngestionSummary) -> None:
        with self.transaction(), self._connection() as conn:
            self._require_job(job_id)
            conn.execute(
                """
                UPDATE jobs SET processed_count = ?, success_count = ?, failure_count = ?,
                    blocked_count = blocked_count + ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    summary.processed,
                    summary.succeeded,
                    summary.failed + summary.missing,
                    summary.blocked,
                    _ts(utcnow()),
                    job_id,
                ),
            )
            self.append_errors(job_id, summary.errors)

    def add_retry_counts(self, job_id: str, attempts: int, documents: int) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                UPDATE jobs SET retry_attempts = retry_attempts + ?,
                    retried_document_count = retried_document_count + ?
                WHERE id = ?
                """,
                (attempts, documents, job_id),
            )

    def _require_job(self, job_id: str) -> Job:
        job = self.get_job(job_id)
        if job is None:
            raise RecordNotFoundError(f"Unknown job {job_id}")
        return job

    # Providers and materials

    def upsert_provider(
        self,
        tax_id: str,
        name: str,
        email: str | None = None,
        phone: str | None = None,
        address: str | None = None,
    ) -> Provider:
        now = _ts(utcnow())
        with self.transaction(), self._connection() as conn:
            row = conn.execute("SELECT * FROM providers WHERE tax_id = ?", (tax_id,)).fetchone()
            if row is None:
                conn.execute(
                    """
                    INSERT INTO providers (tax_id, name, email, phone, address, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (tax_id, name or tax_id, email, phone, address, now, now),
                )
                logger.info(f"Created provider {tax_id} ({name})")
            else:
                # Keep known contact details when the new extraction lacks them
                conn.execute(
                    """
                    UPDATE providers SET name = COALESCE(NULLIF(?, ''), name),
                        email = COALESCE(?, email), phone = COALESCE(?, phone),
                        address = COALESCE(?, address), updated_at = ?
                    WHERE id = ?
                    """,
                    (name, email, phone, address, now, row["id"]),
                )
            row = conn.execute("SELECT * FROM providers WHERE tax_id = ?", (tax_id,)).fetchone()
        return _row_to_provider(row)

    def resolve_material(
        self, name: str, description: str | None = None, code: str | None = None
    ) -> Material:
        name = name.strip()
        with self.transaction(), self._connection() as conn:
            row = None
            if code:
                row = conn.execute("SELECT * FROM materials WHERE code = ?", (code,)).fetchone()
            if row is None:
                row = conn.execute(
                    "SELECT * FROM materials WHERE lower(name) = lower(?) ORDER BY id LIMIT 1",
                    (name,),
                ).fetchone()
            if row is not None:
                return _row_to_material(row)

            new_code = self._free_code(conn, code[:MAX_CODE_LENGTH] if code else slugify(name))
            cur = conn.execute(
                "INSERT INTO materials (code, name, description, created_at) VALUES (?, ?, ?, ?)",
                (new_code, name, description, _ts(utcnow())),
            )
            logger.info(f"Created material {new_code} ({name})")
            row = conn.execute("SELECT * FROM materials WHERE id = ?", (cur.lastrowid,)).fetchone()
        return _row_to_material(row)

    @staticmethod
    def _free_code(conn: sqlite3.Connection, code: str) -> str:
        candidate, counter = code, 1
        while conn.execute("SELECT 1 FROM materials WHERE code = ?", (candidate,)).fetchone():
            suffix = f"-{counter}"
            candidate = code[: MAX_CODE_LENGTH - len(suffix)] + suffix
            counter += 1
        return candidate

    # Invoices

    def upsert_invoice(
        self,
        provider_id: int,
        code: str,
        issue_date: date,
        total_amount: Decimal,
        has_totals_mismatch: bool,
        document_key: str | None,
        job_id: str | None,
    ) -> tuple[Invoice, bool]:
        now = _ts(utcnow())
        with self.transaction(), self._connection() as conn:
            row = conn.execute(
                "SELECT id FROM invoices WHERE provider_id = ? AND code = ?",
                (provider_id, code),
            ).fetchone()
            if row is None:
                cur = conn.execute(
                    """
                    INSERT INTO invoices (code, provider_id, issue_date, total_amount,
                        has_totals_mismatch, document_key, job_id, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        code,
                        provider_id,
                        issue_date.isoformat(),
                        str(total_amount),
                        int(has_totals_mismatch),
                        document_key,
                        job_id,
                        now,
                        now,
                    ),
                )
                invoice_id, created = cur.lastrowid, True
            else:
                invoice_id, created = row["id"], False
                conn.execute(
                    """
                    UPDATE invoices SET issue_date = ?, total_amount = ?, has_totals_mismatch = ?,
                        document_key = COALESCE(?, document_key), job_id = COALESCE(?, job_id),
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        issue_date.isoformat(),
                        str(total_amount),
                        int(has_totals_mismatch),
                        document_key,
                        job_id,
                        now,
                        invoice_id,
                    ),
                )
            return self._require_invoice(invoice_id), created

    def update_invoice(
        self,
        invoice_id: int,
        issue_date: date,
        total_amount: Decimal,
        has_totals_mismatch: bool,
    ) -> Invoice:
        with self._connection() as conn:
            cur = conn.execute(
                """
                UPDATE invoices SET issue_date = ?, total_amount = ?, has_totals_mismatch = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    issue_date.isoformat(),
                    str(total_amount),
                    int(has_totals_mismatch),
                    _ts(utcnow()),
                    invoice_id,
                ),
            )
            if cur.rowcount == 0:
                raise RecordNotFoundError(f"Unknown invoice {invoice_id}")
            return self._require_invoice(invoice_id)

    def get_invoice(self, invoice_id: int) -> Invoice | None:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM invoices WHERE id = ?", (invoice_id,)).fetchone()
        return _row_to_invoice(row) if row else None

    def list_invoices(self, job_id: str | None = None) -> list[Invoice]:
        query = "SELECT * FROM invoices"
        params: tuple = ()
        if job_id is not None:
            query += " WHERE job_id = ?"
            params = (job_id,)
        with self._connection() as conn:
            rows = conn.execute(query + " ORDER BY issue_date DESC, id DESC", params).fetchall()
        return [_row_to_invoice(row) for row in rows]

    def _require_invoice(self, invoice_id: int) -> Invoice:
        invoice = self.get_invoice(invoice_id)
        if invoice is None:
            raise RecordNotFoundError(f"Unknown invoice {invoice_id}")
        return invoice

    def delete_items(self, invoice_id: int) -> int:
        with self._connection() as conn:
            cur = conn.execute("DELETE FROM invoice_items WHERE invoice_id = ?", (invoice_id,))
            return cur.rowcount

    def add_item(
        self,
        invoice_id: int,
        material_id: int,
        quantity: Decimal,
        unit_price: Decimal,
        total_price: Decimal,
        item_date: date,
        work_order: str | None = None,
    ) -> InvoiceItem:
        with self._connection() as conn:
            cur = conn.execute(
                """
                INSERT INTO invoice_items (invoice_id, material_id, quantity, unit_price,
                    total_price, item_date, work_order)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    invoice_id,
                    material_id,
                    str(quantity),
                    str(unit_price),
                    str(total_price),
                    item_date.isoformat(),
                    work_order,
                ),
            )
            item_id = cur.lastrowid
        return InvoiceItem(
            id=item_id,
            invoice_id=invoice_id,
            material_id=material_id,
            quantity=quantity,
            unit_price=unit_price,
            total_price=total_price,
            item_date=item_date,
            work_order=work_order,
        )

    def list_items(self, invoice_id: int | None = None) -> list[InvoiceItem]:
        query = "SELECT * FROM invoice_items"
        params: tuple = ()
        if invoice_id is not None:
            query += " WHERE invoice_id = ?"
            params = (invoice_id,)
        with self._connection() as conn:
            rows = conn.execute(query + " ORDER BY id", params).fetchall()
        return [_row_to_item(row) for row in rows]

    # Prices and alerts

    def previous_price(
        self, material_id: int, provider_id: int, before: date
    ) -> PriceObservation | None:
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT ii.id, ii.unit_price, ii.item_date
                FROM invoice_items ii JOIN invoices i ON ii.invoice_id = i.id
                WHERE ii.material_id = ? AND i.provider_id = ? AND ii.item_date < ?
                ORDER BY ii.item_date DESC, ii.id DESC
                LIMIT 1
                """,
                (material_id, provider_id, before.isoformat()),
            ).fetchone()
        if row is None:
            return None
        return PriceObservation(
            material_id=material_id,
            provider_id=provider_id,
            unit_price=Decimal(row["unit_price"]),
            effective_date=date.fromisoformat(row["item_date"]),
            invoice_item_id=row["id"],
        )

    def record_latest_price(self, observation: PriceObservation) -> None:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO material_providers (material_id, provider_id, last_price,
                    last_price_date, invoice_item_id)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(material_id, provider_id) DO UPDATE SET
                    last_price = excluded.last_price,
                    last_price_date = excluded.last_price_date,
                    invoice_item_id = excluded.invoice_item_id
                WHERE excluded.last_price_date > material_providers.last_price_date
                """,
                (
                    observation.material_id,
                    observation.provider_id,
                    str(observation.unit_price),
                    observation.effective_date.isoformat(),
                    observation.invoice_item_id,
                ),
            )

    def latest_price(self, material_id: int, provider_id: int) -> PriceObservation | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM material_providers WHERE material_id = ? AND provider_id = ?",
                (material_id, provider_id),
            ).fetchone()
        if row is None:
            return None
        return PriceObservation(
            material_id=material_id,
            provider_id=provider_id,
            unit_price=Decimal(row["last_price"]),
            effective_date=date.fromisoformat(row["last_price_date"]),
            invoice_item_id=row["invoice_item_id"],
        )

    def list_latest_prices(self, provider_id: int | None = None) -> list[PriceObservation]:
        query = "SELECT * FROM material_providers"
        params: tuple = ()
        if provider_id is not None:
            query += " WHERE provider_id = ?"
            params = (provider_id,)
        with self._connection() as conn:
            rows = conn.execute(query + " ORDER BY provider_id, material_id", params).fetchall()
        return [
            PriceObservation(
                material_id=row["material_id"],
                provider_id=row["provider_id"],
                unit_price=Decimal(row["last_price"]),
                effective_date=date.fromisoformat(row["last_price_date"]),
                invoice_item_id=row["invoice_item_id"],
            )
            for row in rows
        ]

    def find_alert(
        self,
        material_id: int,
        provider_id: int,
        effective_date: date,
        old_price: Decimal,
        new_price: Decimal,
    ) -> PriceAlert | None:
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM price_alerts
                WHERE material_id = ? AND provider_id = ? AND effective_date = ?
                    AND old_price = ? AND new_price = ?
                """,
                (material_id, provider_id, effective_date.isoformat(), str(old_price), str(new_price)),
            ).fetchone()
        return _row_to_alert(row) if row else None

    def add_alert(
        self,
        material_id: int,
        provider_id: int,
        old_price: Decimal,
        new_price: Decimal,
        percentage: Decimal,
        effective_date: date,
    ) -> PriceAlert:
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO price_alerts (material_id, provider_id, old_price, new_price,
                    percentage, effective_date, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT DO NOTHING
                """,
                (
                    material_id,
                    provider_id,
                    str(old_price),
                    str(new_price),
                    str(percentage),
                    effective_date.isoformat(),
                    AlertStatus.PENDING.value,
                    _ts(utcnow()),
                ),
            )
        alert = self.find_alert(material_id, provider_id, effective_date, old_price, new_price)
        if alert is None:
            raise RecordNotFoundError("Price alert vanished after insert")
        return alert

    def list_alerts(self, status: AlertStatus | None = None) -> list[PriceAlert]:
        query = "SELECT * FROM price_alerts"
        params: tuple = ()
        if status is not None:
            query += " WHERE status = ?"
            params = (status.value,)
        with self._connection() as conn:
            rows = conn.execute(query + " ORDER BY created_at DESC, id DESC", params).fetchall()
        return [_row_to_alert(row) for row in rows]

    def review_alert(self, alert_id: int, status: AlertStatus) -> PriceAlert:
        if status is AlertStatus.PENDING:
            raise InvalidStatusTransition("An alert cannot be reviewed back to PENDING")
        with self._connection() as conn:
            cur = conn.execute(
                "UPDATE price_alerts SET status = ?, reviewed_at = ? WHERE id = ?",
                (status.value, _ts(utcnow()), alert_id),
            )
            if cur.rowcount == 0:
                raise RecordNotFoundError(f"Unknown alert {alert_id}")
            row = conn.execute("SELECT * FROM price_alerts WHERE id = ?", (alert_id,)).fetchone()
        logger.info(f"Alert {alert_id} reviewed: {status.value}")
        return _row_to_alert(row)
