"""SQLite-based implementation of the camera catalog store."""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import tenacity

from CameraVault.CatalogSync.catalog.models import (
    AttributionRecord,
    CameraRecord,
    CameraStatus,
    CatalogStats,
    ImageAttempt,
    ImageAttribution,
    SyncRunRecord,
    UpsertOutcome,
)
from CameraVault.CatalogSync.errors import CatalogUnavailable, StoreWriteFailed

logger = logging.getLogger(__name__)

# dataclass field -> column
_COLUMNS: Dict[str, str] = {
    "id": "id",
    "brand": "brand",
    "model": "model",
    "full_name": "fullName",
    "status": "status",
    "category": "category",
    "release_year": "releaseYear",
    "msrp": "msrp",
    "current_price": "currentPrice",
    "sensor": "sensor",
    "processor": "processor",
    "mount": "mount",
    "manual_url": "manualUrl",
    "description": "description",
    "key_features": "keyFeatures",
    "specs": "specs",
    "image_url": "imageUrl",
    "image_attribution": "imageAttribution",
    "local_image_path": "localImagePath",
    "thumbnail_path": "thumbnailPath",
    "last_updated": "lastUpdated",
}
_JSON_FIELDS = ("key_features", "specs", "image_attribution")
_SELECT_CAMERA = ", ".join(f"c.{col}" for col in _COLUMNS.values())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CatalogStore:
    """Protocol-like base class for camera catalog stores.

    Implementations must make every write a single atomic transaction and
    keep reads free of side effects.
    """

    def upsert(self, record: CameraRecord) -> UpsertOutcome:
        """Merge ``record`` into the store, inserting it when unseen."""
        raise NotImplementedError

    def lookup(self, camera_id: str) -> Optional[CameraRecord]:
        """Return the stored record for ``camera_id`` or ``None``."""
        raise NotImplementedError

    def scan_missing_images(self, limit: int = 50) -> List[CameraRecord]:
        """Return up to ``limit`` records whose ``localImagePath`` is null."""
        raise NotImplementedError

    def aggregate_stats(self) -> CatalogStats:
        """Return catalog counts and image coverage."""
        raise NotImplementedError

    def attach_image(
        self,
        camera_id: str,
        *,
        image_url: Optional[str],
        local_path: str,
        thumbnail_path: Optional[str],
        attribution: ImageAttribution,
    ) -> AttributionRecord:
        """Record provenance and set the camera's image fields atomically."""
        raise NotImplementedError

    def record_image_failure(self, camera_id: str, error: str) -> ImageAttempt:
        """Remember a failed acquisition so it can be retried later."""
        raise NotImplementedError

    def close(self) -> None:
        """Close the store connection."""
        raise NotImplementedError


class SQLiteCatalog(CatalogStore):
    """SQLite-based implementation of the camera catalog.

    A single connection guarded by a re-entrant lock serialises writers inside
    the process. The connection runs in autocommit mode; every write opens an
    explicit ``BEGIN IMMEDIATE`` transaction so a crash never leaves
    ``lastUpdated`` out of step with the fields it stamps.
    """

    def __init__(self, path: str, wal_mode: bool = True, write_attempts: int = 3):
        """Initialize SQLite catalog store.

        Args:
            path: Path to SQLite database file
            wal_mode: If True, enable WAL mode so readers never block the writer
            write_attempts: Attempts per write before raising StoreWriteFailed

        Raises:
            sqlite3.Error: If database initialization fails
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.wal_mode = wal_mode
        self.write_attempts = write_attempts
        self._lock = threading.RLock()

        self.conn = sqlite3.connect(
            str(self.path), check_same_thread=False, timeout=30.0, isolation_level=None
        )
        self.conn.row_factory = sqlite3.Row

        try:
            if wal_mode:
                self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute("PRAGMA foreign_keys=ON")
            self._init_schema()
        except BaseException:
            self.conn.close()
            raise
        logger.info(f"Initialized SQLite catalog at {self.path}")

    def _init_schema(self) -> None:
        """Load and execute schema.sql."""
        schema_path = Path(__file__).parent / "schema.sql"
        if not schema_path.exists():
            raise FileNotFoundError(f"Schema file not found: {schema_path}")

        self.conn.executescript(schema_path.read_text())
        logger.debug("Schema initialized successfully")

    def integrity_check(self) -> str:
        """Run ``PRAGMA quick_check`` and return its verdict."""
        with self._lock:
            row = self.conn.execute("PRAGMA quick_check").fetchone()
            return str(row[0]) if row else "unknown"

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK")
                raise
            else:
                self.conn.execute("COMMIT")

    def _retrying(self) -> tenacity.Retrying:
        return tenacity.Retrying(
            retry=tenacity.retry_if_exception_type(sqlite3.OperationalError),
            stop=tenacity.stop_after_attempt(self.write_attempts),
            wait=tenacity.wait_exponential(multiplier=0.05, max=1.0),
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, record: CameraRecord) -> UpsertOutcome:
        """Merge ``record`` into the catalog in one transaction.

        Only non-null fields of ``record`` are written, so enriched columns
        such as ``localImagePath`` survive payloads that omit them.
        ``lastUpdated`` becomes ``max(previous, now)``.

        Raises:
            StoreWriteFailed: If the transaction fails after bounded retries
        """
        try:
            for attempt in self._retrying():
                with attempt:
                    return self._upsert_once(record)
        except sqlite3.Error as e:
            logger.error(f"Upsert failed for {record.id}: {e}")
            raise StoreWriteFailed(f"Upsert failed for {record.id}: {e}", camera_id=record.id) from e
        raise StoreWriteFailed(f"Upsert for {record.id} did not run", camera_id=record.id)

    def _upsert_once(self, record: CameraRecord) -> UpsertOutcome:
        values = self._encode(record.supplied_fields())
        with self._transaction() as conn:
            now = _utcnow()
            row = conn.execute(
                "SELECT lastUpdated FROM cameras WHERE id = ?", (record.id,)
            ).fetchone()

            if row is None:
                columns = ["id", *values.keys(), "lastUpdated"]
                params = [record.id, *values.values(), now.isoformat()]
                placeholders = ", ".join("?" for _ in columns)
                conn.execute(
                    f"INSERT INTO cameras ({', '.join(columns)}) VALUES ({placeholders})",
                    params,
                )
                outcome = UpsertOutcome.CREATED
            else:
                previous = _parse_ts(row["lastUpdated"])
                stamp = max(previous, now) if previous else now
                assignments = ", ".join(f"{col} = ?" for col in values)
                params = [*values.values(), stamp.isoformat(), record.id]
                conn.execute(
                    f"UPDATE cameras SET {assignments}{', ' if assignments else ''}"
                    f"lastUpdated = ? WHERE id = ?",
                    params,
                )
                outcome = UpsertOutcome.UPDATED

        logger.debug(f"Upserted {record.id}: {outcome.value}")
        return outcome

    def attach_image(
        self,
        camera_id: str,
        *,
        image_url: Optional[str],
        local_path: str,
        thumbnail_path: Optional[str],
        attribution: ImageAttribution,
    ) -> AttributionRecord:
        """Insert an attribution row and point the camera at the cached image.

        Both statements share one transaction, so a camera never references a
        local image without a matching attribution.
        """
        try:
            for attempt in self._retrying():
                with attempt:
                    return self._attach_image_once(
                        camera_id,
                        image_url=image_url,
                        local_path=local_path,
                        thumbnail_path=thumbnail_path,
                        attribution=attribution,
                    )
        except sqlite3.Error as e:
            raise StoreWriteFailed(f"Attach image failed for {camera_id}: {e}", camera_id=camera_id) from e
        raise StoreWriteFailed(f"Attach image for {camera_id} did not run", camera_id=camera_id)

    def _attach_image_once(
        self,
        camera_id: str,
        *,
        image_url: Optional[str],
        local_path: str,
        thumbnail_path: Optional[str],
        attribution: ImageAttribution,
    ) -> AttributionRecord:
        with self._transaction() as conn:
            now = _utcnow()
            row = conn.execute(
                "SELECT lastUpdated FROM cameras WHERE id = ?", (camera_id,)
            ).fetchone()
            if row is None:
                raise StoreWriteFailed(f"Unknown camera: {camera_id}", camera_id=camera_id)
            previous = _parse_ts(row["lastUpdated"])
            stamp = max(previous, now) if previous else now

            cursor = conn.execute(
                """
                INSERT INTO image_attributions
                (cameraId, imageUrl, localPath, source, author, license, attributionText, createdAt)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    camera_id,
                    image_url,
                    local_path,
                    attribution.source,
                    attribution.author,
                    attribution.license,
                    attribution.attribution_text(),
                    now.isoformat(),
                ),
            )
            attribution_id = cursor.lastrowid
            conn.execute(
                """
                UPDATE cameras
                SET localImagePath = ?, thumbnailPath = ?, imageAttribution = ?, lastUpdated = ?
                WHERE id = ?
                """,
                (
                    local_path,
                    thumbnail_path,
                    json.dumps(attribution.as_dict()),
                    stamp.isoformat(),
                    camera_id,
                ),
            )
            conn.execute("DELETE FROM image_attempts WHERE cameraId = ?", (camera_id,))

        return AttributionRecord(
            id=int(attribution_id),
            camera_id=camera_id,
            image_url=image_url,
            local_path=local_path,
            source=attribution.source,
            author=attribution.author,
            license=attribution.license,
            attribution_text=attribution.attribution_text(),
            created_at=now,
        )

    def record_image_failure(self, camera_id: str, error: str) -> ImageAttempt:
        """Increment the failed-attempt counter for ``camera_id``."""
        with self._transaction() as conn:
            now = _utcnow()
            conn.execute(
                """
                INSERT INTO image_attempts (cameraId, attempts, lastAttemptAt, lastError)
                VALUES (?, 1, ?, ?)
                ON CONFLICT(cameraId) DO UPDATE SET
                    attempts = attempts + 1,
                    lastAttemptAt = excluded.lastAttemptAt,
                    lastError = excluded.lastError
                """,
                (camera_id, now.isoformat(), error),
            )
            row = conn.execute(
                "SELECT cameraId, attempts, lastAttemptAt, lastError FROM image_attempts WHERE cameraId = ?",
                (camera_id,),
            ).fetchone()
        return self._row_to_attempt(row)

    def record_sync_run(self, run: SyncRunRecord) -> None:
        """Persist the outcome of one discovery cycle."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO sync_runs
                (runId, startedAt, finishedAt, status, counts, failedSources)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    run.run_id,
                    run.started_at.isoformat(),
                    run.finished_at.isoformat() if run.finished_at else None,
                    run.status,
                    json.dumps(run.counts),
                    json.dumps(run.failed_sources),
                ),
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def lookup(self, camera_id: str) -> Optional[CameraRecord]:
        """Return the stored record for ``camera_id`` or ``None``."""
        with self._lock:
            row = self.conn.execute(
                f"SELECT {_SELECT_CAMERA} FROM cameras c WHERE c.id = ?", (camera_id,)
            ).fetchone()
            return self._row_to_record(row) if row else None

    def scan_missing_images(self, limit: int = 50) -> List[CameraRecord]:
        """Rows without a cached image, least-attempted first."""
        with self._lock:
            cursor = self.conn.execute(
                f"""
                SELECT {_SELECT_CAMERA}
                FROM cameras c
                LEFT JOIN image_attempts a ON a.cameraId = c.id
                WHERE c.localImagePath IS NULL
                ORDER BY COALESCE(a.attempts, 0), c.brand, c.model, c.id
                LIMIT ?
                """,
                (limit,),
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]

    def aggregate_stats(self) -> CatalogStats:
        """Return catalog counts and image coverage."""
        with self._lock:
            row = self.conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COUNT(CASE WHEN status = 'verified' THEN 1 END) AS verified,
                    COUNT(CASE WHEN status = 'rumor' THEN 1 END) AS rumors,
                    COUNT(CASE WHEN localImagePath IS NOT NULL THEN 1 END) AS withImages
                FROM cameras
                """
            ).fetchone()
            return CatalogStats(
                total=row["total"],
                verified=row["verified"],
                rumors=row["rumors"],
                with_images=row["withImages"],
            )

    def count(self) -> int:
        with self._lock:
            return self.conn.execute("SELECT COUNT(*) FROM cameras").fetchone()[0]

    def all_records(self) -> List[CameraRecord]:
        with self._lock:
            cursor = self.conn.execute(
                f"SELECT {_SELECT_CAMERA} FROM cameras c ORDER BY c.brand, c.model, c.id"
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]

    def attributions_for(self, camera_id: str) -> List[AttributionRecord]:
        with self._lock:
            cursor = self.conn.execute(
                """
                SELECT id, cameraId, imageUrl, localPath, source, author, license,
                       attributionText, createdAt
                FROM image_attributions
                WHERE cameraId = ?
                ORDER BY id DESC
                """,
                (camera_id,),
            )
            return [self._row_to_attribution(row) for row in cursor.fetchall()]

    def all_attributions(self) -> List[AttributionRecord]:
        with self._lock:
            cursor = self.conn.execute(
                """
                SELECT id, cameraId, imageUrl, localPath, source, author, license,
                       attributionText, createdAt
                FROM image_attributions
                ORDER BY source, cameraId, id
                """
            )
            return [self._row_to_attribution(row) for row in cursor.fetchall()]

    def image_attempts(self, camera_id: str) -> Optional[ImageAttempt]:
        with self._lock:
            row = self.conn.execute(
                "SELECT cameraId, attempts, lastAttemptAt, lastError FROM image_attempts WHERE cameraId = ?",
                (camera_id,),
            ).fetchone()
            return self._row_to_attempt(row) if row else None

    def recent_runs(self, limit: int = 10) -> List[SyncRunRecord]:
        with self._lock:
            cursor = self.conn.execute(
                """
                SELECT runId, startedAt, finishedAt, status, counts, failedSources
                FROM sync_runs
                ORDER BY startedAt DESC
                LIMIT ?
                """,
                (limit,),
            )
            return [
                SyncRunRecord(
                    run_id=row["runId"],
                    started_at=_parse_ts(row["startedAt"]),
                    finished_at=_parse_ts(row["finishedAt"]),
                    status=row["status"],
                    counts=json.loads(row["counts"] or "{}"),
                    failed_sources=json.loads(row["failedSources"] or "[]"),
                )
                for row in cursor.fetchall()
            ]

    def snapshot_to(self, destination: Path) -> None:
        """Write a consistent copy of the database using the online backup API.

        The store lock is held for the duration, so the copy never observes a
        half-applied transaction from this process.
        """
        destination = Path(destination)
        destination.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            target = sqlite3.connect(str(destination))
            try:
                self.conn.backup(target)
            finally:
                target.close()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                logger.debug("Database connection closed")

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _encode(supplied: Dict[str, Any]) -> Dict[str, Any]:
        encoded: Dict[str, Any] = {}
        for name, value in supplied.items():
            if name in _JSON_FIELDS:
                if isinstance(value, ImageAttribution):
                    value = value.as_dict()
                value = json.dumps(value, default=str)
            elif isinstance(value, CameraStatus):
                value = value.value
            encoded[_COLUMNS[name]] = value
        return encoded

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> CameraRecord:
        """Convert a database row to a CameraRecord."""
        key_features = json.loads(row["keyFeatures"]) if row["keyFeatures"] else None
        specs = json.loads(row["specs"]) if row["specs"] else None
        attribution = (
            ImageAttribution.from_mapping(json.loads(row["imageAttribution"]))
            if row["imageAttribution"]
            else None
        )
        return CameraRecord(
            id=row["id"],
            brand=row["brand"],
            model=row["model"],
            full_name=row["fullName"],
            status=CameraStatus(row["status"]),
            category=row["category"],
            release_year=row["releaseYear"],
            msrp=row["msrp"],
            current_price=row["currentPrice"],
            sensor=row["sensor"],
            processor=row["processor"],
            mount=row["mount"],
            manual_url=row["manualUrl"],
            description=row["description"],
            key_features=key_features,
            specs=specs,
            image_url=row["imageUrl"],
            image_attribution=attribution,
            local_image_path=row["localImagePath"],
            thumbnail_path=row["thumbnailPath"],
            last_updated=_parse_ts(row["lastUpdated"]),
        )

    @staticmethod
    def _row_to_attribution(row: sqlite3.Row) -> AttributionRecord:
        return AttributionRecord(
            id=row["id"],
            camera_id=row["cameraId"],
            image_url=row["imageUrl"],
            local_path=row["localPath"],
            source=row["source"],
            author=row["author"],
            license=row["license"],
            attribution_text=row["attributionText"],
            created_at=_parse_ts(row["createdAt"]),
        )

    @staticmethod
    def _row_to_attempt(row: sqlite3.Row) -> ImageAttempt:
        return ImageAttempt(
            camera_id=row["cameraId"],
            attempts=row["attempts"],
            last_attempt_at=_parse_ts(row["lastAttemptAt"]),
            last_error=row["lastError"],
        )

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


def open_catalog(path: str, wal_mode: bool = True, write_attempts: int = 3) -> SQLiteCatalog:
    """Open the catalog and verify it is usable.

    Raises:
        CatalogUnavailable: If the file cannot be opened or fails its integrity check
    """
    try:
        catalog = SQLiteCatalog(path, wal_mode=wal_mode, write_attempts=write_attempts)
    except (sqlite3.Error, OSError) as e:
        raise CatalogUnavailable(f"Cannot open catalog at {path}: {e}", path=str(path)) from e

    try:
        verdict = catalog.integrity_check()
    except sqlite3.Error as e:
        catalog.close()
        raise CatalogUnavailable(f"Integrity check failed for {path}: {e}", path=str(path)) from e

    if verdict != "ok":
        catalog.close()
        raise CatalogUnavailable(f"Catalog at {path} is corrupted: {verdict}", path=str(path))
    return catalog
