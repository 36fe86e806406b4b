"""
SQLite media catalog.

The catalog is normally populated by the library scanner; the queue only
stamps records after a successful overwrite so the library reflects the
new file (size, codecs, resolution) and which job produced it.

Records are keyed by absolute file path.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from .errors import CatalogError
from .models import MediaInfo, MediaRecord

logger = logging.getLogger(__name__)


# Database schema version for migrations
SCHEMA_VERSION = 1

_MEDIA_COLUMNS = (
    "file_path",
    "title",
    "current_size",
    "original_size",
    "video_codec",
    "audio_codec",
    "resolution_width",
    "resolution_height",
    "audio_channels",
    "encoding_job_id",
    "last_size_check_at",
)


class MediaCatalog:
    """
    Media library records in a single SQLite file.
    
    Every operation opens its own connection, so one catalog may be used
    from worker threads.
    """
    
    def __init__(self, db_path: Union[str, Path]):
        """
        Initialize catalog.
        
        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = str(db_path)
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
    
    @contextmanager
    def _connect(self):
        """Context manager for database connections."""
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise CatalogError(f"Cannot open catalog {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row  # Access columns by name
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise CatalogError(f"Catalog operation failed: {e}") from e
        finally:
            conn.close()
    
    def _ensure_schema(self):
        """Create schema if it doesn't exist."""
        with self._connect() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
            """)
            cursor.execute("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1")
            row = cursor.fetchone()
            current_version = row[0] if row else 0
            
            if current_version < SCHEMA_VERSION:
                self._migrate_schema(conn, current_version)
    
    def _migrate_schema(self, conn, from_version: int):
        """Apply schema migrations."""
        cursor = conn.cursor()
        
        if from_version < 1:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS media (
                    file_path TEXT PRIMARY KEY,
                    title TEXT,
                    current_size INTEGER,
                    original_size INTEGER,
                    video_codec TEXT,
                    audio_codec TEXT,
                    resolution_width INTEGER,
                    resolution_height INTEGER,
                    audio_channels INTEGER,
                    encoding_job_id TEXT,
                    last_size_check_at TEXT
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_media_encoding_job_id
                ON media (encoding_job_id)
            """)
        
        cursor.execute(
            "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
            (SCHEMA_VERSION, datetime.now().isoformat()),
        )
    
    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> MediaRecord:
        data = {column: row[column] for column in _MEDIA_COLUMNS}
        if data["last_size_check_at"]:
            data["last_size_check_at"] = datetime.fromisoformat(data["last_size_check_at"])
        return MediaRecord(**data)
    
    def upsert_media(
        self,
        file_path: str,
        info: Optional[MediaInfo] = None,
        title: Optional[str] = None,
    ) -> MediaRecord:
        """
        Insert or update a library record (as the scanner would).
        
        On first insert original_size is set to the current size.
        """
        info = info or MediaInfo()
        now = datetime.now().isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO media (
                    file_path, title, current_size, original_size, video_codec,
                    audio_codec, resolution_width, resolution_height,
                    audio_channels, last_size_check_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(file_path) DO UPDATE SET
                    title = COALESCE(excluded.title, media.title),
                    current_size = excluded.current_size,
                    video_codec = excluded.video_codec,
                    audio_codec = excluded.audio_codec,
                    resolution_width = excluded.resolution_width,
                    resolution_height = excluded.resolution_height,
                    audio_channels = excluded.audio_channels,
                    last_size_check_at = excluded.last_size_check_at
                """,
                (
                    file_path,
                    title,
                    info.size_bytes,
                    info.size_bytes,
                    info.video_codec,
                    info.audio_codec,
                    info.resolution_width,
                    info.resolution_height,
                    info.audio_channels,
                    now,
                ),
            )
        record = self.get_media(file_path)
        assert record is not None
        return record
    
    def get_media(self, file_path: str) -> Optional[MediaRecord]:
        """Return the record for a path, or None."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM media WHERE file_path = ?", (file_path,)
            ).fetchone()
            return self._row_to_record(row) if row else None
    
    def record_encoding(self, file_path: str, job_id: str, info: MediaInfo) -> bool:
        """
        Stamp a library record with the result of a completed encode.
        
        Returns:
            True if a record was updated; False if the path is not catalogued
            
        Raises:
            CatalogError: If the database cannot be written
        """
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE media SET
                    current_size = ?,
                    video_codec = COALESCE(?, video_codec),
                    audio_codec = COALESCE(?, audio_codec),
                    resolution_width = COALESCE(?, resolution_width),
                    resolution_height = COALESCE(?, resolution_height),
                    audio_channels = COALESCE(?, audio_channels),
                    encoding_job_id = ?,
                    last_size_check_at = ?
                WHERE file_path = ?
                """,
                (
                    info.size_bytes,
                    info.video_codec,
                    info.audio_codec,
                    info.resolution_width,
                    info.resolution_height,
                    info.audio_channels,
                    job_id,
                    datetime.now().isoformat(),
                    file_path,
                ),
            )
            updated = cursor.rowcount > 0
        
        if updated:
            logger.info(f"[Catalog] Recorded encoding {job_id} for {file_path}")
        else:
            logger.warning(f"[Catalog] No catalog record for {file_path}; encoding {job_id} not recorded")
        return updated
