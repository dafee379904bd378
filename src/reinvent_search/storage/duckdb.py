"""
DuckDB storage backend for the video/segment record store.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

import duckdb

from ..search.filters import (
    ChannelConstraint,
    ChoiceConstraint,
    Constraint,
    DateRangeConstraint,
    DurationConstraint,
    TaxonomyConstraint,
    taxonomy_any,
)
from .base import (
    UNKNOWN,
    FilterValues,
    RetrievalError,
    SegmentRecord,
    TaxonomyStatistics,
    VideoRecord,
)

logger = logging.getLogger(__name__)

_SEGMENT_COLUMNS = "s.id, s.video_id, s.start_time, s.end_time, s.text, s.confidence, s.speaker"
_VIDEO_COLUMNS = """
    id, title, description, channel_id, channel_title, published_at, duration,
    thumbnail_url, youtube_url, level, services, topics, industry, session_type,
    speakers, metadata_source, metadata_confidence, extracted_keywords
"""
_SEGMENT_ORDER = "s.confidence DESC NULLS LAST, s.start_time ASC, s.id ASC"


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class DuckDBStorage:
    """DuckDB-backed persistence for videos, transcript segments and their embeddings."""

    def __init__(
        self,
        db_path: str,
        *,
        read_only: bool = False,
        initialize: bool = True,
        full_text: bool = True,
    ) -> None:
        self.db_path = str(Path(db_path).expanduser().resolve())
        self.read_only = read_only
        self.full_text = full_text
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = duckdb.connect(self.db_path, read_only=read_only)
        self._fts_loaded: bool | None = None
        self._register_functions()
        if initialize and not read_only:
            self.initialize()

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        self._conn.close()

    def clone(self) -> DuckDBStorage:
        """Open a separate connection to the same database for use in another thread."""
        try:
            return DuckDBStorage(
                self.db_path,
                read_only=self.read_only,
                initialize=False,
                full_text=self.full_text,
            )
        except duckdb.Error as exc:
            raise RetrievalError("connect", exc) from exc

    def _register_functions(self) -> None:
        # Fuzzy taxonomy matching is shared with the in-memory filter engine.
        tags = self._conn.list_type(self._conn.type("VARCHAR"))
        try:
            self._conn.create_function(
                "taxonomy_any",
                taxonomy_any,
                [tags, tags],
                self._conn.type("BOOLEAN"),
            )
        except duckdb.Error as exc:
            # Connections to the same file share one catalog.
            logger.debug("taxonomy_any already registered: %s", exc)

    def initialize(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS videos (
                id VARCHAR PRIMARY KEY,
                title VARCHAR NOT NULL,
                description VARCHAR NOT NULL DEFAULT '',
                channel_id VARCHAR NOT NULL,
                channel_title VARCHAR NOT NULL,
                published_at TIMESTAMP NOT NULL,
                duration INTEGER NOT NULL,
                thumbnail_url VARCHAR NOT NULL DEFAULT '',
                youtube_url VARCHAR NOT NULL DEFAULT '',
                level VARCHAR NOT NULL DEFAULT 'Unknown',
                services VARCHAR[] NOT NULL,
                topics VARCHAR[] NOT NULL,
                industry VARCHAR[] NOT NULL,
                session_type VARCHAR NOT NULL DEFAULT 'Unknown',
                speakers VARCHAR[] NOT NULL,
                metadata_source VARCHAR NOT NULL DEFAULT 'video-metadata',
                metadata_confidence DOUBLE NOT NULL DEFAULT 0.0,
                extracted_keywords VARCHAR[] NOT NULL
            );
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS segments (
                id VARCHAR PRIMARY KEY,
                video_id VARCHAR NOT NULL,
                start_time DOUBLE NOT NULL,
                end_time DOUBLE NOT NULL,
                text VARCHAR NOT NULL,
                embedding DOUBLE[],
                confidence DOUBLE,
                speaker VARCHAR
            );
            """
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_segments_video_id ON segments (video_id)"
        )

    # ------------------------------------------------------------------
    # Write side (ingestion collaborator)
    # ------------------------------------------------------------------

    def upsert_video(self, video: VideoRecord) -> None:
        self._conn.execute(
            """
            INSERT INTO videos (
                id, title, description, channel_id, channel_title, published_at, duration,
                thumbnail_url, youtube_url, level, services, topics, industry, session_type,
                speakers, metadata_source, metadata_confidence, extracted_keywords
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                description = excluded.description,
                channel_id = excluded.channel_id,
                channel_title = excluded.channel_title,
                published_at = excluded.published_at,
                duration = excluded.duration,
                thumbnail_url = excluded.thumbnail_url,
                youtube_url = excluded.youtube_url,
                level = excluded.level,
                services = excluded.services,
                topics = excluded.topics,
                industry = excluded.industry,
                session_type = excluded.session_type,
                speakers = excluded.speakers,
                metadata_source = excluded.metadata_source,
                metadata_confidence = excluded.metadata_confidence,
                extracted_keywords = excluded.extracted_keywords
            """,
            [
                video.id,
                video.title,
                video.description,
                video.channel_id,
                video.channel_title,
                _to_naive_utc(video.published_at),
                video.duration,
                video.thumbnail_url,
                video.youtube_url,
                video.level,
                list(video.services),
                list(video.topics),
                list(video.industry),
                video.session_type,
                list(video.speakers),
                video.metadata_source,
                video.metadata_confidence,
                list(video.extracted_keywords),
            ],
        )

    def upsert_segments(self, video_id: str, segments: list[SegmentRecord]) -> None:
        """
        Replace the segments of one video.

        The BM25 index does not follow writes, so it is dropped here and keyword
        search uses substring matching until `refresh_text_index` runs again.
        """
        self._drop_text_index()
        self._conn.execute("DELETE FROM segments WHERE video_id = ?", [video_id])
        if not segments:
            return
        self._conn.executemany(
            """
            INSERT INTO segments (
                id, video_id, start_time, end_time, text, embedding, confidence, speaker
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    segment.id,
                    video_id,
                    segment.start_time,
                    segment.end_time,
                    segment.text,
                    list(segment.embedding) if segment.embedding else None,
                    segment.confidence,
                    segment.speaker,
                )
                for segment in segments
            ],
        )

    def refresh_text_index(self) -> bool:
        """Rebuild the BM25 index over segment text. Return False when FTS is unavailable."""
        if not self.full_text or self.read_only or not self._load_fts(install=True):
            logger.warning("Full-text index unavailable, substring matching only")
            return False
        try:
            self._conn.execute(
                "PRAGMA create_fts_index('segments', 'id', 'text', overwrite=1)"
            )
        except duckdb.Error as exc:
            logger.warning("Full-text index build failed, substring matching only: %s", exc)
            return False
        return True

    def _drop_text_index(self) -> None:
        # create_fts_index keeps its tables and macros in this schema.
        self._conn.execute("DROP SCHEMA IF EXISTS fts_main_segments CASCADE")

    # ------------------------------------------------------------------
    # Read contract
    # ------------------------------------------------------------------

    def get_segments_with_embeddings(self, limit: int = 1000) -> list[SegmentRecord]:
        sql = f"""
            SELECT {_SEGMENT_COLUMNS}, s.embedding
            FROM segments s
            WHERE s.embedding IS NOT NULL AND len(s.embedding) > 0
            ORDER BY s.id ASC
            LIMIT ?
        """
        rows = self._fetch("semantic candidate scan", sql, [max(limit, 0)])
        return [self._row_to_segment(row, embedding=row[7]) for row in rows]

    def get_segments_matching_text(self, query: str, limit: int = 1000) -> list[SegmentRecord]:
        text = query.strip()
        if not text:
            return []

        if self.full_text and self._load_fts():
            sql = f"""
                SELECT {_SEGMENT_COLUMNS}
                FROM (
                    SELECT *, fts_main_segments.match_bm25(id, ?) AS bm25
                    FROM segments
                ) s
                WHERE s.bm25 IS NOT NULL
                ORDER BY {_SEGMENT_ORDER}
                LIMIT ?
            """
            try:
                rows = self._conn.execute(sql, [text, max(limit, 0)]).fetchall()
                return [self._row_to_segment(row) for row in rows]
            except duckdb.Error as exc:
                logger.info("Full-text search unavailable, using substring match: %s", exc)

        sql = f"""
            SELECT {_SEGMENT_COLUMNS}
            FROM segments s
            WHERE s.text ILIKE '%' || ? || '%' ESCAPE '\\'
            ORDER BY {_SEGMENT_ORDER}
            LIMIT ?
        """
        rows = self._fetch("keyword search", sql, [_escape_like(text), max(limit, 0)])
        return [self._row_to_segment(row) for row in rows]

    def get_video_by_id(self, video_id: str) -> VideoRecord | None:
        rows = self._fetch(
            "video lookup",
            f"SELECT {_VIDEO_COLUMNS} FROM videos WHERE id = ? LIMIT 1",
            [video_id],
        )
        if not rows:
            return None
        return self._row_to_video(rows[0])

    def get_segments_by_filter(
        self,
        constraints: Sequence[Constraint],
        *,
        limit: int | None = None,
    ) -> list[SegmentRecord]:
        sql = f"""
            SELECT {_SEGMENT_COLUMNS}
            FROM segments s
            JOIN videos v ON v.id = s.video_id
            WHERE TRUE
        """
        params: list[Any] = []
        for constraint in constraints:
            clause, clause_params = self._constraint_clause(constraint)
            sql += f"\n  AND {clause}"
            params.extend(clause_params)

        sql += "\nORDER BY v.published_at DESC, s.confidence DESC NULLS LAST, s.start_time ASC, s.id ASC"
        if limit is not None and limit > 0:
            sql += "\nLIMIT ?"
            params.append(limit)

        rows = self._fetch("browse", sql, params)
        return [self._row_to_segment(row) for row in rows]

    def get_taxonomy_statistics(self) -> TaxonomyStatistics:
        total_rows = self._fetch("statistics", "SELECT COUNT(*) FROM videos", [])
        return TaxonomyStatistics(
            total_videos=int(total_rows[0][0]) if total_rows else 0,
            level_counts=self._scalar_counts("level", exclude_unknown=True),
            service_counts=self._list_counts("services"),
            topic_counts=self._list_counts("topics"),
            industry_counts=self._list_counts("industry"),
            session_type_counts=self._scalar_counts("session_type", exclude_unknown=True),
            channel_counts=self._scalar_counts("channel_title", exclude_unknown=False),
        )

    def get_available_filter_values(self) -> FilterValues:
        return FilterValues(
            levels=self._distinct_scalar("level"),
            services=self._distinct_list("services"),
            topics=self._distinct_list("topics"),
            industries=self._distinct_list("industry"),
            session_types=self._distinct_scalar("session_type"),
            channels=self._distinct_scalar("channel_title"),
            metadata_sources=self._distinct_scalar("metadata_source"),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_fts(self, *, install: bool = False) -> bool:
        # Read paths only load an already installed extension; installing may
        # need network access and is left to index refreshes.
        if self._fts_loaded:
            return True
        if self._fts_loaded is False and not install:
            return False
        try:
            if install:
                self._conn.execute("INSTALL fts")
            self._conn.execute("LOAD fts")
        except duckdb.Error as exc:
            logger.debug("DuckDB fts extension unavailable: %s", exc)
            self._fts_loaded = False
            return False
        self._fts_loaded = True
        return True

    def _fetch(self, operation: str, sql: str, params: list[Any]) -> list[tuple[Any, ...]]:
        try:
            return self._conn.execute(sql, params).fetchall()
        except duckdb.Error as exc:
            raise RetrievalError(operation, exc) from exc

    def _scalar_counts(self, column: str, *, exclude_unknown: bool) -> dict[str, int]:
        sql = f"""
            SELECT {column} AS value, COUNT(*)
            FROM videos
            WHERE {column} IS NOT NULL AND {column} <> ''
        """
        params: list[Any] = []
        if exclude_unknown:
            sql += f" AND {column} <> ?"
            params.append(UNKNOWN)
        sql += " GROUP BY value ORDER BY value"
        rows = self._fetch("statistics", sql, params)
        return {str(row[0]): int(row[1]) for row in rows}

    def _list_counts(self, column: str) -> dict[str, int]:
        sql = f"""
            SELECT value, COUNT(*)
            FROM (SELECT unnest(list_distinct({column})) AS value FROM videos)
            WHERE value IS NOT NULL AND value <> ''
            GROUP BY value
            ORDER BY value
        """
        rows = self._fetch("statistics", sql, [])
        return {str(row[0]): int(row[1]) for row in rows}

    def _distinct_scalar(self, column: str) -> list[str]:
        sql = f"""
            SELECT DISTINCT {column}
            FROM videos
            WHERE {column} IS NOT NULL AND {column} <> '' AND {column} <> ?
            ORDER BY 1
        """
        rows = self._fetch("filter values", sql, [UNKNOWN])
        return [str(row[0]) for row in rows]

    def _distinct_list(self, column: str) -> list[str]:
        sql = f"""
            SELECT DISTINCT value
            FROM (SELECT unnest({column}) AS value FROM videos)
            WHERE value IS NOT NULL AND value <> '' AND value <> ?
            ORDER BY 1
        """
        rows = self._fetch("filter values", sql, [UNKNOWN])
        return [str(row[0]) for row in rows]

    @staticmethod
    def _constraint_clause(constraint: Constraint) -> tuple[str, list[Any]]:
        if isinstance(constraint, DateRangeConstraint):
            clauses: list[str] = []
            params: list[Any] = []
            if constraint.start is not None:
                clauses.append("v.published_at >= ?")
                params.append(_to_naive_utc(constraint.start))
            if constraint.end is not None:
                clauses.append("v.published_at <= ?")
                params.append(_to_naive_utc(constraint.end))
            return " AND ".join(clauses) or "TRUE", params

        if isinstance(constraint, DurationConstraint):
            clauses = []
            params = []
            if constraint.min_seconds is not None:
                clauses.append("v.duration >= ?")
                params.append(float(constraint.min_seconds))
            if constraint.max_seconds is not None:
                clauses.append("v.duration <= ?")
                params.append(float(constraint.max_seconds))
            return " AND ".join(clauses) or "TRUE", params

        if isinstance(constraint, ChannelConstraint):
            clauses = []
            params = []
            for value in constraint.values:
                clauses.append(
                    "(contains(lower(v.channel_id), lower(?)) "
                    "OR contains(lower(v.channel_title), lower(?)))"
                )
                params.extend([value, value])
            return f"({' OR '.join(clauses)})", params

        if isinstance(constraint, ChoiceConstraint):
            column = f"v.{constraint.field}"
            placeholders = ", ".join(["?"] * len(constraint.values))
            clause = f"{column} IN ({placeholders})"
            params = list(constraint.values)
            if constraint.excludes_unknown:
                clause = f"({clause} AND {column} <> ?)"
                params.append(UNKNOWN)
            return clause, params

        if isinstance(constraint, TaxonomyConstraint):
            return f"taxonomy_any(v.{constraint.field}, ?::VARCHAR[])", [list(constraint.values)]

        raise ValueError(f"Unsupported constraint: {constraint!r}")

    @staticmethod
    def _row_to_segment(
        row: tuple[Any, ...], *, embedding: list[float] | None = None
    ) -> SegmentRecord:
        return SegmentRecord(
            id=str(row[0]),
            video_id=str(row[1]),
            start_time=float(row[2]),
            end_time=float(row[3]),
            text=str(row[4]),
            confidence=float(row[5]) if row[5] is not None else None,
            speaker=str(row[6]) if row[6] is not None else None,
            embedding=tuple(embedding or ()),
        )

    @staticmethod
    def _row_to_video(row: tuple[Any, ...]) -> VideoRecord:
        published_at: datetime = row[5]
        return VideoRecord(
            id=str(row[0]),
            title=str(row[1]),
            description=str(row[2] or ""),
            channel_id=str(row[3]),
            channel_title=str(row[4]),
            published_at=published_at.replace(tzinfo=timezone.utc),
            duration=int(row[6]),
            thumbnail_url=str(row[7] or ""),
            youtube_url=str(row[8] or ""),
            level=row[9] or UNKNOWN,
            services=tuple(row[10] or ()),
            topics=tuple(row[11] or ()),
            industry=tuple(row[12] or ()),
            session_type=row[13] or UNKNOWN,
            speakers=tuple(row[14] or ()),
            metadata_source=row[15],
            metadata_confidence=float(row[16] or 0.0),
            extracted_keywords=tuple(row[17] or ()),
        )
