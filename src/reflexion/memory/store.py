"""Episode storage backend using SQLite with vector similarity search."""

import aiosqlite
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional
import asyncio
import json
import logging

from .embeddings import EmbeddingProvider, cosine_distance, create_embedding_provider
from .types import (
    Episode,
    EpisodeOutcome,
    EpisodeSearchOptions,
    EpisodeSearchResult,
    EpisodeStats,
    EpisodeType,
    SimilarExperiences,
)
from ..config import config
from ..exceptions import EpisodeStoreError

logger = logging.getLogger(__name__)


class EpisodeStore:
    """
    Per-scope episode store with embedding search.

    One SQLite table per scope (a project folder, or "global"). Each row
    carries the episode's embedding plus the columns search filters on;
    the full episode is kept as JSON.

    The table is created on the first write. Opening the database happens
    once, guarded by a single shared initialization task so concurrent
    first callers do not race.
    """

    TABLE_NAME = "episodes"
    OVERFETCH_FACTOR = 3
    RECENCY_WINDOW_DAYS = 30
    COMPRESS_MIN_ACTIONS = 10
    COMPRESS_KEEP = 5

    def __init__(
        self,
        folder_id: Optional[str] = None,
        base_dir: Optional[Path] = None,
        embedder: Optional[EmbeddingProvider] = None,
    ):
        self.folder_id = folder_id
        root = base_dir or config.paths.episodes
        self.db_path = Path(root) / (folder_id or "global") / "episodes.db"
        self.embedder = embedder or create_embedding_provider()
        self._initialized = False
        self._table_exists = False
        self._init_task: Optional[asyncio.Future] = None

    async def initialize(self):
        """Open the database once and detect an existing table."""
        if self._initialized:
            return

        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._open())
        try:
            await self._init_task
        except Exception:
            # Let the next caller retry
            self._init_task = None
            raise

    async def _open(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
                (self.TABLE_NAME,),
            ) as cursor:
                self._table_exists = await cursor.fetchone() is not None
        self._initialized = True

    async def _ensure_table(self, db: aiosqlite.Connection):
        if self._table_exists:
            return

        await db.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.TABLE_NAME} (
                id TEXT PRIMARY KEY,
                task_id TEXT NOT NULL,
                folder_id TEXT,
                type TEXT NOT NULL,
                outcome TEXT NOT NULL,
                task_description TEXT,
                result TEXT,
                learnings TEXT,
                embedding TEXT NOT NULL,
                quality_score REAL NOT NULL,
                user_rating INTEGER,
                duration_ms INTEGER DEFAULT 0,
                error_count INTEGER DEFAULT 0,
                tool_call_count INTEGER DEFAULT 0,
                tags TEXT,
                props_json TEXT NOT NULL,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            )
        """)
        await db.execute(f"CREATE INDEX IF NOT EXISTS idx_task ON {self.TABLE_NAME}(task_id)")
        await db.execute(f"CREATE INDEX IF NOT EXISTS idx_created ON {self.TABLE_NAME}(created_at)")
        self._table_exists = True

    async def _to_record(self, episode: Episode) -> tuple:
        vector = await self.embedder.embed(episode.embedding_text())
        r = episode.reflection
        learnings = "; ".join([
            *(f"✓ {w}" for w in r.what_worked),
            *(f"✗ {f}" for f in r.what_failed),
            *(f"💡 {i}" for i in r.key_insights),
        ])
        return (
            episode.id,
            episode.task_id,
            episode.folder_id,
            episode.type.value,
            episode.outcome.outcome.value,
            episode.context.task_description,
            episode.outcome.result,
            learnings,
            json.dumps(list(vector)),
            episode.quality_score,
            r.user_rating,
            episode.outcome.duration_ms,
            episode.outcome.error_count,
            episode.outcome.tool_call_count,
            json.dumps(list(episode.tags)),
            json.dumps(episode.to_dict()),
            episode.created_at.timestamp(),
            episode.updated_at.timestamp(),
        )

    async def _insert(self, db: aiosqlite.Connection, record: tuple):
        await db.execute(
            f"""
            INSERT OR REPLACE INTO {self.TABLE_NAME}
            (id, task_id, folder_id, type, outcome, task_description, result,
             learnings, embedding, quality_score, user_rating, duration_ms,
             error_count, tool_call_count, tags, props_json, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            record,
        )

    async def store(self, episode: Episode) -> str:
        """Embed and store an episode, creating the table on first write."""
        await self.initialize()

        record = await self._to_record(episode)
        async with aiosqlite.connect(self.db_path) as db:
            await self._ensure_table(db)
            await self._insert(db, record)
            await db.commit()

        logger.debug("Stored episode %s (quality %.0f)", episode.id, episode.quality_score)
        return episode.id

    async def update(self, episode: Episode):
        """
        Replace a stored episode.

        Delete and re-insert run in one transaction, so readers never see
        the episode missing.
        """
        await self.initialize()

        if not self._table_exists:
            raise EpisodeStoreError("Episode table not initialized")

        record = await self._to_record(episode)
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(f"DELETE FROM {self.TABLE_NAME} WHERE id = ?", (episode.id,))
            await self._insert(db, record)
            await db.commit()

    async def delete(self, episode_id: str) -> bool:
        """Delete episode by ID."""
        await self.initialize()

        if not self._table_exists:
            return False

        async with aiosqlite.connect(self.db_path) as db:
            cursor = await db.execute(f"DELETE FROM {self.TABLE_NAME} WHERE id = ?", (episode_id,))
            await db.commit()
            return cursor.rowcount > 0

    async def search(
        self,
        query: str,
        options: Optional[EpisodeSearchOptions] = None,
    ) -> list[EpisodeSearchResult]:
        """
        Search for episodes similar to the query.

        Structured filters run as a SQL predicate. Candidates are ranked by
        cosine distance and the nearest ``3 * limit`` are scored:
        ``max(0, 1 - distance)`` plus a recency boost (if preferred) and a
        quality boost, capped at 1. Rows below ``min_score`` are dropped.
        """
        await self.initialize()

        if not self._table_exists:
            return []

        options = options or EpisodeSearchOptions(
            limit=config.memory.search_limit,
            min_score=config.memory.min_score,
        )
        query_vector = await self.embedder.embed(query)

        sql = f"SELECT id, embedding, outcome, quality_score, created_at, props_json FROM {self.TABLE_NAME} WHERE 1=1"
        params: list = []

        if options.types:
            sql += f" AND type IN ({', '.join('?' for _ in options.types)})"
            params.extend(t.value for t in options.types)

        if options.outcomes:
            sql += f" AND outcome IN ({', '.join('?' for _ in options.outcomes)})"
            params.extend(o.value for o in options.outcomes)

        if options.folder_id:
            sql += " AND folder_id = ?"
            params.append(options.folder_id)

        if options.min_quality_score is not None:
            sql += " AND quality_score >= ?"
            params.append(options.min_quality_score)

        candidates = []
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(sql, params) as cursor:
                async for row in cursor:
                    try:
                        distance = cosine_distance(query_vector, json.loads(row["embedding"]))
                    except (ValueError, TypeError) as e:
                        logger.warning("Skipping episode %s with malformed embedding: %s", row["id"], e)
                        continue
                    candidates.append((distance, dict(row)))

        candidates.sort(key=lambda c: c[0])
        candidates = candidates[:options.limit * self.OVERFETCH_FACTOR]

        now = datetime.now(timezone.utc).timestamp()
        results = []
        for distance, row in candidates:
            score = max(0.0, 1.0 - distance)

            if options.prefer_recent:
                age_days = (now - row["created_at"]) / 86400
                score += max(0.0, 1 - age_days / self.RECENCY_WINDOW_DAYS) * 0.1

            score += row["quality_score"] / 100 * 0.1
            score = min(1.0, score)

            if score >= options.min_score:
                try:
                    episode = Episode.from_dict(json.loads(row["props_json"]))
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning("Failed to parse episode %s: %s", row["id"], e)
                    continue

                results.append(EpisodeSearchResult(
                    episode=episode,
                    score=score,
                    relevance_reason=self._relevance_reason(row["outcome"], row["quality_score"], score),
                ))

            if len(results) >= options.limit:
                break

        return sorted(results, key=lambda r: r.score, reverse=True)

    @staticmethod
    def _relevance_reason(outcome: str, quality_score: float, score: float) -> str:
        if score > 0.8:
            parts = ["Highly similar task"]
        elif score > 0.6:
            parts = ["Similar task"]
        else:
            parts = ["Related task"]

        if outcome == EpisodeOutcome.SUCCESS.value:
            parts.append("successful")
        elif outcome == EpisodeOutcome.FAILURE.value:
            parts.append("failed")

        if quality_score > 70:
            parts.append("high quality learnings")

        return ", ".join(parts)

    async def find_similar_experiences(
        self,
        task_description: str,
        options: Optional[EpisodeSearchOptions] = None,
    ) -> SimilarExperiences:
        """Successful precedents, failure warnings and pooled insights for a new task."""
        options = options or EpisodeSearchOptions()

        successful = await self.search(
            task_description,
            replace(options, outcomes=[EpisodeOutcome.SUCCESS], limit=3),
        )
        failed = await self.search(
            task_description,
            replace(options, outcomes=[EpisodeOutcome.FAILURE], limit=2),
        )

        insights: dict[str, None] = {}
        for result in (*successful, *failed):
            for insight in result.episode.reflection.key_insights:
                insights.setdefault(insight, None)

        return SimilarExperiences(
            successful_approaches=successful,
            warnings_from_failures=failed,
            relevant_insights=list(insights)[:5],
        )

    async def _fetch_episodes(self, sql: str, params: tuple = ()) -> list[Episode]:
        episodes = []
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(sql, params) as cursor:
                async for row in cursor:
                    try:
                        episodes.append(Episode.from_dict(json.loads(row["props_json"])))
                    except (ValueError, KeyError, TypeError) as e:
                        logger.warning("Skipping malformed episode row %s: %s", row["id"], e)
        return episodes

    async def get(self, episode_id: str) -> Optional[Episode]:
        """Get episode by ID."""
        await self.initialize()

        if not self._table_exists:
            return None

        episodes = await self._fetch_episodes(
            f"SELECT id, props_json FROM {self.TABLE_NAME} WHERE id = ?", (episode_id,)
        )
        return episodes[0] if episodes else None

    async def get_by_task_id(self, task_id: str) -> list[Episode]:
        await self.initialize()

        if not self._table_exists:
            return []

        return await self._fetch_episodes(
            f"SELECT id, props_json FROM {self.TABLE_NAME} WHERE task_id = ? ORDER BY created_at",
            (task_id,),
        )

    async def get_recent(self, limit: int = 5, folder_id: Optional[str] = None) -> list[Episode]:
        """Get most recent episodes."""
        await self.initialize()

        if not self._table_exists:
            return []

        sql = f"SELECT id, props_json FROM {self.TABLE_NAME}"
        params: list = []
        if folder_id:
            sql += " WHERE folder_id = ?"
            params.append(folder_id)
        sql += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        return await self._fetch_episodes(sql, tuple(params))

    async def get_stats(self) -> EpisodeStats:
        await self.initialize()

        by_type = {t.value: 0 for t in EpisodeType}
        by_outcome = {o.value: 0 for o in EpisodeOutcome}

        if not self._table_exists:
            return EpisodeStats(0, by_type, by_outcome, 0.0, 0.0)

        total = 0
        total_quality = 0.0
        total_duration = 0.0
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                f"SELECT type, outcome, quality_score, duration_ms FROM {self.TABLE_NAME}"
            ) as cursor:
                async for episode_type, outcome, quality, duration in cursor:
                    by_type[episode_type] = by_type.get(episode_type, 0) + 1
                    by_outcome[outcome] = by_outcome.get(outcome, 0) + 1
                    total_quality += quality
                    total_duration += duration or 0
                    total += 1

        return EpisodeStats(
            total_episodes=total,
            by_type=by_type,
            by_outcome=by_outcome,
            avg_quality_score=total_quality / total if total else 0.0,
            avg_duration_ms=total_duration / total if total else 0.0,
        )

    async def compress_old_episodes(self, older_than_days: Optional[int] = None) -> int:
        """
        Truncate trajectories of old, long episodes.

        Episodes older than the threshold with more than 10 recorded actions
        keep their first 5 actions and first 5 observations. Reflections
        are untouched. Returns the number of episodes compressed.
        """
        await self.initialize()

        if not self._table_exists:
            return 0

        if older_than_days is None:
            older_than_days = config.memory.compress_after_days
        cutoff = (datetime.now(timezone.utc) - timedelta(days=older_than_days)).timestamp()

        compressed = 0
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"SELECT id, props_json FROM {self.TABLE_NAME} WHERE created_at < ?", (cutoff,)
            ) as cursor:
                rows = await cursor.fetchall()

            for row in rows:
                try:
                    episode = Episode.from_dict(json.loads(row["props_json"]))
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning("Failed to compress episode %s: %s", row["id"], e)
                    continue

                trajectory = episode.trajectory
                if len(trajectory.actions) <= self.COMPRESS_MIN_ACTIONS:
                    continue

                truncated = replace(
                    trajectory,
                    actions=trajectory.actions[:self.COMPRESS_KEEP],
                    observations=trajectory.observations[:self.COMPRESS_KEEP],
                )
                props = replace(episode, trajectory=truncated).to_dict()
                await db.execute(
                    f"UPDATE {self.TABLE_NAME} SET props_json = ? WHERE id = ?",
                    (json.dumps(props), row["id"]),
                )
                compressed += 1

            await db.commit()

        if compressed:
            logger.info("Compressed %d episodes older than %d days", compressed, older_than_days)
        return compressed

    async def close(self):
        """Drop cached state; the next call re-opens the database."""
        self._initialized = False
        self._table_exists = False
        self._init_task = None


_stores: dict[str, EpisodeStore] = {}


def get_episode_store(folder_id: Optional[str] = None) -> EpisodeStore:
    """Get the cached store for a folder scope (or the global one)."""
    key = folder_id or "global"
    if key not in _stores:
        _stores[key] = EpisodeStore(folder_id)
    return _stores[key]
