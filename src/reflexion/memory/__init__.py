"""Episodic memory: stored task experiences with similarity search."""

from .types import (
    Decision,
    Episode,
    EpisodeContext,
    EpisodeOutcome,
    EpisodeOutcomeData,
    EpisodeReflection,
    EpisodeSearchOptions,
    EpisodeSearchResult,
    EpisodeStats,
    EpisodeTrajectory,
    EpisodeType,
    Pivot,
    PivotTrigger,
    SimilarExperiences,
    TrajectoryStep,
)
from .embeddings import (
    EmbeddingProvider,
    HashingEmbeddingProvider,
    HttpEmbeddingProvider,
    create_embedding_provider,
)
from .store import EpisodeStore, get_episode_store
from .recorder import EpisodeBuilder, EpisodeRecorder

__all__ = [
    "Decision",
    "Episode",
    "EpisodeContext",
    "EpisodeOutcome",
    "EpisodeOutcomeData",
    "EpisodeReflection",
    "EpisodeSearchOptions",
    "EpisodeSearchResult",
    "EpisodeStats",
    "EpisodeTrajectory",
    "EpisodeType",
    "Pivot",
    "PivotTrigger",
    "SimilarExperiences",
    "TrajectoryStep",
    "EmbeddingProvider",
    "HashingEmbeddingProvider",
    "HttpEmbeddingProvider",
    "create_embedding_provider",
    "EpisodeStore",
    "get_episode_store",
    "EpisodeBuilder",
    "EpisodeRecorder",
]
