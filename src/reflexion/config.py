"""Configuration management for the reflexion core."""

from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional
import os
from dotenv import load_dotenv

# Load .env file
load_dotenv()


@dataclass
class ThresholdConfig:
    """Confidence thresholds for proposing and applying improvements."""
    # Minimum confidence a proposed orchestrator change needs to survive filtering
    improvement_confidence: float = 0.6
    # Reflection actions at or above this become heuristic changes
    reflection_action_confidence: float = 0.7
    # Default threshold for writing actions into project instructions
    applicator_confidence: float = 0.6


@dataclass
class ABTestConfig:
    """Defaults for A/B tests started by an improvement cycle."""
    traffic_split: float = 0.3
    min_sample_size: int = 10
    max_duration_days: int = 3


@dataclass
class EmbeddingConfig:
    """Embedding provider configuration."""
    provider: str = "hashing"  # "hashing" or "http"
    model: str = "text-embedding-3-small"
    base_url: str = "https://api.openai.com/v1"
    api_key: Optional[str] = None
    dimension: int = 256

    @classmethod
    def from_env(cls) -> "EmbeddingConfig":
        return cls(
            provider=os.getenv("EMBEDDING_PROVIDER", "hashing"),
            model=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
            base_url=os.getenv("EMBEDDING_BASE_URL", "https://api.openai.com/v1"),
            api_key=os.getenv("EMBEDDING_API_KEY"),
            dimension=int(os.getenv("EMBEDDING_DIMENSION", "256")),
        )


@dataclass
class MemoryConfig:
    """Episodic memory search and compaction defaults."""
    search_limit: int = 5
    min_score: float = 0.4
    compress_after_days: int = 30


@dataclass
class PathConfig:
    """Path configuration."""
    base: Path = field(default_factory=lambda: Path("data"))

    @property
    def episodes(self) -> Path:
        return self.base / "episodes"

    @property
    def versions(self) -> Path:
        return self.base / "versions"

    @property
    def audit(self) -> Path:
        return self.base / "audit"


@dataclass
class Config:
    """Main configuration class."""
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    ab_test: ABTestConfig = field(default_factory=ABTestConfig)
    embeddings: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    paths: PathConfig = field(default_factory=PathConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls(
            thresholds=ThresholdConfig(
                improvement_confidence=float(os.getenv("IMPROVEMENT_CONFIDENCE_THRESHOLD", "0.6")),
                reflection_action_confidence=float(os.getenv("REFLECTION_ACTION_CONFIDENCE", "0.7")),
                applicator_confidence=float(os.getenv("APPLICATOR_CONFIDENCE_THRESHOLD", "0.6")),
            ),
            ab_test=ABTestConfig(
                traffic_split=float(os.getenv("AB_TEST_TRAFFIC_SPLIT", "0.3")),
                min_sample_size=int(os.getenv("AB_TEST_MIN_SAMPLE_SIZE", "10")),
                max_duration_days=int(os.getenv("AB_TEST_MAX_DURATION_DAYS", "3")),
            ),
            embeddings=EmbeddingConfig.from_env(),
            memory=MemoryConfig(
                search_limit=int(os.getenv("EPISODE_SEARCH_LIMIT", "5")),
                min_score=float(os.getenv("EPISODE_MIN_SCORE", "0.4")),
                compress_after_days=int(os.getenv("EPISODE_COMPRESS_AFTER_DAYS", "30")),
            ),
            paths=PathConfig(base=Path(os.getenv("REFLEXION_HOME", "data"))),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


# Global config instance
config = Config.from_env()
