"""Configuration management for the memory lifecycle engine."""

from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional
import os
from dotenv import load_dotenv

# Load .env file
load_dotenv()


@dataclass
class ModelConfig:
    """LLM collaborator configuration."""
    # "anthropic" or "openai_compat" (SiliconFlow, Ollama, OpenRouter, ...)
    provider: str = "openai_compat"
    model: str = "Qwen/Qwen3-30B-A3B-Instruct-2507"
    api_base: str = "https://api.siliconflow.cn/v1"
    # Review and memory generation
    temperature: float = 0.3
    # Conflict analysis
    organization_temperature: float = 0.1
    max_tokens: int = 4096


@dataclass
class APIConfig:
    """API keys configuration."""
    anthropic_api_key: Optional[str] = None
    openai_compat_api_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "APIConfig":
        return cls(
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            openai_compat_api_key=os.getenv("OPENAI_COMPAT_API_KEY"),
        )


@dataclass
class MemoryConfig:
    """Thresholds for retrieval, review and consolidation."""
    # Consolidation runs after this many memory creations
    organization_threshold: int = 20
    # ... or when the last run is older than this
    organization_interval_days: int = 7
    review_interval_minutes: int = 30
    retrieval_threshold: float = 0.4
    retrieval_max_count: int = 5
    location_threshold: float = 0.3
    location_max_count: int = 3


@dataclass
class PathConfig:
    """Path configuration."""
    base: Path = field(default_factory=lambda: Path.home() / ".recall")

    @property
    def data(self) -> Path:
        return self.base / "data"

    @property
    def database(self) -> Path:
        return self.data / "memory" / "memories.db"

    @property
    def audit(self) -> Path:
        return self.data / "audit"

    @property
    def history(self) -> Path:
        return self.base / ".recall_history"


@dataclass
class Config:
    """Main configuration class."""
    models: ModelConfig = field(default_factory=ModelConfig)
    api: APIConfig = field(default_factory=APIConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    paths: PathConfig = field(default_factory=PathConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        base = os.getenv("RECALL_HOME")
        return cls(
            models=ModelConfig(
                provider=os.getenv("LLM_PROVIDER", "openai_compat"),
                model=os.getenv("LLM_MODEL", "Qwen/Qwen3-30B-A3B-Instruct-2507"),
                api_base=os.getenv("LLM_API_BASE", "https://api.siliconflow.cn/v1"),
                temperature=float(os.getenv("LLM_TEMPERATURE", "0.3")),
                organization_temperature=float(os.getenv("LLM_ORGANIZATION_TEMPERATURE", "0.1")),
                max_tokens=int(os.getenv("LLM_MAX_TOKENS", "4096")),
            ),
            api=APIConfig.from_env(),
            memory=MemoryConfig(
                organization_threshold=int(os.getenv("MEMORY_ORGANIZATION_THRESHOLD", "20")),
                organization_interval_days=int(os.getenv("MEMORY_ORGANIZATION_INTERVAL_DAYS", "7")),
                review_interval_minutes=int(os.getenv("MEMORY_REVIEW_INTERVAL_MINUTES", "30")),
                retrieval_threshold=float(os.getenv("MEMORY_RETRIEVAL_THRESHOLD", "0.4")),
                retrieval_max_count=int(os.getenv("MEMORY_RETRIEVAL_MAX_COUNT", "5")),
            ),
            paths=PathConfig(base=Path(base)) if base else PathConfig(),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


# Global config instance
config = Config.from_env()
