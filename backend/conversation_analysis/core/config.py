"""Runtime configuration helpers.

Classes:
    Settings: Pydantic settings model capturing environment-driven defaults.

Functions:
    get_settings(): Return a cached Settings instance for dependency injection.
"""

from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Conversation Analysis API"
    database_url: str = "sqlite+aiosqlite:///./data/conversation_analysis.db"
    log_level: str = "INFO"

    openai_api_key: SecretStr | None = None
    openai_chat_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"
    openai_embedding_fallback_model: str | None = None
    synthesis_temperature: float = 0.3
    labeling_temperature: float = 0.3

    embedding_batch_size: int = 100
    embedding_concurrency: int = 1

    umap_n_neighbors: int = 15
    umap_min_dist: float = 0.1
    umap_metric: str = "cosine"
    umap_min_points: int = 10
    cluster_k: int = 5
    random_state: int | None = None

    outlier_z_threshold: float = 3.5
    outlier_min_cluster_size: int = 6
    outlier_max_ratio: float = 0.2

    similarity_threshold: float = 0.88
    min_group_size: int = 2
    label_sample_size: int = 20

    job_max_attempts: int = 3
    job_lock_timeout_seconds: int = 900
    worker_concurrency: int = 2
    worker_poll_interval_seconds: float = 5.0
    start_workers_with_app: bool = False

    auto_analysis_threshold: int | None = 20
    incremental_max_new_ratio: float = 0.5
    incremental_max_new_responses: int | None = None


@lru_cache()
def get_settings() -> Settings:
    return Settings()
