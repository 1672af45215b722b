from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Centralized config.

    Key idea:
    - read from env first (so tests/CI can override),
    - otherwise default to local dev values.
    """

    model_config = SettingsConfigDict(env_prefix="CAMPUSMATCH_", extra="ignore")

    # DuckDB file by default (portable, zero-setup)
    db_url: str = "duckdb:///data/campusmatch.duckdb"

    # HTTP layer
    api_prefix: str = ""
    cors_origins: str = "http://localhost:5173,http://localhost:3000"
    rate_limit_per_min: int = 120
    log_level: str = "INFO"

    # Text similarity
    category_bonus: float = 0.20
    color_bonus: float = 0.10
    material_bonus: float = 0.10
    embedding_mix: float = 0.4
    embedding_provider: str = "none"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_base_url: str = "https://api-inference.huggingface.co/models"
    huggingface_api_key: str | None = None
    embedding_timeout_s: float = 5.0
    embedding_cache_size: int = 1024

    # Image similarity collaborator: precomputed / http / none
    image_provider: str = "precomputed"
    image_service_url: str | None = None
    image_timeout_s: float = 3.0

    # Location
    location_near_km: float = 0.1
    location_max_km: float = 5.0
    zone_floor: float = 0.5

    # Time
    time_short_window_h: float = 24.0
    time_long_window_h: float = 720.0
    time_order_grace_h: float = 24.0

    # Matching
    candidate_pool_limit: int = 100
    candidate_same_category_only: bool = False
    scoring_workers: int = 4
    quick_match_limit: int = 10
    batch_limit: int = 100

    # Competing claims
    claim_match_weight: float = 0.6
    claim_proof_weight: float = 0.4
    proof_min_length: int = 20
    proof_good_length: int = 100
    min_proof_specificity: float = 0.3
    suspicion_margin: float = 0.25
    suspicious_history_threshold: int = 2
    resolution_max_retries: int = 3

    # Analytics
    analytics_window_days: int = 30
    threshold_band: float = 5.0
    histogram_bins: int = 10


settings = Settings()
