"""
Configuration management using Pydantic BaseSettings.
All values can be overridden via environment variables or a .env file.
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Store (Supabase / PostgREST) ───────────────────────────────────────
    store_url: str = "http://supabase-kong:8000"
    store_service_key: str = ""
    store_timeout: float = 5.0
    store_candidates_rpc: str = "get_feed_candidates"

    # ── Feed composition ───────────────────────────────────────────────────
    feed_page_size: int = 20
    feed_max_page_size: int = 50
    friend_weight: float = 0.67
    trending_weight: float = 0.23
    competition_weight: float = 0.10
    feed_request_timeout: float = 3.0     # seconds, whole fetch stage
    collector_retry_backoff: float = 0.2  # seconds before the single retry
    cursor_max_age_hours: int = 24
    cursor_carry_limit: int = 100         # emitted posts a bucket may lag behind

    # ── Feed page cache ────────────────────────────────────────────────────
    feed_cache_ttl: int = 300             # 5 minutes
    feed_cache_max_entries: int = 10_000

    # ── Scoring weights (shared by read path and trending job) ─────────────
    like_weight: float = 1.0
    comment_weight: float = 2.0
    comment_weight_cap: float = 3.0
    comment_length_divisor: float = 100.0
    share_weight: float = 3.0
    save_weight: float = 1.5
    trending_decay_hours: float = 72.0    # half-life

    # ── Trending precompute job ────────────────────────────────────────────
    trending_window_hours: int = 24
    trending_batch_size: int = 100
    trending_threshold: float = 10.0

    # ── Kafka ──────────────────────────────────────────────────────────────
    kafka_bootstrap_servers: str = "kafka:9092"
    kafka_topic_engagements: str = "engagement-events"
    kafka_consumer_group: str = "feed-cache-invalidator"
    engagement_listener_enabled: bool = False

    # ── Observability ──────────────────────────────────────────────────────
    otel_exporter_otlp_endpoint: str = "http://jaeger:4317"
    service_name: str = "feed-ranking-service"
    environment: str = "development"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
