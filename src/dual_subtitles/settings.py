from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Dual Subtitles addon settings.

    Every field can be overridden through an environment variable with the
    ``DUAL_SUBS_`` prefix or a ``.env`` file (e.g. DUAL_SUBS_MERGE_THRESHOLD_MS=750).

    Result modes:
        all    = one merged track per viable translation candidate
        single = stop after the first viable translation candidate
    """
    addon_version: str = "0.2.0"
    languages: List[str] = ['eng', 'tur', 'spa', 'fra', 'deu', 'ita', 'por']
    default_main_lang: str = "eng"
    default_trans_lang: str = "tur"

    # Alignment / composition
    merge_threshold_ms: int = 500
    secondary_italic: bool = True
    secondary_color: Optional[str] = "yellow"

    # Encoding detection: guesses at or below this confidence fall back to UTF-8
    encoding_min_confidence: float = 0.8

    # Candidate handling
    max_secondary_candidates: int = 4
    result_mode: str = "all"
    main_only_fallback: bool = True

    # Provider access
    opensubtitles_api_url: str = "https://rest.opensubtitles.org"
    user_agent: str = "TemporaryUserAgent"
    search_timeout: float = 10.0
    download_timeout: float = 15.0
    max_requests_per_minute: int = 40

    # Output
    merged_cache_ttl: int = 6 * 3600
    merged_cache_max_size: int = 500
    public_base_url: Optional[str] = None

    log_level: str = "INFO"
    json_logs: bool = False

    class Config:
        env_prefix = "DUAL_SUBS_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

settings = Settings()
