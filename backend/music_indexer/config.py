"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Music drive indexer settings."""

    # Storage
    storage_backend: str = "sql"  # sql | redis | memory
    database_url: str = "sqlite+aiosqlite:///./data/music_index.db"
    redis_url: str = "redis://localhost:6379/0"

    # Microsoft Graph (OneDrive)
    graph_base_url: str = "https://graph.microsoft.com/v1.0"
    http_timeout_seconds: float = 30.0

    # OAuth (Azure AD)
    azure_tenant_id: str = "common"
    azure_client_id: str = ""
    azure_client_secret: str = ""
    oauth_scope: str = "openid profile email offline_access User.Read Files.Read"
    access_token: str = ""
    refresh_token: str = ""

    @property
    def token_url(self) -> str:
        return f"https://login.microsoftonline.com/{self.azure_tenant_id}/oauth2/v2.0/token"

    # Crawl pacing
    folder_throttle_seconds: float = 0.075
    subtree_throttle_seconds: float = 0.15

    # Scan lock / staleness
    scan_lock_ttl_seconds: int = 30 * 60
    stall_threshold_seconds: float = 30.0

    # Progress stream
    progress_poll_seconds: float = 1.0
    progress_keepalive_seconds: float = 25.0

    # Used when a user has never saved settings (empty = drive root)
    default_root_path: str = ""

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "MUSIC_INDEXER_"}
