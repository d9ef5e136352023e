from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Needed for audit writes that bypass RLS

    # Permission cache
    permission_cache_ttl_seconds: float = 300.0
    super_admin_cache_ttl_seconds: float = 60.0
    permission_cache_max_entries: int = 10000
    permission_cache_backend: str = "entries"  # entries | bitfield
    cache_sweep_interval_seconds: float = 60.0

    # Tenant context sessions
    session_max_entries: int = 10000
    session_idle_ttl_seconds: float = 3600.0

    # Backing store
    backend_timeout_seconds: float = 5.0

    # Audit
    audit_enabled: bool = True

    # App
    app_name: str = "tenant-authz"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def use_bitfield_cache(self) -> bool:
        return self.permission_cache_backend.strip().lower() == "bitfield"

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix needed
        extra="ignore"
    )


settings = Settings()
