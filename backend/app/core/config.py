from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

GIB = 1024 * 1024 * 1024


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    ENV: Literal["dev", "test", "prod"] = "prod"

    DATABASE_URL: str

    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT_SECONDS: int = 30
    DB_POOL_RECYCLE_SECONDS: int = 1800

    ALLOWED_HOSTS: str = "localhost,127.0.0.1"
    SECURITY_HEADERS_ENABLED: bool = True

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # App Store Server Notifications V2
    APPSTORE_BUNDLE_ID: str | None = None
    # strict: signature checked against APPSTORE_PUBLIC_KEY_PEM (mandatory)
    # structural: claims inspected only, refused when ENV=prod
    APPSTORE_VERIFICATION_MODE: Literal["strict", "structural"] = "strict"
    APPSTORE_PUBLIC_KEY_PEM: str | None = None
    APPSTORE_ALLOWED_ALGORITHMS: str = "ES256,RS256"
    APPSTORE_SIGNED_PAYLOAD_HEADER: str = "x-apple-signed-payload"
    APPSTORE_PRODUCT_TIER_MAP: str = (
        "com.example.vault.lite.month=lite,"
        "com.example.vault.standard.month=standard,"
        "com.example.vault.pro.month=pro,"
        "com.example.vault.addon.50gb.month=addon"
    )
    APPSTORE_GRACE_PERIOD_DAYS: int = 30
    DELETION_HORIZON_DAYS: int = 90
    SUBSCRIPTION_CAS_RETRIES: int = 3

    STORAGE_QUOTA_FREE_BYTES: int = 1 * GIB
    STORAGE_QUOTA_LITE_BYTES: int = 5 * GIB
    STORAGE_QUOTA_STANDARD_BYTES: int = 20 * GIB
    STORAGE_QUOTA_PRO_BYTES: int = 100 * GIB
    STORAGE_QUOTA_ADDON_BYTES: int = 50 * GIB

    REPLAY_GUARD_TTL_SECONDS: int = 300
    REPLAY_GUARD_MAX_ENTRIES: int = 1000
    REPLAY_GUARD_REDIS_URL: str | None = None

    WEBHOOK_RATE_LIMIT: str = "30/minute"
    WEBHOOK_IP_ALLOWLIST: str = ""
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    # Proxies in front of the app that append to X-Forwarded-For; 0 = use the socket peer
    TRUSTED_PROXY_HOPS: int = 0

    ADMIN_TOKEN: str | None = None
    ADMIN_IP_ALLOWLIST: str = ""

    HEALTH_WINDOW_HOURS: int = 24
    HEALTH_DEGRADED_THRESHOLD: float = 95.0

    @model_validator(mode="after")
    def _refuse_permissive_verifier_in_prod(self):
        if self.ENV == "prod" and self.APPSTORE_VERIFICATION_MODE != "strict":
            raise ValueError("APPSTORE_VERIFICATION_MODE=structural no esta permitido con ENV=prod")
        return self

    def allowed_algorithms(self) -> list[str]:
        return [a.strip().upper() for a in self.APPSTORE_ALLOWED_ALGORITHMS.split(",") if a.strip()]


def split_csv(raw: str | None) -> list[str]:
    return [p.strip() for p in (raw or "").split(",") if p.strip()]


settings = Settings()
