from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database settings
    DATABASE_URL: str

    # JWT settings
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 30

    # Storage settings
    STORAGE_BACKEND: str = "local"  # local | s3 (future)
    STORAGE_BASE_PATH: str = "app/storage/data"

    # XenBox upload settings
    XENBOX_CHUNK_SIZE_MB: int = 10
    XENBOX_MAX_FILE_SIZE_MB: int = 5120
    XENBOX_DEFAULT_SPACE_ALLOWED_MB: int = 1024
    XENBOX_UPLOAD_SESSION_TTL_MINUTES: int = 60
    XENBOX_CLEANUP_INTERVAL_SECONDS: int = 1800  # 0 disables the background sweep

    # Public share links: <base>/xenbox/<share_token>
    # Falls back to the request's base URL when unset
    XENBOX_SHARE_BASE_URL: str | None = None

    # Rate limiting settings (public share endpoints only)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_MAX_REQUESTS: int = 60
    RATE_LIMIT_WINDOW_SECONDS: int = 60
    RATE_LIMIT_PATH_PREFIXES: list[str] = ["/api/v1/xenbox/share"]
    # Peers allowed to set X-Forwarded-For; empty means the header is ignored
    RATE_LIMIT_TRUSTED_PROXIES: list[str] = []

    # Pydantic Settings的配置設定，用來控制類別如何讀取環境變數
    # "env_file": ".env"：告訴 Pydantic 要從.env檔案讀取環境變數
    # "extra": "ignore"：處理「環境變數裡有，但Settings類別沒定義」的欄位時，直接忽略多餘的環境變數
    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def chunk_size_bytes(self) -> int:
        return self.XENBOX_CHUNK_SIZE_MB * 1024 * 1024

    @property
    def max_chunk_payload_chars(self) -> int:
        # base64 length of one full chunk
        return 4 * -(-self.chunk_size_bytes // 3)

    @property
    def max_file_size_bytes(self) -> int:
        return self.XENBOX_MAX_FILE_SIZE_MB * 1024 * 1024

    @property
    def default_space_allowed_bytes(self) -> int:
        return self.XENBOX_DEFAULT_SPACE_ALLOWED_MB * 1024 * 1024


settings = Settings()
