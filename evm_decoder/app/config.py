"""Config file."""
from functools import lru_cache

from pydantic import Field, PositiveFloat, PositiveInt, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url

_ASYNC_DRIVER = "postgresql+asyncpg"
_PLAIN_DRIVER = "postgresql"


class Settings(BaseSettings):
    """Application settings."""

    # DATABASE
    database_url: str = Field(..., alias="DATABASE_URL")
    listener_dsn: str | None = None

    # BATCH DRAIN
    poll_interval_ms: PositiveInt = Field(5000, alias="POLL_INTERVAL_MS")
    batch_size: PositiveInt = Field(100, alias="BATCH_SIZE")

    # PRIORITY INTAKE
    notify_channel: str = Field("evm_decode_priority", alias="NOTIFY_CHANNEL")
    reconnect_delay_s: PositiveFloat = Field(5.0, alias="RECONNECT_DELAY_S")

    # ENRICHMENT
    signature_lookup_enabled: bool = Field(True, alias="SIGNATURE_LOOKUP_ENABLED")
    signature_lookup_url: str = Field(
        "https://www.4byte.directory/api/v1/signatures/",
        alias="SIGNATURE_LOOKUP_URL",
    )
    signature_lookup_timeout_s: PositiveFloat = Field(2.0, alias="SIGNATURE_LOOKUP_TIMEOUT_S")
    signature_cache_size: PositiveInt = Field(4096, alias="SIGNATURE_CACHE_SIZE")
    evm_rpc_url: str | None = Field(None, alias="EVM_RPC_URL")

    # BACKFILL
    backfill_transfer_limit: PositiveInt = Field(10_000, alias="BACKFILL_TRANSFER_LIMIT")

    @model_validator(mode="after")
    def assemble_db_urls(self) -> "Settings":
        url = make_url(self.database_url)
        if url.drivername == "postgres":
            url = url.set(drivername=_PLAIN_DRIVER)
        if url.get_backend_name() != "postgresql":
            raise ValueError(f"DATABASE_URL must point to PostgreSQL, got {url.drivername!r}")

        # asyncpg's own DSN parser reads sslmode, the SQLAlchemy dialect wants ssl=<mode>
        if not self.listener_dsn:
            self.listener_dsn = url.set(drivername=_PLAIN_DRIVER).render_as_string(hide_password=False)

        query = dict(url.query)
        if "sslmode" in query:
            query["ssl"] = query.pop("sslmode")

        self.database_url = url.set(drivername=_ASYNC_DRIVER, query=query).render_as_string(
            hide_password=False
        )

        return self

    @property
    def poll_interval_s(self) -> float:
        return self.poll_interval_ms / 1000

    def redacted_database_url(self) -> str:
        return make_url(self.database_url).render_as_string(hide_password=True)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings are loaded on first use so that importing the package never needs DATABASE_URL."""
    return Settings()
