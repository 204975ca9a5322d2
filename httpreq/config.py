from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    HTTP_TIMEOUT_SEC: float = Field(default=30.0, ge=0)
    HTTP_CHUNK_SIZE: int = Field(default=64 * 1024, ge=1)

    model_config = SettingsConfigDict(env_prefix="HTTPREQ_", env_file=".env", extra="ignore")

settings = Settings()
