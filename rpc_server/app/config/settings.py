"""Settings for the RPC server."""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    broker_host: str = Field("localhost", validation_alias="BROKER_HOST")
    broker_port: int = Field(5672, validation_alias="BROKER_PORT")
    broker_user: str = Field("guest", validation_alias="BROKER_USER")
    broker_password: str = Field("guest", validation_alias="BROKER_PASSWORD")
    broker_vhost: str = Field("/", validation_alias="BROKER_VHOST")

    # Exchange is named after the server; the queue is "<server_name>-queue".
    server_name: str = Field(..., validation_alias="SERVER_NAME")
    routing_key: str = Field("", validation_alias="ROUTING_KEY")
    prefetch_count: int = Field(1, validation_alias="PREFETCH_COUNT")

    # Unset or 0 blocks until a message arrives.
    idle_timeout_seconds: int | None = Field(None, validation_alias="IDLE_TIMEOUT_SECONDS")
    graceful_max_execution_timeout_seconds: int | None = Field(
        None,
        validation_alias="GRACEFUL_MAX_EXECUTION_TIMEOUT_SECONDS",
    )
    graceful_max_execution_exit_code: int = Field(0, validation_alias="GRACEFUL_MAX_EXECUTION_EXIT_CODE")
    target_messages: int = Field(0, validation_alias="TARGET_MESSAGES")

    serializer: str = Field("json", validation_alias="SERIALIZER")
    handler: str = Field(..., validation_alias="HANDLER")
    channel_backend: str = Field("rabbitmq", validation_alias="CHANNEL_BACKEND")

    initial_backoff_seconds: float = Field(1.0, validation_alias="INITIAL_BACKOFF_SECONDS")
    max_backoff_seconds: float = Field(30.0, validation_alias="MAX_BACKOFF_SECONDS")
    max_connection_attempts: int = Field(5, validation_alias="MAX_CONNECTION_ATTEMPTS")
    backoff_multiplier: float = Field(2.0, validation_alias="BACKOFF_MULTIPLIER")

    @field_validator("idle_timeout_seconds", "target_messages")
    @classmethod
    def _non_negative(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError("must be non-negative")
        return value
