"""
Configuration management for the Binance connector
"""

from typing import Callable, Optional, Tuple

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings

from networking.models import Bucket
from networking.rate_limiter import BucketLimit
from networking.rest import RetryPolicy
from networking.signing import Credentials
from streaming.backoff import ReconnectBackoff

MAINNET_REST_URL = "https://api.binance.com"
MAINNET_STREAM_URL = "wss://stream.binance.com:9443/stream"
TESTNET_REST_URL = "https://testnet.binance.vision"
TESTNET_STREAM_URL = "wss://stream.testnet.binance.vision/stream"


class RateLimitSettings(BaseModel):
    """Bucket capacities (defaults are the exchange's published spot limits)."""

    requests_capacity: int = Field(default=6000, gt=0)
    requests_window: float = Field(default=60.0, gt=0)
    orders_capacity: int = Field(default=100, gt=0)
    orders_window: float = Field(default=10.0, gt=0)
    raw_requests_capacity: int = Field(default=61000, gt=0)
    raw_requests_window: float = Field(default=300.0, gt=0)

    # Longest local throttle wait before a request is rejected
    max_wait: float = Field(default=30.0, ge=0)
    # Cooldown after a 429 that carries no Retry-After
    default_cooldown: float = Field(default=30.0, ge=0)

    def to_limits(self) -> Tuple[BucketLimit, ...]:
        return (
            BucketLimit(Bucket.REQUESTS, self.requests_capacity, self.requests_window),
            BucketLimit(Bucket.ORDERS, self.orders_capacity, self.orders_window),
            BucketLimit(Bucket.RAW_REQUESTS, self.raw_requests_capacity, self.raw_requests_window),
        )


class RetrySettings(BaseModel):
    max_attempts: int = Field(default=4, ge=1)
    initial_backoff: float = Field(default=0.5, ge=0)
    max_backoff: float = Field(default=8.0, ge=0)
    jitter: float = Field(default=0.5, ge=0)

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_backoff=self.initial_backoff,
            max_backoff=self.max_backoff,
            jitter=self.jitter,
        )


class StreamSettings(BaseModel):
    max_streams_per_connection: int = Field(default=1024, ge=1)
    reconnect_initial_delay: float = Field(default=1.0, ge=0)
    reconnect_max_delay: float = Field(default=60.0, ge=0)
    reconnect_reset_after: float = Field(default=60.0, ge=0)
    reconnect_max_attempts: Optional[int] = Field(default=None, ge=1)
    heartbeat_interval: float = 20.0
    heartbeat_timeout: float = Field(default=10.0, gt=0)
    listen_key_keepalive: float = Field(default=30 * 60, gt=0)

    def backoff_factory(self) -> Callable[[], ReconnectBackoff]:
        def factory() -> ReconnectBackoff:
            return ReconnectBackoff(
                initial_delay=self.reconnect_initial_delay,
                max_delay=max(self.reconnect_max_delay, self.reconnect_initial_delay),
                reset_after=self.reconnect_reset_after,
                max_attempts=self.reconnect_max_attempts,
            )

        return factory


class ClientSettings(BaseSettings):
    """Connector settings loaded from environment variables (prefix ``BINANCE_``)"""

    # Credentials
    api_key: Optional[str] = None
    api_secret: Optional[SecretStr] = None

    # Endpoints
    rest_url: str = MAINNET_REST_URL
    stream_url: str = MAINNET_STREAM_URL

    # Requests
    recv_window: int = 5000
    timeout: float = 10.0

    rate_limits: RateLimitSettings = Field(default_factory=RateLimitSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    streams: StreamSettings = Field(default_factory=StreamSettings)

    log_level: str = "INFO"

    @field_validator("recv_window")
    @classmethod
    def _check_recv_window(cls, value: int) -> int:
        if not 0 < value <= 60000:
            raise ValueError("recv_window must be in (0, 60000] milliseconds")
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret and self.api_secret.get_secret_value())

    def credentials(self) -> Credentials:
        """Build ``Credentials``; placeholders raise ``MissingCredentialsError``."""
        secret = self.api_secret.get_secret_value() if self.api_secret else ""
        return Credentials.from_strings(self.api_key or "", secret)

    @classmethod
    def for_testnet(cls, **overrides) -> "ClientSettings":
        overrides.setdefault("rest_url", TESTNET_REST_URL)
        overrides.setdefault("stream_url", TESTNET_STREAM_URL)
        return cls(**overrides)

    class Config:
        env_prefix = "BINANCE_"
        env_nested_delimiter = "__"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"
