"""Typed configuration for the REST transport, caches and gateway."""

import random
from dataclasses import dataclass, field

API_BASE_URL = "https://api.interpals.net"
GATEWAY_URL = "wss://api.interpals.net/v1/ws"
DEFAULT_USER_AGENT = "rxinterpals/0.1.0"


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff for gateway reconnect attempts that fail to open.

    The first reconnect after an unexpected close waits
    ``GatewayConfig.reconnect_delay``; only when that attempt (or a later
    one) fails does this policy decide the next delay.

    Attributes:
        max_retries: Maximum number of failed attempts before giving up.
            None means retry forever.
        base_delay: Delay after the first failed attempt, in seconds.
        max_delay: Upper bound for the delay, in seconds.
        backoff_factor: Multiplier for exponential backoff.
        jitter: Randomization factor (0.0-1.0) to prevent thundering herd.
    """

    max_retries: int | None = None  # None = infinite
    base_delay: float = 0.5
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    jitter: float = 0.1

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt number (0-indexed).

        delay = min(base_delay * (backoff_factor ^ attempt), max_delay) +/- jitter
        """
        delay = min(self.base_delay * (self.backoff_factor**attempt), self.max_delay)
        jitter_range = delay * self.jitter
        return max(0.0, delay + random.uniform(-jitter_range, jitter_range))

    def exhausted(self, attempt: int) -> bool:
        return self.max_retries is not None and attempt >= self.max_retries


@dataclass(frozen=True)
class GatewayConfig:
    """Gateway connection settings. Durations are in seconds.

    ``intents`` holds the already-resolved bitmask; use
    :func:`rxinterpals.intents.resolve_intents` to build it.
    """

    url: str = GATEWAY_URL
    connect_timeout: float = 10.0
    heartbeat_interval: float = 25.0
    pong_timeout: float = 8.0
    reconnect_delay: float = 0.0
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    intents: int | None = None


@dataclass(frozen=True)
class ClientConfig:
    """Top-level client settings."""

    base_url: str = API_BASE_URL
    user_agent: str = DEFAULT_USER_AGENT
    request_timeout: float = 30.0
    max_messages: int = 1_000
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
