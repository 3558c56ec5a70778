"""Configuration loading: TOML file + environment variables."""

from __future__ import annotations

import os
from pathlib import Path

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

from contract_feed.models.config import FeedConfig, FeedMode, ReconnectConfig


def load_config(
    config_path: str | Path | None = None,
    env_prefix: str = "CONTRACT_FEED_",
) -> FeedConfig:
    """Load feed configuration from a TOML file and env vars.

    Priority (highest wins):
        1. Environment variables (CONTRACT_FEED_BASE_URL, etc.)
        2. TOML config file
        3. Defaults from FeedConfig
    """
    raw: dict = {}
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            with open(p, "rb") as f:
                raw = tomllib.load(f)

    cfg = FeedConfig()

    # ── Feed section ───────────────────────────────────────
    feed = raw.get("feed", {})
    if mode_str := feed.get("mode"):
        cfg.mode = FeedMode(mode_str)
    if v := feed.get("log_level"):
        cfg.log_level = str(v)

    # ── HTTP section ───────────────────────────────────────
    http = raw.get("http", {})
    if v := http.get("base_url"):
        cfg.base_url = str(v)
    if v := http.get("request_timeout"):
        cfg.request_timeout = float(v)
    if v := http.get("poll_interval"):
        cfg.poll_interval = float(v)
    # Zero means "use the default", as for an unset value.
    if v := http.get("page_size"):
        cfg.page_size = int(v)
    if v := http.get("window_span"):
        cfg.window_span = int(v)
    if v := http.get("max_attempts"):
        cfg.max_attempts = int(v)
    if (v := http.get("retry_backoff")) is not None:
        cfg.retry_backoff = float(v)
    if (v := http.get("flow_control")) is not None:
        cfg.flow_control = bool(v)

    # ── Filter section ─────────────────────────────────────
    filt = raw.get("filter", {})
    if (v := filt.get("from_block")) is not None:
        cfg.from_block = int(v)
    if (v := filt.get("to_block")) is not None:
        cfg.to_block = int(v)
    if v := filt.get("address"):
        cfg.address = str(v)
    if v := filt.get("event_names"):
        cfg.event_names = [str(name) for name in v]

    # ── Stream section ─────────────────────────────────────
    stream = raw.get("stream", {})
    if v := stream.get("url"):
        cfg.stream_url = str(v)
    if v := stream.get("ping_interval"):
        cfg.ping_interval = float(v)
    if v := stream.get("handshake_timeout"):
        cfg.handshake_timeout = float(v)
    if (v := stream.get("buffer_size")) is not None:
        cfg.buffer_size = int(v)

    reconnect_raw = stream.get("reconnect", {})
    cfg.reconnect = ReconnectConfig(
        enabled=reconnect_raw.get("enabled", False),
        max_retries=reconnect_raw.get("max_retries", 5),
        retry_interval=float(reconnect_raw.get("retry_interval", 1.0)),
    )

    # ── Storage section ────────────────────────────────────
    storage = raw.get("storage", {})
    if v := storage.get("db_path"):
        cfg.db_path = str(v)

    # ── Environment variable overrides (highest priority) ──
    if url := os.environ.get(f"{env_prefix}BASE_URL"):
        cfg.base_url = url
    if url := os.environ.get(f"{env_prefix}STREAM_URL"):
        cfg.stream_url = url
    if mode_env := os.environ.get(f"{env_prefix}MODE"):
        cfg.mode = FeedMode(mode_env)
    if address := os.environ.get(f"{env_prefix}ADDRESS"):
        cfg.address = address
    if from_block := os.environ.get(f"{env_prefix}FROM_BLOCK"):
        cfg.from_block = int(from_block)
    if db_path := os.environ.get(f"{env_prefix}DB_PATH"):
        cfg.db_path = db_path

    # Expand ~ in paths
    if cfg.db_path != ":memory:":
        cfg.db_path = str(Path(cfg.db_path).expanduser())

    return cfg
