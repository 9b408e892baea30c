"""
Shared configuration loader for the cast receiver.

Loads a single JSON config file per device.  Search order:
  1. /etc/castreceiver/config.json   (deployed install)
  2. config.json                      (CWD — handy for local dev)
  3. ../config/default.json           (repo fallback)

The catalog server address and access token are never stored here; they
arrive with every sender command.

Usage:
    from castreceiver.config import cfg

    name         = cfg("receiver", "name", default="Cast Receiver")
    override     = cfg("bitrate", "max")
    ttl_ms       = cfg("bitrate", "ttl_ms", default=600000)
    mpv          = cfg("mpv")  # returns the whole dict
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

_config: dict | None = None

_SEARCH_PATHS = [
    "/etc/castreceiver/config.json",
    "config.json",
    os.path.join(os.path.dirname(__file__), "..", "..", "config", "default.json"),
]

_KNOWN_AUDIO_OUTPUTS = ("pulse", "pipewire", "alsa", "jack", "coreaudio", "null")


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    receiver = config.get("receiver") or {}
    if not receiver.get("name"):
        logger.warning("Config %s: missing receiver.name — senders will see the default", path)
    bitrate = config.get("bitrate") or {}
    for key in ("max", "ttl_ms"):
        val = bitrate.get(key)
        if val is not None and not isinstance(val, (int, float)):
            logger.warning("Config %s: bitrate.%s is not a number (%r)", path, key, val)
    progress = config.get("progress") or {}
    for key in ("tick_interval", "server_interval_ms", "local_interval_ms"):
        val = progress.get(key)
        if isinstance(val, (int, float)) and val <= 0:
            logger.warning("Config %s: progress.%s must be positive", path, key)
    mpv = config.get("mpv") or {}
    ao = mpv.get("ao")
    if ao and ao not in _KNOWN_AUDIO_OUTPUTS:
        logger.warning("Config %s: unknown mpv.ao '%s'", path, ao)


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _SEARCH_PATHS:
        try:
            with open(path) as f:
                _config = json.load(f)
                logger.info("Config loaded from %s", path)
                _validate(_config, path)
                return _config
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue

    logger.warning("No config.json found — using empty config")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("receiver")                  → config["receiver"]
    cfg("receiver", "port")          → config["receiver"]["port"]
    cfg("bitrate", "ttl_ms", default=600000)  → config["bitrate"]["ttl_ms"] or 600000
    """
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        return val.get(key, default)
    return default


def reload_config():
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config()
