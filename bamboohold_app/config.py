"""
Configuration module for the BambooHold service.

Settings come from environment variables read once at import. The key file
is loaded through a small TTL cache so a rotated file is picked up without
a restart.
"""

import json
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, Tuple

from bamboohold import DisclosurePolicy

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("BAMBOOHOLD_ENV", "dev")  # dev|stage|prod

# Requests per minute, per principal (submit) and per user (oracle)
SUBMIT_RPM = int(os.getenv("SUBMIT_RPM", "60"))
DECRYPT_RPM = int(os.getenv("DECRYPT_RPM", "120"))

DB_PATH = os.getenv("BAMBOOHOLD_DB_PATH", "data/bamboohold.db")
KEYS_PATH = os.getenv("BAMBOOHOLD_KEYS_PATH", "secrets/bamboohold_keys.json")

# Identity of the registry contract and of the chain it is bound to
CONTRACT_ADDRESS = os.getenv("BAMBOOHOLD_CONTRACT_ADDRESS", "0x" + "b4" * 20)
CHAIN_ID = int(os.getenv("BAMBOOHOLD_CHAIN_ID", "31337"))

DISCLOSURE_DAYS = int(os.getenv("BAMBOOHOLD_DISCLOSURE_DAYS", "365"))
MAX_CLOCK_SKEW_SECONDS = int(os.getenv("BAMBOOHOLD_MAX_CLOCK_SKEW_SECONDS", "300"))
REQUEST_FRESHNESS_SECONDS = int(os.getenv("BAMBOOHOLD_REQUEST_FRESHNESS_SECONDS", "300"))

CONFIG_CACHE_TTL = int(os.getenv("CONFIG_CACHE_TTL", "60"))


# ============================================================
# Cached Loaders
# ============================================================

class CachedConfig:
    """JSON files cached for `ttl_seconds` after each load."""

    def __init__(self, ttl_seconds: int = 60):
        self.ttl = ttl_seconds
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def get_json(self, path: str, force_reload: bool = False) -> Dict[str, Any]:
        with self._lock:
            entry = self._entries.get(path)
            if entry and not force_reload and time.time() - entry[0] <= self.ttl:
                return entry[1]
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            self._entries[path] = (time.time(), data)
            return data


_config_cache = CachedConfig(ttl_seconds=CONFIG_CACHE_TTL)


def load_key_material(force_reload: bool = False) -> Dict[str, Any]:
    """Key file of the reference coprocessor (network and input-verifier keys)."""
    return _config_cache.get_json(KEYS_PATH, force_reload=force_reload)


def disclosure_policy() -> DisclosurePolicy:
    """Disclosure policy advertised to clients and enforced by the oracle."""
    return DisclosurePolicy(
        duration_days=DISCLOSURE_DAYS,
        chain_id=CHAIN_ID,
        verifying_contract=CONTRACT_ADDRESS,
    )


# ============================================================
# Validation and Flags
# ============================================================

def validate_config() -> Dict[str, bool]:
    """Which required files are present (reported by /healthz)."""
    return {"keys": Path(KEYS_PATH).exists()}


def is_production() -> bool:
    return ENV == "prod"


def is_debug() -> bool:
    return os.getenv("BAMBOOHOLD_DEBUG", "").lower() in ("1", "true", "yes")
