"""secrets_policy.py

Whether ApnaRoom may write *secrets* back into server_config.json.

In production secrets belong in environment variables or a secret manager,
not in a config file that may be copied or committed. Persistence stays on by
default so a fresh dev checkout keeps its generated JWT key across restarts.

Disable persistence:
  export APNAROOM_PERSIST_SECRETS=0
"""

from __future__ import annotations


import os
from typing import Any, Dict


_FALSE = {"0", "false", "no", "n", "off"}

# server_config.json keys that hold credentials (DSNs embed passwords).
SECRET_SETTING_KEYS = frozenset(
    {"secret_key", "jwt_secret", "database_url", "redis_url", "smtp_password"}
)


def persist_secrets_enabled() -> bool:
    """APNAROOM_PERSIST_SECRETS, default on. Only an explicit false value disables it."""
    raw = (os.getenv("APNAROOM_PERSIST_SECRETS") or "").strip().lower()
    return raw not in _FALSE


def scrub_secrets_for_persist(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of ``settings`` fit for writing to disk under the current policy."""
    if persist_secrets_enabled():
        return dict(settings)
    return {k: v for k, v in settings.items() if k not in SECRET_SETTING_KEYS}
