from __future__ import annotations

from .util.env import ensure_defaults, load_env_file

# Load `.env` once package is imported. Existing variables are preserved.
load_env_file()

ensure_defaults(
    [
        ("ARB_CONFIG_PATH", "configs/config.yaml"),
        ("LOG_LEVEL", "INFO"),
    ]
)
