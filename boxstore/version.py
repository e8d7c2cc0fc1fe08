"""
Version for boxstore.

Resolution order:
    1) BOXSTORE_VERSION env var (release tooling override)
    2) installed distribution metadata
    3) DEFAULT_VERSION
"""

from __future__ import annotations

import os
from importlib.metadata import PackageNotFoundError, version as _dist_version

DEFAULT_VERSION = "0.1.0"


def get_version() -> str:
    override = os.environ.get("BOXSTORE_VERSION", "").strip()
    if override:
        return override
    try:
        return _dist_version("boxstore")
    except PackageNotFoundError:
        return DEFAULT_VERSION


__version__ = get_version()

__all__ = ["__version__", "get_version", "DEFAULT_VERSION"]
