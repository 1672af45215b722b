"""ASGI entrypoint: `uvicorn api.main:app`."""

from __future__ import annotations

import sys
from pathlib import Path

try:
    from campusmatch.api.main import app
except ModuleNotFoundError:
    # running from a checkout without `pip install -e .`
    repo_root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(repo_root / "src"))
    from campusmatch.api.main import app  # type: ignore

__all__ = ["app"]
