"""
Signed-in identity as the sync engine sees it.

Authentication itself happens elsewhere. This module only reads and
writes the identity.json left behind by a successful sign-in.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel

logger = logging.getLogger("walletsync.identity")

IDENTITY_FILE = "identity.json"


class Identity(BaseModel):
    """Who is signed in. Salt input and gate for every sync call."""

    user_id: str = ""
    user_email: str = ""
    is_authenticated: bool = False


def load_identity(home: Path) -> Identity:
    """Read identity.json, unauthenticated if absent or broken."""
    path = Path(home).expanduser() / IDENTITY_FILE
    if not path.exists():
        return Identity()
    try:
        return Identity.model_validate_json(path.read_text(encoding="utf-8"))
    except (ValueError, OSError) as exc:
        logger.warning("Failed to load identity: %s", exc)
        return Identity()


def save_identity(home: Path, identity: Identity) -> Path:
    path = Path(home).expanduser() / IDENTITY_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(identity.model_dump_json(indent=2), encoding="utf-8")
    return path


def clear_identity(home: Path) -> None:
    path = Path(home).expanduser() / IDENTITY_FILE
    if path.exists():
        path.unlink()
