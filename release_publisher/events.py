"""Adapter from a GitHub ``release`` event payload to :class:`ReleaseEvent`.

Only a release that has just been made public is accepted. Drafts and other
release actions (edited, deleted, ...) are rejected.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import EventError
from .models import ReleaseEvent


ACCEPTED_ACTIONS = ("released", "published")


def release_event_from_payload(payload: Dict[str, Any]) -> ReleaseEvent:
    if not isinstance(payload, dict):
        raise EventError("release event payload must be an object")

    action = str(payload.get("action") or "").strip()
    if action and action not in ACCEPTED_ACTIONS:
        raise EventError(f"unsupported release action {action!r}; accepted={list(ACCEPTED_ACTIONS)}")

    release = payload.get("release")
    if not isinstance(release, dict):
        raise EventError("release event payload has no 'release' object")
    if release.get("draft"):
        raise EventError("release is still a draft")

    # The tag is passed through untouched; validation sees it as delivered.
    tag = release.get("tag_name")
    release_id = release.get("id")
    if not isinstance(tag, str) or tag == "":
        raise EventError("release event has no tag_name")
    if release_id is None or str(release_id).strip() == "":
        raise EventError("release event has no release id")

    return ReleaseEvent(tag=tag, release_id=str(release_id))


def load_release_event(path: Optional[str] = None) -> ReleaseEvent:
    """Read the event payload from ``path`` or ``GITHUB_EVENT_PATH``."""
    p = str(path or os.environ.get("GITHUB_EVENT_PATH", "") or "").strip()
    if not p:
        raise EventError("no event payload path given and GITHUB_EVENT_PATH is not set")

    fp = Path(p)
    if not fp.exists():
        raise EventError(f"event payload not found: {fp}")
    try:
        payload = json.loads(fp.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise EventError(f"event payload is not valid JSON: {e}")
    return release_event_from_payload(payload)
