"""Release tag validation.

Prefix rule (fixed): a leading ``refs/tags/`` is dropped, then exactly one
leading ``v``/``V`` is dropped when a digit follows it. The remainder must match
``VERSION_RE`` exactly; no other normalization (trimming, case folding) is
applied.
"""

from __future__ import annotations

import re
import sys
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from .errors import ConfigError, ValidationError
from .models import VersionSpec


VERSION_RE = re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+(-[0-9A-Za-z.-]+)?$")

TAG_REF_PREFIX = "refs/tags/"
PREFIX_POLICIES = ("optional", "required", "forbidden")

_DIGITS_RE = re.compile(r"^[0-9]+$")
_PRERELEASE_BAD_CHAR_RE = re.compile(r"[^0-9A-Za-z.-]")


def strip_prefix(raw: str) -> Tuple[str, bool]:
    """Apply the fixed prefix rule. Returns (candidate, had_v_prefix)."""
    s = raw
    if s.startswith(TAG_REF_PREFIX):
        s = s[len(TAG_REF_PREFIX):]
    if len(s) >= 2 and s[0] in ("v", "V") and s[1].isdigit():
        return s[1:], True
    return s, False


def _diagnose(candidate: str) -> Tuple[str, str]:
    """Find the token that makes ``candidate`` miss the grammar."""
    core, sep, pre = candidate.partition("-")
    if not core:
        return candidate, "missing major.minor.patch"

    segs = core.split(".")
    for i, seg in enumerate(segs[:3]):
        if not seg:
            return seg, f"empty segment at position {i + 1}"
        if not _DIGITS_RE.match(seg):
            return seg, f"non-numeric segment at position {i + 1}"
    if len(segs) < 3:
        return core, f"expected major.minor.patch, got {len(segs)} segment(s)"
    if len(segs) > 3:
        return segs[3], "unexpected segment after patch"

    if sep and not pre:
        return sep, "empty pre-release suffix"
    bad = _PRERELEASE_BAD_CHAR_RE.search(pre)
    if bad:
        return bad.group(0), "invalid character in pre-release suffix"
    return candidate, "does not match version grammar"


def validate(raw_version: str, *, prefix_policy: str = "optional") -> VersionSpec:
    """Validate a release tag and parse it into a :class:`VersionSpec`.

    Raises:
        ValidationError: with ``token`` set to the offending part of the tag.
    """
    if prefix_policy not in PREFIX_POLICIES:
        raise ConfigError(f"unknown prefix policy {prefix_policy!r}; allowed={list(PREFIX_POLICIES)}")

    raw = "" if raw_version is None else str(raw_version)
    if not raw:
        raise ValidationError("release tag is empty", token="")

    candidate, had_prefix = strip_prefix(raw)

    if prefix_policy == "required" and not had_prefix:
        raise ValidationError(f"release tag {raw!r} must start with 'v'", token=candidate[:1])
    if prefix_policy == "forbidden" and had_prefix:
        raise ValidationError(f"release tag {raw!r} must not start with 'v'", token=raw[len(raw) - len(candidate) - 1])

    m = VERSION_RE.match(candidate)
    if m is None:
        token, reason = _diagnose(candidate)
        raise ValidationError(f"invalid release tag {raw!r}: {reason} ({token!r})", token=token)

    core, _, prerelease = candidate.partition("-")
    major, minor, patch = (int(x) for x in core.split("."))
    return VersionSpec(
        raw=raw,
        normalized=candidate,
        major=major,
        minor=minor,
        patch=patch,
        prerelease=prerelease,
    )


def read_manifest_version(path: Path) -> Optional[str]:
    """Return the package version declared in a Cargo-style TOML manifest.

    Only top-level, ``[package]`` and ``[workspace.package]`` declarations count;
    ``version.workspace = true`` style inheritance yields None.
    """
    section = ""
    for line in path.read_text(encoding="utf-8").splitlines():
        s = line.strip()
        if s.startswith("[") and s.endswith("]"):
            section = s.strip("[]").strip()
            continue
        if section not in ("", "package", "workspace.package"):
            continue
        m = re.match(r'^version\s*=\s*"([^"]*)"', s)
        if m:
            return m.group(1)
    return None


def check_manifest_versions(spec: VersionSpec, source_dir: Path, patterns: Iterable[str]) -> List[Path]:
    """Require every matching manifest to declare the tagged version.

    Returns the manifests that were checked.
    """
    pats = [p for p in patterns if str(p).strip()]
    if not pats:
        return []

    checked: List[Path] = []
    for pattern in pats:
        for path in sorted(source_dir.glob(pattern)):
            if not path.is_file():
                continue
            declared = read_manifest_version(path)
            if declared is None:
                print(f"[validate] no literal version in {path}; skipped", file=sys.stderr)
                continue
            if declared != spec.normalized:
                rel = path.relative_to(source_dir) if path.is_relative_to(source_dir) else path
                raise ValidationError(
                    f"release tag {spec.raw!r} does not match version {declared!r} declared in {rel}",
                    token=declared,
                )
            checked.append(path)

    if not checked:
        raise ConfigError(f"no manifest with a literal version matched {pats} under {source_dir}")
    return checked
