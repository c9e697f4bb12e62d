from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple
from urllib.parse import quote

from .errors import ConfigError


REDACTED = "***"

# redact() masks every occurrence of a value, so tokens need some length.
MIN_SECRET_LENGTH = 8

# name -> env vars checked in order
SECRET_ENV_VARS: Dict[str, Tuple[str, ...]] = {
    "release_token": ("RELEASE_WRITE_TOKEN", "GITHUB_TOKEN", "GH_TOKEN"),
    "repository_push_token": ("REPOSITORY_PUSH_TOKEN", "GEMFURY_PUSH_TOKEN"),
    "formula_committer_token": ("FORMULA_COMMITTER_TOKEN", "COMMITTER_TOKEN"),
}


@dataclass(frozen=True)
class PublishSecrets:
    """Per-run credentials, read once at process start.

    Values never appear in ``repr`` and are never written anywhere; pass the
    instance explicitly to whatever needs a token.
    """

    release_token: str = field(repr=False)
    repository_push_token: str = field(repr=False)
    formula_committer_token: str = field(repr=False)

    def __post_init__(self) -> None:
        short = [name for name in SECRET_ENV_VARS if len(getattr(self, name)) < MIN_SECRET_LENGTH]
        if short:
            raise ConfigError(f"secrets shorter than {MIN_SECRET_LENGTH} characters: {short}")

    def __repr__(self) -> str:
        return (
            "PublishSecrets(release_token=***, repository_push_token=***, "
            "formula_committer_token=***)"
        )

    def values(self) -> List[str]:
        return [v for v in (self.release_token, self.repository_push_token, self.formula_committer_token) if v]

    def redact(self, text: str) -> str:
        """Mask every known secret (raw and URL-quoted) in ``text``."""
        out = str(text)
        for v in sorted(self.values(), key=len, reverse=True):
            out = out.replace(v, REDACTED)
            quoted = quote(v, safe="")
            if quoted != v:
                out = out.replace(quoted, REDACTED)
        return out

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "PublishSecrets":
        """Load secrets from the environment.

        Raises:
            ConfigError: naming the missing env vars (never their values).
        """
        source = os.environ if env is None else env
        found: Dict[str, str] = {}
        missing: List[str] = []
        for name, env_vars in SECRET_ENV_VARS.items():
            value = ""
            for var in env_vars:
                value = str(source.get(var, "") or "").strip()
                if value:
                    break
            if not value:
                missing.append(" or ".join(env_vars))
            found[name] = value
        if missing:
            raise ConfigError(f"missing required secrets: {missing}")
        return cls(**found)
