"""Release publication orchestrator.

Validates a release tag, builds one binary package and fans it out to the
release asset store, an APT package repository and a Homebrew formula PR.
"""

from __future__ import annotations

__all__ = ["__version__"]
__version__ = "0.1.0"
