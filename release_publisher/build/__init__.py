from __future__ import annotations

from .builder import CommandResult, PackageBuilder, run_command

__all__ = ["CommandResult", "PackageBuilder", "run_command"]
