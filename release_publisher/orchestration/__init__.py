from __future__ import annotations

from .orchestrator import (
    BINARY_BRANCH,
    FORMULA_BRANCH,
    ReleaseOrchestrator,
    build_orchestrator,
)
from .status_reducer import exit_code_for, reduce_run_outcome

__all__ = [
    "BINARY_BRANCH",
    "FORMULA_BRANCH",
    "ReleaseOrchestrator",
    "build_orchestrator",
    "exit_code_for",
    "reduce_run_outcome",
]
