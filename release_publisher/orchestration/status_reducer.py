from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable

from ..models import BranchResult, RunOutcome


EXIT_SUCCESS = 0
EXIT_VALIDATION_FAILED = 1
EXIT_PARTIAL_FAILURE = 2
EXIT_FAILURE = 3


@dataclass(frozen=True)
class StatusInputs:
    branch_succeeded: Dict[str, bool]  # branch name -> succeeded
    validation_failed: bool = False


def status_inputs(branches: Iterable[BranchResult], *, validation_failed: bool = False) -> StatusInputs:
    return StatusInputs(
        branch_succeeded={b.name: b.succeeded for b in branches},
        validation_failed=validation_failed,
    )


def reduce_run_outcome(inputs: StatusInputs) -> RunOutcome:
    """Compute the overall run outcome.

    Canonical outputs:
      - Success: every branch succeeded
      - PartialFailure: some, but not all, branches succeeded
      - Failure: validation failed, no branch ran, or every branch failed
    """
    if inputs.validation_failed or not inputs.branch_succeeded:
        return RunOutcome.FAILURE

    results = list(inputs.branch_succeeded.values())
    if all(results):
        return RunOutcome.SUCCESS
    if any(results):
        return RunOutcome.PARTIAL_FAILURE
    return RunOutcome.FAILURE


def exit_code_for(outcome: RunOutcome, *, validation_failed: bool = False) -> int:
    if validation_failed:
        return EXIT_VALIDATION_FAILED
    if outcome == RunOutcome.SUCCESS:
        return EXIT_SUCCESS
    if outcome == RunOutcome.PARTIAL_FAILURE:
        return EXIT_PARTIAL_FAILURE
    return EXIT_FAILURE
