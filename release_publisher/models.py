from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional


class Channel(str, enum.Enum):
    """Independent distribution targets a release is published to."""

    RELEASE_ASSET = "ReleaseAsset"
    APT_REPO = "AptRepo"
    HOMEBREW_FORMULA = "HomebrewFormula"


class Outcome(str, enum.Enum):
    SUCCESS = "Success"
    FAILURE = "Failure"
    # The channel's step never ran because a step it depends on failed.
    SKIPPED = "Skipped"


class RunOutcome(str, enum.Enum):
    SUCCESS = "Success"
    PARTIAL_FAILURE = "PartialFailure"
    FAILURE = "Failure"


class RunState(str, enum.Enum):
    IDLE = "Idle"
    VALIDATING = "Validating"
    BRANCHING = "Branching"
    AGGREGATING = "Aggregating"
    DONE = "Done"


@dataclass(frozen=True)
class ReleaseEvent:
    """A published release, as delivered by the trigger."""

    tag: str
    release_id: str


@dataclass(frozen=True)
class VersionSpec:
    """A validated release version.

    ``raw`` is the tag exactly as delivered; ``normalized`` is the tag after the
    fixed prefix rule. Only :func:`release_publisher.versioning.validate`
    constructs instances.
    """

    raw: str
    normalized: str
    major: int
    minor: int
    patch: int
    prerelease: str = ""

    def render(self) -> str:
        return self.normalized

    def components(self) -> tuple:
        return (self.major, self.minor, self.patch, self.prerelease)


@dataclass(frozen=True)
class BuildArtifact:
    file_path: Path
    package_name: str
    checksum: str
    size_bytes: int = 0


@dataclass(frozen=True)
class PublishResult:
    """Outcome of one channel for one run."""

    channel: Channel
    outcome: Outcome
    detail: str = ""
    step: str = ""
    error_code: str = ""
    attempts: int = 0
    timed_out: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.outcome == Outcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "channel": self.channel.value,
            "outcome": self.outcome.value,
            "detail": self.detail,
        }
        if self.step:
            d["step"] = self.step
        if self.error_code:
            d["error_code"] = self.error_code
        if self.attempts:
            d["attempts"] = self.attempts
        if self.timed_out:
            d["timed_out"] = True
        if self.metadata:
            d["metadata"] = dict(self.metadata)
        return d


@dataclass(frozen=True)
class BranchResult:
    """Terminal state of one branch (a sequential chain of steps)."""

    name: str
    results: List[PublishResult] = field(default_factory=list)
    failed_step: str = ""
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return bool(self.results) and all(r.succeeded for r in self.results)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "succeeded": self.succeeded,
            "channels": [r.to_dict() for r in self.results],
        }
        if self.failed_step:
            d["failed_step"] = self.failed_step
        if self.error:
            d["error"] = self.error
        return d


@dataclass(frozen=True)
class RunReport:
    event: ReleaseEvent
    outcome: RunOutcome
    exit_code: int
    version: Optional[VersionSpec] = None
    branches: List[BranchResult] = field(default_factory=list)
    validation_error: str = ""
    started_at: str = ""
    finished_at: str = ""

    def channel_results(self) -> List[PublishResult]:
        out: List[PublishResult] = []
        for b in self.branches:
            out.extend(b.results)
        return out

    def result_for(self, channel: Channel) -> Optional[PublishResult]:
        for r in self.channel_results():
            if r.channel == channel:
                return r
        return None

    def failed_channels(self) -> List[Channel]:
        return [r.channel for r in self.channel_results() if not r.succeeded]

    def succeeded_channels(self) -> List[Channel]:
        return [r.channel for r in self.channel_results() if r.succeeded]

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "tag": self.event.tag,
            "release_id": self.event.release_id,
            "version": self.version.render() if self.version is not None else "",
            "outcome": self.outcome.value,
            "exit_code": self.exit_code,
            "succeeded_channels": [c.value for c in self.succeeded_channels()],
            "failed_channels": [c.value for c in self.failed_channels()],
            "branches": [b.to_dict() for b in self.branches],
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }
        if self.validation_error:
            d["validation_error"] = self.validation_error
        return d
