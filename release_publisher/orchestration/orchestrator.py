from __future__ import annotations

import sys
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..build.builder import CommandRunner, PackageBuilder
from ..channels.apt_repo import AptRepoPublisher
from ..channels.homebrew import HomebrewFormulaUpdater
from ..channels.http import HttpSession
from ..channels.release_asset import ReleaseAssetUploader
from ..config import PublishConfig
from ..errors import ReleasePublishError, ValidationError
from ..models import (
    BranchResult,
    BuildArtifact,
    Channel,
    Outcome,
    PublishResult,
    ReleaseEvent,
    RunReport,
    RunState,
    VersionSpec,
)
from ..secretstore import PublishSecrets
from ..utils.time import utcnow_iso
from ..versioning import check_manifest_versions, validate
from .status_reducer import exit_code_for, reduce_run_outcome, status_inputs


BINARY_BRANCH = "binary-package"
FORMULA_BRANCH = "formula"


def _success(channel: Channel, detail: str, step: str, metadata: Optional[Dict[str, Any]] = None) -> PublishResult:
    return PublishResult(channel=channel, outcome=Outcome.SUCCESS, detail=detail, step=step, attempts=1, metadata=metadata or {})


def _failure(channel: Channel, err: ReleasePublishError) -> PublishResult:
    return PublishResult(
        channel=channel,
        outcome=Outcome.FAILURE,
        detail=err.message,
        step=err.step,
        error_code=err.code,
        attempts=err.attempts,
        timed_out=err.timed_out,
        metadata=err.detail if isinstance(err.detail, dict) else {},
    )


def _skipped(channel: Channel, err: ReleasePublishError) -> PublishResult:
    return PublishResult(
        channel=channel,
        outcome=Outcome.SKIPPED,
        detail=f"not attempted: {err.step} failed: {err.message}",
        step=err.step,
        error_code=err.code,
        timed_out=err.timed_out,
    )


def _internal(channel: Channel, step: str, detail: str) -> PublishResult:
    return PublishResult(channel=channel, outcome=Outcome.FAILURE, detail=detail, step=step, error_code="internal")


class ReleaseOrchestrator:
    """Runs one release through validation and the two publication branches.

    States: Idle -> Validating -> Branching -> Aggregating -> Done. The
    binary-package branch (build, upload asset, publish to repository) and the
    formula branch run concurrently and share only the read-only VersionSpec.
    A failure in one branch never cancels or rolls back the other.
    """

    def __init__(
        self,
        *,
        config: PublishConfig,
        builder: PackageBuilder,
        uploader: ReleaseAssetUploader,
        repository: AptRepoPublisher,
        formula: HomebrewFormulaUpdater,
        work_dir: Path,
        redact: Callable[[str], str] = str,
    ):
        self.config = config
        self.builder = builder
        self.uploader = uploader
        self.repository = repository
        self.formula = formula
        self.work_dir = Path(work_dir)
        self.redact = redact
        self.state = RunState.IDLE

    def _enter(self, state: RunState, note: str = "") -> None:
        self.state = state
        suffix = f" ({note})" if note else ""
        print(f"[orchestrator] state={state.value}{suffix}", file=sys.stderr)

    def validate_release(self, event: ReleaseEvent) -> VersionSpec:
        version = validate(event.tag, prefix_policy=self.config.version.prefix_policy)
        check_manifest_versions(version, self.config.package.source_dir, self.config.version.manifests)
        return version

    def run_binary_branch(self, event: ReleaseEvent, version: VersionSpec) -> BranchResult:
        cfg = self.config
        try:
            artifact: BuildArtifact = self.builder.build(
                event.tag,
                cfg.package.target,
                version=version,
                output_dir=self.work_dir / "build",
                timeout=cfg.build.timeout_seconds,
            )
        except ReleasePublishError as e:
            print(f"[orchestrator] {BINARY_BRANCH}: build failed: {e.code}", file=sys.stderr)
            return BranchResult(
                name=BINARY_BRANCH,
                results=[_skipped(Channel.RELEASE_ASSET, e), _skipped(Channel.APT_REPO, e)],
                failed_step=e.step,
                error=e.message,
            )

        results: List[PublishResult] = []

        try:
            asset = self.uploader.attach_to_release(
                event.release_id,
                artifact,
                version=version,
                timeout=cfg.release_asset.timeout_seconds,
            )
            results.append(_success(Channel.RELEASE_ASSET, f"uploaded {asset.get('asset_name')}", "upload_asset", asset))
        except ReleasePublishError as e:
            results.append(_failure(Channel.RELEASE_ASSET, e))
        except Exception as e:
            results.append(_internal(Channel.RELEASE_ASSET, "upload_asset", self._unexpected(e)))

        # The repository push depends only on the artifact, not on the asset upload.
        try:
            receipt = self.repository.publish(artifact, timeout=cfg.apt_repo.timeout_seconds)
            results.append(
                _success(Channel.APT_REPO, f"pushed {artifact.file_path.name}", "publish_repository", receipt)
            )
        except ReleasePublishError as e:
            results.append(_failure(Channel.APT_REPO, e))
        except Exception as e:
            results.append(_internal(Channel.APT_REPO, "publish_repository", self._unexpected(e)))

        failures = [r for r in results if not r.succeeded]
        return BranchResult(
            name=BINARY_BRANCH,
            results=results,
            failed_step=failures[0].step if failures else "",
            error="; ".join(r.detail for r in failures),
        )

    def run_formula_branch(self, event: ReleaseEvent, version: VersionSpec) -> BranchResult:
        cfg = self.config.homebrew
        try:
            pr_url = self.formula.bump_formula(cfg.formula_name, version, timeout=cfg.timeout_seconds)
        except ReleasePublishError as e:
            return BranchResult(
                name=FORMULA_BRANCH,
                results=[_failure(Channel.HOMEBREW_FORMULA, e)],
                failed_step=e.step,
                error=e.message,
            )
        return BranchResult(
            name=FORMULA_BRANCH,
            results=[_success(Channel.HOMEBREW_FORMULA, f"opened {pr_url}", "bump_formula", {"pull_request_url": pr_url})],
        )

    def _unexpected(self, e: Exception) -> str:
        return self.redact(f"unexpected error: {type(e).__name__}: {e}")

    def _join(self, name: str, future: Future, channels: List[Channel]) -> BranchResult:
        try:
            return future.result()
        except Exception as e:
            # A bug in one branch is reported as that branch's failure only.
            detail = self._unexpected(e)
            results = [_internal(c, "internal", detail) for c in channels]
            return BranchResult(name=name, results=results, failed_step="internal", error=detail)

    def run(self, event: ReleaseEvent) -> RunReport:
        """Publish ``event`` and return the aggregated report.

        Raises:
            ConfigError: infrastructure problems found before branching.
        """
        started_at = utcnow_iso()
        self._enter(RunState.VALIDATING, f"tag={event.tag!r} release_id={event.release_id}")
        try:
            version = self.validate_release(event)
        except ValidationError as e:
            outcome = reduce_run_outcome(status_inputs([], validation_failed=True))
            self._enter(RunState.DONE, f"validation failed: {e.message}")
            return RunReport(
                event=event,
                outcome=outcome,
                exit_code=exit_code_for(outcome, validation_failed=True),
                validation_error=e.message,
                started_at=started_at,
                finished_at=utcnow_iso(),
            )

        self._enter(RunState.BRANCHING, f"version={version.render()}")
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="release-branch") as pool:
            binary = pool.submit(self.run_binary_branch, event, version)
            formula = pool.submit(self.run_formula_branch, event, version)
            branches = [
                self._join(BINARY_BRANCH, binary, [Channel.RELEASE_ASSET, Channel.APT_REPO]),
                self._join(FORMULA_BRANCH, formula, [Channel.HOMEBREW_FORMULA]),
            ]

        self._enter(RunState.AGGREGATING)
        outcome = reduce_run_outcome(status_inputs(branches))
        report = RunReport(
            event=event,
            outcome=outcome,
            exit_code=exit_code_for(outcome),
            version=version,
            branches=branches,
            started_at=started_at,
            finished_at=utcnow_iso(),
        )
        self._enter(RunState.DONE, outcome.value)
        return report


def build_orchestrator(
    config: PublishConfig,
    secrets: PublishSecrets,
    *,
    work_dir: Path,
    session: Optional[HttpSession] = None,
    runner: Optional[CommandRunner] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ReleaseOrchestrator:
    """Wire the components from config, handing each only its own credential."""
    return ReleaseOrchestrator(
        config=config,
        builder=PackageBuilder(package=config.package, settings=config.build, runner=runner),
        uploader=ReleaseAssetUploader(
            settings=config.release_asset,
            token=secrets.release_token,
            retry=config.retry,
            session=session,
            sleep=sleep,
        ),
        repository=AptRepoPublisher(
            settings=config.apt_repo,
            token=secrets.repository_push_token,
            retry=config.retry,
            session=session,
            sleep=sleep,
            redact=secrets.redact,
        ),
        formula=HomebrewFormulaUpdater(
            settings=config.homebrew,
            token=secrets.formula_committer_token,
            source_repository=config.release_asset.repository,
            retry=config.retry,
            session=session,
            sleep=sleep,
        ),
        work_dir=work_dir,
        redact=secrets.redact,
    )
