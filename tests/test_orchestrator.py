from __future__ import annotations

import base64
import json
import tempfile
import unittest
from pathlib import Path
from typing import Any, Dict, Optional

from _testutil import FakeResponse, FakeRunner, FakeSession, ensure_repo_on_path, make_config


FORMULA = '''class Pkg < Formula
  url "https://github.com/acme/pkg/archive/refs/tags/v1.3.0.tar.gz"
  sha256 "0000000000000000000000000000000000000000000000000000000000000000"
end
'''

UPLOAD_URL = "https://uploads.github.com/repos/acme/pkg/releases/42/assets{?name,label}"


def _session(*, apt: Any = None, formula_pr: Any = None) -> FakeSession:
    core = "/repos/Homebrew/homebrew-core"
    content = base64.b64encode(FORMULA.encode("utf-8")).decode("ascii")
    return (
        FakeSession()
        # release asset
        .add("GET", "/repos/acme/pkg/releases/42", FakeResponse(200, {"id": 42, "upload_url": UPLOAD_URL, "assets": []}))
        .add("POST", "uploads.github.com", FakeResponse(201, {"id": 7, "name": "pkg.bin", "size": 21}))
        # apt repository
        .add("POST", "push.fury.io", apt or FakeResponse(200, text="ok"))
        # homebrew formula
        .add("GET", "archive/refs/tags/", FakeResponse(200, body=b"tarball"))
        .add("GET", f"{core}/contents/", FakeResponse(200, {"content": content, "sha": "blob"}))
        .add("GET", f"{core}/pulls", FakeResponse(200, []))
        .add("GET", f"{core}/git/ref/heads/", FakeResponse(200, {"object": {"sha": "base"}}))
        .add("GET", core, FakeResponse(200, {"default_branch": "master"}))
        .add("POST", f"{core}/git/refs", FakeResponse(201, {}))
        .add("PUT", f"{core}/contents/", FakeResponse(201, {}))
        .add("POST", f"{core}/pulls", formula_pr or FakeResponse(201, {"html_url": "https://github.com/Homebrew/homebrew-core/pull/1"}))
    )


class TestReleaseOrchestrator(unittest.TestCase):
    def _run(self, tag: str, session: FakeSession, runner: Optional[FakeRunner] = None, **sections: Dict[str, Any]):
        ensure_repo_on_path()
        from release_publisher.models import ReleaseEvent
        from release_publisher.orchestration.orchestrator import build_orchestrator
        from release_publisher.secretstore import PublishSecrets

        runner = runner or FakeRunner()
        secrets = PublishSecrets(
            release_token="ghs_release",
            repository_push_token="fury_push",
            formula_committer_token="ghp_committer",
        )
        with tempfile.TemporaryDirectory() as td:
            cfg = make_config(Path(td), **sections)
            orch = build_orchestrator(
                cfg,
                secrets,
                work_dir=Path(td) / "work",
                session=session,
                runner=runner,
                sleep=lambda _s: None,
            )
            report = orch.run(ReleaseEvent(tag=tag, release_id="42"))
            built = sorted(p.name for p in (Path(td) / "work" / "build").glob("*")) if (Path(td) / "work" / "build").exists() else []
        return report, runner, built, orch

    def test_all_channels_succeed(self) -> None:
        from release_publisher.models import Channel, Outcome, RunOutcome, RunState

        session = _session()
        report, runner, built, orch = self._run("1.4.0", session)

        self.assertEqual(report.outcome, RunOutcome.SUCCESS)
        self.assertEqual(report.exit_code, 0)
        self.assertEqual(orch.state, RunState.DONE)
        self.assertEqual(built, ["pkg-1.4.0.bin"])
        self.assertEqual(report.version.render(), "1.4.0")
        self.assertEqual(
            sorted(c.value for c in report.succeeded_channels()),
            ["AptRepo", "HomebrewFormula", "ReleaseAsset"],
        )
        self.assertEqual(report.result_for(Channel.HOMEBREW_FORMULA).metadata["pull_request_url"], "https://github.com/Homebrew/homebrew-core/pull/1")
        self.assertTrue(all(r.outcome == Outcome.SUCCESS for r in report.channel_results()))
        self.assertEqual(len(runner.build_calls), 1)

    def test_invalid_tag_stops_before_any_side_effect(self) -> None:
        from release_publisher.models import RunOutcome

        for tag in ("", "1.2", "1.2.x", "v1.2.3.4", "v1.4"):
            with self.subTest(tag=tag):
                session = _session()
                report, runner, built, _orch = self._run(tag, session)

                self.assertEqual(report.outcome, RunOutcome.FAILURE)
                self.assertEqual(report.exit_code, 1)
                self.assertTrue(report.validation_error)
                self.assertEqual(report.branches, [])
                self.assertEqual(runner.calls, [])
                self.assertEqual(session.calls, [])
                self.assertEqual(built, [])

    def test_non_json_release_response_does_not_block_repository_push(self) -> None:
        from release_publisher.models import Channel, Outcome

        session = _session()
        session.routes[0][2] = [FakeResponse(200, text="<html>proxy</html>")]
        report, _runner, _built, _orch = self._run("1.4.0", session)

        asset = report.result_for(Channel.RELEASE_ASSET)
        self.assertEqual(asset.outcome, Outcome.FAILURE)
        self.assertEqual(asset.error_code, "upload_failed")
        self.assertIn("not JSON", asset.detail)
        self.assertEqual(report.result_for(Channel.APT_REPO).outcome, Outcome.SUCCESS)
        self.assertEqual(session.count("POST", "push.fury.io"), 1)
        self.assertEqual(report.exit_code, 2)

    def test_unexpected_upload_error_still_runs_repository_push(self) -> None:
        ensure_repo_on_path()
        from release_publisher.models import Channel, Outcome, ReleaseEvent
        from release_publisher.orchestration.orchestrator import build_orchestrator
        from release_publisher.secretstore import PublishSecrets

        class BrokenUploader:
            def attach_to_release(self, *args, **kwargs):
                raise AttributeError("'list' object has no attribute 'get'")

        session = _session()
        secrets = PublishSecrets(
            release_token="ghs_release",
            repository_push_token="fury_push",
            formula_committer_token="ghp_committer",
        )
        with tempfile.TemporaryDirectory() as td:
            orch = build_orchestrator(
                make_config(Path(td)),
                secrets,
                work_dir=Path(td) / "work",
                session=session,
                runner=FakeRunner(),
                sleep=lambda _s: None,
            )
            orch.uploader = BrokenUploader()
            report = orch.run(ReleaseEvent(tag="1.4.0", release_id="42"))

        asset = report.result_for(Channel.RELEASE_ASSET)
        self.assertEqual(asset.outcome, Outcome.FAILURE)
        self.assertEqual(asset.error_code, "internal")
        self.assertEqual(asset.step, "upload_asset")
        self.assertEqual(report.result_for(Channel.APT_REPO).outcome, Outcome.SUCCESS)
        self.assertEqual(session.count("POST", "push.fury.io"), 1)
        self.assertEqual(report.branches[0].failed_step, "upload_asset")

    def test_unavailable_repository_is_partial_failure(self) -> None:
        from release_publisher.models import Channel, Outcome, RunOutcome

        session = _session(apt=FakeResponse(503, text="Service Unavailable"))
        report, _runner, _built, _orch = self._run("1.4.0", session)

        self.assertEqual(report.outcome, RunOutcome.PARTIAL_FAILURE)
        self.assertEqual(report.exit_code, 2)
        self.assertEqual(report.failed_channels(), [Channel.APT_REPO])
        apt = report.result_for(Channel.APT_REPO)
        self.assertEqual(apt.attempts, 3)
        self.assertEqual(apt.error_code, "publish_failed")
        self.assertEqual(report.result_for(Channel.RELEASE_ASSET).outcome, Outcome.SUCCESS)
        self.assertEqual(report.result_for(Channel.HOMEBREW_FORMULA).outcome, Outcome.SUCCESS)
        self.assertEqual(session.count("POST", "push.fury.io"), 3)

    def test_build_failure_leaves_formula_branch_alone(self) -> None:
        from release_publisher.models import Channel, Outcome, RunOutcome

        session = _session()
        report, _runner, _built, _orch = self._run("1.4.0", session, FakeRunner(returncode=2))

        self.assertEqual(report.outcome, RunOutcome.PARTIAL_FAILURE)
        self.assertEqual(report.exit_code, 2)
        self.assertEqual(report.result_for(Channel.RELEASE_ASSET).outcome, Outcome.SKIPPED)
        self.assertEqual(report.result_for(Channel.APT_REPO).outcome, Outcome.SKIPPED)
        self.assertEqual(report.result_for(Channel.RELEASE_ASSET).error_code, "build_failed")
        self.assertEqual(report.result_for(Channel.HOMEBREW_FORMULA).outcome, Outcome.SUCCESS)
        self.assertEqual(session.count("POST", "uploads.github.com"), 0)
        self.assertEqual(session.count("POST", "push.fury.io"), 0)

    def test_upload_failure_does_not_block_repository_push(self) -> None:
        from release_publisher.models import Channel, Outcome

        session = _session()
        session.routes[0][2] = [FakeResponse(200, {"id": 42, "upload_url": UPLOAD_URL, "assets": [{"id": 3, "name": "pkg.bin"}]})]
        report, _runner, _built, _orch = self._run("1.4.0", session)

        asset = report.result_for(Channel.RELEASE_ASSET)
        self.assertEqual(asset.outcome, Outcome.FAILURE)
        self.assertEqual(asset.error_code, "asset_already_exists")
        self.assertEqual(report.result_for(Channel.APT_REPO).outcome, Outcome.SUCCESS)
        self.assertEqual(report.exit_code, 2)
        self.assertEqual(report.branches[0].failed_step, "upload_asset")

    def test_every_branch_failing_is_failure(self) -> None:
        from release_publisher.models import RunOutcome

        session = _session(formula_pr=FakeResponse(403, {"message": "Resource not accessible"}))
        report, _runner, _built, _orch = self._run("1.4.0", session, FakeRunner(produce=[]))

        self.assertEqual(report.outcome, RunOutcome.FAILURE)
        self.assertEqual(report.exit_code, 3)
        self.assertEqual(report.succeeded_channels(), [])

    def test_report_never_contains_tokens(self) -> None:
        ensure_repo_on_path()
        from release_publisher.orchestration.report import render_report_json, summary_lines
        from release_publisher.secretstore import PublishSecrets

        leak = FakeResponse(401, text="bad credentials for fury_push")
        session = _session(apt=leak)
        report, _runner, _built, _orch = self._run("1.4.0", session)
        secrets = PublishSecrets(release_token="ghs_release", repository_push_token="fury_push", formula_committer_token="ghp_committer")

        rendered = render_report_json(report, secrets.redact)
        self.assertNotIn("fury_push", rendered)
        data = json.loads(rendered)
        self.assertEqual(data["failed_channels"], ["AptRepo"])
        self.assertEqual(data["exit_code"], 2)

        lines = summary_lines(report)
        self.assertTrue(any("complete manually: ['AptRepo']" in line for line in lines))
        self.assertFalse(any("fury_push" in line for line in lines))

    def test_unexpected_branch_error_is_contained(self) -> None:
        from release_publisher.models import Channel, Outcome

        session = _session()
        session.routes[3][2] = [RuntimeError("boom")]
        report, _runner, _built, _orch = self._run("1.4.0", session)

        formula = report.result_for(Channel.HOMEBREW_FORMULA)
        self.assertEqual(formula.outcome, Outcome.FAILURE)
        self.assertEqual(formula.error_code, "internal")
        self.assertEqual(report.result_for(Channel.APT_REPO).outcome, Outcome.SUCCESS)
        self.assertEqual(report.exit_code, 2)


class TestStatusReducer(unittest.TestCase):
    def test_outcomes_and_exit_codes(self) -> None:
        ensure_repo_on_path()
        from release_publisher.models import RunOutcome
        from release_publisher.orchestration.status_reducer import StatusInputs, exit_code_for, reduce_run_outcome

        cases = [
            (StatusInputs({"a": True, "b": True}), RunOutcome.SUCCESS, 0),
            (StatusInputs({"a": True, "b": False}), RunOutcome.PARTIAL_FAILURE, 2),
            (StatusInputs({"a": False, "b": False}), RunOutcome.FAILURE, 3),
            (StatusInputs({}), RunOutcome.FAILURE, 3),
        ]
        for inputs, outcome, code in cases:
            with self.subTest(inputs=inputs):
                self.assertEqual(reduce_run_outcome(inputs), outcome)
                self.assertEqual(exit_code_for(outcome), code)

        failed = StatusInputs({}, validation_failed=True)
        self.assertEqual(reduce_run_outcome(failed), RunOutcome.FAILURE)
        self.assertEqual(exit_code_for(RunOutcome.FAILURE, validation_failed=True), 1)


if __name__ == "__main__":
    unittest.main()
