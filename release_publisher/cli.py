from __future__ import annotations

import argparse
import json
import sys
import tempfile
from pathlib import Path
from typing import List, Optional

from .config import load_publish_config
from .errors import EventError, ReleasePublishError, ValidationError
from .events import load_release_event
from .models import ReleaseEvent
from .orchestration.orchestrator import build_orchestrator
from .orchestration.report import render_report_json, summary_lines, write_report
from .orchestration.status_reducer import EXIT_FAILURE, EXIT_SUCCESS, EXIT_VALIDATION_FAILED
from .secretstore import PublishSecrets
from .versioning import check_manifest_versions, validate


def _repo_root() -> Path:
    return Path.cwd()


def _event_from_args(args: argparse.Namespace) -> ReleaseEvent:
    if args.tag is not None or args.release_id is not None:
        if args.tag is None or args.release_id is None:
            raise EventError("--tag and --release-id must be given together")
        return ReleaseEvent(tag=args.tag, release_id=str(args.release_id))
    return load_release_event(args.event_path)


def cmd_publish(args: argparse.Namespace) -> int:
    try:
        config = load_publish_config(_repo_root(), args.config)
        secrets = PublishSecrets.from_env()
        event = _event_from_args(args)
    except ReleasePublishError as e:
        print(f"[publish] ERROR ({e.code}): {e.message}", file=sys.stderr)
        return EXIT_FAILURE

    try:
        if args.work_dir:
            report = build_orchestrator(config, secrets, work_dir=Path(args.work_dir).resolve()).run(event)
        else:
            # The build output is discarded with the scratch directory.
            with tempfile.TemporaryDirectory(prefix="release_publish_") as td:
                report = build_orchestrator(config, secrets, work_dir=Path(td)).run(event)
    except ReleasePublishError as e:
        print(f"[publish] ERROR ({e.code}): {secrets.redact(e.message)}", file=sys.stderr)
        return EXIT_FAILURE

    for line in summary_lines(report):
        print(secrets.redact(line), file=sys.stderr)
    if args.report_path:
        write_report(Path(args.report_path), report, secrets.redact)
    print(render_report_json(report, secrets.redact), end="")
    return report.exit_code


def cmd_check_version(args: argparse.Namespace) -> int:
    try:
        config = None if args.no_config else load_publish_config(_repo_root(), args.config)
        policy = config.version.prefix_policy if config is not None else "optional"
        spec = validate(args.tag, prefix_policy=policy)
        if config is not None:
            check_manifest_versions(spec, config.package.source_dir, config.version.manifests)
    except ValidationError as e:
        print(f"[check-version] INVALID: {e.message}", file=sys.stderr)
        return EXIT_VALIDATION_FAILED
    except ReleasePublishError as e:
        print(f"[check-version] ERROR ({e.code}): {e.message}", file=sys.stderr)
        return EXIT_FAILURE

    print(json.dumps({"tag": spec.raw, "version": spec.render(), "components": list(spec.components())}))
    return EXIT_SUCCESS


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="release-publisher")
    sub = p.add_subparsers(dest="cmd", required=True)

    sp = sub.add_parser("publish", help="Validate, build and publish a release to every channel")
    sp.add_argument("--tag", default=None, help="Release tag exactly as published")
    sp.add_argument("--release-id", default=None, help="Release record id")
    sp.add_argument("--event-path", default=None, help="Release event JSON (default: $GITHUB_EVENT_PATH)")
    sp.add_argument("--config", default=None, help="Publish config YAML")
    sp.add_argument("--work-dir", default=None, help="Scratch directory for the build output")
    sp.add_argument("--report-path", default=None, help="Also write the JSON report here")
    sp.set_defaults(func=cmd_publish)

    sp = sub.add_parser("check-version", help="Validate a release tag without building or publishing")
    sp.add_argument("tag")
    sp.add_argument("--config", default=None)
    sp.add_argument("--no-config", action="store_true", help="Skip the config (grammar check only)")
    sp.set_defaults(func=cmd_check_version)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args) or 0)


if __name__ == "__main__":
    raise SystemExit(main())
