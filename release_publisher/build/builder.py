from __future__ import annotations

import os
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..artifacts.checksums import sha256_file
from ..config import BuildSettings, PackageSettings, format_argv
from ..errors import BuildError
from ..models import BuildArtifact, VersionSpec
from ..secretstore import SECRET_ENV_VARS
from ..utils.fs import fresh_dir
from ..utils.time import Deadline


# Host variables a build inherits; everything else comes from build.env.
BUILD_ENV_PASSTHROUGH = (
    "PATH",
    "HOME",
    "USER",
    "LANG",
    "LC_ALL",
    "TMPDIR",
    "CARGO_HOME",
    "RUSTUP_HOME",
    "RUSTUP_TOOLCHAIN",
)


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""


# (argv, cwd, env, timeout_seconds) -> CommandResult; raises subprocess.TimeoutExpired
CommandRunner = Callable[[List[str], Path, Dict[str, str], float], CommandResult]


def run_command(cmd: List[str], cwd: Path, env: Dict[str, str], timeout: float) -> CommandResult:
    cp = subprocess.run(cmd, cwd=str(cwd), env=env, check=False, text=True, capture_output=True, timeout=timeout)
    return CommandResult(returncode=cp.returncode, stdout=cp.stdout or "", stderr=cp.stderr or "")


def _tail(text: str, limit: int = 2000) -> str:
    t = (text or "").strip()
    return t if len(t) <= limit else "..." + t[-limit:]


class PackageBuilder:
    """Runs the pinned build toolchain and collects exactly one artifact."""

    def __init__(
        self,
        *,
        package: PackageSettings,
        settings: BuildSettings,
        runner: Optional[CommandRunner] = None,
    ):
        self.package = package
        self.settings = settings
        self.runner: CommandRunner = runner if runner is not None else run_command

    def _env(self) -> Dict[str, str]:
        """Minimal build environment: an allow-list of host variables plus build.env.

        Publication tokens are never passed to the build, even via build.env.
        """
        env = {k: os.environ[k] for k in BUILD_ENV_PASSTHROUGH if k in os.environ}
        env.update(self.settings.env)
        for names in SECRET_ENV_VARS.values():
            for name in names:
                env.pop(name, None)
        return env

    def _run(self, cmd: List[str], deadline: Deadline, env: Dict[str, str]) -> CommandResult:
        timeout = deadline.require(BuildError, "build")
        try:
            return self.runner(cmd, self.package.source_dir, env, timeout)
        except subprocess.TimeoutExpired:
            raise BuildError(f"{cmd[0]} timed out after {self.settings.timeout_seconds:g}s", timed_out=True)
        except OSError as e:
            raise BuildError(f"failed to start {cmd[0]}: {e}")

    def _check_toolchain(self, deadline: Deadline, env: Dict[str, str]) -> None:
        pinned = self.settings.toolchain_version
        if not pinned or not self.settings.toolchain_check:
            return
        res = self._run(list(self.settings.toolchain_check), deadline, env)
        if res.returncode != 0:
            raise BuildError(
                f"toolchain check failed rc={res.returncode}: {_tail(res.stderr)}",
                exit_code=res.returncode,
            )
        if pinned not in res.stdout:
            raise BuildError(f"toolchain is not pinned version {pinned!r}: {res.stdout.strip()!r}")

    def _check_checkout(self, tag: str, deadline: Deadline, env: Dict[str, str]) -> None:
        if not self.settings.verify_checkout:
            return
        want = self._run(["git", "rev-parse", f"{tag}^{{commit}}"], deadline, env)
        head = self._run(["git", "rev-parse", "HEAD"], deadline, env)
        if want.returncode != 0:
            raise BuildError(f"tag {tag!r} is not present in the checkout: {_tail(want.stderr)}", exit_code=want.returncode)
        if head.returncode != 0:
            raise BuildError(f"cannot resolve HEAD: {_tail(head.stderr)}", exit_code=head.returncode)
        if want.stdout.strip() != head.stdout.strip():
            raise BuildError(
                f"checkout is at {head.stdout.strip()[:12]} but tag {tag!r} is {want.stdout.strip()[:12]}"
            )

    def build(
        self,
        tag: str,
        package_target: str,
        *,
        version: VersionSpec,
        output_dir: Path,
        timeout: Optional[float] = None,
    ) -> BuildArtifact:
        """Build ``package_target`` at ``tag`` into a fresh ``output_dir``.

        Raises:
            BuildError: on a failed pin check, a non-zero exit, a timeout, or
                anything other than exactly one produced file.
        """
        deadline = Deadline(timeout if timeout is not None else self.settings.timeout_seconds)
        env = self._env()

        self._check_toolchain(deadline, env)
        self._check_checkout(tag, deadline, env)

        out_dir = fresh_dir(Path(output_dir).resolve())
        cmd = format_argv(
            self.settings.command,
            {
                "package_target": package_target,
                "package_name": self.package.name,
                "output_dir": str(out_dir),
                "version": version.render(),
                "tag": tag,
            },
        )
        print(f"[build] {' '.join(cmd)}", file=sys.stderr)

        res = self._run(cmd, deadline, env)
        if res.returncode != 0:
            raise BuildError(
                f"build command exited rc={res.returncode}: {_tail(res.stderr) or _tail(res.stdout)}",
                exit_code=res.returncode,
            )

        produced = sorted(p for p in out_dir.iterdir() if p.is_file())
        if len(produced) != 1:
            names = [p.name for p in produced]
            raise BuildError(f"expected exactly one artifact in {out_dir}, found {len(produced)}: {names}")

        path = produced[0]
        artifact = BuildArtifact(
            file_path=path,
            package_name=self.package.name,
            checksum=sha256_file(path),
            size_bytes=int(path.stat().st_size),
        )
        print(f"[build] produced {path.name} sha256={artifact.checksum} bytes={artifact.size_bytes}", file=sys.stderr)
        return artifact
