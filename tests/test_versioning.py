from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from _testutil import ensure_repo_on_path


class TestValidate(unittest.TestCase):
    def test_plain_version(self) -> None:
        ensure_repo_on_path()
        from release_publisher.versioning import validate

        spec = validate("1.4.0")
        self.assertEqual(spec.components(), (1, 4, 0, ""))
        self.assertEqual(spec.raw, "1.4.0")
        self.assertEqual(spec.render(), "1.4.0")

    def test_prefix_and_prerelease(self) -> None:
        ensure_repo_on_path()
        from release_publisher.versioning import validate

        spec = validate("v0.30.0-rc.1")
        self.assertEqual(spec.raw, "v0.30.0-rc.1")
        self.assertEqual(spec.render(), "0.30.0-rc.1")
        self.assertEqual(spec.components(), (0, 30, 0, "rc.1"))

        ref = validate("refs/tags/v2.0.1")
        self.assertEqual(ref.render(), "2.0.1")

    def test_render_round_trips(self) -> None:
        ensure_repo_on_path()
        from release_publisher.versioning import validate

        for raw in ("0.0.0", "10.20.30", "1.2.3-alpha", "1.2.3-x.7.z-92", "v1.0.0", "V3.1.4-beta-2", "01.002.3"):
            with self.subTest(raw=raw):
                spec = validate(raw)
                again = validate(spec.render())
                self.assertEqual(again.render(), spec.render())
                self.assertEqual(again.components(), spec.components())

    def test_invalid_tags_name_the_offending_token(self) -> None:
        ensure_repo_on_path()
        from release_publisher.errors import ValidationError
        from release_publisher.versioning import validate

        cases = {
            "": "",
            "1.2": "1.2",
            "v1.4": "1.4",
            "1.2.x": "x",
            "v1.2.3.4": "4",
            "1..3": "",
            "1.2.3-": "-",
            "1.2.3-beta+build": "+",
            "vv1.2.3": "vv1",
            " 1.2.3": " 1",
            "release-1.2.3": "release",
        }
        for raw, token in cases.items():
            with self.subTest(raw=raw):
                with self.assertRaises(ValidationError) as cm:
                    validate(raw)
                self.assertEqual(cm.exception.token, token)
                self.assertEqual(cm.exception.code, "invalid_version")

    def test_prefix_policy(self) -> None:
        ensure_repo_on_path()
        from release_publisher.errors import ConfigError, ValidationError
        from release_publisher.versioning import validate

        self.assertEqual(validate("v1.2.3", prefix_policy="required").render(), "1.2.3")
        with self.assertRaises(ValidationError):
            validate("1.2.3", prefix_policy="required")

        self.assertEqual(validate("1.2.3", prefix_policy="forbidden").render(), "1.2.3")
        with self.assertRaises(ValidationError) as cm:
            validate("v1.2.3", prefix_policy="forbidden")
        self.assertEqual(cm.exception.token, "v")

        with self.assertRaises(ConfigError):
            validate("1.2.3", prefix_policy="sometimes")


class TestManifestConsistency(unittest.TestCase):
    def _write(self, root: Path, rel: str, text: str) -> None:
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(text, encoding="utf-8")

    def test_matching_manifests(self) -> None:
        ensure_repo_on_path()
        from release_publisher.versioning import check_manifest_versions, validate

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            self._write(root, "http/Cargo.toml", '[package]\nname = "http"\nversion = "1.4.0"\n\n[dependencies]\nserde = { version = "1.0" }\n')
            self._write(root, "auth/Cargo.toml", '[package]\nname = "auth"\nversion.workspace = true\n')
            self._write(root, "types/Cargo.toml", '[package]\nname = "types"\nversion = "1.4.0"\n')

            checked = check_manifest_versions(validate("v1.4.0"), root, ["*/Cargo.toml"])
            self.assertEqual(sorted(p.parent.name for p in checked), ["http", "types"])

    def test_mismatch_is_validation_error(self) -> None:
        ensure_repo_on_path()
        from release_publisher.errors import ValidationError
        from release_publisher.versioning import check_manifest_versions, validate

        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            self._write(root, "http/Cargo.toml", '[package]\nname = "http"\nversion = "1.3.9"\n')

            with self.assertRaises(ValidationError) as cm:
                check_manifest_versions(validate("1.4.0"), root, ["*/Cargo.toml"])
            self.assertEqual(cm.exception.token, "1.3.9")

    def test_dependency_versions_are_ignored(self) -> None:
        ensure_repo_on_path()
        from release_publisher.versioning import read_manifest_version

        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "Cargo.toml"
            p.write_text('[dependencies.serde]\nversion = "9.9.9"\n', encoding="utf-8")
            self.assertIsNone(read_manifest_version(p))

    def test_no_patterns_skips_and_no_matches_is_config_error(self) -> None:
        ensure_repo_on_path()
        from release_publisher.errors import ConfigError
        from release_publisher.versioning import check_manifest_versions, validate

        with tempfile.TemporaryDirectory() as td:
            self.assertEqual(check_manifest_versions(validate("1.0.0"), Path(td), []), [])
            with self.assertRaises(ConfigError):
                check_manifest_versions(validate("1.0.0"), Path(td), ["*/Cargo.toml"])


if __name__ == "__main__":
    unittest.main()
