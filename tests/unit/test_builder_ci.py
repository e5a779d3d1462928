"""builder_ci: manifest, rebuild gate, archive and publish."""

import asyncio
import json
import tarfile
from pathlib import Path

import pytest

from builder_ci import (
    bundle_file_digests,
    create_build_manifest,
    create_bundle_archive,
    load_build_manifest,
    publish_local,
    should_rebuild,
    write_build_manifest,
)
from builder_ci.main import PublishTarget, _archive_name, orchestrate
from builder_ci.readme import generate_readme
from git_standalone_builder.config import BuildConfig
from git_standalone_builder.pipeline import StageResult


@pytest.fixture
def bundle(tmp_path: Path) -> Path:
    root = tmp_path / "bundle"
    (root / "bin").mkdir(parents=True)
    (root / "bin" / "git").write_bytes(b"\x7fELFgit")
    (root / "bin" / "git").chmod(0o755)
    (root / "libexec" / "git-core").mkdir(parents=True)
    (root / "libexec" / "git-core" / "git-remote-https").write_text("#!/bin/sh\n", encoding="utf-8")
    (root / "lib").mkdir()
    (root / "lib" / "libz.so.1").write_bytes(b"zlib")
    (root / "git.sh").write_text("#!/bin/bash\n", encoding="utf-8")
    return root


class TestManifest:
    def test_create_and_roundtrip(self, tmp_path: Path, bundle: Path) -> None:
        manifest = create_build_manifest(
            tag="v2.45.0",
            config=BuildConfig(),
            bundle_dir=bundle,
            stages=[StageResult("compile", "completed", 12.5)],
            archive_info={"name": "a.tar.gz", "sha256": "00", "size": 1},
        )
        assert manifest["build_info"]["tag"] == "v2.45.0"
        assert manifest["environment"]["SOURCE_DATE_EPOCH"] == 1620000000
        assert manifest["stages"] == [{"stage": "compile", "status": "completed", "elapsed": 12.5, "details": {}}]
        assert manifest["archive"]["name"] == "a.tar.gz"
        assert set(manifest["files"]) == {"bin/git", "libexec/git-core/git-remote-https", "lib/libz.so.1", "git.sh"}

        path = tmp_path / "out" / "build_manifest.json"
        write_build_manifest(manifest, path)
        assert load_build_manifest(path) == json.loads(path.read_text(encoding="utf-8"))

    def test_load_missing_manifest(self, tmp_path: Path) -> None:
        assert load_build_manifest(tmp_path / "none.json") == {}

    def test_digests_are_stable(self, bundle: Path) -> None:
        assert bundle_file_digests(bundle) == bundle_file_digests(bundle)
        (bundle / "lib" / "libz.so.1").write_bytes(b"other")
        assert bundle_file_digests(bundle)["lib/libz.so.1"] != "zlib"


class TestShouldRebuild:
    def test_no_previous_manifest(self) -> None:
        assert should_rebuild({}, "v2.45.0")

    def test_same_tag_skips(self) -> None:
        assert not should_rebuild({"build_info": {"tag": "v2.45.0"}}, "v2.45.0")

    def test_new_tag_rebuilds(self) -> None:
        assert should_rebuild({"build_info": {"tag": "v2.44.0"}}, "v2.45.0")

    def test_force(self) -> None:
        assert should_rebuild({"build_info": {"tag": "v2.45.0"}}, "v2.45.0", force=True)


class TestPublisher:
    def test_archive_is_reproducible(self, tmp_path: Path, bundle: Path) -> None:
        first = create_bundle_archive(bundle, tmp_path / "a" / "g.tar.gz", "git-standalone", 1620000000)
        second = create_bundle_archive(bundle, tmp_path / "b" / "g.tar.gz", "git-standalone", 1620000000)

        assert first["sha256"] == second["sha256"]
        assert (tmp_path / "a" / "g.tar.gz").read_bytes() == (tmp_path / "b" / "g.tar.gz").read_bytes()

    def test_archive_entries_normalized(self, tmp_path: Path, bundle: Path) -> None:
        archive = tmp_path / "g.tar.gz"
        create_bundle_archive(bundle, archive, "git-standalone", 1620000000)

        with tarfile.open(archive, "r:gz") as tar:
            members = tar.getmembers()
        names = [m.name for m in members]
        assert names[0] == "git-standalone"
        assert "git-standalone/bin/git" in names
        assert names == sorted(names)
        assert all(m.mtime == 1620000000 and m.uid == 0 and m.gid == 0 for m in members)
        git = next(m for m in members if m.name == "git-standalone/bin/git")
        assert git.mode & 0o111

    def test_publish_local_copies_existing_files(self, tmp_path: Path) -> None:
        src = tmp_path / "dist"
        src.mkdir()
        (src / "README.md").write_text("readme", encoding="utf-8")

        published = publish_local([src / "README.md", src / "missing.json"], tmp_path / "publish")

        assert published == [tmp_path / "publish" / "README.md"]


def test_readme_mentions_archive_and_launcher(bundle: Path) -> None:
    config = BuildConfig()
    manifest = {
        "archive": {"name": _archive_name("v2.45.0"), "sha256": "abc", "size": 4096},
        "files": bundle_file_digests(bundle),
    }

    readme = generate_readme("v2.45.0", config, manifest)

    assert "# Standalone Git 2.45.0" in readme
    assert "git-standalone-2.45.0-linux-x64.tar.gz" in readme
    assert "./git-standalone/git.sh --version" in readme
    assert "- `bin/git`" in readme
    assert "4.0 KiB" in readme


def test_orchestrate_skips_already_published_tag(tmp_path: Path) -> None:
    publish_dir = tmp_path / "publish"
    write_build_manifest({"build_info": {"tag": "v2.45.0"}}, publish_dir / "build_manifest.json")
    target = PublishTarget(
        publish_dir=publish_dir,
        manifest_path=publish_dir / "build_manifest.json",
        upload=False,
        repo_id=None,
        repo_type="model",
    )

    published = asyncio.run(orchestrate(BuildConfig(), target, work_root=tmp_path / "runs", tag="v2.45.0", force=False))

    assert published is None
    assert not (tmp_path / "runs").exists()
