"""Unit tests for build configuration loading."""

from pathlib import Path

import pytest

from git_standalone_builder.config import BuildConfig, load_build_config
from git_standalone_builder.context import BuildContext, version_from_tag

REPO_BUILD_YML = Path(__file__).resolve().parents[2] / "builder_ci" / "build.yml"


class TestLoadBuildConfig:
    def test_none_returns_defaults(self) -> None:
        assert load_build_config(None) == BuildConfig()

    def test_repo_build_yml(self) -> None:
        config = load_build_config(REPO_BUILD_YML)
        assert config.upstream_repo == "git/git"
        assert ("RUNTIME_PREFIX", "YesPlease") in config.make_variables
        assert "--with-curl" in config.configure_args
        assert config.install_programs == BuildConfig().install_programs
        assert config.prune_paths == BuildConfig().prune_paths
        assert isinstance(config.host_packages, tuple)

    def test_partial_overrides(self, tmp_path: Path) -> None:
        path = tmp_path / "build.yml"
        path.write_text("build:\n  source_date_epoch: 42\n  configure_args: [--with-curl]\n", encoding="utf-8")
        config = load_build_config(path)
        assert config.source_date_epoch == 42
        assert config.configure_args == ("--with-curl",)
        assert config.timezone == "UTC"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match="Build config not found"):
            load_build_config(tmp_path / "missing.yml")

    def test_unknown_key(self, tmp_path: Path) -> None:
        path = tmp_path / "build.yml"
        path.write_text("build:\n  no_such_option: 1\n", encoding="utf-8")
        with pytest.raises(ValueError, match="Unknown build config keys"):
            load_build_config(path)

    def test_root_must_be_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "build.yml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError, match="must contain a mapping"):
            load_build_config(path)


class TestEnvironmentOverlay:
    def test_overlay_pins_reproducibility_settings(self, tmp_path: Path) -> None:
        overlay = BuildConfig().environment_overlay(tmp_path / "git-2.45.0")
        assert overlay["SOURCE_DATE_EPOCH"] == "1620000000"
        assert overlay["TZ"] == "UTC"
        assert overlay["LC_ALL"] == "C"
        assert f"-ffile-prefix-map={tmp_path / 'git-2.45.0'}=." in overlay["CFLAGS"]
        assert "--build-id=none" in overlay["LDFLAGS"]

    def test_configs_do_not_share_state(self, tmp_path: Path) -> None:
        a = BuildConfig(source_date_epoch=1)
        b = BuildConfig(source_date_epoch=2)
        assert a.environment_overlay(tmp_path)["SOURCE_DATE_EPOCH"] == "1"
        assert b.environment_overlay(tmp_path)["SOURCE_DATE_EPOCH"] == "2"


class TestBuildContext:
    def test_derived_paths(self, tmp_path: Path) -> None:
        ctx = BuildContext(work_dir=tmp_path, tag="v2.45.0", config=BuildConfig())
        assert ctx.version == "2.45.0"
        assert ctx.source_dir == tmp_path / "git-2.45.0"
        assert ctx.archive_path == tmp_path / "git.tar.gz"
        assert ctx.bundle_dir == tmp_path / "staging" / "usr"
        assert ctx.binary_path == tmp_path / "staging" / "usr" / "bin" / "git"
        assert ctx.helper_dir == tmp_path / "staging" / "usr" / "libexec" / "git-core"
        assert ctx.download_url == "https://github.com/git/git/archive/refs/tags/v2.45.0.tar.gz"

    def test_version_from_tag(self) -> None:
        assert version_from_tag("v2.45.0") == "2.45.0"
        assert version_from_tag("2.45.0") == "2.45.0"
