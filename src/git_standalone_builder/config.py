"""Build configuration.

ビルドを再現可能にする設定値はすべて1つの凍結された ``BuildConfig`` に集約し、
各ステージへ明示的に渡す。

使用例:
    >>> config = load_build_config(Path("builder_ci/build.yml"))
    >>> overlay = config.environment_overlay(Path("/tmp/work/git-2.45.0"))
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

DEFAULT_HOST_PACKAGES = (
    "build-essential",
    "autoconf",
    "pkg-config",
    "libcurl4-openssl-dev",
    "libssl-dev",
    "libexpat1-dev",
    "zlib1g-dev",
    "gettext",
)

DEFAULT_CONFIGURE_ARGS = (
    "--with-curl",
    "--with-openssl",
    "--with-expat",
    "--with-iconv",
    "--without-tcltk",
    "--without-python",
)

DEFAULT_MAKE_VARIABLES = (
    ("NO_PERL", "YesPlease"),
    ("NO_PYTHON", "YesPlease"),
    ("NO_TCLTK", "YesPlease"),
    ("NO_GETTEXT", "YesPlease"),
    ("NO_INSTALL_HARDLINKS", "YesPlease"),
    ("SKIP_DASHED_BUILT_INS", "YesPlease"),
    ("RUNTIME_PREFIX", "YesPlease"),
    ("gitexecdir", "libexec/git-core"),
)

# `make install` copies git-shell into bindir unconditionally
DEFAULT_INSTALL_PROGRAMS = (
    "git-remote-http",
    "git-http-fetch",
    "git-shell",
)

# glibc and the loader are always provided by the host
DEFAULT_SYSTEM_LIBRARIES = (
    "linux-vdso",
    "ld-linux",
    "libc.so",
    "libm.so",
    "libdl.so",
    "libpthread.so",
    "librt.so",
    "libresolv.so",
)

DEFAULT_PRUNE_PATHS = (
    "share/doc",
    "share/man",
    "share/git-gui",
    "share/gitk-git",
    "share/locale",
    "share/gitweb",
    "share/perl5",
    "share/bash-completion",
    "bin/git-shell",
    "libexec/git-core/git-shell",
)


@dataclass(frozen=True)
class BuildConfig:
    """1回のパイプライン実行のための不変な設定."""

    upstream_repo: str = "git/git"
    api_base_url: str = "https://api.github.com"
    archive_url_template: str = "https://github.com/{repo}/archive/refs/tags/{tag}.tar.gz"
    user_agent: str = "git-standalone-builder/0.1"
    http_timeout: float = 300.0

    source_date_epoch: int = 1620000000
    timezone: str = "UTC"
    locale: str = "C"
    cflags: str = "-O2 -g0"
    ldflags: str = "-Wl,--build-id=none"

    host_packages: tuple[str, ...] = DEFAULT_HOST_PACKAGES
    use_sudo: bool = True
    prepare_host: bool = True

    prefix: str = "/usr"
    configure_args: tuple[str, ...] = DEFAULT_CONFIGURE_ARGS
    make_variables: tuple[tuple[str, str], ...] = DEFAULT_MAKE_VARIABLES
    install_programs: tuple[str, ...] = DEFAULT_INSTALL_PROGRAMS
    jobs: int = field(default_factory=lambda: os.cpu_count() or 1)
    config_log_lines: int = 40

    https_helper: str = "git-remote-https"
    http_helper: str = "git-remote-http"
    fallback_helper: str = "git-remote-curl"
    helper_dir: str = "libexec/git-core"
    system_libraries: tuple[str, ...] = DEFAULT_SYSTEM_LIBRARIES
    prune_paths: tuple[str, ...] = DEFAULT_PRUNE_PATHS
    launcher_name: str = "git.sh"

    verify: bool = True
    verify_repo_url: str = "https://github.com/octocat/Hello-World.git"

    @property
    def upstream_name(self) -> str:
        return self.upstream_repo.rsplit("/", 1)[-1]

    def tags_url(self) -> str:
        return f"{self.api_base_url.rstrip('/')}/repos/{self.upstream_repo}/tags"

    def archive_url(self, tag: str) -> str:
        return self.archive_url_template.format(repo=self.upstream_repo, tag=tag)

    def environment_overlay(self, source_dir: Path) -> dict[str, str]:
        """全ビルドコマンドに適用する固定環境変数を返す.

        Args:
            source_dir: 展開済みソースツリー（デバッグ情報では ``.`` に置換）

        Returns:
            ホスト環境に上書きマージする環境変数
        """
        return {
            "SOURCE_DATE_EPOCH": str(self.source_date_epoch),
            "TZ": self.timezone,
            "LC_ALL": self.locale,
            "CFLAGS": f"{self.cflags} -ffile-prefix-map={source_dir}=.",
            "LDFLAGS": self.ldflags,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BuildConfig:
        """辞書から設定を作成する（欠けたキーはデフォルト値）.

        Args:
            data: 設定キーと値の辞書

        Returns:
            BuildConfig

        Raises:
            ValueError: 未知のキーが含まれる場合
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            msg = f"Unknown build config keys: {unknown}"
            raise ValueError(msg)

        values: dict[str, Any] = {}
        for key, value in data.items():
            if key == "make_variables":
                if isinstance(value, dict):
                    value = tuple((str(k), str(v)) for k, v in value.items())
                else:
                    value = tuple((str(k), str(v)) for k, v in value)
            elif isinstance(value, list):
                value = tuple(value)
            values[key] = value
        return cls(**values)


def load_build_config(config_path: Path | None) -> BuildConfig:
    """YAML設定ファイルを読み込んでBuildConfigを返す.

    Args:
        config_path: build.ymlのパス (Noneならデフォルト設定)

    Returns:
        BuildConfig

    Raises:
        FileNotFoundError: 設定ファイルが存在しない場合
        ValueError: ルートがマッピングでない場合
    """
    if config_path is None:
        return BuildConfig()

    if not config_path.exists():
        msg = f"Build config not found: {config_path}"
        raise FileNotFoundError(msg)

    with open(config_path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        msg = f"Build config must contain a mapping: {config_path}"
        raise ValueError(msg)

    section = raw.get("build", raw)
    config = BuildConfig.from_dict(section)
    logger.info(f"Loaded build config from {config_path}")
    return config
