"""Per-run build context.

実行ごとのビルドコンテキストと作業ディレクトリの作成。
"""

from __future__ import annotations

import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from .config import BuildConfig


def create_work_dir(base_dir: Path | None = None, prefix: str = "git-build-") -> Path:
    """1回のパイプライン実行用に新しい作業ディレクトリを作成.

    Args:
        base_dir: 親ディレクトリ（Noneならシステムの一時ディレクトリ）
        prefix: ディレクトリ名の接頭辞

    Returns:
        作成したディレクトリのパス
    """
    if base_dir is not None:
        base_dir.mkdir(parents=True, exist_ok=True)
    work_dir = Path(tempfile.mkdtemp(prefix=prefix, dir=base_dir))
    logger.debug(f"Created working directory: {work_dir}")
    return work_dir


def version_from_tag(tag: str) -> str:
    """``v2.45.0`` -> ``2.45.0``."""
    return tag[1:] if tag[:1] in ("v", "V") else tag


@dataclass
class BuildContext:
    """パイプラインの各ステージで共有するパス群.

    ``work_dir`` と ``tag`` は作成時に固定され、その他のパスはそれらと
    ``config`` から導出される。環境変数のオーバーレイは作成時に1度だけ計算する。
    """

    work_dir: Path
    tag: str
    config: BuildConfig
    environment: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.work_dir = Path(self.work_dir)
        if not self.environment:
            self.environment = self.config.environment_overlay(self.source_dir)

    @property
    def version(self) -> str:
        return version_from_tag(self.tag)

    @property
    def download_url(self) -> str:
        return self.config.archive_url(self.tag)

    @property
    def archive_path(self) -> Path:
        return self.work_dir / f"{self.config.upstream_name}.tar.gz"

    @property
    def source_dir(self) -> Path:
        return self.work_dir / f"{self.config.upstream_name}-{self.version}"

    @property
    def config_log(self) -> Path:
        return self.source_dir / "config.log"

    @property
    def staging_dir(self) -> Path:
        return self.work_dir / "staging"

    @property
    def bundle_dir(self) -> Path:
        return self.staging_dir / self.config.prefix.strip("/")

    @property
    def binary_path(self) -> Path:
        return self.bundle_dir / "bin" / "git"

    @property
    def lib_dir(self) -> Path:
        return self.bundle_dir / "lib"

    @property
    def helper_dir(self) -> Path:
        return self.bundle_dir / self.config.helper_dir

    @property
    def launcher_path(self) -> Path:
        return self.bundle_dir / self.config.launcher_name
