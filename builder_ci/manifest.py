"""ビルドマニフェスト（build_manifest.json）の生成と管理."""

from __future__ import annotations

import hashlib
import json
import os
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger

from git_standalone_builder.config import BuildConfig
from git_standalone_builder.pipeline import StageResult


def _sha256(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def bundle_file_digests(bundle_dir: Path) -> dict[str, str]:
    """バンドル内の全ファイルのSHA-256を相対パス順に計算.

    Args:
        bundle_dir: バンドルのルートディレクトリ

    Returns:
        相対パス -> ダイジェスト（シンボリックリンクは ``symlink:<target>``）
    """
    digests: dict[str, str] = {}
    for path in sorted(bundle_dir.rglob("*")):
        rel = path.relative_to(bundle_dir).as_posix()
        if path.is_symlink():
            digests[rel] = f"symlink:{os.readlink(path)}"
        elif path.is_file():
            digests[rel] = _sha256(path)
    return digests


def create_build_manifest(
    tag: str,
    config: BuildConfig,
    bundle_dir: Path,
    stages: list[StageResult],
    archive_info: dict | None = None,
    builder_version: str = "0.1.0",
) -> dict:
    """ビルドマニフェストを作成.

    Args:
        tag: ビルドしたupstreamタグ（例: "v2.45.0"）
        config: ビルド設定
        bundle_dir: 完成したバンドルのルート
        stages: パイプラインの各ステージ結果
        archive_info: 公開アーカイブの情報（name、sha256、size）
        builder_version: git-standalone-builderのバージョン

    Returns:
        マニフェスト辞書
    """
    manifest = {
        "build_info": {
            "tag": tag,
            "upstream_repo": config.upstream_repo,
            "built_at": datetime.now(UTC).isoformat(),
            "builder_version": builder_version,
        },
        "environment": {
            "SOURCE_DATE_EPOCH": config.source_date_epoch,
            "TZ": config.timezone,
            "LC_ALL": config.locale,
            "CFLAGS": config.cflags,
            "LDFLAGS": config.ldflags,
        },
        "configure_args": list(config.configure_args),
        "make_variables": dict(config.make_variables),
        "stages": [s.to_dict() for s in stages],
        "files": bundle_file_digests(bundle_dir),
    }

    # 公開アーカイブ情報を追加
    if archive_info:
        manifest["archive"] = archive_info

    return manifest


def write_build_manifest(manifest: dict, output_path: Path) -> None:
    """マニフェストをJSONファイルとして保存.

    Args:
        manifest: マニフェスト辞書
        output_path: 出力JSONファイルパス
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, ensure_ascii=False)

    logger.info(f"Build manifest written to {output_path}")


def load_build_manifest(manifest_path: Path) -> dict:
    """既存のマニフェストを読み込む.

    Args:
        manifest_path: マニフェストJSONファイルパス

    Returns:
        マニフェスト辞書（存在しなければ空）
    """
    if not manifest_path.exists():
        logger.warning(f"Manifest not found: {manifest_path}")
        return {}

    with open(manifest_path, encoding="utf-8") as f:
        manifest = json.load(f)

    logger.info(f"Loaded manifest from {manifest_path}")
    return manifest


def should_rebuild(old_manifest: dict, tag: str, force: bool = False) -> bool:
    """前回のマニフェストと解決済みタグからリビルドが必要かを判定.

    Args:
        old_manifest: 前回公開したマニフェスト（なければ空辞書）
        tag: 今回解決したupstreamタグ
        force: 強制リビルドフラグ

    Returns:
        リビルドが必要ならTrue
    """
    if force:
        logger.info("Force rebuild enabled")
        return True

    previous = old_manifest.get("build_info", {}).get("tag")
    if previous != tag:
        logger.info(f"Rebuild required: {previous or 'no previous build'} -> {tag}")
        return True

    logger.info(f"{tag} already published, rebuild not required")
    return False
