"""CI bundle publisher: deterministic archive, publish directory, optional Hub upload."""

from __future__ import annotations

import gzip
import hashlib
import shutil
import tarfile
from pathlib import Path

from huggingface_hub import HfApi, create_repo
from loguru import logger


def _reset_tarinfo(info: tarfile.TarInfo, epoch: int) -> tarfile.TarInfo:
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""
    info.mtime = epoch
    return info


def create_bundle_archive(bundle_dir: Path, archive_path: Path, root_name: str, epoch: int) -> dict:
    """``bundle_dir`` をバイト単位で再現可能な ``.tar.gz`` にまとめる.

    エントリはソート順に追加し、所有者・グループ・mtimeをリセットする。
    gzipヘッダにはタイムスタンプもファイル名も含めない。

    Args:
        bundle_dir: バンドルのルート
        archive_path: 出力アーカイブのパス
        root_name: アーカイブ内のトップディレクトリ名
        epoch: 全エントリに設定するmtime

    Returns:
        書き出したアーカイブの ``{"name", "sha256", "size"}``
    """
    archive_path.parent.mkdir(parents=True, exist_ok=True)
    paths = [bundle_dir, *sorted(bundle_dir.rglob("*"))]
    with open(archive_path, "wb") as raw:
        with gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as gz:
            with tarfile.open(fileobj=gz, mode="w", format=tarfile.GNU_FORMAT) as tar:
                for path in paths:
                    arcname = Path(root_name, path.relative_to(bundle_dir)).as_posix()
                    tar.add(
                        path,
                        arcname=arcname,
                        recursive=False,
                        filter=lambda info: _reset_tarinfo(info, epoch),
                    )

    digest = hashlib.sha256(archive_path.read_bytes()).hexdigest()
    info = {"name": archive_path.name, "sha256": digest, "size": archive_path.stat().st_size}
    logger.info(f"Archive written: {archive_path} ({info['size']} bytes, sha256 {digest[:12]})")
    return info


def publish_local(files: list[Path], publish_dir: Path) -> list[Path]:
    publish_dir.mkdir(parents=True, exist_ok=True)
    published = []
    for path in files:
        if not path.exists():
            logger.warning(f"Missing file, skipping publish: {path}")
            continue
        dest = publish_dir / path.name
        shutil.copyfile(path, dest)
        published.append(dest)
    logger.info(f"Published {len(published)} files to {publish_dir}")
    return published


def _upload_file(
    api: HfApi,
    path: Path,
    repo_id: str,
    repo_type: str,
    commit_message: str | None,
) -> None:
    if not path.exists():
        logger.warning(f"Missing file, skipping upload: {path}")
        return
    api.upload_file(
        path_or_fileobj=str(path),
        path_in_repo=path.name,
        repo_id=repo_id,
        repo_type=repo_type,
        commit_message=commit_message,
    )


def upload_bundle(
    files: list[Path],
    repo_id: str,
    token: str,
    repo_type: str = "model",
    commit_message: str | None = None,
) -> None:
    api = HfApi(token=token)
    create_repo(
        repo_id=repo_id,
        repo_type=repo_type,
        exist_ok=True,
        token=token,
    )

    logger.info(f"Uploading bundle to Hugging Face: {repo_id}")
    for path in files:
        _upload_file(api, path, repo_id, repo_type, commit_message)

    logger.info(f"Upload complete: https://huggingface.co/{repo_id}")
