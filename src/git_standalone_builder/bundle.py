"""Bundle finishing.

ステージングされたインストールを自己完結・再配置可能なバンドルに仕上げる。
以下の順序で実行する:

1. ensure_transport_helper  - 実行可能なHTTPSリモートヘルパーを保証
2. collect_shared_libraries - 非システムの共有ライブラリを lib/ にコピー
3. normalize_timestamps     - 全エントリのmtimeを SOURCE_DATE_EPOCH に統一
4. strip_binaries           - ELF実行ファイルと共有オブジェクトをstrip
5. prune_bundle             - ドキュメント、ロケール、GUI/Web/Perl資産を削除
6. write_launcher           - 検索パスを設定してgitをexecする ``git.sh``
"""

from __future__ import annotations

import os
import re
import shlex
import shutil
import stat
from pathlib import Path

from loguru import logger

from .context import BuildContext
from .core.exceptions import BundleFinishFailure, MissingTransportHelper, ProcessFailed
from .runner import ProcessRunner

ELF_MAGIC = b"\x7fELF"
SHARED_OBJECT_RE = re.compile(r"\.so(\.\d+)*$")
LDD_LINE_RE = re.compile(r"^\s*(?P<name>\S+)\s+=>\s+(?P<path>/\S+)\s+\(0x[0-9a-fA-F]+\)")

HELPER_WRAPPER = """#!/bin/sh
exec "$(dirname "$0")/{target}" "$@"
"""

LAUNCHER_SCRIPT = """#!/bin/bash
DIR="$(dirname "$(readlink -f "$0")")"
export LD_LIBRARY_PATH="$DIR/lib${{LD_LIBRARY_PATH:+:$LD_LIBRARY_PATH}}"
export PATH="$DIR/{helper_dir}:$PATH"
exec "$DIR/bin/git" "$@"
"""


def make_executable(path: Path) -> None:
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def _stamp(path: Path, epoch: int) -> None:
    os.utime(path, (epoch, epoch), follow_symlinks=False)


def ensure_transport_helper(ctx: BuildContext) -> Path:
    """HTTPSリモートヘルパーが存在し実行可能であることを保証する.

    既存のヘルパーがなければ、HTTPヘルパーをexecする1行ラッパーを優先し、
    それもなければ下位のトランスポートバイナリをHTTPS名でコピーする。

    Args:
        ctx: ビルドコンテキスト

    Returns:
        HTTPSヘルパーのパス

    Raises:
        MissingTransportHelper: ヘルパーの元になるファイルが何もない場合
    """
    config = ctx.config
    helper_dir = ctx.helper_dir
    https_helper = helper_dir / config.https_helper
    http_helper = helper_dir / config.http_helper
    fallback = helper_dir / config.fallback_helper

    if https_helper.is_file():
        make_executable(https_helper)
        logger.info(f"{config.https_helper} present")
        return https_helper

    if http_helper.is_file():
        logger.warning(f"{config.https_helper} missing, wrapping {config.http_helper}")
        make_executable(http_helper)
        https_helper.write_text(HELPER_WRAPPER.format(target=config.http_helper), encoding="utf-8")
        make_executable(https_helper)
        return https_helper

    if fallback.is_file():
        logger.warning(f"{config.https_helper} missing, copying {config.fallback_helper}")
        shutil.copyfile(fallback, https_helper)
        make_executable(https_helper)
        return https_helper

    msg = (
        f"{config.https_helper} was not installed and neither {config.http_helper} "
        f"nor {config.fallback_helper} exists in {helper_dir}"
    )
    raise MissingTransportHelper(msg)


def parse_ldd_output(output: str) -> list[tuple[str, Path]]:
    """``libz.so.1 => /lib/x86_64-linux-gnu/libz.so.1 (0x...)`` -> (name, path)."""
    libraries = []
    for line in output.splitlines():
        match = LDD_LINE_RE.match(line)
        if match:
            libraries.append((match.group("name"), Path(match.group("path"))))
    return libraries


def is_system_library(name: str, system_libraries: tuple[str, ...]) -> bool:
    return any(name.startswith(prefix) for prefix in system_libraries)


def dependency_roots(ctx: BuildContext) -> list[Path]:
    """``ldd`` で依存関係を調べる対象（本体バイナリとELFのHTTPヘルパー）."""
    roots = [ctx.binary_path]
    http_helper = ctx.helper_dir / ctx.config.http_helper
    if http_helper.is_file() and not http_helper.is_symlink() and is_elf(http_helper):
        roots.append(http_helper)
    return roots


async def collect_shared_libraries(ctx: BuildContext, runner: ProcessRunner) -> list[Path]:
    """本体バイナリとHTTPヘルパーの非システム共有ライブラリを ``lib/`` にコピー.

    シンボリックリンクは解決され、実体がsoname名で配置される。

    Args:
        ctx: ビルドコンテキスト
        runner: プロセスランナー

    Returns:
        コピーしたライブラリのパス

    Raises:
        BundleFinishFailure: 本体バイナリがない、または ldd が失敗した場合
    """
    binary = ctx.binary_path
    if not binary.is_file():
        msg = f"Main binary not found: {binary}"
        raise BundleFinishFailure(msg)

    libraries: dict[str, Path] = {}
    for root in dependency_roots(ctx):
        try:
            output = await runner.run(f"ldd {shlex.quote(str(root))}", ctx.bundle_dir, ctx.environment)
        except ProcessFailed as exc:
            msg = f"ldd failed for {root}"
            raise BundleFinishFailure(msg, output=exc.output) from exc
        for name, source in parse_ldd_output(output):
            libraries.setdefault(name, source)

    ctx.lib_dir.mkdir(parents=True, exist_ok=True)
    copied: list[Path] = []
    for name, source in libraries.items():
        if is_system_library(name, ctx.config.system_libraries):
            logger.debug(f"Skipping system library {name}")
            continue
        dest = ctx.lib_dir / name
        shutil.copyfile(source, dest)
        dest.chmod(0o755)
        copied.append(dest)
        logger.debug(f"Bundled {source} -> {dest}")

    logger.info(f"Copied {len(copied)} shared libraries into {ctx.lib_dir}")
    return copied


def normalize_timestamps(root: Path, epoch: int) -> int:
    """``root`` 以下の全エントリ（``root`` 自身を含む）のmtimeを ``epoch`` に設定.

    シンボリックリンクはリンク自体のmtimeを変更し、参照先は辿らない。

    Args:
        root: 対象ディレクトリ
        epoch: 設定するUNIX時刻

    Returns:
        mtimeを変更したエントリ数
    """
    changed = 0
    paths = [root]
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        base = Path(dirpath)
        paths.extend(base / d for d in dirnames)
        paths.extend(base / f for f in sorted(filenames))

    for path in paths:
        if path.lstat().st_mtime == epoch:
            continue
        _stamp(path, epoch)
        changed += 1
    return changed


def is_elf(path: Path) -> bool:
    with open(path, "rb") as f:
        return f.read(4) == ELF_MAGIC


def find_strippable(root: Path) -> list[Path]:
    """実行可能または共有オブジェクト名を持つ、ELFの通常ファイル."""
    candidates = []
    for path in sorted(root.rglob("*")):
        if path.is_symlink() or not path.is_file():
            continue
        if not (is_executable(path) or SHARED_OBJECT_RE.search(path.name)):
            continue
        if is_elf(path):
            candidates.append(path)
    return candidates


async def strip_binaries(ctx: BuildContext, runner: ProcessRunner) -> list[Path]:
    targets = find_strippable(ctx.bundle_dir)
    if not targets:
        logger.warning(f"No ELF files found to strip under {ctx.bundle_dir}")
        return targets

    files = " ".join(shlex.quote(str(p)) for p in targets)
    try:
        await runner.run(f"strip --strip-all --preserve-dates -- {files}", ctx.bundle_dir, ctx.environment)
    except ProcessFailed as exc:
        msg = f"strip failed on {len(targets)} files"
        raise BundleFinishFailure(msg, output=exc.output) from exc

    logger.info(f"Stripped {len(targets)} binaries")
    return targets


def prune_bundle(ctx: BuildContext) -> list[Path]:
    """``prune_paths`` を削除し、親ディレクトリのmtimeをエポックに戻す."""
    epoch = ctx.config.source_date_epoch
    removed = []
    for relative in ctx.config.prune_paths:
        path = ctx.bundle_dir / relative
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()
        else:
            continue
        _stamp(path.parent, epoch)
        removed.append(path)
        logger.debug(f"Removed {path}")
    logger.info(f"Pruned {len(removed)} paths")
    return removed


def write_launcher(ctx: BuildContext) -> Path:
    launcher = ctx.launcher_path
    launcher.write_text(LAUNCHER_SCRIPT.format(helper_dir=ctx.config.helper_dir), encoding="utf-8")
    make_executable(launcher)
    epoch = ctx.config.source_date_epoch
    _stamp(launcher, epoch)
    _stamp(launcher.parent, epoch)
    logger.info(f"Launcher written to {launcher}")
    return launcher


async def finish_bundle(ctx: BuildContext, runner: ProcessRunner) -> Path:
    """全ての仕上げ処理を順に実行し、バンドルのルートを返す."""
    if not ctx.bundle_dir.is_dir():
        msg = f"Staged install not found: {ctx.bundle_dir}"
        raise BundleFinishFailure(msg)

    ensure_transport_helper(ctx)
    await collect_shared_libraries(ctx, runner)
    changed = normalize_timestamps(ctx.bundle_dir, ctx.config.source_date_epoch)
    logger.info(f"Normalized timestamps of {changed} entries")
    await strip_binaries(ctx, runner)
    prune_bundle(ctx)
    write_launcher(ctx)
    return ctx.bundle_dir
