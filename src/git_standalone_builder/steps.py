"""Declarative build steps.

ホスト準備、展開、configure、コンパイル、インストールはそれぞれ ``Step`` の
短いリストで表現する。``run_steps`` がそれらを ``ProcessRunner`` で順に実行し、
``ProcessFailed`` をステップごとのエラークラスに変換する。
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from .context import BuildContext
from .core.exceptions import (
    BuildError,
    CompileFailure,
    ConfigurationFailure,
    ExtractionFailure,
    HostDependencyInstallFailure,
    InstallFailure,
    ProcessFailed,
)
from .runner import ProcessRunner


@dataclass(frozen=True)
class Step:
    name: str
    command: str
    cwd: Path
    error: type[BuildError]
    use_overlay: bool = True
    diagnostics_log: Path | None = None


def read_log_head(path: Path, lines: int) -> str:
    """``path`` の先頭 ``lines`` 行を返す（ファイルがなければ空文字列）."""
    if not path.exists():
        return ""
    head: list[str] = []
    with open(path, encoding="utf-8", errors="replace") as f:
        for line in f:
            if len(head) >= lines:
                break
            head.append(line.rstrip("\n"))
    return "\n".join(head)


def _make_variables(ctx: BuildContext) -> str:
    return " ".join(f"{key}={shlex.quote(value)}" for key, value in ctx.config.make_variables)


def host_prepare_steps(ctx: BuildContext) -> list[Step]:
    config = ctx.config
    sudo = "sudo " if config.use_sudo else ""
    packages = " ".join(shlex.quote(p) for p in config.host_packages)
    return [
        Step(
            name="apt-get install",
            command=f"{sudo}apt-get update && {sudo}apt-get install -y {packages}",
            cwd=ctx.work_dir,
            error=HostDependencyInstallFailure,
            use_overlay=False,
        )
    ]


def extract_steps(ctx: BuildContext) -> list[Step]:
    archive = shlex.quote(str(ctx.archive_path))
    return [
        Step(
            name="tar extract",
            command=f"tar --no-same-owner --numeric-owner --owner=0 --group=0 -xzf {archive}",
            cwd=ctx.work_dir,
            error=ExtractionFailure,
        )
    ]


def configure_steps(ctx: BuildContext) -> list[Step]:
    config = ctx.config
    args = " ".join(shlex.quote(a) for a in config.configure_args)
    prefix = shlex.quote(config.prefix)
    return [
        Step(
            name="make configure",
            command="make configure",
            cwd=ctx.source_dir,
            error=ConfigurationFailure,
        ),
        Step(
            name="configure",
            command=f"./configure --prefix={prefix} {args}",
            cwd=ctx.source_dir,
            error=ConfigurationFailure,
            diagnostics_log=ctx.config_log,
        ),
    ]


def compile_steps(ctx: BuildContext) -> list[Step]:
    programs = shlex.quote(" ".join(ctx.config.install_programs))
    return [
        Step(
            name="make",
            command=f"make -j{ctx.config.jobs} {_make_variables(ctx)} PROGRAMS={programs} all",
            cwd=ctx.source_dir,
            error=CompileFailure,
        )
    ]


def install_steps(ctx: BuildContext) -> list[Step]:
    programs = shlex.quote(" ".join(ctx.config.install_programs))
    destdir = shlex.quote(str(ctx.staging_dir))
    return [
        Step(
            name="make install",
            command=f"make {_make_variables(ctx)} PROGRAMS={programs} DESTDIR={destdir} install",
            cwd=ctx.source_dir,
            error=InstallFailure,
        )
    ]


async def run_steps(
    steps: list[Step],
    runner: ProcessRunner,
    ctx: BuildContext,
    stage: str,
) -> list[str]:
    """``steps`` を順に実行し、最初の失敗で停止する.

    Args:
        steps: 実行するステップ
        runner: プロセスランナー
        ctx: ビルドコンテキスト（環境変数オーバーレイを提供）
        stage: 送出するエラーに記録するステージ名

    Returns:
        各ステップの出力

    Raises:
        BuildError: 失敗したステップのエラークラス（ツール出力を添付）
    """
    outputs: list[str] = []
    for step in steps:
        logger.info(f"[{stage}] {step.name}")
        env = ctx.environment if step.use_overlay else None
        try:
            outputs.append(await runner.run(step.command, step.cwd, env))
        except ProcessFailed as exc:
            output = exc.output
            if step.diagnostics_log is not None:
                excerpt = read_log_head(step.diagnostics_log, ctx.config.config_log_lines)
                if excerpt:
                    logger.error(
                        f"First {ctx.config.config_log_lines} lines of {step.diagnostics_log}:\n{excerpt}"
                    )
                    output = f"{output}\n--- {step.diagnostics_log.name} ---\n{excerpt}"
            msg = f"{step.name} failed with exit code {exc.returncode}"
            raise step.error(msg, stage=stage, output=output.strip()) from exc
    return outputs
