"""Bundle verification.

完成したバンドルをランチャー経由でエンドツーエンド検証する。
"""

from __future__ import annotations

import shlex
import shutil
import tempfile
from pathlib import Path

from loguru import logger

from .context import BuildContext
from .core.exceptions import ProcessFailed, VerificationFailure
from .runner import ProcessRunner


async def check_version(ctx: BuildContext, runner: ProcessRunner) -> str:
    launcher = shlex.quote(str(ctx.launcher_path))
    try:
        output = await runner.run(f"{launcher} --version", ctx.work_dir, ctx.environment)
    except ProcessFailed as exc:
        msg = f"{ctx.launcher_path.name} --version failed"
        raise VerificationFailure(msg, output=exc.output) from exc

    if ctx.version not in output:
        msg = f"Expected version {ctx.version} in --version output"
        raise VerificationFailure(msg, output=output.strip())
    logger.info(f"Bundle reports: {output.strip()}")
    return output


async def check_clone(ctx: BuildContext, runner: ProcessRunner) -> None:
    """ランチャー経由で ``verify_repo_url`` を使い捨てディレクトリにshallow clone."""
    scratch = Path(tempfile.mkdtemp(prefix="verify-", dir=ctx.work_dir))
    dest = scratch / "clone"
    launcher = shlex.quote(str(ctx.launcher_path))
    url = shlex.quote(ctx.config.verify_repo_url)
    try:
        logger.info(f"Verifying HTTPS clone of {ctx.config.verify_repo_url}")
        try:
            await runner.run(
                f"{launcher} clone --depth 1 {url} {shlex.quote(str(dest))}",
                scratch,
                ctx.environment,
            )
        except ProcessFailed as exc:
            msg = f"Shallow clone of {ctx.config.verify_repo_url} failed"
            raise VerificationFailure(msg, output=exc.output) from exc

        if not dest.is_dir() or not any(dest.iterdir()):
            msg = f"Clone destination is empty: {dest}"
            raise VerificationFailure(msg)
        logger.info("HTTPS clone succeeded")
    finally:
        shutil.rmtree(scratch, ignore_errors=True)


async def verify_bundle(ctx: BuildContext, runner: ProcessRunner) -> None:
    await check_version(ctx, runner)
    await check_clone(ctx, runner)
