"""Git standalone bundle pipeline.

ステージを厳密に順番に実行する。最初の失敗で停止し、ステージング
ディレクトリを削除して例外を伝播する。
"""

from __future__ import annotations

import asyncio
import shutil
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
from loguru import logger

from .bundle import finish_bundle, normalize_timestamps
from .config import BuildConfig
from .context import BuildContext, create_work_dir
from .core.exceptions import BuildError, ExtractionFailure
from .download import download_file
from .runner import BashRunner, ProcessRunner
from .steps import (
    compile_steps,
    configure_steps,
    extract_steps,
    host_prepare_steps,
    install_steps,
    run_steps,
)
from .verify import verify_bundle
from .version import resolve_latest_stable_tag

STAGES = (
    "resolve_version",
    "fetch_source",
    "prepare_host",
    "extract_source",
    "configure",
    "compile",
    "install",
    "finish_bundle",
    "verify",
)

TagResolver = Callable[[httpx.AsyncClient, BuildConfig], Awaitable[str]]
Downloader = Callable[[httpx.AsyncClient, str, Path], Awaitable[Path]]


@dataclass
class StageResult:
    """パイプラインの各ステージが出力する結果."""

    name: str
    status: str
    elapsed: float = 0.0
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.name,
            "status": self.status,
            "elapsed": round(self.elapsed, 3),
            "details": self.details,
        }


@dataclass
class PipelineResult:
    context: BuildContext
    stages: list[StageResult]

    @property
    def bundle_dir(self) -> Path:
        return self.context.bundle_dir

    @property
    def launcher(self) -> Path:
        return self.context.launcher_path


class GitBundlePipeline:
    """最新の安定版タグから再配置可能なGitバンドルをビルドする.

    プロセスランナー、タグリゾルバ、ダウンローダ、HTTPクライアントは差し替え
    可能で、ネットワークや実プロセスなしにステージ列を実行できる。

    使用例:
        >>> pipeline = GitBundlePipeline(BuildConfig())
        >>> tag = await pipeline.resolve_version()
        >>> result = await pipeline.run(tag)
    """

    def __init__(
        self,
        config: BuildConfig,
        *,
        runner: ProcessRunner | None = None,
        client: httpx.AsyncClient | None = None,
        work_dir: Path | None = None,
        work_root: Path | None = None,
        resolve_tag: TagResolver | None = None,
        download: Downloader | None = None,
    ) -> None:
        self.config = config
        self.runner = runner or BashRunner()
        self.client = client
        self.work_dir = work_dir
        self.work_root = work_root
        self.resolve_tag = resolve_tag or resolve_latest_stable_tag
        self.download = download or download_file
        self.stages: list[StageResult] = []
        self._resolved_tag: str | None = None

    async def resolve_version(self) -> str:
        """最新の安定版タグを解決し、最初のステージとして記録する.

        ここで解決したタグをそのまま ``run`` に渡すと、記録済みの
        ``resolve_version`` ステージが結果に引き継がれる。

        Returns:
            タグ名（例: "v2.45.0"）
        """
        self.stages = []
        if self.client is not None:
            return await self._resolve(self.client)
        async with httpx.AsyncClient(timeout=self.config.http_timeout) as client:
            return await self._resolve(client)

    async def run(self, tag: str | None = None) -> PipelineResult:
        """全ステージを実行する.

        Args:
            tag: ビルドするタグ（Noneならupstreamから解決）

        Returns:
            ビルドコンテキストとステージ結果
        """
        if tag is not None and tag == self._resolved_tag:
            self.stages = self.stages[:1]
        else:
            self.stages = []
        if self.client is not None:
            return await self._run(self.client, tag)
        async with httpx.AsyncClient(timeout=self.config.http_timeout) as client:
            return await self._run(client, tag)

    async def _resolve(self, client: httpx.AsyncClient) -> str:
        tag = await self._stage("resolve_version", lambda: self.resolve_tag(client, self.config))
        self._resolved_tag = tag
        return tag

    async def _run(self, client: httpx.AsyncClient, tag: str | None) -> PipelineResult:
        if tag is None:
            tag = await self._resolve(client)
        elif not self.stages:
            logger.info(f"Using requested tag {tag}")
            self.stages.append(StageResult("resolve_version", "skipped", details={"tag": tag}))

        work_dir = self.work_dir or create_work_dir(self.work_root)
        ctx = BuildContext(work_dir=work_dir, tag=tag, config=self.config)
        logger.info(f"=== Build start: {self.config.upstream_repo} {tag} in {work_dir} ===")

        try:
            await self._stage("fetch_source", lambda: self.download(client, ctx.download_url, ctx.archive_path))
            if self.config.prepare_host:
                await self._stage("prepare_host", lambda: run_steps(host_prepare_steps(ctx), self.runner, ctx, "prepare_host"))
            else:
                self.stages.append(StageResult("prepare_host", "skipped"))
            await self._stage("extract_source", lambda: self._extract(ctx))
            await self._stage("configure", lambda: run_steps(configure_steps(ctx), self.runner, ctx, "configure"))
            await self._stage("compile", lambda: run_steps(compile_steps(ctx), self.runner, ctx, "compile"))
            await self._stage("install", lambda: run_steps(install_steps(ctx), self.runner, ctx, "install"))
            await self._stage("finish_bundle", lambda: finish_bundle(ctx, self.runner))
            if self.config.verify:
                await self._stage("verify", lambda: verify_bundle(ctx, self.runner))
            else:
                logger.warning("Verification disabled")
                self.stages.append(StageResult("verify", "skipped"))
        except BaseException:
            self._discard_staging(ctx)
            raise

        logger.info(f"=== Build done: standalone Git at {ctx.bundle_dir} ===")
        return PipelineResult(context=ctx, stages=list(self.stages))

    async def _extract(self, ctx: BuildContext) -> Path:
        await run_steps(extract_steps(ctx), self.runner, ctx, "extract_source")
        if not ctx.source_dir.is_dir():
            msg = f"Expected source directory {ctx.source_dir.name} after extraction"
            raise ExtractionFailure(msg)
        normalize_timestamps(ctx.source_dir, self.config.source_date_epoch)
        return ctx.source_dir

    async def _stage(self, name: str, action: Callable[[], Awaitable[Any]]) -> Any:
        logger.info(f"--- {name} ---")
        started = time.monotonic()
        try:
            value = await action()
        except asyncio.CancelledError:
            self.stages.append(StageResult(name, "cancelled", time.monotonic() - started))
            logger.warning(f"Pipeline cancelled during {name}")
            raise
        except BuildError as exc:
            self.stages.append(
                StageResult(
                    name,
                    "failed",
                    time.monotonic() - started,
                    {"kind": exc.kind, "retryable": exc.retryable},
                )
            )
            logger.error(f"Stage {name} failed: {exc}")
            raise
        except Exception as exc:
            self.stages.append(StageResult(name, "failed", time.monotonic() - started, {"error": repr(exc)}))
            exc.add_note(f"pipeline stage: {name}")
            logger.error(f"Stage {name} failed: {exc}")
            raise

        elapsed = time.monotonic() - started
        details = {"value": str(value)} if isinstance(value, (str, Path)) else {}
        self.stages.append(StageResult(name, "completed", elapsed, details))
        logger.info(f"{name} completed in {elapsed:.1f}s")
        return value

    def _discard_staging(self, ctx: BuildContext) -> None:
        if ctx.staging_dir.exists():
            logger.warning(f"Removing incomplete staging directory {ctx.staging_dir}")
            shutil.rmtree(ctx.staging_dir, ignore_errors=True)


async def build_git_bundle(config: BuildConfig, **kwargs: Any) -> PipelineResult:
    """``GitBundlePipeline(config, **kwargs).run(tag)`` の簡易ラッパー."""
    tag = kwargs.pop("tag", None)
    return await GitBundlePipeline(config, **kwargs).run(tag)
