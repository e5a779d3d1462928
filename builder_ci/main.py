"""CI orchestrator: resolve the upstream tag, build the standalone Git bundle, verify, and publish."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import os
import sys
from dataclasses import dataclass
from pathlib import Path

import httpx
from loguru import logger

from builder_ci.manifest import (
    create_build_manifest,
    load_build_manifest,
    should_rebuild,
    write_build_manifest,
)
from builder_ci.publisher import create_bundle_archive, publish_local, upload_bundle
from builder_ci.readme import generate_readme
from git_standalone_builder import __version__ as builder_version
from git_standalone_builder.config import BuildConfig, load_build_config
from git_standalone_builder.context import version_from_tag
from git_standalone_builder.pipeline import GitBundlePipeline, PipelineResult

ARCHIVE_ROOT = "git-standalone"


@dataclass(frozen=True)
class PublishTarget:
    publish_dir: Path
    manifest_path: Path
    upload: bool
    repo_id: str | None
    repo_type: str


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[1]


def _archive_name(tag: str) -> str:
    return f"{ARCHIVE_ROOT}-{version_from_tag(tag)}-linux-x64.tar.gz"


def _publish(result: PipelineResult, config: BuildConfig, target: PublishTarget) -> Path:
    ctx = result.context
    dist_dir = ctx.work_dir / "dist"

    archive_path = dist_dir / _archive_name(ctx.tag)
    archive_info = create_bundle_archive(
        ctx.bundle_dir,
        archive_path,
        root_name=ARCHIVE_ROOT,
        epoch=config.source_date_epoch,
    )

    manifest = create_build_manifest(
        tag=ctx.tag,
        config=config,
        bundle_dir=ctx.bundle_dir,
        stages=result.stages,
        archive_info=archive_info,
        builder_version=builder_version,
    )
    manifest_path = dist_dir / target.manifest_path.name
    write_build_manifest(manifest, manifest_path)

    readme_path = dist_dir / "README.md"
    readme_path.write_text(generate_readme(ctx.tag, config, manifest), encoding="utf-8")

    files = [archive_path, manifest_path, readme_path]
    publish_local(files, target.publish_dir)

    if target.upload:
        if not target.repo_id:
            raise ValueError("upload requested but repo_id is not set")
        token = os.environ.get("HF_TOKEN")
        if not token:
            raise ValueError("upload requested but HF_TOKEN is not set")
        upload_bundle(
            files,
            repo_id=target.repo_id,
            token=token,
            repo_type=target.repo_type,
            commit_message=f"standalone git {ctx.tag}",
        )

    return target.publish_dir / archive_path.name


async def orchestrate(
    config: BuildConfig,
    target: PublishTarget,
    work_root: Path | None,
    tag: str | None,
    force: bool,
) -> Path | None:
    async with httpx.AsyncClient(timeout=config.http_timeout) as client:
        pipeline = GitBundlePipeline(config, client=client, work_root=work_root)
        if tag is None:
            tag = await pipeline.resolve_version()

        previous = load_build_manifest(target.manifest_path)
        if not should_rebuild(previous, tag, force=force):
            logger.info(f"No upstream changes ({tag}), skipping build.")
            return None

        result = await pipeline.run(tag)

    published = _publish(result, config, target)
    logger.info(f"=== Published {published} ===")
    return published


def main(argv: list[str] | None = None) -> None:
    p = argparse.ArgumentParser(description="Standalone Git build orchestrator")
    p.add_argument(
        "--config",
        type=Path,
        default=Path(__file__).parent / "build.yml",
        help="build.yml path",
    )
    p.add_argument(
        "--work-dir",
        type=Path,
        default=None,
        help="parent directory for per-run working directories (default: system temp)",
    )
    p.add_argument(
        "--publish-dir",
        type=Path,
        default=None,
        help="directory receiving the archive, manifest and README (default: <repo>/ci_output)",
    )
    p.add_argument("--tag", default=None, help="Build this upstream tag instead of the latest stable one")
    p.add_argument("--jobs", type=int, default=None, help="Parallel make jobs (default: CPU count)")
    p.add_argument("--force", action="store_true", help="Rebuild even if the tag was already published")
    p.add_argument("--skip-host-prepare", action="store_true", help="Do not run apt-get")
    p.add_argument("--skip-verify", action="store_true", help="Skip the HTTPS clone verification")
    p.add_argument("--upload", action="store_true", help="Upload to Hugging Face Hub")
    p.add_argument("--repo-id", default=None, help="Hub repo id for upload")
    p.add_argument("--repo-type", default="model", help="Hub repo type for upload")
    p.add_argument("--log-level", default="INFO", help="loguru log level")

    args = p.parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level=args.log_level.upper())

    config = load_build_config(args.config)
    overrides: dict = {}
    if args.jobs:
        overrides["jobs"] = args.jobs
    if args.skip_host_prepare:
        overrides["prepare_host"] = False
    if args.skip_verify:
        overrides["verify"] = False
    if overrides:
        config = dataclasses.replace(config, **overrides)

    publish_dir = args.publish_dir or (_repo_root() / "ci_output")
    target = PublishTarget(
        publish_dir=publish_dir,
        manifest_path=publish_dir / "build_manifest.json",
        upload=args.upload,
        repo_id=args.repo_id,
        repo_type=args.repo_type,
    )

    asyncio.run(
        orchestrate(
            config=config,
            target=target,
            work_root=args.work_dir,
            tag=args.tag,
            force=args.force,
        )
    )


if __name__ == "__main__":
    main()
