"""Upstream stable tag resolution.

upstreamの最新安定版タグの解決。
"""

from __future__ import annotations

import httpx
from loguru import logger

from .config import BuildConfig
from .core.exceptions import NoStableVersionFound, VersionResolutionFailure

PRERELEASE_MARKERS = ("-rc", "-beta", "-alpha")


def is_prerelease(tag: str) -> bool:
    lowered = tag.lower()
    return any(marker in lowered for marker in PRERELEASE_MARKERS)


def select_stable_tag(tags: list[dict]) -> str:
    """upstreamの並び順で最初のプレリリースでないタグ名を返す.

    Args:
        tags: タグAPIが返すタグオブジェクト（``{"name": ...}``）のリスト

    Returns:
        タグ名

    Raises:
        NoStableVersionFound: リストが空、またはプレリリースのみの場合
    """
    for tag in tags:
        name = tag.get("name") if isinstance(tag, dict) else None
        if name and not is_prerelease(name):
            return name
    msg = f"No stable version found among {len(tags)} tags"
    raise NoStableVersionFound(msg)


async def resolve_latest_stable_tag(client: httpx.AsyncClient, config: BuildConfig) -> str:
    """upstreamのタグ一覧を取得し、最新の安定版タグを選ぶ.

    Args:
        client: HTTPクライアント
        config: ビルド設定（upstreamリポジトリとAPIベースURL）

    Returns:
        タグ名（例: "v2.45.0"）

    Raises:
        VersionResolutionFailure: タグ一覧の取得または解析に失敗した場合
        NoStableVersionFound: 安定版タグが存在しない場合
    """
    url = config.tags_url()
    logger.info(f"Resolving latest stable tag from {url}")
    try:
        response = await client.get(url, headers={"User-Agent": config.user_agent})
        response.raise_for_status()
        tags = response.json()
    except httpx.HTTPError as exc:
        msg = f"Failed to fetch tag list from {url}: {exc}"
        raise VersionResolutionFailure(msg) from exc
    except ValueError as exc:
        msg = f"Tag list from {url} is not valid JSON: {exc}"
        raise VersionResolutionFailure(msg) from exc

    if not isinstance(tags, list):
        msg = f"Unexpected tag list payload from {url}: {type(tags).__name__}"
        raise VersionResolutionFailure(msg)

    tag = select_stable_tag(tags)
    logger.info(f"Latest stable {config.upstream_repo} version: {tag}")
    return tag
