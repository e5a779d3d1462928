"""Source archive download.

ソースアーカイブのダウンロード。
"""

from __future__ import annotations

from pathlib import Path

import httpx
from loguru import logger

from .core.exceptions import DownloadFailure


async def download_file(client: httpx.AsyncClient, url: str, dest: Path) -> Path:
    """``url`` を ``dest`` にストリーミング保存する.

    Args:
        client: HTTPクライアント（リダイレクトは追従）
        url: 取得元URL
        dest: 保存先ファイルパス

    Returns:
        ``dest``

    Raises:
        DownloadFailure: 通信エラー、HTTPエラー、または空のレスポンスの場合
    """
    logger.info(f"Downloading {url}")
    dest.parent.mkdir(parents=True, exist_ok=True)
    size = 0
    try:
        async with client.stream("GET", url, follow_redirects=True) as r:
            r.raise_for_status()
            with open(dest, "wb") as f:
                async for chunk in r.aiter_bytes():
                    f.write(chunk)
                    size += len(chunk)
    except httpx.HTTPError as exc:
        dest.unlink(missing_ok=True)
        msg = f"Failed to download {url}: {exc}"
        raise DownloadFailure(msg) from exc

    if size == 0:
        dest.unlink(missing_ok=True)
        msg = f"Downloaded file is empty: {url}"
        raise DownloadFailure(msg)

    logger.info(f"Downloaded {size} bytes to {dest}")
    return dest
