import asyncio
from pathlib import Path

import httpx
import pytest

from git_standalone_builder.core.exceptions import DownloadFailure
from git_standalone_builder.download import download_file

URL = "https://github.com/git/git/archive/refs/tags/v2.45.0.tar.gz"


def _download(handler, dest: Path) -> Path:
    async def go() -> Path:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await download_file(client, URL, dest)

    return asyncio.run(go())


def test_download_writes_body(tmp_path: Path) -> None:
    dest = tmp_path / "work" / "git.tar.gz"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"archive-bytes")

    assert _download(handler, dest) == dest
    assert dest.read_bytes() == b"archive-bytes"


def test_download_follows_redirects(tmp_path: Path) -> None:
    dest = tmp_path / "git.tar.gz"

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "github.com":
            return httpx.Response(302, headers={"Location": "https://codeload.github.com/git/git/tar.gz/v2.45.0"})
        return httpx.Response(200, content=b"data")

    _download(handler, dest)
    assert dest.read_bytes() == b"data"


def test_download_http_error(tmp_path: Path) -> None:
    dest = tmp_path / "git.tar.gz"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="not found")

    with pytest.raises(DownloadFailure) as exc_info:
        _download(handler, dest)
    assert exc_info.value.retryable
    assert not dest.exists()


def test_download_empty_body(tmp_path: Path) -> None:
    dest = tmp_path / "git.tar.gz"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"")

    with pytest.raises(DownloadFailure, match="empty"):
        _download(handler, dest)
    assert not dest.exists()
