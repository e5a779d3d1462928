"""Real end-to-end build of Git (network, apt toolchain, several minutes).

Enable with ``GIT_BUNDLE_INTEGRATION=1``; set ``GIT_BUNDLE_PREPARE_HOST=1``
to let the run install build dependencies via sudo apt-get.
"""

from __future__ import annotations

import asyncio
import os
import subprocess
from pathlib import Path

import pytest

from git_standalone_builder.config import BuildConfig
from git_standalone_builder.pipeline import GitBundlePipeline

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(os.environ.get("GIT_BUNDLE_INTEGRATION") != "1", reason="GIT_BUNDLE_INTEGRATION not set"),
]


def test_build_v2_45_0(tmp_path: Path) -> None:
    config = BuildConfig(prepare_host=os.environ.get("GIT_BUNDLE_PREPARE_HOST") == "1")

    result = asyncio.run(GitBundlePipeline(config, work_dir=tmp_path).run("v2.45.0"))

    out = subprocess.run([str(result.launcher), "--version"], capture_output=True, text=True, check=True)
    assert "2.45.0" in out.stdout

    https = result.bundle_dir / "libexec" / "git-core" / "git-remote-https"
    assert os.access(https, os.X_OK)

    dest = tmp_path / "hello"
    subprocess.run(
        [str(result.launcher), "clone", "--depth", "1", config.verify_repo_url, str(dest)],
        check=True,
    )
    assert any(dest.iterdir())

    sections = subprocess.run(
        ["readelf", "-S", str(result.bundle_dir / "bin" / "git")], capture_output=True, text=True, check=True
    ).stdout
    assert ".debug_info" not in sections
    assert ".symtab" not in sections
