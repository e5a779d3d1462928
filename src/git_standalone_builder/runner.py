"""Shell command execution.

シェルコマンドの実行。
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

from loguru import logger

from .core.exceptions import ProcessFailed


class ProcessRunner(Protocol):
    async def run(
        self,
        command: str,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> str: ...


class BashRunner:
    """``bash -c`` でコマンドを実行し、stdout/stderrを結合した出力を返す.

    ``env`` は現在のプロセス環境に上書きマージされる。キャンセル時は
    子プロセスをkillしてからキャンセルを伝播する。
    """

    def __init__(self, shell: str = "bash") -> None:
        self.shell = shell

    async def run(
        self,
        command: str,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> str:
        merged_env = dict(os.environ)
        if env:
            merged_env.update(env)

        logger.debug(f"RUN: {command} (cwd={cwd})")
        proc = await asyncio.create_subprocess_exec(
            self.shell,
            "-c",
            command,
            cwd=str(cwd),
            env=merged_env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            stdout, _ = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                logger.warning(f"Cancelled, killing pid {proc.pid}: {command}")
                proc.kill()
                await proc.wait()
            raise

        output = stdout.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise ProcessFailed(command, proc.returncode, output)
        return output
