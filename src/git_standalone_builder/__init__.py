"""Reproducible, relocatable Git builds for vendoring.

- 最新の安定版タグを解決し、ソースを取得
- 固定された環境でconfigure/make/install
- HTTPSヘルパー保証、strip、不要ファイル削除、ランチャー生成
- ランチャー経由のclone検証
"""

from .config import BuildConfig, load_build_config
from .context import BuildContext
from .pipeline import GitBundlePipeline, PipelineResult, StageResult, build_git_bundle

__version__ = "0.1.0"

__all__ = [
    "BuildConfig",
    "BuildContext",
    "GitBundlePipeline",
    "PipelineResult",
    "StageResult",
    "build_git_bundle",
    "load_build_config",
]
