"""builder_ci: CI/CD統合レイヤ.

ビルドマニフェスト生成、リビルド判定、アーカイブ作成と公開を提供する。
"""

from builder_ci.manifest import (
    bundle_file_digests,
    create_build_manifest,
    load_build_manifest,
    should_rebuild,
    write_build_manifest,
)
from builder_ci.publisher import create_bundle_archive, publish_local, upload_bundle

__version__ = "0.1.0"

__all__ = [
    # manifest
    "bundle_file_digests",
    "create_build_manifest",
    "write_build_manifest",
    "load_build_manifest",
    "should_rebuild",
    # publisher
    "create_bundle_archive",
    "publish_local",
    "upload_bundle",
]
