"""Build pipeline exceptions.

パイプラインのステージが送出する失敗はすべて ``BuildError`` で、ステージ名、
再実行で成功しうるか、原因を示すツール出力を保持する。
"""

from __future__ import annotations


class ProcessFailed(Exception):
    """シェルコマンドが非ゼロで終了した.

    Attributes:
        command: 実行したコマンドライン
        returncode: プロセスの終了ステータス
        output: stdout/stderrを結合した出力
    """

    def __init__(self, command: str, returncode: int, output: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(f"Command failed with exit code {returncode}: {command}")


class BuildError(Exception):
    """パイプライン失敗の基底クラス.

    Attributes:
        stage: 失敗したステージ名
        output: 失敗に添付された診断出力
        retryable: 一時的（ネットワーク）な失敗ならTrue
    """

    kind = "build_error"
    default_stage = "unknown"
    retryable = False

    def __init__(self, message: str, *, stage: str | None = None, output: str = "") -> None:
        self.stage = stage or self.default_stage
        self.output = output
        message = f"[{self.stage}] {message}"
        if output:
            message = f"{message}\n{output}"
        super().__init__(message)


class VersionResolutionFailure(BuildError):
    """upstreamの最新安定版タグを特定できなかった."""

    kind = "version_resolution"
    default_stage = "resolve_version"
    retryable = True


class NoStableVersionFound(VersionResolutionFailure):
    """upstreamのタグ一覧が空、またはプレリリースのみ."""

    retryable = False


class DownloadFailure(BuildError):
    kind = "download"
    default_stage = "fetch_source"
    retryable = True


class HostDependencyInstallFailure(BuildError):
    kind = "host_dependency_install"
    default_stage = "prepare_host"
    retryable = True


class ExtractionFailure(BuildError):
    kind = "extraction"
    default_stage = "extract_source"


class ConfigurationFailure(BuildError):
    """``make configure`` または ``./configure`` が失敗した.

    ``config.log`` が書かれていれば ``output`` にその先頭部分を含む。
    """

    kind = "configuration"
    default_stage = "configure"


class CompileFailure(BuildError):
    kind = "compile"
    default_stage = "compile"


class InstallFailure(BuildError):
    kind = "install"
    default_stage = "install"


class MissingTransportHelper(BuildError):
    """HTTPSヘルパーも、その元になるファイルもインストールされなかった."""

    kind = "missing_transport_helper"
    default_stage = "finish_bundle"


class BundleFinishFailure(BuildError):
    """バンドル仕上げの処理（ライブラリ収集、strip）が失敗した."""

    kind = "bundle_finish"
    default_stage = "finish_bundle"


class VerificationFailure(BuildError):
    kind = "verification"
    default_stage = "verify"
