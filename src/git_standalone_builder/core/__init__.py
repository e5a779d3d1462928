"""パイプラインのエラー分類."""

from .exceptions import (
    BuildError,
    BundleFinishFailure,
    CompileFailure,
    ConfigurationFailure,
    DownloadFailure,
    ExtractionFailure,
    HostDependencyInstallFailure,
    InstallFailure,
    MissingTransportHelper,
    NoStableVersionFound,
    ProcessFailed,
    VerificationFailure,
    VersionResolutionFailure,
)

__all__ = [
    "BuildError",
    "BundleFinishFailure",
    "CompileFailure",
    "ConfigurationFailure",
    "DownloadFailure",
    "ExtractionFailure",
    "HostDependencyInstallFailure",
    "InstallFailure",
    "MissingTransportHelper",
    "NoStableVersionFound",
    "ProcessFailed",
    "VerificationFailure",
    "VersionResolutionFailure",
]
