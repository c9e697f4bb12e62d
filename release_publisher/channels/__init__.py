from __future__ import annotations

from .apt_repo import AptRepoPublisher
from .homebrew import HomebrewFormulaUpdater
from .release_asset import ReleaseAssetUploader

__all__ = ["AptRepoPublisher", "HomebrewFormulaUpdater", "ReleaseAssetUploader"]
