from .asset import Asset, AssetType
from .snapshot import PriceSnapshot

__all__ = [
    "Asset",
    "AssetType",
    "PriceSnapshot",
]
