"""
Data loaders package.
"""

from loaders.mask_series import MaskSeriesLoader, load_mask_series

__all__ = [
    'MaskSeriesLoader',
    'load_mask_series',
]
