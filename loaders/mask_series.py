"""
Mask time series loader.

Reads an ordered sequence of 2D masks (binary or label images) into a
(T, H, W) array. Supported sources:

* ``.npy`` / ``.npz`` arrays (2D or 3D)
* a multi-page TIFF, one page per frame
* a single 2D image file
* a folder of image files, one frame per file
"""

from __future__ import annotations

import logging
import os
import re
from typing import Callable, List, Optional

import numpy as np
import tifffile
from skimage import io as skio

from config import LOADER_IMAGE_EXTENSIONS, LOADER_SORT_MODE

logger = logging.getLogger(__name__)

_TIFF_EXTENSIONS = (".tif", ".tiff")


def _to_2d(image: np.ndarray, source: str) -> np.ndarray:
    """Collapse colour channels of a mask image; foreground stays non-zero."""
    image = np.asarray(image)
    if image.ndim == 3 and image.shape[-1] in (3, 4):
        image = image[..., :3].max(axis=-1)
    if image.ndim != 2:
        raise ValueError(f"Expected a 2D mask in {source}, got shape {image.shape}")
    return image


class MaskSeriesLoader:
    """
    Load a mask time series from a file or a folder of frames.
    """

    def __init__(self, sort_mode: str = LOADER_SORT_MODE, extensions=LOADER_IMAGE_EXTENSIONS):
        self.sort_mode = sort_mode
        self.extensions = tuple(ext.lower() for ext in extensions)

    def load(self, path: str, callback: Optional[Callable[[int, str], None]] = None) -> np.ndarray:
        """
        Load ``path`` as a (T, H, W) stack.

        Raises:
            ValueError: the path does not exist, has an unsupported format, or
                holds frames of different sizes.
        """
        if not path or not os.path.exists(path):
            raise ValueError(f"Input path does not exist: {path}")

        if callback:
            callback(0, f"Loading {os.path.basename(os.path.normpath(path))}...")

        if os.path.isdir(path):
            stack = self._load_folder(path, callback)
        else:
            stack = self._load_file(path)

        if stack.ndim == 2:
            stack = stack[np.newaxis]
        if stack.ndim != 3 or stack.shape[0] == 0:
            raise ValueError(f"Could not read a (T, H, W) mask stack from {path}, got shape {stack.shape}")

        logger.info("[MaskLoader] Loaded %d frames of %dx%d from %s", stack.shape[0], stack.shape[1], stack.shape[2], path)
        if callback:
            callback(100, f"Loaded {stack.shape[0]} frames")
        return stack

    def _load_file(self, path: str) -> np.ndarray:
        ext = os.path.splitext(path)[1].lower()
        if ext == ".npy":
            return np.load(path)
        if ext == ".npz":
            with np.load(path) as archive:
                for key in ("frames", "masks", "labels"):
                    if key in archive.files:
                        return archive[key]
                if not archive.files:
                    raise ValueError(f"Empty archive: {path}")
                return archive[archive.files[0]]
        if ext in _TIFF_EXTENSIONS:
            return np.asarray(tifffile.imread(path))
        if ext in self.extensions:
            return _to_2d(skio.imread(path), path)
        raise ValueError(f"Unsupported input format: {ext or path}")

    def _read_frame(self, path: str) -> np.ndarray:
        if path.lower().endswith(_TIFF_EXTENSIONS):
            return _to_2d(tifffile.imread(path), path)
        return _to_2d(skio.imread(path), path)

    def _load_folder(self, folder: str, callback: Optional[Callable[[int, str], None]]) -> np.ndarray:
        files = self.list_frames(folder)
        if not files:
            raise ValueError(f"No mask images found in: {folder}")

        logger.info("[MaskLoader] Found %d frames, sort mode: %s", len(files), self.sort_mode)
        frames: List[np.ndarray] = []
        total = len(files)
        for i, file_path in enumerate(files):
            frame = self._read_frame(file_path)
            if frames and frame.shape != frames[0].shape:
                raise ValueError(
                    f"Frame {i} ({os.path.basename(file_path)}) has shape {frame.shape}, "
                    f"expected {frames[0].shape}"
                )
            frames.append(frame)
            logger.debug("[MaskLoader] t=%d: %s", i, os.path.basename(file_path))
            if callback:
                callback(int(100 * (i + 1) / total), f"[t={i}] {os.path.basename(file_path)}")
        return np.stack(frames, axis=0)

    def list_frames(self, folder: str) -> List[str]:
        """Image files of ``folder`` in frame order, without loading them."""
        if not os.path.isdir(folder):
            return []
        files = [
            os.path.join(folder, name)
            for name in os.listdir(folder)
            if name.lower().endswith(self.extensions) and os.path.isfile(os.path.join(folder, name))
        ]
        return self._sort_files(files, self.sort_mode)

    @staticmethod
    def _sort_files(files: List[str], mode: str) -> List[str]:
        mode = (mode or "alphabetical").lower()

        if mode == "numeric":
            def frame_number(path: str):
                numbers = re.findall(r"\d+", os.path.basename(path))
                return (int(numbers[-1]) if numbers else -1, os.path.basename(path))

            return sorted(files, key=frame_number)

        if mode == "date modified":
            return sorted(files, key=os.path.getmtime)

        return sorted(files)


def load_mask_series(
    path: str,
    sort_mode: str = LOADER_SORT_MODE,
    callback: Optional[Callable[[int, str], None]] = None,
) -> np.ndarray:
    """Convenience function returning a (T, H, W) mask stack."""
    return MaskSeriesLoader(sort_mode=sort_mode).load(path, callback=callback)
