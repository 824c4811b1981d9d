"""
Connected-component regions of a single 2D frame.

A frame is either a binary mask (foreground = any non-zero pixel) that is
labelled with 4- or 8-connectivity, or an already labelled image whose
distinct non-background values are taken as regions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union

import numpy as np
from scipy import ndimage
from skimage.measure import regionprops

from config import REGION_BACKGROUND_LABEL, REGION_CONNECTIVITY


FrameStack = Union[np.ndarray, Sequence[np.ndarray]]


@dataclass(frozen=True, eq=False)
class Region:
    """
    One connected component within one frame.

    Attributes:
        label: Ephemeral per-frame label from the labeller (or the pixel value
            for pre-labelled input).
        area: Pixel count.
        centroid: Center of mass as (x, y), x = column, y = row.
        coords: (K, 2) array of (row, col) pixel coordinates.
        perimeter: Boundary length estimate used for circularity.
    """
    label: int
    area: int
    centroid: Tuple[float, float]
    coords: np.ndarray
    perimeter: float = 0.0

    @property
    def circularity(self) -> float:
        """4*pi*area / perimeter^2, clipped to [0, 1]."""
        if self.perimeter <= 0:
            return 0.0
        value = 4.0 * np.pi * float(self.area) / (self.perimeter * self.perimeter)
        return float(np.clip(value, 0.0, 1.0))

    def mean_intensity(self, image: np.ndarray) -> float:
        """Mean of ``image`` over this region's pixels."""
        if self.area == 0:
            return 0.0
        return float(np.mean(image[self.coords[:, 0], self.coords[:, 1]]))


def connectivity_structure(connectivity: int) -> np.ndarray:
    """Structuring element for 4- or 8-connected labelling."""
    if connectivity == 4:
        return ndimage.generate_binary_structure(2, 1)
    if connectivity == 8:
        return ndimage.generate_binary_structure(2, 2)
    raise ValueError(f"Unsupported connectivity: {connectivity}. Expected 4 or 8.")


def _regions_from_label_image(labels: np.ndarray) -> List[Region]:
    regions: List[Region] = []
    for props in regionprops(labels):
        row, col = props.centroid
        regions.append(
            Region(
                label=int(props.label),
                area=int(props.area),
                centroid=(float(col), float(row)),
                coords=np.asarray(props.coords, dtype=np.int64),
                perimeter=float(props.perimeter),
            )
        )
    return regions


def label_regions(mask: np.ndarray, connectivity: int = REGION_CONNECTIVITY) -> List[Region]:
    """
    Extract connected components of a binary mask.

    Regions are returned in raster order of their first pixel, which is the
    order ``scipy.ndimage.label`` assigns labels in.
    """
    mask = np.asarray(mask)
    if mask.ndim != 2:
        raise ValueError(f"label_regions expects a 2D mask, got shape {mask.shape}.")

    structure = connectivity_structure(int(connectivity))
    labels, num = ndimage.label(mask != 0, structure=structure)
    if num == 0:
        return []
    return _regions_from_label_image(labels)


def regions_from_labels(label_frame: np.ndarray, background: int = REGION_BACKGROUND_LABEL) -> List[Region]:
    """
    Regions of a pre-labelled frame; each non-background value is one region.

    The region ``label`` is the pixel value itself.
    """
    label_frame = np.asarray(label_frame)
    if label_frame.ndim != 2:
        raise ValueError(f"regions_from_labels expects a 2D label image, got shape {label_frame.shape}.")
    if not np.issubdtype(label_frame.dtype, np.integer):
        label_frame = label_frame.astype(np.int64)

    labels = np.where(label_frame == background, 0, label_frame)
    if np.any(labels < 0):
        raise ValueError("Label images must not contain negative values.")
    if not np.any(labels):
        return []
    return _regions_from_label_image(labels)


def validate_frames(frames: FrameStack, require_binary: bool = False) -> np.ndarray:
    """
    Check the precondition for a tracking run and return a (T, H, W) stack.

    Raises:
        ValueError: empty sequence, non-2D frames, mismatched frame sizes, or
            a non-binary mask when ``require_binary`` is set.
    """
    if frames is None:
        raise ValueError("Frame sequence is empty.")

    if isinstance(frames, np.ndarray):
        stack = frames
        if stack.ndim == 2:
            stack = stack[np.newaxis]
    else:
        frame_list = [np.asarray(f) for f in frames]
        if not frame_list:
            raise ValueError("Frame sequence is empty.")
        shapes = {f.shape for f in frame_list}
        if any(f.ndim != 2 for f in frame_list):
            raise ValueError("Every frame must be a 2D array.")
        if len(shapes) != 1:
            raise ValueError(f"All frames must share the same width/height, got {sorted(shapes)}.")
        stack = np.stack(frame_list, axis=0)

    if stack.ndim != 3:
        raise ValueError(f"Expected a (T, H, W) frame stack, got shape {stack.shape}.")
    if stack.shape[0] == 0:
        raise ValueError("Frame sequence is empty.")

    if require_binary:
        values = np.unique(stack)
        if np.count_nonzero(values) > 1:
            raise ValueError(
                "Masks are not binary (more than one foreground value). "
                "Use pre-labelled mode for label images."
            )

    return stack


__all__ = [
    "Region",
    "FrameStack",
    "connectivity_structure",
    "label_regions",
    "regions_from_labels",
    "validate_frames",
]
