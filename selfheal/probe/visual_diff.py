"""
Visual Diff
===========
Pixel comparison between a stored baseline and a fresh capture.

The score is the fraction of pixels that differ in any channel
(0.0 identical, 1.0 completely different). Images of different size
score 1.0 without a pixel pass.
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional

from PIL import Image, ImageChops

logger = logging.getLogger(__name__)


@dataclass
class VisualDiffResult:
    match: bool
    diff_score: float
    baseline_exists: bool
    dimension_match: bool
    details: str
    diff_image_path: Optional[str] = None


def compare_screenshots(
    baseline_path: str,
    current_path: str,
    threshold: float = 0.01,
    diff_image_path: Optional[str] = None,
) -> VisualDiffResult:
    """
    Compare two screenshots.

    Parameters
    ----------
    baseline_path : str
        Stored baseline PNG.
    current_path : str
        Capture from this run.
    threshold : float
        Highest score still counted as a match.
    diff_image_path : str, optional
        Where to save the difference image when the images differ.
    """
    if not os.path.isfile(baseline_path):
        return VisualDiffResult(False, 1.0, False, False, f"Baseline not found: {baseline_path}")

    with Image.open(baseline_path) as baseline_img, Image.open(current_path) as current_img:
        baseline = baseline_img.convert("RGBA")
        current = current_img.convert("RGBA")

    if baseline.size != current.size:
        details = f"Dimension mismatch: baseline {baseline.size} vs current {current.size}"
        return VisualDiffResult(False, 1.0, True, False, details)

    diff = ImageChops.difference(baseline, current)

    # any non-zero channel marks the pixel as different
    bands = diff.split()
    combined = bands[0]
    for band in bands[1:]:
        combined = ImageChops.lighter(combined, band)
    if combined.getbbox() is None:
        return VisualDiffResult(True, 0.0, True, True, "Images identical")

    mask = combined.point(lambda v: 255 if v else 0)
    changed = mask.histogram()[255]
    width, height = baseline.size
    score = round(changed / float(width * height), 6)

    saved = None
    if diff_image_path:
        os.makedirs(os.path.dirname(diff_image_path) or ".", exist_ok=True)
        diff.save(diff_image_path)
        saved = diff_image_path

    match = score <= threshold
    details = f"{changed} of {width * height} pixels differ ({score * 100:.2f}%)"
    logger.debug("Visual diff %s vs %s: %s", baseline_path, current_path, details)
    return VisualDiffResult(match, score, True, True, details, saved)
