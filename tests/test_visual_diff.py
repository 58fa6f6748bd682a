"""
Visual Diff Tests
=================
"""
from PIL import Image

from selfheal.probe.visual_diff import compare_screenshots


def _save(path, size=(10, 10), color="white"):
    Image.new("RGB", size, color).save(path)
    return str(path)


def test_identical_images_match(tmp_path):
    a = _save(tmp_path / "a.png")
    b = _save(tmp_path / "b.png")
    result = compare_screenshots(a, b)
    assert result.match is True
    assert result.diff_score == 0.0
    assert result.details == "Images identical"


def test_partial_change_scored_by_pixel_fraction(tmp_path):
    a = _save(tmp_path / "a.png")
    changed = Image.new("RGB", (10, 10), "white")
    for x in range(10):
        changed.putpixel((x, 0), (0, 0, 0))
    b = tmp_path / "b.png"
    changed.save(b)

    result = compare_screenshots(a, str(b), threshold=0.05, diff_image_path=str(tmp_path / "diff" / "d.png"))
    assert result.diff_score == 0.1
    assert result.match is False
    assert result.diff_image_path is not None
    assert (tmp_path / "diff" / "d.png").is_file()

    assert compare_screenshots(a, str(b), threshold=0.1).match is True


def test_dimension_mismatch_scores_one(tmp_path):
    a = _save(tmp_path / "a.png", size=(10, 10))
    b = _save(tmp_path / "b.png", size=(12, 10))
    result = compare_screenshots(a, b)
    assert result.dimension_match is False
    assert result.diff_score == 1.0
    assert result.match is False


def test_missing_baseline(tmp_path):
    b = _save(tmp_path / "b.png")
    result = compare_screenshots(str(tmp_path / "nope.png"), b)
    assert result.baseline_exists is False
    assert result.match is False
