"""Tests for crop, scale and mean transforms."""
from __future__ import annotations

import cv2
import numpy as np
import pytest

from imagereader import (
    CropTransform,
    ImageReaderConfigError,
    MeanTransform,
    ScaleTransform,
    TransformChain,
)
from imagereader.transforms import crop_rect


def _write_mean_file(path, mean: np.ndarray, channels: int, rows: int, cols: int) -> None:
    fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_WRITE)
    fs.write("Channel", channels)
    fs.write("Row", rows)
    fs.write("Col", cols)
    fs.write("MeanImg", mean)
    fs.release()


def _image(rows: int, cols: int, channels: int = 3) -> np.ndarray:
    return np.arange(rows * cols * channels, dtype=np.uint8).reshape(rows, cols, channels)


@pytest.mark.parametrize("crop_type", ["center", "random"])
@pytest.mark.parametrize("ratio", ["1", "0.5", "0.33", "0.875"])
def test_crop_side_is_truncated_ratio_of_short_edge(crop_type, ratio):
    transform = CropTransform(seed=0)
    transform.init({"cropType": crop_type, "cropRatio": ratio, "hflip": 0})

    out = transform.apply(_image(7, 10))

    side = int(float(ratio) * 7)
    assert out.shape == (side, side, 3)


def test_center_crop_offsets():
    rng = np.random.Generator(np.random.MT19937(0))
    for rows, cols, ratio in [(7, 10, 0.5), (10, 7, 1.0), (9, 9, 0.3), (100, 31, 0.75)]:
        x_off, y_off, side = crop_rect("center", rows, cols, ratio, rng)
        assert side == int(min(rows, cols) * ratio)
        assert x_off == (cols - side) // 2
        assert y_off == (rows - side) // 2


def test_center_crop_takes_the_middle_region():
    transform = CropTransform(seed=0)
    transform.init({"cropRatio": "0.5"})
    image = _image(8, 12)

    out = transform.apply(image)

    np.testing.assert_array_equal(out, image[2:6, 4:8])


def test_random_crop_offsets_stay_in_bounds():
    rng = np.random.Generator(np.random.MT19937(3))
    seen_x = set()
    for _ in range(200):
        x_off, y_off, side = crop_rect("random", 9, 14, 0.5, rng)
        assert side == 4
        assert 0 <= x_off <= 14 - side
        assert 0 <= y_off <= 9 - side
        seen_x.add(x_off)
    assert min(seen_x) == 0
    assert max(seen_x) == 10


def test_crop_with_no_remaining_pixels_fails():
    rng = np.random.Generator(np.random.MT19937(0))
    with pytest.raises(ValueError):
        crop_rect("center", 1, 5, 0.5, rng)


def test_hflip_defaults_follow_crop_type():
    center = CropTransform()
    center.init({"cropType": "Center"})
    assert center.hflip is False

    random_crop = CropTransform()
    random_crop.init({"cropType": "RANDOM"})
    assert random_crop.hflip is True

    explicit = CropTransform()
    explicit.init({"cropType": "random", "hflip": "0"})
    assert explicit.hflip is False


def test_hflip_mirrors_columns_only():
    transform = CropTransform(seed=0, hflip=True)
    image = _image(4, 4)
    outputs = [transform.apply(image) for _ in range(32)]

    flipped = image[:, ::-1]
    assert all(np.array_equal(out, image) or np.array_equal(out, flipped) for out in outputs)
    assert any(np.array_equal(out, flipped) for out in outputs)
    assert any(np.array_equal(out, image) for out in outputs)


def test_uniform_ratio_jitter_samples_within_range():
    transform = CropTransform(seed=5)
    transform.init({"cropRatio": "0.5:1", "jitterType": "uniRatio", "hflip": 0})

    sides = {transform.apply(_image(20, 20)).shape[0] for _ in range(100)}

    assert min(sides) >= 10
    assert max(sides) <= 20
    assert len(sides) > 1


@pytest.mark.parametrize("ratio", ["0", "1.5", "0.8:0.5", "-0.2", "abc"])
def test_invalid_crop_ratio_is_rejected_at_init(ratio):
    with pytest.raises(ImageReaderConfigError):
        CropTransform().init({"cropRatio": ratio})


@pytest.mark.parametrize("jitter", ["uniLength", "uniArea", "uniformlength", "uniform-area"])
def test_unimplemented_jitter_types_fail_at_init(jitter):
    with pytest.raises(ImageReaderConfigError, match="not implemented"):
        CropTransform().init({"jitterType": jitter})


def test_invalid_crop_and_jitter_types_are_rejected():
    with pytest.raises(ImageReaderConfigError, match="crop type"):
        CropTransform().init({"cropType": "corner"})
    with pytest.raises(ImageReaderConfigError, match="jitter type"):
        CropTransform().init({"jitterType": "wobble"})


@pytest.mark.parametrize("method", ["nearest", "linear", "cubic", "lanczos"])
def test_scale_output_matches_configured_size(method):
    transform = ScaleTransform(dtype=np.float32)
    transform.init({"width": 5, "height": 4, "channels": 3, "interpolations": method})

    out = transform.apply(_image(13, 17))

    assert out.shape == (4, 5, 3)
    assert out.dtype == np.float32


def test_scale_converts_to_float64():
    transform = ScaleTransform(dtype=np.float64)
    transform.init({"width": "3", "height": "3", "channels": "1"})

    out = transform.apply(np.full((6, 6), 9, dtype=np.uint8))

    assert out.shape == (3, 3)
    assert out.dtype == np.float64
    np.testing.assert_allclose(out, 9.0)


def test_scale_interpolation_parsing():
    transform = ScaleTransform()
    transform.init({"width": 2, "height": 2, "channels": 1, "interpolations": "Cubic:bogus:NEAREST"})
    assert tuple(transform.interpolations) == (cv2.INTER_CUBIC, cv2.INTER_NEAREST)

    transform.init({"width": 2, "height": 2, "channels": 1, "interpolations": "bogus"})
    assert tuple(transform.interpolations) == (cv2.INTER_LINEAR,)

    transform.init({"width": 2, "height": 2, "channels": 1})
    assert tuple(transform.interpolations) == (cv2.INTER_LINEAR,)


def test_scale_rejects_bad_dimensions():
    with pytest.raises(ImageReaderConfigError):
        ScaleTransform().init({"width": 0, "height": 4, "channels": 3})
    with pytest.raises(ImageReaderConfigError):
        ScaleTransform().init({"width": 4, "height": 4})
    with pytest.raises(ImageReaderConfigError):
        ScaleTransform().init({"width": 2**40, "height": 2**40, "channels": 3})
    with pytest.raises(ImageReaderConfigError):
        ScaleTransform().init({"width": "wide", "height": 4, "channels": 3})


def test_mean_without_file_is_identity():
    transform = MeanTransform()
    transform.init({"meanFile": ""})
    image = np.random.default_rng(0).random((4, 4, 3), dtype=np.float32)

    out = transform.apply(image)

    assert out is image


def test_mean_file_is_subtracted(tmp_path):
    mean = np.full((2, 3, 3), 0.25, dtype=np.float32)
    mean_path = tmp_path / "mean.xml"
    _write_mean_file(mean_path, mean, channels=3, rows=2, cols=3)

    transform = MeanTransform()
    transform.init({"meanFile": str(mean_path)})
    image = np.ones((2, 3, 3), dtype=np.float32)

    out = transform.apply(image)

    assert transform.mean_image.shape == (2, 3, 3)
    assert out.dtype == np.float32
    np.testing.assert_allclose(out, 0.75)


def test_mean_file_single_channel_layout(tmp_path):
    mean = np.arange(6, dtype=np.float32).reshape(1, 6)
    mean_path = tmp_path / "mean.yml"
    _write_mean_file(mean_path, mean, channels=1, rows=2, cols=3)

    transform = MeanTransform()
    transform.init({"meanFile": str(mean_path)})

    np.testing.assert_array_equal(transform.mean_image, np.arange(6, dtype=np.float32).reshape(2, 3))


def test_mean_file_with_wrong_counts_is_rejected(tmp_path):
    mean_path = tmp_path / "mean.xml"
    _write_mean_file(mean_path, np.zeros((2, 2), dtype=np.float32), channels=3, rows=2, cols=2)

    with pytest.raises(ImageReaderConfigError, match="Invalid data"):
        MeanTransform().init({"meanFile": str(mean_path)})


def test_missing_mean_file_is_rejected(tmp_path):
    with pytest.raises(ImageReaderConfigError, match="Could not open"):
        MeanTransform().init({"meanFile": str(tmp_path / "missing.xml")})


def test_mean_shape_mismatch_is_an_error():
    transform = MeanTransform(mean_image=np.zeros((2, 2, 3), dtype=np.float32))
    with pytest.raises(ValueError):
        transform.apply(np.zeros((3, 3, 3), dtype=np.float32))


def test_default_chain_order_and_output():
    chain = TransformChain.default(dtype=np.float32, seed=0)
    assert [type(t) for t in chain] == [CropTransform, ScaleTransform, MeanTransform]

    chain.init({"width": 4, "height": 4, "channels": 3, "cropRatio": "0.5"})
    out = chain.apply(_image(16, 24))

    assert out.shape == (4, 4, 3)
    assert out.dtype == np.float32


def test_chain_reseed_reaches_pools():
    chain = TransformChain.default(seed=0)
    chain.reseed(11)

    crop, scale, _ = chain.transforms
    assert crop.pool.seed == 11
    assert scale.pool.seed == 11
