"""Tests for image decoding and host array helpers."""
from __future__ import annotations

import cv2
import jax
import numpy as np
import pytest

from imagereader.utils import decode_image, to_host_jax_array


def test_decode_image_matches_requested_channels(tmp_path):
    path = tmp_path / "img.png"
    cv2.imwrite(str(path), np.full((5, 7, 3), 40, dtype=np.uint8))

    assert decode_image(path, channels=3).shape == (5, 7, 3)
    assert decode_image(path, channels=1).shape == (5, 7)


def test_decode_missing_image_raises(tmp_path):
    with pytest.raises(FileNotFoundError, match="missing.png"):
        decode_image(tmp_path / "missing.png")


def test_to_host_jax_array_places_on_cpu():
    array = np.arange(6, dtype=np.float32).reshape(2, 3)

    result = to_host_jax_array(array)

    assert result.device == jax.devices("cpu")[0]
    np.testing.assert_array_equal(np.asarray(result), array)
