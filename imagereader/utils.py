"""Image, mean-file and device helpers shared across reader modules."""
from __future__ import annotations

import logging
from pathlib import Path

import cv2
import jax
import jax.numpy as jnp
import numpy as np

from .config import ImageReaderConfigError

logger = logging.getLogger(__name__)


def decode_image(path: str | Path, channels: int = 3) -> np.ndarray:
    """Decode ``path`` into a ``(rows, cols[, channels])`` uint8 array."""
    flags = cv2.IMREAD_GRAYSCALE if channels == 1 else cv2.IMREAD_COLOR
    image = cv2.imread(str(path), flags)
    if image is None:
        raise FileNotFoundError(f"Could not read image: {path}")
    return image


def read_mean_file(path: str | Path) -> np.ndarray:
    """Load a mean image written by ``cv2.FileStorage``.

    The file holds ``Channel``, ``Row`` and ``Col`` scalars plus a ``MeanImg``
    matrix with exactly ``Channel * Row * Col`` elements. The result is
    shaped ``(Row, Col)`` for single-channel means and ``(Row, Col, Channel)``
    otherwise, matching decoded images.
    """
    fname = str(path)
    if not Path(fname).is_file():
        raise ImageReaderConfigError(f"Could not open file: {fname}")
    try:
        fs = cv2.FileStorage(fname, cv2.FILE_STORAGE_READ)
    except cv2.error as exc:
        raise ImageReaderConfigError(f"Could not open file: {fname}") from exc
    if not fs.isOpened():
        raise ImageReaderConfigError(f"Could not open file: {fname}")
    try:
        mean = fs.getNode("MeanImg").mat()
        channels = int(fs.getNode("Channel").real())
        rows = int(fs.getNode("Row").real())
        cols = int(fs.getNode("Col").real())
    finally:
        fs.release()

    if mean is None or channels * rows * cols != mean.size or mean.size == 0:
        raise ImageReaderConfigError(f"Invalid data in file: {fname}")

    shape = (rows, cols) if channels == 1 else (rows, cols, channels)
    logger.info("Loaded mean image %s with shape %s", fname, shape)
    return np.asarray(mean).reshape(shape)


def to_host_jax_array(array: np.ndarray) -> jax.Array:
    """Copy a NumPy array onto the default CPU device for JAX consumption."""
    cpu_devices = jax.devices("cpu")
    if cpu_devices:
        with jax.default_device(cpu_devices[0]):
            return jnp.asarray(array)
    return jnp.asarray(array)
