"""Randomized image transforms applied to every decoded sample."""
from __future__ import annotations

import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

import cv2
import numpy as np

from .config import ImageReaderConfigError, get_bool, get_int, get_str, same_token
from .random_pool import RandomSourcePool
from .utils import read_mean_file


CropType = Literal["center", "random"]
JitterType = Literal["none", "uniratio", "unilength", "uniarea"]

INTERPOLATIONS: dict[str, int] = {
    "nearest": cv2.INTER_NEAREST,
    "linear": cv2.INTER_LINEAR,
    "cubic": cv2.INTER_CUBIC,
    "lanczos": cv2.INTER_LANCZOS4,
}

_JITTER_ALIASES: dict[str, JitterType] = {
    "": "none",
    "none": "none",
    "uniratio": "uniratio",
    "uniformratio": "uniratio",
    "uniform-ratio": "uniratio",
    "unilength": "unilength",
    "uniformlength": "unilength",
    "uniform-length": "unilength",
    "uniarea": "uniarea",
    "uniformarea": "uniarea",
    "uniform-area": "uniarea",
}


class ImageTransform(Protocol):
    """Configured once, then applied to many images from many threads."""

    def init(self, config: Mapping[str, Any]) -> None:
        ...

    def apply(self, image: np.ndarray) -> np.ndarray:
        """Return the transformed image; ``image`` may be reused or replaced."""


def _parse_crop_type(src: str) -> CropType:
    if not src or same_token(src, "center"):
        return "center"
    if same_token(src, "random"):
        return "random"
    raise ImageReaderConfigError(f"Invalid crop type: {src}.")


def _parse_jitter_type(src: str) -> JitterType:
    try:
        return _JITTER_ALIASES[src.lower()]
    except KeyError:
        raise ImageReaderConfigError(f"Invalid jitter type: {src}.") from None


def _parse_crop_ratio(src: str) -> tuple[float, float]:
    tokens = src.split(":")
    try:
        ratio_min = float(tokens[0])
        ratio_max = float(tokens[1]) if len(tokens) > 1 and tokens[1] else ratio_min
    except ValueError as exc:
        raise ImageReaderConfigError(f"Invalid cropRatio value: {src!r}.") from exc
    return ratio_min, ratio_max


def crop_rect(
    crop_type: CropType,
    rows: int,
    cols: int,
    ratio: float,
    rng: np.random.Generator,
) -> tuple[int, int, int]:
    """Return ``(x_offset, y_offset, side)`` of a square crop.

    The side is ``ratio * min(rows, cols)`` truncated toward zero. Center crops
    are offset by half the slack on each axis; random crops draw each offset
    uniformly from the inclusive range ``[0, slack]``.
    """
    if rows <= 0 or cols <= 0:
        raise ValueError(f"Cannot crop an empty image of size {rows}x{cols}.")
    side = int(min(rows, cols) * ratio)
    if side <= 0:
        raise ValueError(
            f"Crop ratio {ratio} leaves no pixels of a {rows}x{cols} image."
        )
    if crop_type == "center":
        x_off = (cols - side) // 2
        y_off = (rows - side) // 2
    else:
        x_off = int(rng.integers(0, cols - side, endpoint=True))
        y_off = int(rng.integers(0, rows - side, endpoint=True))
    return x_off, y_off, side


@dataclass
class CropTransform:
    """Square crop with optional ratio jitter and horizontal flip."""

    seed: int = 0
    """Seed shared by every generator in this transform's pool."""
    crop_type: CropType = "center"
    """``center`` or ``random`` placement of the crop window."""
    ratio_min: float = 1.0
    """Smallest crop side relative to the short image edge."""
    ratio_max: float = 1.0
    """Largest crop side relative to the short image edge."""
    jitter_type: JitterType = "none"
    """``none`` always crops at ``ratio_min``; ``uniratio`` samples in ``[ratio_min, ratio_max)``."""
    hflip: bool = False
    """Flip horizontally with probability one half."""

    def __post_init__(self) -> None:
        self._rngs = RandomSourcePool(self.seed)
        self._validate()

    def _validate(self) -> None:
        if self.crop_type not in ("center", "random"):
            raise ImageReaderConfigError(f"Invalid crop type: {self.crop_type}.")
        if not (
            0 < self.ratio_min <= 1.0
            and 0 < self.ratio_max <= 1.0
            and self.ratio_min <= self.ratio_max
        ):
            raise ImageReaderConfigError(
                "Invalid cropRatio value, must be > 0 and <= 1. cropMin must <= cropMax; "
                f"got {self.ratio_min}:{self.ratio_max}."
            )
        if self.jitter_type in ("unilength", "uniarea"):
            raise ImageReaderConfigError(
                f"Jitter type {self.jitter_type} is not implemented."
            )
        if self.jitter_type not in ("none", "uniratio"):
            raise ImageReaderConfigError(f"Invalid jitter type: {self.jitter_type}.")

    @property
    def pool(self) -> RandomSourcePool:
        return self._rngs

    def init(self, config: Mapping[str, Any]) -> None:
        self.crop_type = _parse_crop_type(get_str(config, "cropType", ""))
        self.ratio_min, self.ratio_max = _parse_crop_ratio(get_str(config, "cropRatio", "1"))
        self.jitter_type = _parse_jitter_type(get_str(config, "jitterType", ""))
        if "hflip" in config:
            self.hflip = get_bool(config, "hflip")
        else:
            self.hflip = self.crop_type == "random"
        self._validate()

    def reseed(self, seed: int) -> None:
        self.seed = int(seed)
        self._rngs.reseed(self.seed)

    def apply(self, image: np.ndarray) -> np.ndarray:
        with self._rngs.borrow() as rng:
            if self.jitter_type == "uniratio":
                ratio = float(rng.uniform(self.ratio_min, self.ratio_max))
            else:
                ratio = self.ratio_min
            rows, cols = image.shape[:2]
            x_off, y_off, side = crop_rect(self.crop_type, rows, cols, ratio, rng)
            image = image[y_off : y_off + side, x_off : x_off + side]
            if self.hflip and rng.random() < 0.5:
                image = image[:, ::-1]
        return image


def _parse_interpolations(src: str) -> tuple[int, ...]:
    methods = tuple(
        INTERPOLATIONS[token.strip().lower()]
        for token in src.split(":")
        if token.strip().lower() in INTERPOLATIONS
    )
    return methods or (cv2.INTER_LINEAR,)


@dataclass
class ScaleTransform:
    """Resize to a fixed ``width`` x ``height`` with a randomly chosen interpolation.

    This is where pixels become floating point: images whose dtype differs
    from ``dtype`` are converted before resizing.
    """

    dtype: Any = np.float32
    """Floating point element type of the output, ``float32`` or ``float64``."""
    seed: int = 0
    width: int = 0
    height: int = 0
    channels: int = 0
    interpolations: Sequence[int] = (cv2.INTER_LINEAR,)
    """OpenCV interpolation flags to draw from uniformly."""

    def __post_init__(self) -> None:
        self.dtype = np.dtype(self.dtype)
        if self.dtype not in (np.dtype(np.float32), np.dtype(np.float64)):
            raise ValueError(f"dtype must be float32 or float64, got {self.dtype}.")
        self._rngs = RandomSourcePool(self.seed)

    @property
    def pool(self) -> RandomSourcePool:
        return self._rngs

    @property
    def feature_dim(self) -> int:
        return self.width * self.height * self.channels

    def init(self, config: Mapping[str, Any]) -> None:
        self.width = get_int(config, "width")
        self.height = get_int(config, "height")
        self.channels = get_int(config, "channels")
        if min(self.width, self.height, self.channels) < 0:
            raise ImageReaderConfigError("Invalid image dimensions.")
        cfeat = self.feature_dim
        if cfeat == 0 or cfeat > sys.maxsize // 2:
            raise ImageReaderConfigError(
                f"Invalid image dimensions: {self.width}x{self.height}x{self.channels}."
            )
        self.interpolations = _parse_interpolations(get_str(config, "interpolations", ""))

    def reseed(self, seed: int) -> None:
        self.seed = int(seed)
        self._rngs.reseed(self.seed)

    def apply(self, image: np.ndarray) -> np.ndarray:
        if self.feature_dim == 0:
            raise RuntimeError("ScaleTransform.init must be called before apply.")
        image = np.ascontiguousarray(image, dtype=self.dtype)
        with self._rngs.borrow() as rng:
            interp = self.interpolations[int(rng.integers(len(self.interpolations)))]
        return cv2.resize(image, (self.width, self.height), interpolation=interp)


@dataclass
class MeanTransform:
    """Subtract a per-pixel mean image loaded from ``meanFile``."""

    mean_image: np.ndarray | None = None

    def init(self, config: Mapping[str, Any]) -> None:
        mean_file = get_str(config, "meanFile", "")
        self.mean_image = read_mean_file(mean_file) if mean_file else None

    def apply(self, image: np.ndarray) -> np.ndarray:
        if self.mean_image is None or self.mean_image.size == 0:
            return image
        if self.mean_image.shape != image.shape:
            raise ValueError(
                f"Mean image shape {self.mean_image.shape} does not match image shape {image.shape}."
            )
        return np.subtract(image, self.mean_image, dtype=image.dtype)


@dataclass
class TransformChain:
    """Transforms applied in order to each decoded image."""

    transforms: list[ImageTransform] = field(default_factory=list)

    @classmethod
    def default(cls, dtype: Any = np.float32, seed: int = 0) -> TransformChain:
        """Crop, then scale, then mean subtraction."""
        return cls(
            transforms=[
                CropTransform(seed=seed),
                ScaleTransform(dtype=dtype, seed=seed),
                MeanTransform(),
            ]
        )

    def __len__(self) -> int:
        return len(self.transforms)

    def __iter__(self):
        return iter(self.transforms)

    def init(self, config: Mapping[str, Any]) -> None:
        for transform in self.transforms:
            transform.init(config)

    def reseed(self, seed: int) -> None:
        for transform in self.transforms:
            reseed = getattr(transform, "reseed", None)
            if callable(reseed):
                reseed(seed)

    def apply(self, image: np.ndarray) -> np.ndarray:
        for transform in self.transforms:
            image = transform.apply(image)
        return image
