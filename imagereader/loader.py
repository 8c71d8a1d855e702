"""Epoch/minibatch iteration over an image manifest with parallel decoding."""
from __future__ import annotations

import enum
import logging
import os
import sys
from collections.abc import Callable, Mapping, MutableMapping
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any

import numpy as np

from .config import (
    ImageReaderConfigError,
    find_section,
    get_int,
    get_str,
    same_token,
)
from .manifest import Manifest, load_manifest
from .random_pool import make_generator
from .transforms import TransformChain
from .utils import decode_image, to_host_jax_array

logger = logging.getLogger(__name__)

REQUEST_DATA_SIZE = sys.maxsize
"""Pass as ``requested_epoch_samples`` to make an epoch cover the whole manifest."""

Decoder = Callable[[str, int], np.ndarray]


class EndDataType(enum.Enum):
    NULL = "null"
    EPOCH = "epoch"
    SET = "set"
    SENTENCE = "sentence"


@dataclass(frozen=True)
class MinibatchLayout:
    """Describes a minibatch to the training loop."""

    num_samples: int
    """Columns in the feature and label tensors."""
    num_steps: int = 1
    """Samples are independent, so every sample is a single step."""
    sequential: bool = False


class _MinibatchIterator:
    """Python iterator that fetches minibatches until the epoch runs out."""

    def __init__(self, reader: ImageReader, matrices: MutableMapping[str, Any]) -> None:
        self._reader = reader
        self._matrices = matrices

    def __iter__(self):
        return self

    def __next__(self):
        if not self._reader.get_minibatch(self._matrices):
            raise StopIteration
        return self._matrices, self._reader.layout


class ImageReader:
    """Produce one-hot labelled minibatches from a manifest of image files.

    Lifecycle: ``init(config)`` once, then ``start_epoch`` at the beginning of
    each epoch followed by ``get_minibatch`` until it returns ``False``.  Worker
    threads are released by ``close()`` or on leaving a ``with`` block; a reader
    that is simply dropped keeps its idle workers until interpreter exit.

    Args:
        seed: Seed for the manifest shuffle and for every transform generator.
        dtype: Element type of the feature tensors, ``float32`` or ``float64``.
        num_workers: Threads decoding and transforming samples. Defaults to the
            ``numWorkers`` config value, or the CPU count.
        decoder: Callable ``(path, channels) -> array`` used to read images.
        transforms: Transform chain; defaults to crop, scale and mean subtraction.
    """

    def __init__(
        self,
        seed: int = 0,
        dtype: Any = np.float32,
        num_workers: int | None = None,
        decoder: Decoder | None = None,
        transforms: TransformChain | None = None,
    ) -> None:
        self._seed = int(seed)
        self._rng = make_generator(self._seed)
        self._dtype = np.dtype(dtype)
        self._num_workers = num_workers
        self._decoder = decoder if decoder is not None else decode_image
        self._transforms = (
            transforms if transforms is not None else TransformChain.default(self._dtype, self._seed)
        )
        self._executor: ThreadPoolExecutor | None = None

        self._manifest = Manifest([])
        self._randomize = True
        self._feature_name = ""
        self._label_name = ""
        self._feature_dim = 0
        self._label_dim = 0
        self._channels = 0

        self._epoch = 0
        self._epoch_size = 0
        self._epoch_start = 0
        self._mb_start = 0
        self._mb_size = 0
        self._feature_buf = np.zeros((0, 0), dtype=self._dtype)
        self._label_buf = np.zeros((0, 0), dtype=self._dtype)
        self._layout = MinibatchLayout(num_samples=0)

    def init(self, config: Mapping[str, Any]) -> None:
        # Only one feature section and one label section are supported.
        self._feature_name, feature_section = find_section(config, "width")
        width = get_int(feature_section, "width")
        height = get_int(feature_section, "height")
        self._channels = get_int(feature_section, "channels")
        self._feature_dim = width * height * self._channels

        self._transforms.init(feature_section)

        self._label_name, label_section = find_section(config, "labelDim")
        self._label_dim = get_int(label_section, "labelDim")
        if self._label_dim <= 0:
            raise ImageReaderConfigError(f"Invalid labelDim: {self._label_dim}.")

        self._manifest = load_manifest(get_str(config, "file"))
        if self._manifest.max_label >= self._label_dim:
            raise ImageReaderConfigError(
                f"Class label {self._manifest.max_label} does not fit labelDim {self._label_dim}."
            )

        randomize = get_str(config, "randomize", "auto")
        if same_token(randomize, "none"):
            self._randomize = False
        elif same_token(randomize, "auto"):
            self._randomize = True
        else:
            raise ImageReaderConfigError("Only Auto and None are currently supported.")

        if self._num_workers is None and "numWorkers" in config:
            self._num_workers = get_int(config, "numWorkers")
        if self._num_workers is not None and self._num_workers <= 0:
            raise ImageReaderConfigError(f"numWorkers must be positive, got {self._num_workers}.")

        self._epoch_start = 0
        self._mb_start = 0
        logger.info(
            "ImageReader initialized: %d images, feature '%s' (%d), label '%s' (%d)",
            len(self._manifest),
            self._feature_name,
            self._feature_dim,
            self._label_name,
            self._label_dim,
        )

    def start_epoch(
        self,
        minibatch_size: int,
        epoch: int,
        requested_epoch_samples: int = REQUEST_DATA_SIZE,
    ) -> None:
        if minibatch_size <= 0:
            raise ValueError("minibatch_size must be positive.")
        if requested_epoch_samples <= 0:
            raise ValueError("requested_epoch_samples must be positive.")

        full_epoch = requested_epoch_samples == REQUEST_DATA_SIZE
        if not full_epoch and requested_epoch_samples % minibatch_size != 0:
            raise ImageReaderConfigError(
                f"Epoch size {requested_epoch_samples} must be a multiple of "
                f"the minibatch size {minibatch_size}."
            )

        if self._randomize:
            self._manifest.shuffle(self._rng)

        self._epoch_size = len(self._manifest) if full_epoch else requested_epoch_samples
        self._epoch = epoch
        self._epoch_start = epoch * self._epoch_size
        if self._epoch_start >= len(self._manifest):
            logger.debug(
                "Epoch %d starts at sample %d past the %d manifest records; restarting at 0",
                epoch,
                self._epoch_start,
                len(self._manifest),
            )
            self._epoch_start = 0
            self._mb_start = 0

        if (
            self._feature_buf.shape != (minibatch_size, self._feature_dim)
            or self._label_buf.shape != (minibatch_size, self._label_dim)
        ):
            self._feature_buf = np.zeros((minibatch_size, self._feature_dim), dtype=self._dtype)
            self._label_buf = np.zeros((minibatch_size, self._label_dim), dtype=self._dtype)
        self._mb_size = minibatch_size
        logger.info(
            "Starting epoch %d: %d samples from %d, minibatch size %d",
            epoch,
            self._epoch_size,
            self._epoch_start,
            minibatch_size,
        )

    def get_minibatch(self, matrices: MutableMapping[str, Any]) -> bool:
        """Fill ``matrices`` with the next minibatch; ``False`` once the epoch is done.

        Features are stored under the feature section name as a
        ``(feature_dim, batch)`` array and one-hot labels under the label
        section name as ``(label_dim, batch)``. The last minibatch of the
        manifest may hold fewer than ``minibatch_size`` samples.
        """
        if self._mb_size <= 0:
            raise RuntimeError("start_epoch must be called before get_minibatch.")

        total = len(self._manifest)
        if self._mb_start >= total or self._mb_start >= self._epoch_start + self._epoch_size:
            return False

        mb_lim = min(self._mb_start + self._mb_size, total)
        count = mb_lim - self._mb_start

        self._label_buf.fill(0)
        self._load_samples(self._mb_start, count)

        matrices[self._feature_name] = to_host_jax_array(
            np.array(self._feature_buf[:count].T, order="C")
        )
        matrices[self._label_name] = to_host_jax_array(
            np.array(self._label_buf[:count].T, order="C")
        )
        self._layout = MinibatchLayout(num_samples=count)
        logger.debug("Minibatch [%d, %d) ready", self._mb_start, mb_lim)

        self._mb_start = mb_lim
        return True

    def _load_samples(self, start: int, count: int) -> None:
        executor = self._ensure_executor()
        futures = [executor.submit(self._load_sample, start, i) for i in range(count)]
        _, not_done = wait(futures, return_when=FIRST_EXCEPTION)
        if not_done:
            # A sample failed: stop the rest and let running workers drain
            # before the buffers can be touched again.
            for future in not_done:
                future.cancel()
            wait(not_done)
        for future in futures:
            if not future.cancelled():
                future.result()

    def _load_sample(self, start: int, i: int) -> None:
        record = self._manifest[start + i]
        image = self._decoder(record.path, self._channels)
        image = self._transforms.apply(image)
        flat = np.asarray(image).reshape(-1)
        if flat.size != self._feature_dim:
            raise ValueError(
                f"Transformed image {record.path} has {flat.size} values, "
                f"expected {self._feature_dim}."
            )
        self._feature_buf[i] = flat
        self._label_buf[i, record.label] = 1

    def _ensure_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            workers = self._num_workers or os.cpu_count() or 1
            self._executor = ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix="imagereader"
            )
        return self._executor

    def data_end(self, kind: EndDataType) -> bool:
        if kind is EndDataType.EPOCH:
            return self._mb_start < self._epoch_start + self._epoch_size
        if kind is EndDataType.SET:
            return self._mb_start >= len(self._manifest)
        if kind is EndDataType.SENTENCE:
            return True
        raise ValueError(f"Unsupported end-of-data query: {kind}.")

    def set_random_seed(self, seed: int) -> None:
        self._seed = int(seed)
        self._rng = make_generator(self._seed)
        self._transforms.reseed(self._seed)

    def iterate(self, matrices: MutableMapping[str, Any] | None = None) -> _MinibatchIterator:
        """Return an iterator over ``(matrices, layout)`` for the rest of the epoch."""
        return _MinibatchIterator(self, {} if matrices is None else matrices)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> ImageReader:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def manifest(self) -> Manifest:
        return self._manifest

    @property
    def layout(self) -> MinibatchLayout:
        return self._layout

    @property
    def transforms(self) -> TransformChain:
        return self._transforms

    @property
    def feature_name(self) -> str:
        return self._feature_name

    @property
    def label_name(self) -> str:
        return self._label_name

    @property
    def feature_dim(self) -> int:
        return self._feature_dim

    @property
    def label_dim(self) -> int:
        return self._label_dim

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def epoch_size(self) -> int:
        return self._epoch_size

    @property
    def epoch_start(self) -> int:
        return self._epoch_start

    @property
    def minibatch_start(self) -> int:
        return self._mb_start

    @property
    def minibatch_size(self) -> int:
        return self._mb_size

    @property
    def feature_buffer(self) -> np.ndarray:
        """Row-major ``(minibatch_size, feature_dim)`` staging buffer."""
        return self._feature_buf

    @property
    def label_buffer(self) -> np.ndarray:
        """Row-major ``(minibatch_size, label_dim)`` one-hot staging buffer."""
        return self._label_buf
