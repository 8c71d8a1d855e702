"""Threaded image minibatch reader for supervised training.

A manifest of ``(image path, class label)`` records is read in minibatches.
Every image is decoded, run through a chain of randomized transforms and
written into dense feature and one-hot label tensors.

- `imagereader.loader` contains the `ImageReader` epoch/minibatch driver.
- `imagereader.transforms` contains `CropTransform`, `ScaleTransform`, `MeanTransform` and `TransformChain`.
- `imagereader.manifest` contains the manifest records and map file parser.
- `imagereader.random_pool` contains the `RandomSourcePool` shared by transform workers.
"""
from __future__ import annotations

from .config import ImageReaderConfigError
from .loader import (
    REQUEST_DATA_SIZE,
    EndDataType,
    ImageReader,
    MinibatchLayout,
)
from .manifest import ImageRecord, Manifest, load_manifest
from .random_pool import RandomSourcePool
from .transforms import (
    CropTransform,
    ImageTransform,
    MeanTransform,
    ScaleTransform,
    TransformChain,
)

__all__ = [
    "REQUEST_DATA_SIZE",
    "CropTransform",
    "EndDataType",
    "ImageReader",
    "ImageReaderConfigError",
    "ImageRecord",
    "ImageTransform",
    "Manifest",
    "MeanTransform",
    "MinibatchLayout",
    "RandomSourcePool",
    "ScaleTransform",
    "TransformChain",
    "load_manifest",
]
