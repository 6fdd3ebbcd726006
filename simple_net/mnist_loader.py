"""
mnist_loader.py
~~~~~~~~~~~~~~~

Loader for the MNIST dataset stored in the IDX binary format.

An IDX file starts with a big-endian header (a magic number followed by
one 32-bit count per dimension) and is followed by the raw payload bytes:

- labels: magic 2049, item count, then one byte per label
- images: magic 2051, image count, row count, column count, then
  ``count * rows * cols`` pixel bytes in row-major order

Files are read completely into memory and decoded in one go.
"""

import os
import struct
import logging
from typing import NamedTuple, Tuple

import numpy as np

from simple_net.errors import FormatError, DimensionError

logger = logging.getLogger(__name__)

LABELS_MAGIC = 2049
IMAGES_MAGIC = 2051

_LABELS_HEADER = struct.Struct('>II')
_IMAGES_HEADER = struct.Struct('>IIII')


class Dataset(NamedTuple):
    """One split of the dataset; ``images[i]`` is labelled ``labels[i]``."""

    images: np.ndarray
    labels: np.ndarray


def _check_magic(data: bytes, expected: int) -> None:
    if len(data) < 4:
        raise FormatError(
            f"File too short for a magic number: {len(data)} byte(s)"
        )
    (magic,) = struct.unpack_from('>I', data)
    if magic != expected:
        raise FormatError(
            f"Magic number mismatch, expected {expected}, got {magic}"
        )


def decode_labels(data: bytes) -> np.ndarray:
    """
    Decode an IDX label file.

    The declared item count is not used to slice the payload: every byte
    after the 8-byte header is a label.

    Args:
        data: Full contents of the label file

    Returns:
        Read-only uint8 array of labels in file order

    Raises:
        FormatError: If the magic number is not 2049 or the header is
            incomplete
    """
    _check_magic(data, LABELS_MAGIC)
    if len(data) < _LABELS_HEADER.size:
        raise FormatError(
            f"Label header needs {_LABELS_HEADER.size} bytes, got {len(data)}"
        )

    _, count = _LABELS_HEADER.unpack_from(data)
    labels = np.frombuffer(data, dtype=np.uint8, offset=_LABELS_HEADER.size)

    if count != len(labels):
        logger.warning(
            f"Label header declares {count} item(s) but payload holds "
            f"{len(labels)}"
        )
    return labels


def decode_images(data: bytes) -> np.ndarray:
    """
    Decode an IDX image file.

    Args:
        data: Full contents of the image file

    Returns:
        Read-only uint8 array of shape (count, rows, cols)

    Raises:
        FormatError: If the magic number is not 2051, the header is
            incomplete, or the payload holds fewer than
            ``count * rows * cols`` bytes
    """
    _check_magic(data, IMAGES_MAGIC)
    if len(data) < _IMAGES_HEADER.size:
        raise FormatError(
            f"Image header needs {_IMAGES_HEADER.size} bytes, got {len(data)}"
        )

    _, count, rows, cols = _IMAGES_HEADER.unpack_from(data)
    expected = count * rows * cols
    available = len(data) - _IMAGES_HEADER.size

    if available < expected:
        raise FormatError(
            f"Image payload truncated: header declares {count}x{rows}x{cols} "
            f"({expected} bytes), got {available}"
        )
    if available > expected:
        logger.debug(f"Ignoring {available - expected} trailing byte(s)")

    pixels = np.frombuffer(
        data, dtype=np.uint8, count=expected, offset=_IMAGES_HEADER.size
    )
    return pixels.reshape(count, rows, cols)


def _read_file(filepath: str) -> bytes:
    with open(filepath, 'rb') as f:
        return f.read()


def load_split(images_path: str, labels_path: str) -> Dataset:
    """
    Load one split (images and labels) from a pair of IDX files.

    Args:
        images_path: Path to the IDX image file
        labels_path: Path to the IDX label file

    Returns:
        Dataset: the decoded images and labels

    Raises:
        OSError: If either file cannot be read
        FormatError: If either file is not valid IDX
        DimensionError: If the image and label counts differ
    """
    labels = decode_labels(_read_file(labels_path))
    images = decode_images(_read_file(images_path))

    if len(images) != len(labels):
        raise DimensionError(
            f"Split has {len(images)} image(s) but {len(labels)} label(s): "
            f"{images_path}, {labels_path}"
        )

    logger.info(
        f"Loaded {len(images)} image(s) of {images.shape[1]}x{images.shape[2]} "
        f"from {images_path}"
    )
    return Dataset(images, labels)


class MNISTLoader:
    """Loads the train and test splits from four IDX files."""

    def __init__(
        self,
        training_images_filepath: str,
        training_labels_filepath: str,
        test_images_filepath: str,
        test_labels_filepath: str
    ):
        self.training_images_filepath = training_images_filepath
        self.training_labels_filepath = training_labels_filepath
        self.test_images_filepath = test_images_filepath
        self.test_labels_filepath = test_labels_filepath

    @classmethod
    def from_directory(cls, data_dir: str) -> 'MNISTLoader':
        """
        Create a loader for the ``train/`` and ``test/`` layout.

        Each subdirectory holds an ``images`` and a ``labels`` file.
        """
        return cls(
            os.path.join(data_dir, 'train', 'images'),
            os.path.join(data_dir, 'train', 'labels'),
            os.path.join(data_dir, 'test', 'images'),
            os.path.join(data_dir, 'test', 'labels'),
        )

    def load_all(self) -> Tuple[Dataset, Dataset]:
        """
        Load both splits.

        Returns:
            tuple: (training Dataset, test Dataset)

        Raises:
            OSError, FormatError, DimensionError: from the first split
                that fails to load
        """
        train = load_split(
            self.training_images_filepath, self.training_labels_filepath
        )
        test = load_split(
            self.test_images_filepath, self.test_labels_filepath
        )
        return train, test
