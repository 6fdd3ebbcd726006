"""
simple_net package
~~~~~~~~~~~~~~~~~~

A small feedforward neural network for MNIST digit recognition.
Contains the IDX dataset loader, the network engine (forward pass and
single-sample backpropagation) and the benchmark driver.
"""

from simple_net.errors import SimpleNetError, FormatError, DimensionError
from simple_net.mnist_loader import Dataset, MNISTLoader, load_split
from simple_net.network import Network

__version__ = "1.0.0"

__all__ = [
    'SimpleNetError',
    'FormatError',
    'DimensionError',
    'Dataset',
    'MNISTLoader',
    'load_split',
    'Network',
]
