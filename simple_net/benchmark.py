"""
benchmark.py
~~~~~~~~~~~~

MNIST benchmark driver for the network engine.

This module provides:
- Configuration from environment variables
- Normalisation of decoded images and labels into network vectors
- An online training loop with per-epoch progress callbacks
- Accuracy evaluation on the test split
- Inspection helpers that render a classified digit as a PNG

Run with ``python -m simple_net.benchmark`` or ``simple-net-benchmark``.
"""

import os
import sys
import time
import base64
import logging
from io import BytesIO
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np

# Use non-GUI backend for matplotlib
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from simple_net.errors import DimensionError
from simple_net.mnist_loader import Dataset, MNISTLoader
from simple_net.network import Network

logger = logging.getLogger(__name__)

# ============================================================================
# LOGGING SETUP
# ============================================================================

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging() -> None:
    """Set up logging with the level taken from ``LOG_LEVEL``."""
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    logging.basicConfig(level=log_level, format=LOG_FORMAT)
    logging.getLogger('matplotlib').setLevel(logging.WARNING)


# ============================================================================
# CONFIGURATION
# ============================================================================

DEFAULT_CONFIG: Dict[str, Any] = {
    'data_dir': 'data/mnist',
    'input_nodes': 28 * 28,
    'hidden_nodes': 256,
    'output_nodes': 10,
    'learning_rate': 0.0001,
    'epochs': 10,
    'train_sample': None,
    'test_sample': None,
    'seed': None,
}


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    return value


def _env_positive_int(name: str, default: Optional[int]) -> Optional[int]:
    value = _env_int(name, default)
    if value is not None and value < 1:
        raise ValueError(f"{name} must be a positive integer, got {value}")
    return value


def get_config() -> Dict[str, Any]:
    """
    Read the benchmark configuration from the environment.

    Unset variables fall back to ``DEFAULT_CONFIG``.

    Returns:
        dict with data_dir, layer sizes, learning_rate, epochs,
        train_sample, test_sample and seed

    Raises:
        ValueError: If a variable holds an invalid value
    """
    config = dict(DEFAULT_CONFIG)
    config['data_dir'] = os.getenv('MNIST_DATA_DIR', config['data_dir'])

    for key in ('input_nodes', 'hidden_nodes', 'output_nodes', 'epochs',
                'train_sample', 'test_sample'):
        config[key] = _env_positive_int(key.upper(), config[key])
    config['seed'] = _env_int('SEED', config['seed'])

    raw_rate = os.getenv('LEARNING_RATE')
    if raw_rate:
        try:
            config['learning_rate'] = float(raw_rate)
        except ValueError:
            raise ValueError(
                f"LEARNING_RATE must be a number, got {raw_rate!r}"
            ) from None
    if config['learning_rate'] <= 0:
        raise ValueError(
            f"LEARNING_RATE must be positive, got {config['learning_rate']}"
        )

    return config


# ============================================================================
# NORMALISATION
# ============================================================================

def normalize_image(image: np.ndarray) -> np.ndarray:
    """Flatten an image row by row and scale pixels into [0, 1]."""
    return np.asarray(image, dtype=float).ravel() / 255.0


def normalize_label(label: int, output_nodes: int) -> np.ndarray:
    """
    Encode a label as a one-hot vector.

    Raises:
        DimensionError: If the label has no slot in a vector of
            ``output_nodes`` entries
    """
    label = int(label)
    if not 0 <= label < output_nodes:
        raise DimensionError(
            f"Label {label} out of range for {output_nodes} output node(s)"
        )
    expected_output = np.zeros(output_nodes)
    expected_output[label] = 1.0
    return expected_output


# ============================================================================
# BENCHMARK
# ============================================================================

def _check_sample(sample: Optional[int]) -> None:
    if sample is not None and (not isinstance(sample, int) or sample < 1):
        raise ValueError(f"sample must be a positive integer or None, got {sample!r}")


class MNISTBenchmark:
    """Trains and evaluates a network on the MNIST splits of a loader."""

    def __init__(self, neural_net: Network, data_loader: MNISTLoader):
        self.neural_net = neural_net
        self.data_loader = data_loader
        self._data: Optional[Tuple[Dataset, Dataset]] = None

    @property
    def data(self) -> Tuple[Dataset, Dataset]:
        """The (train, test) splits, loaded on first access."""
        if self._data is None:
            logger.info("Loading MNIST data...")
            self._data = self.data_loader.load_all()
            train, test = self._data
            logger.info(
                f"Data loaded: {len(train.images)} training, "
                f"{len(test.images)} test"
            )
        return self._data

    def train(
        self,
        epoch_count: int,
        sample: Optional[int] = None,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None
    ) -> None:
        """
        Train the network online, one sample at a time, in file order.

        Args:
            epoch_count: Number of passes over the training items
            sample: Train on only the first ``sample`` items per epoch
            callback: Called after each epoch with a progress dict
                (epoch, total_epochs, elapsed_time, samples)

        Raises:
            ValueError: If epoch_count or sample is not a positive integer
        """
        if not isinstance(epoch_count, int) or epoch_count < 1:
            raise ValueError(f"epoch_count must be a positive integer, got {epoch_count!r}")
        _check_sample(sample)

        images, labels = self.data[0]
        count = len(images) if sample is None else min(sample, len(images))
        output_nodes = self.neural_net.output_nodes

        start = time.time()
        for epoch in range(1, epoch_count + 1):
            for i in range(count):
                logger.debug(f"{i + 1} of {count}")
                self.neural_net.train(
                    normalize_image(images[i]),
                    normalize_label(labels[i], output_nodes)
                )

            elapsed = time.time() - start
            logger.info(f"Epoch {epoch} complete ({elapsed:.1f}s)")

            if callback is not None:
                callback({
                    'epoch': epoch,
                    'total_epochs': epoch_count,
                    'elapsed_time': elapsed,
                    'samples': count,
                })

    def test(self, sample: Optional[int] = None) -> float:
        """
        Measure accuracy on the test split.

        Args:
            sample: Evaluate only the first ``sample`` test items

        Returns:
            float: correct predictions divided by items evaluated

        Raises:
            DimensionError: If there are no test items to evaluate
        """
        _check_sample(sample)

        images, labels = self.data[1]
        count = len(images) if sample is None else min(sample, len(images))
        if count == 0:
            raise DimensionError("Test split is empty")

        correct = self.neural_net.evaluate(
            [normalize_image(image) for image in images[:count]],
            labels[:count]
        )
        logger.info(f"Test: {correct} / {count} correct")
        return correct / count

    def find_example(
        self,
        successful: bool = True,
        max_attempts: int = 100,
        rng: Optional[np.random.Generator] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Pick random test items until one is classified correctly
        (or incorrectly, when ``successful`` is False).

        Returns:
            dict with example_index, predicted_digit, actual_digit,
            network_output and image, or None if nothing matched
        """
        rng = rng if rng is not None else np.random.default_rng()
        images, labels = self.data[1]
        if len(images) == 0:
            return None

        for attempt in range(max_attempts):
            index = int(rng.integers(0, len(images)))
            output = self.neural_net.feed_forward(normalize_image(images[index]))
            predicted_digit = int(np.argmax(output))
            actual_digit = int(labels[index])

            if (predicted_digit == actual_digit) == successful:
                logger.debug(f"Found example on attempt {attempt + 1}")
                return {
                    'example_index': index,
                    'predicted_digit': predicted_digit,
                    'actual_digit': actual_digit,
                    'network_output': [float(val) for val in output],
                    'image': images[index],
                }

        logger.warning(f"No matching example found after {max_attempts} attempts")
        return None


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def create_digit_image(image: np.ndarray, predicted: int, actual: int) -> str:
    """
    Create a base64-encoded PNG image of a digit.

    Args:
        image: 2D pixel grid, or a flat 784-element vector of a 28x28 digit
        predicted: The digit the network predicted
        actual: The correct digit

    Returns:
        Base64-encoded PNG image string
    """
    pixels = np.asarray(image)
    if pixels.ndim == 1:
        pixels = pixels.reshape(28, 28)

    plt.figure(figsize=(3, 3))
    plt.imshow(pixels, cmap='gray')
    plt.title(f"Predicted: {predicted} | Actual: {actual}")
    plt.axis('off')

    # Save image to a bytes buffer instead of a file
    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


# ============================================================================
# ENTRY POINT
# ============================================================================

def run_benchmark(config: Dict[str, Any]) -> float:
    """
    Train and test a fresh network as described by ``config``.

    Args:
        config: Mapping with the keys of ``DEFAULT_CONFIG``

    Returns:
        float: test accuracy between 0.0 and 1.0
    """
    logger.info("Initializing model")
    neural_net = Network(
        config['input_nodes'],
        config['hidden_nodes'],
        config['output_nodes'],
        config['learning_rate'],
        seed=config['seed']
    )

    logger.info(f"Loading benchmark from {config['data_dir']}")
    benchmark = MNISTBenchmark(
        neural_net, MNISTLoader.from_directory(config['data_dir'])
    )

    logger.info("Training")
    benchmark.train(config['epochs'], sample=config['train_sample'])

    logger.info("Testing")
    result = benchmark.test(sample=config['test_sample'])

    logger.info(f"Result: {result * 100:.2f}%")
    return result


def main() -> int:
    """Command-line entry point; returns the process exit code."""
    configure_logging()

    try:
        run_benchmark(get_config())
    except Exception as e:
        logger.exception(f"Benchmark failed: {e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
