"""
test_benchmark.py
~~~~~~~~~~~~~~~~~

Tests for the benchmark driver: normalisation, configuration, the
training loop and accuracy evaluation on a tiny synthetic dataset.
"""

import pytest
import os
import sys
import base64
import struct

import numpy as np

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from simple_net.errors import DimensionError, FormatError
from simple_net.mnist_loader import Dataset, MNISTLoader
from simple_net.network import Network
from simple_net import benchmark
from simple_net.benchmark import (
    MNISTBenchmark,
    normalize_image,
    normalize_label,
    create_digit_image,
    get_config,
    main
)


def write_split(directory, images, labels):
    """Write IDX image and label files into ``directory``."""
    images = np.asarray(images, dtype=np.uint8)
    n, rows, cols = images.shape
    os.makedirs(directory, exist_ok=True)
    with open(os.path.join(directory, 'images'), 'wb') as f:
        f.write(struct.pack('>IIII', 2051, n, rows, cols) + images.tobytes())
    with open(os.path.join(directory, 'labels'), 'wb') as f:
        f.write(struct.pack('>II', 2049, len(labels)) + bytes(labels))


def make_images(labels):
    """2x2 images: label 0 lights the left column, label 1 the right."""
    images = np.zeros((len(labels), 2, 2), dtype=np.uint8)
    for i, label in enumerate(labels):
        images[i, :, label] = 255
    return images


@pytest.fixture
def data_dir(tmp_path):
    """Create a small two-class dataset in the train/ test/ layout."""
    train_labels = [0, 1] * 10
    test_labels = [1, 0, 1, 0]
    write_split(str(tmp_path / 'train'), make_images(train_labels), train_labels)
    write_split(str(tmp_path / 'test'), make_images(test_labels), test_labels)
    return str(tmp_path)


@pytest.fixture
def small_benchmark(data_dir):
    """Create a benchmark with a seeded 4-3-2 network."""
    net = Network(4, 3, 2, 0.5, seed=1)
    return MNISTBenchmark(net, MNISTLoader.from_directory(data_dir))


@pytest.mark.unit
class TestNormalization:
    """Test conversion of decoded data into network vectors."""

    def test_normalize_image_flattens_row_major(self):
        """Test that pixels are flattened row by row and scaled to [0, 1]."""
        image = np.array([[0, 51], [102, 255]], dtype=np.uint8)
        vector = normalize_image(image)

        assert vector.shape == (4,)
        assert np.allclose(vector, [0.0, 0.2, 0.4, 1.0])

    def test_normalize_label_one_hot(self):
        """Test that a label becomes a one-hot vector."""
        vector = normalize_label(np.uint8(3), 10)

        assert vector.shape == (10,)
        assert vector[3] == 1.0
        assert vector.sum() == 1.0

    def test_normalize_label_out_of_range(self):
        """Test that a label without an output slot is rejected."""
        with pytest.raises(DimensionError):
            normalize_label(10, 10)


@pytest.mark.unit
class TestConfig:
    """Test configuration from environment variables."""

    def test_defaults(self, monkeypatch):
        """Test the default hyperparameters."""
        for name in ('MNIST_DATA_DIR', 'INPUT_NODES', 'HIDDEN_NODES',
                     'OUTPUT_NODES', 'LEARNING_RATE', 'EPOCHS',
                     'TRAIN_SAMPLE', 'TEST_SAMPLE', 'SEED'):
            monkeypatch.delenv(name, raising=False)

        config = get_config()

        assert config['input_nodes'] == 784
        assert config['hidden_nodes'] == 256
        assert config['output_nodes'] == 10
        assert config['learning_rate'] == 0.0001
        assert config['epochs'] == 10
        assert config['train_sample'] is None
        assert config['seed'] is None

    def test_overrides(self, monkeypatch):
        """Test that environment variables override the defaults."""
        monkeypatch.setenv('HIDDEN_NODES', '64')
        monkeypatch.setenv('LEARNING_RATE', '0.01')
        monkeypatch.setenv('TEST_SAMPLE', '100')
        monkeypatch.setenv('SEED', '5')

        config = get_config()

        assert config['hidden_nodes'] == 64
        assert config['learning_rate'] == 0.01
        assert config['test_sample'] == 100
        assert config['seed'] == 5

    @pytest.mark.parametrize('name, value', [
        ('EPOCHS', 'ten'),
        ('EPOCHS', '0'),
        ('HIDDEN_NODES', '-4'),
        ('LEARNING_RATE', 'fast'),
        ('LEARNING_RATE', '-0.1'),
    ])
    def test_invalid_values(self, monkeypatch, name, value):
        """Test that invalid values raise ValueError naming the variable."""
        monkeypatch.setenv(name, value)
        with pytest.raises(ValueError) as exc_info:
            get_config()
        assert name in str(exc_info.value)


@pytest.mark.integration
class TestMNISTBenchmark:
    """Test training and evaluation on a synthetic dataset."""

    def test_train_and_test(self, small_benchmark):
        """Test that training runs and accuracy is a fraction."""
        small_benchmark.train(20)
        accuracy = small_benchmark.test()

        assert 0.0 <= accuracy <= 1.0

    def test_accuracy_matches_predictions(self, small_benchmark):
        """Test that accuracy is correct predictions over total."""
        images, labels = small_benchmark.data[1]
        correct = sum(
            small_benchmark.neural_net.predict(normalize_image(image)) == label
            for image, label in zip(images, labels)
        )

        assert small_benchmark.test() == correct / len(labels)

    def test_test_sample_limits_items(self, small_benchmark):
        """Test that only the first ``sample`` test items are evaluated."""
        images, labels = small_benchmark.data[1]
        expected = int(
            small_benchmark.neural_net.predict(normalize_image(images[0])) == labels[0]
        )

        assert small_benchmark.test(sample=1) == float(expected)

    def test_callback_per_epoch(self, small_benchmark):
        """Test that the callback receives one progress dict per epoch."""
        updates = []
        small_benchmark.train(3, sample=5, callback=updates.append)

        assert [u['epoch'] for u in updates] == [1, 2, 3]
        assert all(u['total_epochs'] == 3 for u in updates)
        assert all(u['samples'] == 5 for u in updates)
        assert all(u['elapsed_time'] >= 0 for u in updates)

    def test_training_changes_weights(self, small_benchmark):
        """Test that a training pass updates the network."""
        before = small_benchmark.neural_net.hidden_to_output.weights.copy()
        small_benchmark.train(1, sample=2)

        assert not np.array_equal(
            small_benchmark.neural_net.hidden_to_output.weights, before
        )

    @pytest.mark.parametrize('epochs, sample', [(0, None), (2.5, None), (1, 0)])
    def test_invalid_train_arguments(self, small_benchmark, epochs, sample):
        """Test that invalid epoch counts and samples are rejected."""
        with pytest.raises(ValueError):
            small_benchmark.train(epochs, sample=sample)

    def test_data_loaded_once(self, small_benchmark, monkeypatch):
        """Test that the splits are cached after the first load."""
        first = small_benchmark.data
        monkeypatch.setattr(
            small_benchmark.data_loader, 'load_all',
            lambda: pytest.fail("data loaded twice")
        )

        assert small_benchmark.data is first

    def test_missing_data_raises(self, tmp_path):
        """Test that a failed load surfaces instead of reporting 0%."""
        bench = MNISTBenchmark(
            Network(4, 3, 2, 0.5),
            MNISTLoader.from_directory(str(tmp_path / 'missing'))
        )

        with pytest.raises(FileNotFoundError):
            bench.test()

    def test_corrupt_data_raises(self, data_dir):
        """Test that a corrupt test file surfaces as FormatError."""
        with open(os.path.join(data_dir, 'test', 'labels'), 'wb') as f:
            f.write(struct.pack('>II', 1234, 0))

        bench = MNISTBenchmark(
            Network(4, 3, 2, 0.5), MNISTLoader.from_directory(data_dir)
        )
        with pytest.raises(FormatError):
            bench.train(1)

    def test_empty_test_split_raises(self, small_benchmark, monkeypatch):
        """Test that evaluating an empty split is an error."""
        train, _ = small_benchmark.data
        empty = Dataset(
            np.zeros((0, 2, 2), dtype=np.uint8), np.zeros(0, dtype=np.uint8)
        )
        monkeypatch.setattr(
            small_benchmark.data_loader, 'load_all', lambda: (train, empty)
        )
        small_benchmark._data = None

        with pytest.raises(DimensionError):
            small_benchmark.test()


@pytest.mark.integration
class TestExamples:
    """Test the example search and digit rendering helpers."""

    def test_find_successful_example(self, tmp_path):
        """Test finding a correctly classified test item."""
        net = Network(4, 3, 2, 0.5, seed=2)
        images = make_images([0, 1, 0, 1])
        predicted = [net.predict(normalize_image(image)) for image in images]
        write_split(str(tmp_path / 'train'), images, predicted)
        write_split(str(tmp_path / 'test'), images, predicted)

        bench = MNISTBenchmark(net, MNISTLoader.from_directory(str(tmp_path)))
        example = bench.find_example(successful=True, rng=np.random.default_rng(0))

        assert example is not None
        assert example['predicted_digit'] == example['actual_digit']
        assert len(example['network_output']) == 2
        assert bench.find_example(successful=False, max_attempts=20) is None

    def test_create_digit_image_returns_png(self):
        """Test that a digit is rendered as a base64 PNG."""
        image = np.zeros((28, 28), dtype=np.uint8)
        image[10:18, 12:16] = 255

        encoded = create_digit_image(image, predicted=1, actual=1)

        assert base64.b64decode(encoded)[:8] == b'\x89PNG\r\n\x1a\n'

    def test_create_digit_image_accepts_flat_vector(self):
        """Test that a flat 784-element vector is reshaped to 28x28."""
        encoded = create_digit_image(np.zeros(784), predicted=3, actual=5)
        assert base64.b64decode(encoded)[:4] == b'\x89PNG'


@pytest.mark.integration
class TestMain:
    """Test the command-line entry point."""

    def test_main_runs_benchmark(self, data_dir, monkeypatch):
        """Test a full run configured from the environment."""
        monkeypatch.setenv('MNIST_DATA_DIR', data_dir)
        monkeypatch.setenv('INPUT_NODES', '4')
        monkeypatch.setenv('HIDDEN_NODES', '3')
        monkeypatch.setenv('OUTPUT_NODES', '2')
        monkeypatch.setenv('LEARNING_RATE', '0.5')
        monkeypatch.setenv('EPOCHS', '2')
        monkeypatch.setenv('SEED', '0')

        results = []
        original = benchmark.run_benchmark

        def recording_run(config):
            results.append(original(config))
            return results[-1]

        monkeypatch.setattr(benchmark, 'run_benchmark', recording_run)

        assert main() == 0
        assert len(results) == 1
        assert 0.0 <= results[0] <= 1.0

    def test_main_reports_missing_data(self, tmp_path, monkeypatch):
        """Test that a missing dataset gives a non-zero exit code."""
        monkeypatch.setenv('MNIST_DATA_DIR', str(tmp_path / 'missing'))
        monkeypatch.setenv('EPOCHS', '1')

        assert main() == 1
