"""
network.py
~~~~~~~~~~

A three-layer feedforward neural network (input, hidden, output) with
sigmoid activations, trained online: every call to ``Network.train``
updates the weights from a single sample.

Backpropagation here is a simplified variant. The hidden layer error is
the output error pushed back through the raw hidden-to-output weights,
without multiplying by the output layer's sigmoid derivative::

    hidden_error[j] = sum_i output_error[i] * hidden_to_output.weights[i][j]

This is a deliberate deviation from the textbook chain rule and defines
how the network learns. Do not replace it with the exact gradient.
"""

import logging
from typing import Dict, List, Optional, Sequence, Union

import numpy as np

from simple_net.errors import DimensionError

logger = logging.getLogger(__name__)

Seed = Optional[Union[int, np.random.Generator]]


def sigmoid(x: np.ndarray) -> np.ndarray:
    """The logistic function 1 / (1 + e^-x)."""
    # exp overflows to inf for very negative x; the result is then 0.0
    with np.errstate(over='ignore'):
        return 1.0 / (1.0 + np.exp(-x))


def sigmoid_derivative(y: np.ndarray) -> np.ndarray:
    """Derivative of the sigmoid expressed through its output y."""
    return y * (1.0 - y)


class LayerWeights:
    """
    Weights and biases of one dense layer.

    ``weights`` has shape (output_nodes, input_nodes): row i holds the
    incoming weights of output unit i.
    """

    def __init__(
        self,
        input_nodes: int,
        output_nodes: int,
        rng: np.random.Generator
    ):
        self.weights = rng.uniform(-1.0, 1.0, size=(output_nodes, input_nodes))
        self.biases = rng.uniform(-1.0, 1.0, size=output_nodes)

    def process(self, inputs: np.ndarray) -> np.ndarray:
        """Return the sigmoid activations of this layer for ``inputs``."""
        return sigmoid(self.weights @ inputs + self.biases)

    def adjust(self, gradients: np.ndarray, inputs: np.ndarray) -> None:
        """Apply ``weight[i][k] += gradient[i] * input[k]`` and shift biases."""
        self.weights += np.outer(gradients, inputs)
        self.biases += gradients


def _as_vector(values: Sequence[float], expected: int, name: str) -> np.ndarray:
    vector = np.asarray(values, dtype=float)
    if vector.ndim != 1 or vector.shape[0] != expected:
        raise DimensionError(
            f"{name} must be a vector of length {expected}, "
            f"got shape {vector.shape}"
        )
    return vector


class Network:
    """
    Feedforward network with one hidden layer.

    The four hyperparameters are fixed at construction. Weight state is
    owned by the instance and only changes through ``train``.
    """

    def __init__(
        self,
        input_nodes: int,
        hidden_nodes: int,
        output_nodes: int,
        learning_rate: float,
        seed: Seed = None
    ):
        """
        Create a network with weights and biases drawn uniformly from
        [-1.0, 1.0].

        Args:
            input_nodes: Length of the input vector
            hidden_nodes: Number of hidden units
            output_nodes: Length of the output vector
            learning_rate: Scale applied to every gradient
            seed: Integer seed or numpy Generator for reproducible
                initialisation; None draws fresh entropy

        Raises:
            ValueError: If any layer size is not a positive integer
        """
        for name, size in (('input_nodes', input_nodes),
                           ('hidden_nodes', hidden_nodes),
                           ('output_nodes', output_nodes)):
            if not isinstance(size, (int, np.integer)) or size < 1:
                raise ValueError(f"{name} must be a positive integer, got {size!r}")

        self.input_nodes = int(input_nodes)
        self.hidden_nodes = int(hidden_nodes)
        self.output_nodes = int(output_nodes)
        self.learning_rate = float(learning_rate)

        rng = np.random.default_rng(seed)
        self.input_to_hidden = LayerWeights(self.input_nodes, self.hidden_nodes, rng)
        self.hidden_to_output = LayerWeights(self.hidden_nodes, self.output_nodes, rng)

        logger.debug(
            f"Created network {self.sizes} with learning rate {self.learning_rate}"
        )

    @property
    def sizes(self) -> List[int]:
        """Layer sizes as [input, hidden, output]."""
        return [self.input_nodes, self.hidden_nodes, self.output_nodes]

    @property
    def params(self) -> Dict[str, float]:
        return {
            'input_nodes': self.input_nodes,
            'hidden_nodes': self.hidden_nodes,
            'output_nodes': self.output_nodes,
            'learning_rate': self.learning_rate,
        }

    def feed_forward(self, inputs: Sequence[float]) -> np.ndarray:
        """
        Run the network on one input vector.

        Args:
            inputs: Vector of length ``input_nodes``

        Returns:
            Output activations, a vector of length ``output_nodes``

        Raises:
            DimensionError: If ``inputs`` has the wrong length
        """
        x = _as_vector(inputs, self.input_nodes, 'inputs')
        hidden_outputs = self.input_to_hidden.process(x)
        return self.hidden_to_output.process(hidden_outputs)

    def train(
        self,
        inputs: Sequence[float],
        expected_outputs: Sequence[float]
    ) -> None:
        """
        Update the weights from a single training sample.

        Args:
            inputs: Vector of length ``input_nodes``
            expected_outputs: Target vector of length ``output_nodes``,
                normally one-hot

        Raises:
            DimensionError: If either vector has the wrong length; the
                weights are left untouched
        """
        x = _as_vector(inputs, self.input_nodes, 'inputs')
        target = _as_vector(expected_outputs, self.output_nodes, 'expected_outputs')

        hidden_outputs = self.input_to_hidden.process(x)
        outputs = self.hidden_to_output.process(hidden_outputs)

        output_errors = target - outputs
        output_gradients = (
            output_errors * sigmoid_derivative(outputs) * self.learning_rate
        )

        # Raw weights, before the update below
        hidden_errors = self.hidden_to_output.weights.T @ output_errors
        hidden_gradients = (
            hidden_errors * sigmoid_derivative(hidden_outputs) * self.learning_rate
        )

        self.hidden_to_output.adjust(output_gradients, hidden_outputs)
        self.input_to_hidden.adjust(hidden_gradients, x)

    def predict(self, inputs: Sequence[float]) -> int:
        """Return the index of the strongest output (first one on ties)."""
        return int(np.argmax(self.feed_forward(inputs)))

    def evaluate(
        self,
        inputs: Sequence[Sequence[float]],
        labels: Sequence[int]
    ) -> int:
        """
        Count the samples whose predicted index equals the label.

        Args:
            inputs: Normalised input vectors
            labels: Class index for each input vector

        Returns:
            int: number of correct predictions

        Raises:
            DimensionError: If the two sequences differ in length
        """
        if len(inputs) != len(labels):
            raise DimensionError(
                f"Got {len(inputs)} input(s) but {len(labels)} label(s)"
            )
        return sum(
            int(self.predict(x) == int(y)) for x, y in zip(inputs, labels)
        )
