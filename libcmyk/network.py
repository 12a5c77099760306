"""
network.py
~~~~~~~~~~

A three-layer feedforward network trained by backpropagation with
momentum, optionally extended with an Elman-style context buffer.

The input and hidden layers each carry one extra bias unit whose
activation stays fixed at 1.0. ``n_inputs`` and ``n_hiddens`` count that
unit, so callers supply ``n_inputs - BIAS`` values to ``update``.

Context recurrence is deliberately simple: every stored snapshot of the
hidden layer adds the plain, unweighted sum of its non-bias components
to each hidden unit's input sum. Snapshots are kept most-recent-first.
"""

import time
from collections import deque
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from libcmyk.activations import sigmoid, dsigmoid, random_uniform
from libcmyk.errors import InvalidInputLength, InvalidTargetLength

# Number of implicit bias units appended to the input and hidden layers
BIAS = 1

# Initial activation of every unit in a default context snapshot
CONTEXT_FILL = 0.5

Pattern = Tuple[Sequence[float], Sequence[float]]


class FeedForward:
    """
    Network state plus the operations that mutate it.

    Attributes:
        n_inputs, n_hiddens: Layer sizes including the bias unit
        n_outputs: Output layer size
        regression: Reserved mode flag, persisted but numerically inert
        input_activations, hidden_activations, output_activations:
            Values from the last forward pass
        input_weights: (n_inputs, n_hiddens) matrix
        output_weights: (n_hiddens, n_outputs) matrix
        input_changes, output_changes: Previous weight changes, used as
            the momentum term of the next update
        contexts: Bounded FIFO of hidden-layer snapshots, newest first
    """

    def __init__(
        self,
        n_inputs: int,
        n_hiddens: int,
        n_outputs: int,
        weight_range: float = 1.0,
        seed: Optional[int] = None,
        regression: bool = False
    ):
        """
        Build and initialize a network.

        Args:
            n_inputs: Number of input features (bias excluded)
            n_hiddens: Number of hidden units (bias excluded)
            n_outputs: Number of outputs
            weight_range: Weights are drawn from [-weight_range, weight_range)
            seed: Seed for the weight initializer; None draws fresh entropy
            regression: Reserved flag, stored with the network
        """
        self.regression = regression
        self.init(n_inputs, n_hiddens, n_outputs, weight_range, seed)

    def init(
        self,
        n_inputs: int,
        n_hiddens: int,
        n_outputs: int,
        weight_range: float = 1.0,
        seed: Optional[int] = None
    ) -> None:
        """Reset every buffer and draw fresh random weights."""
        for name, value in (('n_inputs', n_inputs),
                            ('n_hiddens', n_hiddens),
                            ('n_outputs', n_outputs)):
            if not isinstance(value, (int, np.integer)) or value < 1:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")

        self.n_inputs = int(n_inputs) + BIAS
        self.n_hiddens = int(n_hiddens) + BIAS
        self.n_outputs = int(n_outputs)

        self.input_activations = np.ones(self.n_inputs)
        self.hidden_activations = np.ones(self.n_hiddens)
        self.output_activations = np.ones(self.n_outputs)

        rng = np.random.default_rng(seed)
        self.input_weights = random_uniform(
            (self.n_inputs, self.n_hiddens), -weight_range, weight_range, rng
        )
        self.output_weights = random_uniform(
            (self.n_hiddens, self.n_outputs), -weight_range, weight_range, rng
        )

        self.input_changes = np.zeros((self.n_inputs, self.n_hiddens))
        self.output_changes = np.zeros((self.n_hiddens, self.n_outputs))

        self.contexts = deque(maxlen=0)

    @classmethod
    def restore(
        cls,
        n_inputs: int,
        n_hiddens: int,
        n_outputs: int,
        regression: bool,
        input_activations: np.ndarray,
        hidden_activations: np.ndarray,
        output_activations: np.ndarray,
        input_weights: np.ndarray,
        output_weights: np.ndarray,
        input_changes: np.ndarray,
        output_changes: np.ndarray,
        contexts: List[np.ndarray]
    ) -> 'FeedForward':
        """
        Rebuild a network from already-validated buffers.

        Sizes are taken as stored, i.e. including the bias unit. Shape
        validation is the caller's job (see model_persistence.from_record).
        """
        net = cls.__new__(cls)
        net.n_inputs = n_inputs
        net.n_hiddens = n_hiddens
        net.n_outputs = n_outputs
        net.regression = regression
        net.input_activations = input_activations
        net.hidden_activations = hidden_activations
        net.output_activations = output_activations
        net.input_weights = input_weights
        net.output_weights = output_weights
        net.input_changes = input_changes
        net.output_changes = output_changes
        net.contexts = deque(contexts, maxlen=len(contexts))
        return net

    @property
    def sizes(self) -> List[int]:
        """Layer sizes as given to the constructor: [inputs, hiddens, outputs]."""
        return [self.n_inputs - BIAS, self.n_hiddens - BIAS, self.n_outputs]

    @property
    def context_window(self) -> int:
        return len(self.contexts)

    def set_contexts(
        self,
        n_contexts: int,
        init_values: Optional[Sequence[Sequence[float]]] = None
    ) -> None:
        """
        Configure the context window.

        Args:
            n_contexts: Window size; 0 disables recurrence
            init_values: Optional initial snapshots, newest first. Each must
                have ``n_hiddens`` components. Defaults to snapshots filled
                with 0.5.
        """
        if n_contexts < 0:
            raise ValueError(f"n_contexts must be non-negative, got {n_contexts}")

        if init_values is None:
            snapshots = [np.full(self.n_hiddens, CONTEXT_FILL)
                         for _ in range(n_contexts)]
        else:
            snapshots = [np.array(v, dtype=np.float64) for v in init_values]
            if len(snapshots) != n_contexts:
                raise ValueError(
                    f"expected {n_contexts} context snapshots, got {len(snapshots)}"
                )
            for snapshot in snapshots:
                if snapshot.shape != (self.n_hiddens,):
                    raise ValueError(
                        f"context snapshots must have {self.n_hiddens} values, "
                        f"got shape {snapshot.shape}"
                    )

        self.contexts = deque(snapshots, maxlen=n_contexts)

    def update(self, inputs: Sequence[float]) -> np.ndarray:
        """
        Run a forward pass.

        Args:
            inputs: ``n_inputs - 1`` values; the bias input is implicit

        Returns:
            The output activations. The array is the network's own buffer
            and is overwritten by the next forward pass.

        Raises:
            InvalidInputLength: If ``inputs`` has the wrong arity
        """
        inputs = np.asarray(inputs, dtype=np.float64)
        n_features = self.n_inputs - BIAS
        if inputs.shape != (n_features,):
            raise InvalidInputLength(n_features, inputs.size)

        self.input_activations[:n_features] = inputs

        n_units = self.n_hiddens - BIAS
        sums = np.dot(self.input_activations, self.input_weights[:, :n_units])
        if self.contexts:
            sums += sum(float(np.sum(c[:n_units])) for c in self.contexts)
        self.hidden_activations[:n_units] = sigmoid(sums)

        if self.contexts:
            # maxlen drops the oldest snapshot
            self.contexts.appendleft(self.hidden_activations.copy())

        self.output_activations[:] = sigmoid(
            np.dot(self.hidden_activations, self.output_weights)
        )
        return self.output_activations

    def back_propagate(
        self,
        targets: Sequence[float],
        learning_rate: float,
        momentum: float
    ) -> float:
        """
        Move every weight toward ``targets`` based on the last forward pass.

        Args:
            targets: ``n_outputs`` desired output values
            learning_rate: Step size applied to the current change
            momentum: Fraction of the previous change added on top

        Returns:
            Half squared error of the outputs before the update

        Raises:
            InvalidTargetLength: If ``targets`` has the wrong arity
        """
        targets = np.asarray(targets, dtype=np.float64)
        if targets.shape != (self.n_outputs,):
            raise InvalidTargetLength(self.n_outputs, targets.size)

        error = targets - self.output_activations
        loss = float(np.sum(0.5 * error ** 2))

        output_deltas = dsigmoid(self.output_activations) * error
        hidden_deltas = dsigmoid(self.hidden_activations) * np.dot(
            self.output_weights, output_deltas
        )

        change = np.outer(self.hidden_activations, output_deltas)
        self.output_weights += learning_rate * change
        self.output_weights += momentum * self.output_changes
        self.output_changes = change

        change = np.outer(self.input_activations, hidden_deltas)
        self.input_weights += learning_rate * change
        self.input_weights += momentum * self.input_changes
        self.input_changes = change

        return loss

    def train(
        self,
        patterns: Sequence[Pattern],
        iterations: int,
        learning_rate: float,
        momentum: float,
        debug: bool = False,
        callback: Optional[Callable[[Dict[str, Any]], None]] = None
    ) -> List[float]:
        """
        Train on ``patterns`` for a fixed number of full passes.

        Patterns are visited in the given order on every pass; there is
        no shuffling and no early exit.

        Args:
            patterns: Sequence of (inputs, targets) pairs
            iterations: Number of passes over ``patterns``
            learning_rate: Passed to back_propagate
            momentum: Passed to back_propagate
            debug: Reserved, has no effect on training
            callback: Called after each pass with a dict holding
                'iteration', 'total_iterations', 'loss' and 'elapsed_time'

        Returns:
            Summed loss of each pass, in pass order

        Raises:
            InvalidInputLength, InvalidTargetLength: If any pattern has the
                wrong arity. Nothing is returned in that case.
        """
        patterns = list(patterns)
        losses = []
        start = time.time()

        for iteration in range(iterations):
            total = 0.0
            for inputs, targets in patterns:
                self.update(inputs)
                total += self.back_propagate(targets, learning_rate, momentum)
            losses.append(total)

            if callback is not None:
                callback({
                    'iteration': iteration + 1,
                    'total_iterations': iterations,
                    'loss': total,
                    'elapsed_time': time.time() - start
                })

        return losses

    def test(
        self,
        patterns: Sequence[Pattern]
    ) -> List[Tuple[np.ndarray, np.ndarray, np.ndarray]]:
        """
        Run a forward pass for each pattern without training.

        Returns:
            (inputs, outputs, targets) triples; outputs are copies
        """
        results = []
        for inputs, targets in patterns:
            outputs = self.update(inputs)
            results.append((
                np.asarray(inputs, dtype=np.float64),
                outputs.copy(),
                np.asarray(targets, dtype=np.float64)
            ))
        return results
