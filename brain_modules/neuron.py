import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping

import numpy as np

from .errors import (
    AmbiguousNeuronError,
    InvalidOperationError,
    NeuronNotFoundError,
    SizeMismatchError,
)


class NeuronType(Enum):
    INPUT = "Input"
    HIDDEN = "Hidden"
    OUTPUT = "Output"


@dataclass
class InputLink:
    """Weighted incoming edge. The target neuron owns it, the source is referenced by id."""
    source_id: int
    weight: float = 0.0


@dataclass(eq=False)
class Neuron:
    """Single tanh neuron of a NeuralNetwork.

    `value` and `layer_id` are transient: the first is overwritten on every
    feedforward pass, the second whenever the owning network re-sorts its
    layers. Two neurons are equal when their ids are equal.
    """
    id: int
    name: str
    neuron_type: NeuronType
    bias: float = 0.0
    input_links: List[InputLink] = field(default_factory=list)
    value: float = 0.0
    layer_id: int = 0
    weight_deltas: List[float] = field(default_factory=list)
    bias_delta: float = 0.0

    def __eq__(self, other):
        if not isinstance(other, Neuron):
            return NotImplemented
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)

    @property
    def is_input(self) -> bool:
        return self.neuron_type == NeuronType.INPUT

    def feedforward(self, neurons: Mapping[int, "Neuron"]):
        """Compute value from the already evaluated source neurons.

        Input neurons keep the value set by the network.
        """
        if self.is_input:
            return
        total = 0.0
        for link in self.input_links:
            total += link.weight * neurons[link.source_id].value
        total += self.bias
        self.value = math.tanh(total)

    def mutate(self, power: float, max_mutation: float, rng: np.random.Generator):
        """Perturb every weight and the bias.

        For each parameter a rate `r ** power * max_mutation` is drawn with
        `r ~ U[0, 1)`, then a delta from `U(-rate, rate)` is added. Large
        powers keep most rates close to zero while rare large jumps stay
        possible.
        """
        if self.is_input:
            raise InvalidOperationError(f"Cannot mutate input neuron {self.name}")

        count = len(self.input_links)
        rates = np.power(rng.random(count), power) * max_mutation
        deltas = rng.uniform(-rates, rates)
        for link, delta in zip(self.input_links, deltas):
            link.weight += float(delta)

        bias_rate = float(rng.random()) ** power * max_mutation
        self.bias += float(rng.uniform(-bias_rate, bias_rate))

    def get_weights(self) -> List[float]:
        return [link.weight for link in self.input_links]

    def set_weights(self, weights: List[float]):
        if len(weights) != len(self.input_links):
            raise SizeMismatchError(
                f"Cannot set weights: trying to set {len(weights)} weights "
                f"while neuron {self.name} has {len(self.input_links)}"
            )
        for link, weight in zip(self.input_links, weights):
            link.weight = float(weight)

    def get_link(self, source_id: int) -> InputLink:
        """Return the single input link coming from `source_id`."""
        matching = [link for link in self.input_links if link.source_id == source_id]
        if not matching:
            raise NeuronNotFoundError(
                f"Input link from neuron {source_id} not found in neuron {self.name}"
            )
        if len(matching) > 1:
            raise AmbiguousNeuronError(
                f"Found multiple input links from neuron {source_id} in neuron {self.name}"
            )
        return matching[0]

    def set_weight(self, source_id: int, weight: float):
        self.get_link(source_id).weight = float(weight)

    def diff(self, other: "Neuron"):
        """Record weight and bias deltas relative to `other` (same link layout)."""
        if len(other.input_links) != len(self.input_links):
            raise SizeMismatchError(
                f"Cannot diff neuron {self.name}: {len(self.input_links)} links "
                f"against {len(other.input_links)}"
            )
        self.weight_deltas = [
            mine.weight - theirs.weight
            for mine, theirs in zip(self.input_links, other.input_links)
        ]
        self.bias_delta = self.bias - other.bias

    def push(self, factor: float):
        """Move weights and bias along the deltas recorded by `diff`."""
        if len(self.weight_deltas) != len(self.input_links):
            raise SizeMismatchError(
                f"Neuron {self.name} has {len(self.weight_deltas)} recorded deltas "
                f"for {len(self.input_links)} links"
            )
        for link, delta in zip(self.input_links, self.weight_deltas):
            link.weight += delta * factor
        self.bias += self.bias_delta * factor

    def copy(self) -> "Neuron":
        """Independent copy with its own link list."""
        return Neuron(
            id=self.id,
            name=self.name,
            neuron_type=self.neuron_type,
            bias=self.bias,
            input_links=[InputLink(link.source_id, link.weight) for link in self.input_links],
            value=self.value,
            layer_id=self.layer_id,
            weight_deltas=list(self.weight_deltas),
            bias_delta=self.bias_delta,
        )

    def __str__(self):
        if self.is_input:
            return f"{self.name} -> {self.value}"
        weights = " ".join(str(w) for w in self.get_weights())
        return f"{self.name} [{weights}]({self.bias}) -> {self.value}"

