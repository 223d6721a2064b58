import logging
from collections import Counter
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np

from .errors import (
    AmbiguousNeuronError,
    InvalidConnectionError,
    InvalidOperationError,
    NeuronNotFoundError,
    SizeMismatchError,
)
from .neuron import InputLink, Neuron, NeuronType

logger = logging.getLogger(__name__)

NeuronRef = Union[int, str, Neuron]


class NetworkIdAllocator:
    """Hands out strictly increasing network ids.

    Every network created or copied through the same allocator gets an id
    higher than all ids handed out (or observed) before.
    """

    def __init__(self, start: int = 0):
        self._next_id = start

    @property
    def next_id(self) -> int:
        return self._next_id

    def allocate(self) -> int:
        network_id = self._next_id
        self._next_id += 1
        return network_id

    def observe(self, network_id: int):
        """Make sure ids allocated from now on are above `network_id`."""
        if network_id >= self._next_id:
            self._next_id = network_id + 1


class NeuralNetwork:
    """Mutable DAG of tanh neurons evaluated layer by layer.

    Neurons live in an insertion-ordered arena keyed by id; links store the
    source id only. Layers and the outgoing-link view are derived from the
    input links by `sort_neurons()` after every structural edit.
    """

    def __init__(self, input_names: Sequence[str] = (), output_names: Sequence[str] = (),
                 hidden_layers: int = 0, neurons_in_layer: int = 0,
                 id_allocator: Optional[NetworkIdAllocator] = None):
        self._init_state(id_allocator)
        self.id = self.id_allocator.allocate()
        self._build(list(input_names), list(output_names), hidden_layers, neurons_in_layer)

    def _init_state(self, id_allocator: Optional[NetworkIdAllocator]):
        self.id_allocator = id_allocator if id_allocator is not None else NetworkIdAllocator()
        self.id = 0
        self.neurons: Dict[int, Neuron] = {}
        self.next_neuron_id = 0
        self.layers: List[List[Neuron]] = []
        self.fitness = 0.0
        self.breakthrough_count = 0
        self.track_name: Optional[str] = None
        self._output_links: Dict[int, List[int]] = {}

    @classmethod
    def empty(cls, network_id: int, id_allocator: Optional[NetworkIdAllocator] = None) -> 'NeuralNetwork':
        """Network without neurons carrying a fixed id (used by loaders and copies)."""
        network = cls.__new__(cls)
        network._init_state(id_allocator)
        network.id = network_id
        network.id_allocator.observe(network_id)
        network.sort_neurons()
        return network

    def _build(self, input_names: List[str], output_names: List[str],
               hidden_layers: int, neurons_in_layer: int):
        input_neurons = [self._add_neuron(name, NeuronType.INPUT) for name in input_names]

        previous_layer: List[Neuron] = input_neurons
        current_layer: List[Neuron] = []
        for layer_i in range(hidden_layers):
            current_layer = [
                self._add_neuron(f"h{layer_i}:{neuron_i}", NeuronType.HIDDEN)
                for neuron_i in range(neurons_in_layer)
            ]
            # fully connected to the previous layer (inputs for the first one)
            for source in previous_layer:
                for target in current_layer:
                    self._attach(source, target)
            previous_layer = current_layer

        output_neurons = [self._add_neuron(name, NeuronType.OUTPUT) for name in output_names]
        for source in current_layer:
            for target in output_neurons:
                self._attach(source, target)

        self.sort_neurons()

    # --- Neuron views ---
    @property
    def input_neurons(self) -> List[Neuron]:
        return [n for n in self.neurons.values() if n.neuron_type == NeuronType.INPUT]

    @property
    def hidden_neurons(self) -> List[Neuron]:
        return [n for n in self.neurons.values() if n.neuron_type == NeuronType.HIDDEN]

    @property
    def output_neurons(self) -> List[Neuron]:
        return [n for n in self.neurons.values() if n.neuron_type == NeuronType.OUTPUT]

    def num_neurons(self) -> int:
        return len(self.neurons)

    def num_links(self) -> int:
        return sum(len(n.input_links) for n in self.neurons.values())

    def get_neuron_count(self) -> Dict[NeuronType, int]:
        """Count neurons by type"""
        counts = Counter(neuron.neuron_type for neuron in self.neurons.values())
        return {neuron_type: counts.get(neuron_type, 0) for neuron_type in NeuronType}

    def output_links(self, neuron: NeuronRef) -> List[Neuron]:
        """Neurons fed by `neuron`, derived from the input links at the last sort."""
        neuron = self._resolve(neuron)
        return [self.neurons[target_id] for target_id in self._output_links.get(neuron.id, [])]

    # --- Lookup ---
    def get_neuron_by_id(self, neuron_id: int) -> Neuron:
        neuron = self.neurons.get(neuron_id)
        if neuron is None:
            raise NeuronNotFoundError(f"Neuron with id {neuron_id} not found")
        return neuron

    def find_neurons_by_name(self, name: str) -> List[Neuron]:
        return [n for n in self.neurons.values() if n.name == name]

    def get_neuron_by_name(self, name: str) -> Neuron:
        matching = self.find_neurons_by_name(name)
        if not matching:
            raise NeuronNotFoundError(f"Neuron with name {name} not found")
        if len(matching) > 1:
            raise AmbiguousNeuronError(f"Found multiple neurons with name {name}")
        return matching[0]

    def _resolve(self, ref: NeuronRef) -> Neuron:
        if isinstance(ref, Neuron):
            return self.get_neuron_by_id(ref.id)
        if isinstance(ref, str):
            return self.get_neuron_by_name(ref)
        return self.get_neuron_by_id(ref)

    # --- Structural edits ---
    def _add_neuron(self, name: str, neuron_type: NeuronType) -> Neuron:
        neuron = Neuron(self.next_neuron_id, name, neuron_type)
        self.neurons[neuron.id] = neuron
        self.next_neuron_id += 1
        return neuron

    def _depends_on(self, neuron_id: int, other_id: int) -> bool:
        """True if `other_id` is reachable from `neuron_id` walking input links backwards."""
        stack = [neuron_id]
        seen = set()
        while stack:
            current = stack.pop()
            if current == other_id:
                return True
            if current in seen:
                continue
            seen.add(current)
            stack.extend(link.source_id for link in self.neurons[current].input_links)
        return False

    def _attach(self, source: Neuron, target: Neuron) -> InputLink:
        """Append a zero-weight link without re-sorting."""
        if source.neuron_type == NeuronType.OUTPUT:
            raise InvalidConnectionError(f"Output neuron {source.name} cannot have output links")
        if target.neuron_type == NeuronType.INPUT:
            raise InvalidConnectionError(f"Input neuron {target.name} cannot have input links")
        if self._depends_on(source.id, target.id):
            raise InvalidConnectionError(
                f"Connecting {source.name} -> {target.name} would create a cycle"
            )
        link = InputLink(source.id, 0.0)
        target.input_links.append(link)
        return link

    def connect(self, source: NeuronRef, target: NeuronRef) -> InputLink:
        """Link `source` into `target` with weight 0 and return the new link."""
        link = self._attach(self._resolve(source), self._resolve(target))
        self.sort_neurons()
        return link

    def add_input_neuron(self, name: str, connect: bool = False) -> Neuron:
        targets: List[Neuron] = []
        if connect:
            if len(self.layers) < 2:
                raise InvalidOperationError(
                    "New input neuron can be connected only if there are at least 2 layers "
                    "(including input and output layers) in the network"
                )
            targets = list(self.layers[1])
            # a fresh neuron has no links, so only the direction can be wrong
            for target in targets:
                if target.neuron_type == NeuronType.INPUT:
                    raise InvalidConnectionError(f"Input neuron {target.name} cannot have input links")
        neuron = self._add_neuron(name, NeuronType.INPUT)
        for target in targets:
            self._attach(neuron, target)
        self.sort_neurons()
        logger.debug("Added input neuron %s (id %d) to network %d", name, neuron.id, self.id)
        return neuron

    def add_output_neuron(self, name: str, connect: bool = False) -> Neuron:
        sources: List[Neuron] = []
        if connect:
            if len(self.layers) < 2:
                raise InvalidOperationError(
                    "New output neuron can be connected only if there are at least 2 layers "
                    "(including input and output layers) in the network"
                )
            sources = list(self.layers[-2])
            for source in sources:
                if source.neuron_type == NeuronType.OUTPUT:
                    raise InvalidConnectionError(f"Output neuron {source.name} cannot have output links")
        neuron = self._add_neuron(name, NeuronType.OUTPUT)
        for source in sources:
            self._attach(source, neuron)
        self.sort_neurons()
        logger.debug("Added output neuron %s (id %d) to network %d", name, neuron.id, self.id)
        return neuron

    def add_hidden_neuron(self, name: str) -> Neuron:
        neuron = self._add_neuron(name, NeuronType.HIDDEN)
        self.sort_neurons()
        return neuron

    def _remove(self, neuron: Neuron):
        for other in self.neurons.values():
            other.input_links = [link for link in other.input_links if link.source_id != neuron.id]
        del self.neurons[neuron.id]
        self.sort_neurons()
        logger.debug("Removed neuron %s (id %d) from network %d", neuron.name, neuron.id, self.id)

    def remove_input_neuron(self, name: str):
        neuron = self.get_neuron_by_name(name)
        if neuron.neuron_type != NeuronType.INPUT:
            raise InvalidOperationError(f"Neuron {name} is not an input neuron")
        self._remove(neuron)

    def remove_output_neuron(self, neuron: Union[str, Neuron]):
        neuron = self._resolve(neuron)
        if neuron.neuron_type != NeuronType.OUTPUT:
            raise InvalidOperationError(f"Neuron {neuron.name} is not an output neuron")
        self._remove(neuron)

    def reconcile_io(self, input_names: Sequence[str], output_names: Sequence[str]) -> Dict[str, int]:
        """Add missing and drop unregistered input/output neurons.

        New neurons are connected to the adjacent layer. Returns how many
        inputs/outputs were added and removed.
        """
        counts = {'inputs_added': 0, 'inputs_removed': 0, 'outputs_added': 0, 'outputs_removed': 0}

        for name in input_names:
            if not self.find_neurons_by_name(name):
                self.add_input_neuron(name, connect=True)
                counts['inputs_added'] += 1
        for neuron in self.input_neurons:
            if neuron.name not in input_names:
                self.remove_input_neuron(neuron.name)
                counts['inputs_removed'] += 1

        for name in output_names:
            if not self.find_neurons_by_name(name):
                self.add_output_neuron(name, connect=True)
                counts['outputs_added'] += 1
        for neuron in self.output_neurons:
            if neuron.name not in output_names:
                self.remove_output_neuron(neuron)
                counts['outputs_removed'] += 1

        logger.info(
            "Network %d inputs: +%d/-%d outputs: +%d/-%d", self.id,
            counts['inputs_added'], counts['inputs_removed'],
            counts['outputs_added'], counts['outputs_removed'],
        )
        return counts

    def sort_neurons(self):
        """Recompute layer ids, `layers` and the outgoing-link view.

        Longest-path layering: every neuron without input links starts in
        layer 0 and each link pushes its target at least one layer past its
        source. Neurons without outgoing links end up wherever their longest
        incoming path puts them, which is not necessarily the last layer.
        """
        successors: Dict[int, List[int]] = {neuron_id: [] for neuron_id in self.neurons}
        for neuron in self.neurons.values():
            neuron.layer_id = 0
            for link in neuron.input_links:
                successors[link.source_id].append(neuron.id)
        self._output_links = successors

        frontier = [n for n in self.neurons.values() if not n.input_links]
        max_layer_id = 0
        while frontier:
            next_frontier: Dict[int, Neuron] = {}
            for neuron in frontier:
                next_layer_id = neuron.layer_id + 1
                for target_id in successors[neuron.id]:
                    target = self.neurons[target_id]
                    if target.layer_id < next_layer_id:
                        target.layer_id = next_layer_id
                        max_layer_id = max(max_layer_id, next_layer_id)
                    next_frontier.setdefault(target_id, target)
            frontier = list(next_frontier.values())

        self.layers = [[] for _ in range(max_layer_id + 1)]
        for neuron in self.neurons.values():
            self.layers[neuron.layer_id].append(neuron)

    # --- Evaluation ---
    def feedforward(self, inputs: Mapping[str, float]) -> Dict[str, float]:
        """Evaluate the network and return output values by name.

        `inputs` must name every input neuron exactly once.
        """
        input_count = len(self.input_neurons)
        if len(inputs) != input_count:
            raise SizeMismatchError(
                f"Input count mismatch: {len(inputs)} inputs provided while network has {input_count}"
            )
        resolved = []
        for name, value in inputs.items():
            neuron = self.get_neuron_by_name(name)
            if neuron.neuron_type != NeuronType.INPUT:
                raise InvalidOperationError(f"Neuron {name} is not an input neuron")
            resolved.append((neuron, float(value)))
        for neuron, value in resolved:
            neuron.value = value

        for layer in self.layers:
            for neuron in layer:
                neuron.feedforward(self.neurons)

        return {neuron.name: neuron.value for neuron in self.output_neurons}

    # --- Evolution ---
    def mutate(self, power: float, max_mutation: float, rng: Optional[np.random.Generator] = None):
        """Mutate every hidden and output neuron (inputs have no parameters)."""
        if rng is None:
            rng = np.random.default_rng()
        for neuron in self.hidden_neurons:
            neuron.mutate(power, max_mutation, rng)
        for neuron in self.output_neurons:
            neuron.mutate(power, max_mutation, rng)

    def set_weight(self, target_name: str, source_name: str, weight: float):
        """Set the weight of the single link `source_name` -> `target_name`."""
        target = self.get_neuron_by_name(target_name)
        matching = [
            link for link in target.input_links
            if self.neurons[link.source_id].name == source_name
        ]
        if not matching:
            raise NeuronNotFoundError(
                f"Input link with name {source_name} not found in neuron {target_name}"
            )
        if len(matching) > 1:
            raise AmbiguousNeuronError(
                f"Found multiple input links with name {source_name} in neuron {target_name}"
            )
        matching[0].weight = float(weight)

    def diff(self, other: 'NeuralNetwork'):
        """Record per-neuron deltas against `other` (neurons paired by id)."""
        for neuron in self.neurons.values():
            if not neuron.is_input:
                neuron.diff(other.get_neuron_by_id(neuron.id))

    def push(self, factor: float):
        for neuron in self.neurons.values():
            if not neuron.is_input:
                neuron.push(factor)

    def copy(self) -> 'NeuralNetwork':
        """Deep copy with the next id from the shared allocator."""
        clone = NeuralNetwork.empty(self.id_allocator.allocate(), self.id_allocator)
        clone.neurons = {neuron_id: neuron.copy() for neuron_id, neuron in self.neurons.items()}
        clone.next_neuron_id = self.next_neuron_id
        clone.fitness = self.fitness
        clone.breakthrough_count = self.breakthrough_count
        clone.track_name = self.track_name
        clone.sort_neurons()
        return clone

    # --- Persistence ---
    def to_text(self) -> str:
        from .serialization import dumps_text
        return dumps_text(self)

    @classmethod
    def from_text(cls, text: str, id_allocator: Optional[NetworkIdAllocator] = None) -> 'NeuralNetwork':
        from .serialization import loads_text
        return loads_text(text, id_allocator)

    def save_to_file(self, path: str):
        from .serialization import save_text
        save_text(self, path)

    @classmethod
    def load_from_file(cls, path: str, id_allocator: Optional[NetworkIdAllocator] = None) -> 'NeuralNetwork':
        from .serialization import load_text
        return load_text(path, id_allocator)

    def to_xml(self) -> str:
        from .serialization import dumps_xml
        return dumps_xml(self)

    @classmethod
    def from_xml(cls, text: str, id_allocator: Optional[NetworkIdAllocator] = None) -> 'NeuralNetwork':
        from .serialization import loads_xml
        return loads_xml(text, id_allocator)

    def serialize(self, path: str):
        from .serialization import save_xml
        save_xml(self, path)

    @classmethod
    def deserialize(cls, path: str, id_allocator: Optional[NetworkIdAllocator] = None) -> 'NeuralNetwork':
        from .serialization import load_xml
        return load_xml(path, id_allocator)

    def __str__(self):
        lines = [f"id: {self.id}"]
        for i, layer in enumerate(self.layers):
            lines.append(f"Layer {i}")
            lines.extend(f"    {neuron}" for neuron in layer)
        return "\n".join(lines) + "\n"

    def __repr__(self):
        return (f"NeuralNetwork(id={self.id}, neurons={len(self.neurons)}, "
                f"links={self.num_links()}, fitness={self.fitness})")
