import math
import os
import sys

import numpy as np
import pytest

# Ensure the project root is on sys.path so `brain_modules` can be imported
# This makes the test runnable from the repository root or the tests folder.
_HERE = os.path.dirname(os.path.abspath(__file__))
_ROOT = os.path.abspath(os.path.join(_HERE, '..'))
if _ROOT not in sys.path:
    sys.path.insert(0, _ROOT)

from brain_modules.errors import (
    AmbiguousNeuronError,
    InvalidConnectionError,
    InvalidOperationError,
    NeuronNotFoundError,
    SizeMismatchError,
)
from brain_modules.network import NetworkIdAllocator, NeuralNetwork
from brain_modules.neuron import Neuron, NeuronType


def make_network(hidden_layers=2, neurons_in_layer=2, allocator=None):
    return NeuralNetwork(["input1", "input2"], ["output1", "output2"], hidden_layers, neurons_in_layer,
                         id_allocator=allocator)


def assert_layering(network):
    """Every neuron sits above all of its direct inputs; layer 0 holds exactly the sources."""
    for neuron in network.neurons.values():
        for link in neuron.input_links:
            assert neuron.layer_id > network.neurons[link.source_id].layer_id
    without_inputs = {n.id for n in network.neurons.values() if not n.input_links}
    assert {n.id for n in network.layers[0]} == without_inputs
    for i, layer in enumerate(network.layers):
        assert all(n.layer_id == i for n in layer)


def test_construction_topology():
    network = make_network()
    assert [n.name for n in network.input_neurons] == ["input1", "input2"]
    assert [n.name for n in network.hidden_neurons] == ["h0:0", "h0:1", "h1:0", "h1:1"]
    assert [n.name for n in network.output_neurons] == ["output1", "output2"]
    assert sorted(network.neurons) == list(range(8))
    assert network.next_neuron_id == 8

    assert len(network.layers) == 4
    assert [n.name for n in network.layers[1]] == ["h0:0", "h0:1"]
    assert [n.name for n in network.layers[3]] == ["output1", "output2"]

    # each layer fully connected to the previous, all weights zero
    h0 = network.get_neuron_by_name("h0:0")
    assert [network.neurons[l.source_id].name for l in h0.input_links] == ["input1", "input2"]
    out = network.get_neuron_by_name("output1")
    assert [network.neurons[l.source_id].name for l in out.input_links] == ["h1:0", "h1:1"]
    assert network.num_links() == 2 * 2 + 2 * 2 + 2 * 2
    assert all(l.weight == 0.0 for n in network.neurons.values() for l in n.input_links)
    assert_layering(network)


def test_no_hidden_layers_leaves_outputs_unconnected():
    network = NeuralNetwork(["a"], ["b"], 0, 5)
    assert network.num_links() == 0
    assert len(network.layers) == 1
    assert network.feedforward({"a": 1.0}) == {"b": 0.0}


def test_concrete_feedforward_scenario():
    network = make_network()
    hidden = network.hidden_neurons
    outputs = network.output_neurons
    hidden[0].input_links[0].weight = 1.0
    hidden[2].input_links[0].weight = 1.0
    outputs[0].input_links[0].weight = 1.0

    result = network.feedforward({"input1": 2.0, "input2": 3.0})

    # input1 -> h0:0 -> h1:0 -> output1, one tanh per hop
    assert result["output1"] == pytest.approx(math.tanh(math.tanh(math.tanh(2.0))))
    assert result["output2"] == 0.0
    assert hidden[0].value == pytest.approx(math.tanh(2.0))


def test_feedforward_is_deterministic():
    network = make_network()
    network.mutate(1, 1.0, np.random.default_rng(3))
    inputs = {"input1": 0.3, "input2": -1.7}
    assert network.feedforward(inputs) == network.feedforward(inputs)


def test_feedforward_rejects_bad_inputs():
    network = make_network()
    with pytest.raises(SizeMismatchError):
        network.feedforward({"input1": 1.0})
    with pytest.raises(NeuronNotFoundError):
        network.feedforward({"input1": 1.0, "nope": 2.0})
    with pytest.raises(InvalidOperationError):
        network.feedforward({"input1": 1.0, "h0:0": 2.0})


def test_connect_directions_and_cycles():
    network = make_network()
    with pytest.raises(InvalidConnectionError):
        network.connect("output1", "h0:0")
    with pytest.raises(InvalidConnectionError):
        network.connect("h0:0", "input1")
    with pytest.raises(InvalidConnectionError):
        network.connect("h1:0", "h0:0")
    with pytest.raises(InvalidConnectionError):
        network.connect("h0:0", "h0:0")

    link = network.connect("input1", "output2")
    link.weight = 0.5
    assert network.get_neuron_by_name("output2").input_links[-1] is link
    assert network.neurons[link.source_id].name == "input1"
    assert network.get_neuron_by_name("output2") in network.output_links("input1")
    assert_layering(network)


def test_layering_random_acyclic_edits():
    rng = np.random.default_rng(7)
    network = NeuralNetwork(["a", "b", "c"], ["x", "y"], 0, 0)
    for i in range(6):
        network.add_hidden_neuron(f"hidden{i}")
    ordered = sorted(network.neurons.values(), key=lambda n: (n.neuron_type != NeuronType.INPUT,
                                                             n.neuron_type == NeuronType.OUTPUT, n.id))
    for _ in range(25):
        i, j = sorted(rng.choice(len(ordered), size=2, replace=False))
        source, target = ordered[i], ordered[j]
        if source.neuron_type == NeuronType.OUTPUT or target.neuron_type == NeuronType.INPUT:
            continue
        network.connect(source, target)
        assert_layering(network)


def test_sort_is_idempotent():
    network = make_network()
    network.connect("input2", "output1")
    before = [[n.id for n in layer] for layer in network.layers]
    network.sort_neurons()
    network.sort_neurons()
    assert [[n.id for n in layer] for layer in network.layers] == before


def test_disconnected_hidden_neuron_stays_in_layer_zero():
    network = make_network()
    orphan = network.add_hidden_neuron("orphan")
    assert orphan.layer_id == 0
    orphan.bias = 0.25
    network.feedforward({"input1": 0.0, "input2": 0.0})
    assert orphan.value == pytest.approx(math.tanh(0.25))


def test_lookup_errors():
    network = make_network()
    with pytest.raises(NeuronNotFoundError):
        network.get_neuron_by_name("missing")
    with pytest.raises(NeuronNotFoundError):
        network.get_neuron_by_id(100)
    network.add_input_neuron("input1")
    with pytest.raises(AmbiguousNeuronError):
        network.get_neuron_by_name("input1")


def test_add_neurons_with_connect():
    network = make_network()
    new_input = network.add_input_neuron("input3", connect=True)
    assert new_input.id == 8
    for neuron in network.layers[1]:
        assert neuron.input_links[-1].source_id == new_input.id

    new_output = network.add_output_neuron("output3", connect=True)
    assert [network.neurons[l.source_id].name for l in new_output.input_links] == ["h1:0", "h1:1"]
    assert new_output in network.layers[-1]
    assert_layering(network)


def test_add_with_connect_needs_two_layers():
    network = NeuralNetwork(["a"], [], 0, 0)
    with pytest.raises(InvalidOperationError):
        network.add_input_neuron("b", connect=True)
    with pytest.raises(InvalidOperationError):
        network.add_output_neuron("c", connect=True)
    assert network.num_neurons() == 1


def test_rejected_connect_on_add_leaves_network_unchanged():
    network = NeuralNetwork(["a"], ["b"], 0, 0)
    network.connect("a", "b")
    network.add_output_neuron("c")
    # layers[-2] now holds the unconnected output "c" next to "a"
    snapshot = (network.num_neurons(), network.num_links(), network.next_neuron_id,
                [[n.id for n in layer] for layer in network.layers])

    with pytest.raises(InvalidConnectionError):
        network.add_output_neuron("d", connect=True)

    assert (network.num_neurons(), network.num_links(), network.next_neuron_id,
            [[n.id for n in layer] for layer in network.layers]) == snapshot
    assert network.find_neurons_by_name("d") == []
    assert network.output_links("a") == [network.get_neuron_by_name("b")]


def test_remove_neurons_strips_links_and_keeps_ids():
    network = make_network()
    network.remove_input_neuron("input1")
    assert network.find_neurons_by_name("input1") == []
    h0 = network.get_neuron_by_name("h0:0")
    assert [l.source_id for l in h0.input_links] == [network.get_neuron_by_name("input2").id]

    output1 = network.get_neuron_by_name("output1")
    network.remove_output_neuron(output1)
    assert all(n is not output1 for n in network.output_links("h1:0"))
    assert [n.name for n in network.output_neurons] == ["output2"]

    added = network.add_input_neuron("input1")
    assert added.id == 8
    with pytest.raises(InvalidOperationError):
        network.remove_input_neuron("output2")
    with pytest.raises(InvalidOperationError):
        network.remove_output_neuron("h0:1")


def test_mutation_bounds_and_inputs_untouched():
    network = make_network()
    before = network.copy()
    network.mutate(1, 0.2, np.random.default_rng(11))
    for neuron in network.neurons.values():
        old = before.get_neuron_by_id(neuron.id)
        if neuron.neuron_type == NeuronType.INPUT:
            assert neuron.bias == old.bias
            continue
        assert abs(neuron.bias - old.bias) <= 0.2
        for link, old_link in zip(neuron.input_links, old.input_links):
            assert abs(link.weight - old_link.weight) <= 0.2


def test_zero_max_mutation_changes_nothing():
    network = make_network()
    network.mutate(3, 0.0, np.random.default_rng(0))
    assert all(l.weight == 0.0 for n in network.neurons.values() for l in n.input_links)
    assert all(n.bias == 0.0 for n in network.neurons.values())


def test_mutating_input_neuron_fails():
    network = make_network()
    with pytest.raises(InvalidOperationError):
        network.input_neurons[0].mutate(1, 1.0, np.random.default_rng(0))


def test_copy_is_deep_and_gets_new_id():
    allocator = NetworkIdAllocator()
    network = make_network(allocator=allocator)
    network.fitness = 12.5
    network.get_neuron_by_name("h0:0").input_links[0].weight = 0.75
    clone = network.copy()

    assert clone.id > network.id
    assert clone.fitness == 12.5
    assert [n.id for n in clone.neurons.values()] == [n.id for n in network.neurons.values()]
    clone.get_neuron_by_name("h0:0").input_links[0].weight = -1.0
    assert network.get_neuron_by_name("h0:0").input_links[0].weight == 0.75
    assert [[n.id for n in layer] for layer in clone.layers] == [[n.id for n in layer] for layer in network.layers]


def test_id_allocator_is_monotonic():
    allocator = NetworkIdAllocator()
    first = make_network(allocator=allocator)
    second = make_network(allocator=allocator)
    assert second.id == first.id + 1
    allocator.observe(40)
    assert first.copy().id == 41
    assert NeuralNetwork.empty(7, allocator).id == 7
    assert allocator.allocate() == 42


def test_set_weight_by_names():
    network = make_network()
    network.set_weight("h0:1", "input2", 0.5)
    assert network.get_neuron_by_name("h0:1").input_links[1].weight == 0.5
    with pytest.raises(NeuronNotFoundError):
        network.set_weight("h0:1", "h1:0", 1.0)
    network.connect("input2", "h1:0")
    network.connect("input2", "h1:0")
    with pytest.raises(AmbiguousNeuronError):
        network.set_weight("h1:0", "input2", 1.0)


def test_neuron_set_weights_size_mismatch():
    neuron = make_network().get_neuron_by_name("h0:0")
    neuron.set_weights([1.0, 2.0])
    assert neuron.get_weights() == [1.0, 2.0]
    with pytest.raises(SizeMismatchError):
        neuron.set_weights([1.0])


def test_neuron_equality_by_id():
    a = Neuron(3, "a", NeuronType.HIDDEN, bias=1.0)
    b = Neuron(3, "b", NeuronType.OUTPUT)
    assert a == b
    assert a != Neuron(4, "a", NeuronType.HIDDEN, bias=1.0)


def test_diff_and_push():
    network = make_network()
    base = network.copy()
    network.get_neuron_by_name("h0:0").input_links[0].weight = 1.0
    network.get_neuron_by_name("output1").bias = -0.5
    network.diff(base)
    network.push(2.0)
    assert network.get_neuron_by_name("h0:0").input_links[0].weight == pytest.approx(3.0)
    assert network.get_neuron_by_name("output1").bias == pytest.approx(-1.5)


def test_reconcile_io():
    network = make_network()
    counts = network.reconcile_io(["input2", "input3"], ["output1", "output3"])
    assert counts == {'inputs_added': 1, 'inputs_removed': 1, 'outputs_added': 1, 'outputs_removed': 1}
    assert [n.name for n in network.input_neurons] == ["input2", "input3"]
    assert [n.name for n in network.output_neurons] == ["output1", "output3"]
    result = network.feedforward({"input2": 1.0, "input3": 1.0})
    assert set(result) == {"output1", "output3"}
    assert network.reconcile_io(["input2", "input3"], ["output1", "output3"]) == {
        'inputs_added': 0, 'inputs_removed': 0, 'outputs_added': 0, 'outputs_removed': 0,
    }


def test_str_lists_layers():
    network = NeuralNetwork(["in"], ["out"], 1, 1)
    network.feedforward({"in": 1.0})
    text = str(network)
    assert text.startswith(f"id: {network.id}\nLayer 0\n    in -> 1.0\n")
    assert "Layer 1\n    h0:0 [0.0](0.0) -> 0.0\n" in text
    assert text.endswith("Layer 2\n    out [0.0](0.0) -> 0.0\n")
