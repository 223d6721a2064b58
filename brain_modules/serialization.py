"""
Checkpoint formats for NeuralNetwork.

Text format (one file per saved network):

    id <int>
    fitness <real>
    breakthroughCount <int>
    trackName <string>
    <blank line>
    <Type> <id> <name>
        w <weight> <sourceNeuronId>
        ...
        b <bias>
    ...

Every neuron block ends with its `b` line. Loading runs in two passes: the
first creates every neuron shell in file order, the second replays the links
(sources may be declared after their consumers) and sets the biases.

The XML format carries the same fields plus the outgoing links of every
neuron, which are checked against the view derived from the input links.
"""
import logging
import xml.etree.ElementTree as ET
from typing import Dict, Iterator, List, Optional, Tuple

from .errors import CheckpointFormatError, CheckpointIOError, NeuralNetworkError
from .network import NetworkIdAllocator, NeuralNetwork
from .neuron import Neuron, NeuronType

logger = logging.getLogger(__name__)

HEADER_KEYS = ("id", "fitness", "breakthroughCount", "trackName")
INDENT = "    "


# --- Text format ---
def dumps_text(network: NeuralNetwork) -> str:
    lines = [
        f"id {network.id}",
        f"fitness {network.fitness!r}",
        f"breakthroughCount {network.breakthrough_count}",
        f"trackName {network.track_name or ''}",
        "",
    ]
    for neuron in network.neurons.values():
        lines.append(f"{neuron.neuron_type.value} {neuron.id} {neuron.name}")
        for link in neuron.input_links:
            lines.append(f"{INDENT}w {link.weight!r} {link.source_id}")
        lines.append(f"{INDENT}b {neuron.bias!r}")
    return "\n".join(lines) + "\n"


def _parse_number(token: str, kind, line_number: int, what: str):
    try:
        return kind(token)
    except ValueError:
        raise CheckpointFormatError(f"invalid {what} {token!r}", line_number) from None


def _parse_header(lines: List[str]) -> Tuple[Dict[str, str], int]:
    values = {}
    for index, key in enumerate(HEADER_KEYS):
        line_number = index + 1
        if index >= len(lines):
            raise CheckpointFormatError(f"missing header line {key!r}", line_number)
        parts = lines[index].split(" ", 1)
        if parts[0] != key:
            raise CheckpointFormatError(f"expected {key!r}, got {parts[0]!r}", line_number)
        values[key] = parts[1] if len(parts) > 1 else ""
    blank_index = len(HEADER_KEYS)
    if blank_index < len(lines) and lines[blank_index].strip():
        raise CheckpointFormatError("expected blank line after header", blank_index + 1)
    return values, blank_index + 1


def _neuron_lines(lines: List[str], start: int) -> Iterator[Tuple[int, str]]:
    """Yield (line_number, line) of the neuron list, which ends at EOF or a blank line."""
    for index in range(start, len(lines)):
        line = lines[index]
        if not line.strip():
            return
        yield index + 1, line


def loads_text(text: str, id_allocator: Optional[NetworkIdAllocator] = None) -> NeuralNetwork:
    lines = text.splitlines()
    header, body_start = _parse_header(lines)

    network_id = _parse_number(header["id"].strip(), int, 1, "network id")
    network = NeuralNetwork.empty(network_id, id_allocator)
    network.fitness = _parse_number(header["fitness"].strip(), float, 2, "fitness")
    network.breakthrough_count = _parse_number(
        header["breakthroughCount"].strip(), int, 3, "breakthrough count"
    )
    network.track_name = header["trackName"].strip() or None

    # first pass: neuron shells
    for line_number, line in _neuron_lines(lines, body_start):
        if line.startswith(INDENT):
            continue
        parts = line.split(" ", 2)
        if len(parts) < 2:
            raise CheckpointFormatError(f"malformed neuron header {line!r}", line_number)
        try:
            neuron_type = NeuronType(parts[0])
        except ValueError:
            raise CheckpointFormatError(f"unknown neuron type {parts[0]!r}", line_number) from None
        neuron_id = _parse_number(parts[1], int, line_number, "neuron id")
        if neuron_id in network.neurons:
            raise CheckpointFormatError(f"duplicate neuron id {neuron_id}", line_number)
        name = parts[2] if len(parts) > 2 else ""
        network.neurons[neuron_id] = Neuron(neuron_id, name, neuron_type)
        network.next_neuron_id = max(network.next_neuron_id, neuron_id + 1)

    # second pass: links and biases
    current: Optional[Neuron] = None
    for line_number, line in _neuron_lines(lines, body_start):
        if not line.startswith(INDENT):
            if current is not None:
                raise CheckpointFormatError(f"neuron {current.id} has no bias line", line_number)
            current = network.neurons[int(line.split(" ", 2)[1])]
            continue
        if current is None:
            raise CheckpointFormatError("link line outside of a neuron block", line_number)

        parts = line.split()
        label = parts[0]
        if label == "w":
            if len(parts) != 3:
                raise CheckpointFormatError(f"malformed weight line {line.strip()!r}", line_number)
            weight = _parse_number(parts[1], float, line_number, "weight")
            source_id = _parse_number(parts[2], int, line_number, "source neuron id")
            source = network.neurons.get(source_id)
            if source is None:
                raise CheckpointFormatError(f"unknown source neuron {source_id}", line_number)
            try:
                link = network._attach(source, current)
            except NeuralNetworkError as e:
                raise CheckpointFormatError(str(e), line_number) from e
            link.weight = weight
        elif label == "b":
            if len(parts) != 2:
                raise CheckpointFormatError(f"malformed bias line {line.strip()!r}", line_number)
            current.bias = _parse_number(parts[1], float, line_number, "bias")
            current = None
        else:
            raise CheckpointFormatError(f"unexpected token {label!r}", line_number)

    if current is not None:
        raise CheckpointFormatError(f"neuron {current.id} has no bias line")

    network.sort_neurons()
    return network


def save_text(network: NeuralNetwork, path: str):
    text = dumps_text(network)
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
    except OSError as e:
        raise CheckpointIOError(f"Cannot write checkpoint {path}: {e}") from e
    logger.info("Saved network %d to %s", network.id, path)


def load_text(path: str, id_allocator: Optional[NetworkIdAllocator] = None) -> NeuralNetwork:
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise CheckpointIOError(f"Cannot read checkpoint {path}: {e}") from e
    network = loads_text(text, id_allocator)
    logger.info("Loaded network %d from %s (%d neurons)", network.id, path, network.num_neurons())
    return network


# --- XML format ---
def to_element(network: NeuralNetwork) -> ET.Element:
    root = ET.Element("NeuralNetwork", {
        "id": str(network.id),
        "fitness": repr(network.fitness),
        "breakthroughCount": str(network.breakthrough_count),
        "trackName": network.track_name or "",
        "nextNeuronId": str(network.next_neuron_id),
    })
    for neuron in network.neurons.values():
        element = ET.SubElement(root, "Neuron", {
            "id": str(neuron.id),
            "name": neuron.name,
            "type": neuron.neuron_type.value,
            "bias": repr(neuron.bias),
        })
        for link in neuron.input_links:
            ET.SubElement(element, "InputLink", {"source": str(link.source_id), "weight": repr(link.weight)})
        for target in network.output_links(neuron):
            ET.SubElement(element, "OutputLink", {"target": str(target.id)})
    return root


def dumps_xml(network: NeuralNetwork) -> str:
    root = to_element(network)
    ET.indent(root)
    return ET.tostring(root, encoding="unicode") + "\n"


def _xml_attr(element: ET.Element, name: str, kind=str):
    value = element.get(name)
    if value is None:
        raise CheckpointFormatError(f"<{element.tag}> is missing attribute {name!r}")
    if kind is str:
        return value
    try:
        return kind(value)
    except ValueError:
        raise CheckpointFormatError(f"<{element.tag}> has invalid {name} {value!r}") from None


def from_element(root: ET.Element, id_allocator: Optional[NetworkIdAllocator] = None) -> NeuralNetwork:
    if root.tag != "NeuralNetwork":
        raise CheckpointFormatError(f"expected <NeuralNetwork> root, got <{root.tag}>")

    network = NeuralNetwork.empty(_xml_attr(root, "id", int), id_allocator)
    network.fitness = _xml_attr(root, "fitness", float)
    network.breakthrough_count = _xml_attr(root, "breakthroughCount", int)
    network.track_name = root.get("trackName") or None

    elements = root.findall("Neuron")
    for element in elements:
        try:
            neuron_type = NeuronType(_xml_attr(element, "type"))
        except ValueError:
            raise CheckpointFormatError(f"unknown neuron type {element.get('type')!r}") from None
        neuron_id = _xml_attr(element, "id", int)
        if neuron_id in network.neurons:
            raise CheckpointFormatError(f"duplicate neuron id {neuron_id}")
        network.neurons[neuron_id] = Neuron(
            neuron_id, _xml_attr(element, "name"), neuron_type, bias=_xml_attr(element, "bias", float)
        )
    stored_next_id = _xml_attr(root, "nextNeuronId", int) if "nextNeuronId" in root.attrib else 0
    network.next_neuron_id = max([stored_next_id] + [neuron_id + 1 for neuron_id in network.neurons])

    stored_outputs: Dict[int, List[int]] = {}
    for element in elements:
        target = network.neurons[int(element.get("id"))]
        for link_element in element.findall("InputLink"):
            source_id = _xml_attr(link_element, "source", int)
            source = network.neurons.get(source_id)
            if source is None:
                raise CheckpointFormatError(f"unknown source neuron {source_id}")
            try:
                link = network._attach(source, target)
            except NeuralNetworkError as e:
                raise CheckpointFormatError(str(e)) from e
            link.weight = _xml_attr(link_element, "weight", float)
        stored_outputs[target.id] = [
            _xml_attr(link_element, "target", int) for link_element in element.findall("OutputLink")
        ]

    network.sort_neurons()

    for neuron_id, stored in stored_outputs.items():
        derived = sorted(target.id for target in network.output_links(neuron_id))
        if sorted(stored) != derived:
            raise CheckpointFormatError(
                f"output links of neuron {neuron_id} {sorted(stored)} do not match input links {derived}"
            )
    return network


def loads_xml(text: str, id_allocator: Optional[NetworkIdAllocator] = None) -> NeuralNetwork:
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise CheckpointFormatError(f"invalid XML: {e}") from e
    return from_element(root, id_allocator)


def save_xml(network: NeuralNetwork, path: str):
    text = dumps_xml(network)
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
    except OSError as e:
        raise CheckpointIOError(f"Cannot write XML checkpoint {path}: {e}") from e
    logger.info("Serialized network %d to %s", network.id, path)


def load_xml(path: str, id_allocator: Optional[NetworkIdAllocator] = None) -> NeuralNetwork:
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise CheckpointIOError(f"Cannot read XML checkpoint {path}: {e}") from e
    network = loads_xml(text, id_allocator)
    logger.info("Deserialized network %d from %s", network.id, path)
    return network
