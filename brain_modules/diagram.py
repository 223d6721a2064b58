import logging
import os
from typing import Dict, Tuple

from PIL import Image, ImageDraw

from .network import NeuralNetwork
from .neuron import NeuronType

logger = logging.getLogger(__name__)

CANVAS_WIDTH = 1000
CANVAS_HEIGHT = 800
MARGIN = 50
INPUT_OUTPUT_RADIUS = 6
HIDDEN_RADIUS = 8

COLOR_MAP = {
    NeuronType.INPUT: (52, 152, 219),
    NeuronType.HIDDEN: (46, 204, 113),
    NeuronType.OUTPUT: (231, 76, 60),
}


def layout_positions(network: NeuralNetwork) -> Dict[int, Tuple[int, int]]:
    """Canvas position per neuron id: x by layer index, y spread within the layer"""
    pos = {}
    layer_count = len(network.layers)
    x_step = (CANVAS_WIDTH - 2 * MARGIN) / max(layer_count - 1, 1)
    for layer_i, layer in enumerate(network.layers):
        x = MARGIN + int(layer_i * x_step)
        if len(layer) == 1:
            pos[layer[0].id] = (x, CANVAS_HEIGHT // 2)
            continue
        y_step = (CANVAS_HEIGHT - 2 * MARGIN) / max(len(layer) - 1, 1)
        for i, neuron in enumerate(layer):
            pos[neuron.id] = (x, MARGIN + int(i * y_step))
    return pos


def draw_network_diagram(network: NeuralNetwork, path: str, title: str = None) -> str:
    """Render the network to an image file (format from the extension) and return the path."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    img = Image.new('RGB', (CANVAS_WIDTH, CANVAS_HEIGHT), color='white')
    draw = ImageDraw.Draw(img)
    pos = layout_positions(network)

    # Draw edges first
    for neuron in network.neurons.values():
        for link in neuron.input_links:
            x1, y1 = pos[link.source_id]
            x2, y2 = pos[neuron.id]
            edge_color = (200, 100, 100) if link.weight < 0 else (100, 100, 200)
            width = 1 + min(int(abs(link.weight)), 3)
            draw.line([(x1, y1), (x2, y2)], fill=edge_color, width=width)

    for neuron in network.neurons.values():
        x, y = pos[neuron.id]
        color = COLOR_MAP.get(neuron.neuron_type, (128, 128, 128))
        radius = HIDDEN_RADIUS if neuron.neuron_type == NeuronType.HIDDEN else INPUT_OUTPUT_RADIUS
        draw.ellipse([(x - radius, y - radius), (x + radius, y + radius)], fill=color, outline=(0, 0, 0))
        if neuron.neuron_type != NeuronType.HIDDEN:
            draw.text((x + radius + 4, y - radius), neuron.name, fill=(0, 0, 0))

    if title is None:
        title = (f'Network {network.id}: fitness {network.fitness:.3f}, '
                 f'{network.num_neurons()} neurons, {network.num_links()} links')
    draw.text((20, 10), title, fill=(0, 0, 0))

    if path.lower().endswith(('.jpg', '.jpeg')):
        img.save(path, quality=70, optimize=True)
    else:
        img.save(path)
    logger.debug("Saved diagram of network %d to %s", network.id, path)
    return path
