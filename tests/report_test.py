import os
import sys

import numpy as np
from PIL import Image

# Ensure the project root is on sys.path so `brain_modules` can be imported
# This makes the test runnable from the repository root or the tests folder.
_HERE = os.path.dirname(os.path.abspath(__file__))
_ROOT = os.path.abspath(os.path.join(_HERE, '..'))
if _ROOT not in sys.path:
    sys.path.insert(0, _ROOT)

import network_report
from brain_modules.diagram import CANVAS_HEIGHT, CANVAS_WIDTH, MARGIN, draw_network_diagram, layout_positions
from brain_modules.network import NeuralNetwork


def sample_network():
    network = NeuralNetwork(["RayForward", "RayLeft90", "Speed"], ["motor", "steering"], 2, 4)
    network.mutate(1, 1.0, np.random.default_rng(5))
    network.fitness = 250.5
    network.breakthrough_count = 3
    network.track_name = "Oval"
    return network


def test_layout_spreads_layers_across_canvas():
    network = sample_network()
    pos = layout_positions(network)
    assert set(pos) == set(network.neurons)
    assert {pos[n.id][0] for n in network.layers[0]} == {MARGIN}
    assert {pos[n.id][0] for n in network.layers[-1]} == {CANVAS_WIDTH - MARGIN}
    assert all(MARGIN <= y <= CANVAS_HEIGHT - MARGIN for _, y in pos.values())


def test_draw_diagram(tmp_path):
    path = draw_network_diagram(sample_network(), str(tmp_path / "diagrams" / "network.png"))
    with Image.open(path) as img:
        assert img.size == (CANVAS_WIDTH, CANVAS_HEIGHT)


def test_report_prints_summary(tmp_path, capsys):
    checkpoint = str(tmp_path / "network.txt")
    sample_network().save_to_file(checkpoint)
    diagram = str(tmp_path / "network.jpg")
    xml = str(tmp_path / "network.xml")

    assert network_report.main(["network_report.py", checkpoint, "--diagram", diagram, "--xml", xml]) == 0
    out = capsys.readouterr().out
    assert "Breakthrough count:  3" in out
    assert "Track:               Oval" in out
    assert "(input 3, hidden 8, output 2)" in out
    assert "Layers:              4" in out
    assert "Layer 3\n" in out
    assert os.path.exists(diagram)
    assert NeuralNetwork.deserialize(xml).fitness == 250.5


def test_report_fails_on_bad_checkpoint(tmp_path, capsys):
    checkpoint = tmp_path / "broken.txt"
    checkpoint.write_text("id 1\nfitness lots\n", encoding="utf-8")
    assert network_report.main(["network_report.py", str(checkpoint)]) == 1
    assert "Failed to load" in capsys.readouterr().out
    assert network_report.main(["network_report.py", str(tmp_path / "missing.txt")]) == 1
