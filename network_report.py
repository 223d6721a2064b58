import argparse
import os
import sys

from brain_modules.diagram import draw_network_diagram
from brain_modules.errors import CheckpointFormatError, CheckpointIOError
from brain_modules.network import NeuralNetwork
from brain_modules.neuron import NeuronType


def summarize(network: NeuralNetwork) -> str:
    """Human-readable header of a loaded checkpoint"""
    counts = network.get_neuron_count()
    lines = [
        f"Network id:          {network.id}",
        f"Fitness:             {network.fitness}",
        f"Breakthrough count:  {network.breakthrough_count}",
        f"Track:               {network.track_name or '<none>'}",
        f"Neurons:             {network.num_neurons()} "
        f"(input {counts[NeuronType.INPUT]}, hidden {counts[NeuronType.HIDDEN]}, "
        f"output {counts[NeuronType.OUTPUT]})",
        f"Links:               {network.num_links()}",
        f"Layers:              {len(network.layers)}",
    ]
    return "\n".join(lines)


def main(argv):
    parser = argparse.ArgumentParser(
        prog=os.path.basename(argv[0]) if argv else "network_report.py",
        description="Inspect a saved network checkpoint",
    )
    parser.add_argument("checkpoint", help="checkpoint text file")
    parser.add_argument("--diagram", metavar="PATH", help="write a network diagram (jpg/png)")
    parser.add_argument("--xml", metavar="PATH", help="export the network to the XML format")
    args = parser.parse_args(argv[1:])

    try:
        network = NeuralNetwork.load_from_file(args.checkpoint)
    except (CheckpointFormatError, CheckpointIOError) as e:
        print(f"Failed to load {args.checkpoint}: {e}")
        return 1

    print(summarize(network))
    print()
    print(network, end="")

    if args.diagram:
        draw_network_diagram(network, args.diagram)
        print(f"Saved diagram: {args.diagram}")
    if args.xml:
        network.serialize(args.xml)
        print(f"Saved XML: {args.xml}")
    return 0


def cli():
    sys.exit(main(sys.argv))


if __name__ == '__main__':
    cli()
