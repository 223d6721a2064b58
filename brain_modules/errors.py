from typing import Optional


class NeuralNetworkError(Exception):
    """Base class for violations of the neuron graph contract.

    These are programming errors: the operation that raised is aborted and the
    network is left as it was before the call whenever possible.
    """


class NeuronNotFoundError(NeuralNetworkError):
    """A lookup by name or id matched no neuron (or no input link)."""


class AmbiguousNeuronError(NeuralNetworkError):
    """A lookup by name or id matched more than one neuron (or input link)."""


class InvalidConnectionError(NeuralNetworkError):
    """Illegal link direction or a link that would close a cycle."""


class SizeMismatchError(NeuralNetworkError):
    """Input map or weight list does not match the network/neuron shape."""


class InvalidOperationError(NeuralNetworkError):
    """Operation not allowed for this neuron type or network state."""


class CheckpointFormatError(Exception):
    """Malformed checkpoint contents (text or XML)."""

    def __init__(self, message: str, line_number: Optional[int] = None):
        self.line_number = line_number
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)


class CheckpointIOError(OSError):
    """Reading or writing a checkpoint file failed."""
