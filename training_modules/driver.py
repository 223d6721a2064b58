from collections import deque
from typing import Deque, Dict, List, Mapping, Sequence

import numpy as np

from brain_modules.network import NeuralNetwork

from .config import DriverConfig
from .simulator import DriveCommand


class NetworkDriver:
    """Turns sensor readings into drive commands through a network.

    Sensor readings and network outputs pass through delay queues pre-filled
    with zeros, so a fresh pass starts with `input_delay` and `output_delay`
    seconds of neutral readings and commands.
    """

    def __init__(self, config: DriverConfig, input_names: Sequence[str], output_names: Sequence[str]):
        self.config = config
        self.input_names: List[str] = list(input_names)
        self.output_names: List[str] = list(output_names)
        self.input_steps = int(config.input_delay * config.tick_rate)
        self.output_steps = int(config.output_delay * config.tick_rate)
        self.input_queue: Deque[Dict[str, float]] = deque()
        self.output_queue: Deque[Dict[str, float]] = deque()
        self.previous_steering = 0.0
        self.reset()

    def reset(self):
        self.input_queue = deque({name: 0.0 for name in self.input_names} for _ in range(self.input_steps))
        self.output_queue = deque({name: 0.0 for name in self.output_names} for _ in range(self.output_steps))
        self.previous_steering = 0.0

    def _delayed_inputs(self, sensors: Mapping[str, float]) -> Dict[str, float]:
        missing = [name for name in self.input_names if name not in sensors]
        if missing:
            raise KeyError(f"Telemetry is missing sensors {missing}")
        self.input_queue.append({name: float(sensors[name]) for name in self.input_names})
        if not self.config.averaged_input:
            return self.input_queue.popleft()
        averaged = {
            name: float(np.mean([entry[name] for entry in self.input_queue]))
            for name in self.input_names
        }
        self.input_queue.popleft()
        return averaged

    def drive(self, network: NeuralNetwork, sensors: Mapping[str, float]) -> DriveCommand:
        outputs = network.feedforward(self._delayed_inputs(sensors))
        self.output_queue.append(outputs)
        current = self.output_queue.popleft()

        motor = 0.0
        steering = 0.0
        if "motor" in self.output_names:
            # no reversing
            motor = max(0.0, self.config.max_motor_torque * current["motor"])
        if "steering" in self.output_names:
            steering = self.config.max_steering_angle * current["steering"]

        for _ in range(self.config.steering_smoothing):
            steering = (steering + self.previous_steering) / 2.0
        self.previous_steering = steering

        return DriveCommand(motor_torque=motor, steering_angle=steering)
