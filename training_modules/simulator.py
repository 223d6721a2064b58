from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

import numpy as np

Vector3 = Tuple[float, float, float]

NO_HIT = -1.0


@dataclass
class Telemetry:
    """Raw state of the car after one simulated tick.

    Attributes:
        sensors (Dict[str, float]): Network inputs by name. Ray sensors report
            the hit distance or NO_HIT when the ray hit nothing.
        position (Vector3): World position (x, y, z); y is vertical.
        speed (float): Velocity magnitude.
        steering_angle (float): Current steering angle of the front wheels.
        collision (bool): Whether the car touched a wall since the last reset.
    """
    sensors: Dict[str, float] = field(default_factory=dict)
    position: Vector3 = (0.0, 0.0, 0.0)
    speed: float = 0.0
    steering_angle: float = 0.0
    collision: bool = False


@dataclass
class DriveCommand:
    motor_torque: float = 0.0
    steering_angle: float = 0.0


@dataclass
class Track:
    """Track name and its ordered checkpoint positions."""
    name: str
    checkpoints: List[Vector3] = field(default_factory=list)

    @property
    def file_name(self) -> str:
        """Track name usable as a file name prefix"""
        return self.name.replace(" ", "")


def distance(a: Vector3, b: Vector3) -> float:
    return float(np.linalg.norm(np.subtract(a, b)))


class Simulator(ABC):
    """Physics host driven one fixed tick at a time by the training controller."""

    @abstractmethod
    def reset(self, start_angle: float):
        """Put the car back on the spawn point, rotated by `start_angle` degrees."""

    @abstractmethod
    def read_telemetry(self) -> Telemetry:
        """Advance the simulation by one tick and report the new state."""

    @abstractmethod
    def apply_controls(self, command: DriveCommand):
        """Set motor torque and steering for the following ticks."""
