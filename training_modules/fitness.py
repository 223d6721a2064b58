"""
Pure fitness functions.

The running fitness of a pass is recomputed every tick from the checkpoint
progress and the proximity to the next checkpoint. When the pass ends, speed,
time and steering bonuses are added once.
"""
import math
from dataclasses import dataclass
from typing import Sequence

from .config import FitnessConfig
from .simulator import Vector3, distance


def advance_checkpoint(position: Vector3, checkpoints: Sequence[Vector3], next_checkpoint: int,
                       reach_distance: float) -> int:
    """Index of the next checkpoint after this tick (at most one step per tick)."""
    if next_checkpoint < len(checkpoints):
        if distance(position, checkpoints[next_checkpoint]) < reach_distance:
            next_checkpoint += 1
    return next_checkpoint


def running_fitness(position: Vector3, checkpoints: Sequence[Vector3], next_checkpoint: int,
                    config: FitnessConfig) -> float:
    distance_bonus = 0.0
    if next_checkpoint < len(checkpoints):
        to_next = distance(position, checkpoints[next_checkpoint])
        distance_bonus = config.distance_bonus_weight / (to_next + 1.0)
    checkpoint_bonus = next_checkpoint * config.checkpoint_bonus_weight
    return checkpoint_bonus + distance_bonus


def average_speed(travelled: float, elapsed_time: float) -> float:
    if elapsed_time <= 0.0:
        return 0.0
    return travelled / elapsed_time


@dataclass
class PassBonuses:
    speed: float = 0.0
    time: float = 0.0
    steering: float = 0.0

    @property
    def total(self) -> float:
        return self.speed + self.time + self.steering


def pass_end_bonuses(completed: bool, travelled: float, elapsed_time: float,
                     steering_delta: float, config: FitnessConfig) -> PassBonuses:
    """Bonuses added once when a pass ends.

    Unfinished passes are rewarded for average speed, finished ones for a
    short completion time. The steering bonus favours smooth driving.
    """
    bonuses = PassBonuses()
    if completed:
        bonuses.time = 1.0 / (elapsed_time + 1.0)
    else:
        bonuses.speed = math.tanh(average_speed(travelled, elapsed_time) * config.speed_bonus_weight)
    bonuses.steering = config.steering_penalty_weight / (steering_delta + 1.0)
    return bonuses


def finalize(running: float, bonuses: PassBonuses) -> float:
    return running + bonuses.total
