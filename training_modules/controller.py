import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence

import numpy as np

from brain_modules.diagram import draw_network_diagram
from brain_modules.network import NetworkIdAllocator, NeuralNetwork

from .config import OverallConfig, RunAcceptMode
from .driver import NetworkDriver
from .fitness import advance_checkpoint, finalize, pass_end_bonuses, running_fitness
from .simulator import Simulator, Telemetry, Track, Vector3, distance


class Phase(Enum):
    """States of the generation/run/pass cycle.

    A generation evaluates every population member in one run each; a run
    is a series of passes (episodes) of the same network.
    """
    PRE_GENERATION = 0
    PRE_RUN = 1
    PRE_PASS = 2
    ACTIVE = 3
    POST_PASS = 4
    POST_RUN = 5
    POST_GENERATION = 6


class EndReason(Enum):
    STALLED_FITNESS = "stalled_fitness"
    LOW_SPEED = "low_speed"
    FELL = "fell"
    COLLISION = "collision"
    FINISHED = "finished"


@dataclass
class PassRecord:
    fitness: float
    elapsed_time: float
    next_checkpoint: int
    end_reason: Optional[EndReason] = None

    def completed(self, checkpoint_count: int) -> bool:
        return self.next_checkpoint >= checkpoint_count


@dataclass
class RunResult:
    """Fitness of a run and its completion time (-1 when the chosen pass did not finish)."""
    fitness: float
    min_time: float = -1.0


def map_range(value: float, from_min: float, from_max: float, to_min: float, to_max: float) -> float:
    """Linearly map `value` from one range to another (0 for an empty source range)."""
    source_range = from_max - from_min
    if source_range == 0:
        return 0.0
    return to_min + (value - from_min) * (to_max - to_min) / source_range


def aggregate_run(passes: Sequence[PassRecord], mode: RunAcceptMode, checkpoint_count: int) -> RunResult:
    """Reduce the passes of a run to one result.

    ALL takes the worst pass. MEDIAN takes the pass at the middle position in
    the order the passes were driven; the records are not sorted by fitness.
    """
    if not passes:
        raise ValueError("Cannot aggregate a run without passes")
    if mode == RunAcceptMode.MEDIAN:
        chosen = passes[(len(passes) - 1) // 2]
    else:
        chosen = min(passes, key=lambda p: p.fitness)
    min_time = chosen.elapsed_time if chosen.completed(checkpoint_count) else -1.0
    return RunResult(chosen.fitness, min_time)


def is_breakthrough(run_fitness: float, best_run_fitness: float, run_index: int) -> bool:
    """Run 0 re-evaluates the unmutated champion, so it only counts for the very first result."""
    return run_fitness > best_run_fitness and (run_index > 0 or best_run_fitness == 0.0)


class TrainingController:
    """Evolutionary trainer driven one simulator tick at a time.

    The champion network is copied into a population each generation; copy
    `i` is mutated with `max_mutation * (i / population_size) ** mutation_power`
    so copy 0 stays identical to the champion. Every copy drives
    `pass_count` passes, the passes are reduced to a run fitness, and any run
    beating the best fitness so far is saved to `networks_dir`.
    """

    def __init__(self, config: OverallConfig, simulator: Simulator, track: Track,
                 champion: Optional[NeuralNetwork] = None,
                 id_allocator: Optional[NetworkIdAllocator] = None):
        self.config = config
        self.simulator = simulator
        self.track = track
        self.rng = np.random.default_rng(config.seed)
        if id_allocator is None:
            id_allocator = champion.id_allocator if champion is not None else NetworkIdAllocator()
        self.id_allocator = id_allocator

        self.driver = NetworkDriver(config.driver, config.network.input_names, config.network.output_names)

        # Training state
        self.phase = Phase.PRE_GENERATION
        self.generation_index = 0
        self.run_index = 0
        self.pass_index = 0
        self.generation: List[NeuralNetwork] = []
        self.passes: List[PassRecord] = []
        self.network: Optional[NeuralNetwork] = None
        self.best_run_fitness = 0.0
        self.breakthrough_count = 0
        self.breakthrough_generation = 0
        self.breakthrough_run = 0
        self.accepted_min_time = -1.0
        self.last_checkpoint_path: Optional[str] = None
        self.last_pass: Optional[PassRecord] = None
        self.tick_count = 0
        self._started = False
        self._reset_pass_state()

        if champion is not None:
            # inputs/outputs of a loaded network may not match the registered ones
            champion.reconcile_io(config.network.input_names, config.network.output_names)
            self.breakthrough_count = champion.breakthrough_count
            if not config.reset_fitness:
                self.best_run_fitness = champion.fitness
            self.champion = champion
        else:
            self.champion = NeuralNetwork(
                config.network.input_names, config.network.output_names,
                config.network.hidden_layers, config.network.neurons_in_layer,
                id_allocator=self.id_allocator,
            )

        # File logger + JSONL metrics
        self.logger = logging.getLogger(f"TrainingController_{id(self)}_{time.time()}")
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False
        self.log_path = None
        self.metrics_path = None
        if config.log_dir is not None:
            os.makedirs(config.log_dir, exist_ok=True)
            self.log_path = os.path.join(config.log_dir, "training.log")
            self.metrics_path = os.path.join(config.log_dir, "training_metrics.jsonl")
            abs_log_path = os.path.abspath(self.log_path)
            if not any(isinstance(h, logging.FileHandler) and os.path.abspath(getattr(h, 'baseFilename', '')) == abs_log_path
                       for h in self.logger.handlers):
                fh = logging.FileHandler(self.log_path, mode='a', encoding='utf-8')
                fh.setLevel(logging.INFO)
                fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
                self.logger.addHandler(fh)

        self._print(f"TrainingController initialized on track {track.name} "
                    f"({len(track.checkpoints)} checkpoints), champion network {self.champion.id}")

    @classmethod
    def from_checkpoint(cls, path: str, config: OverallConfig, simulator: Simulator, track: Track,
                        id_allocator: Optional[NetworkIdAllocator] = None) -> 'TrainingController':
        """Continue training from a saved network."""
        champion = NeuralNetwork.load_from_file(path, id_allocator)
        return cls(config, simulator, track, champion=champion, id_allocator=champion.id_allocator)

    def close(self):
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)

    def _print(self, message: str):
        if self.config.verbose:
            print(message)

    def _reset_pass_state(self):
        self.pass_fitness = 0.0
        self.best_fitness_in_pass = 0.0
        self.fitness_death_timer = 0.0
        self.speed_death_timer = 0.0
        self.timer = 0.0
        self.travelled = 0.0
        self.steering_delta = 0.0
        self.next_checkpoint = 0
        self._previous_position: Optional[Vector3] = None
        self._previous_steering: Optional[float] = None

    # --- Main loop ---
    def start(self):
        """Build generation 0 and start its first pass."""
        self._pre_generation()
        self._pre_run()
        self._pre_pass()
        self._started = True

    def step(self):
        """Run exactly one simulated tick."""
        if not self._started:
            self.start()

        telemetry = self.simulator.read_telemetry()
        delta_time = self.config.fixed_delta_time
        self.tick_count += 1

        if self._previous_position is not None:
            self.travelled += distance(telemetry.position, self._previous_position)
        self._previous_position = telemetry.position
        self.timer += delta_time

        reason = self._end_reason(telemetry)
        if reason is not None:
            self._next_pass(reason)
            return

        self._update_death_timers(telemetry.speed, delta_time)
        self._update_fitness(telemetry.position)
        if self._previous_steering is not None:
            self.steering_delta += abs(telemetry.steering_angle - self._previous_steering)
        self._previous_steering = telemetry.steering_angle

        command = self.driver.drive(self.network, telemetry.sensors)
        self.simulator.apply_controls(command)

    def run(self, max_ticks: Optional[int] = None, max_generations: Optional[int] = None):
        """Step until `max_ticks` ticks ran or `max_generations` generations completed.

        Without limits this never returns.
        """
        ticks = 0
        while max_ticks is None or ticks < max_ticks:
            if max_generations is not None and self.generation_index >= max_generations:
                break
            self.step()
            ticks += 1
        return ticks

    # --- Tick helpers ---
    def _end_reason(self, telemetry: Telemetry) -> Optional[EndReason]:
        termination = self.config.termination
        if self.fitness_death_timer > termination.termination_delay:
            return EndReason.STALLED_FITNESS
        if self.speed_death_timer > termination.termination_delay:
            return EndReason.LOW_SPEED
        if telemetry.position[1] < termination.fall_threshold:
            return EndReason.FELL
        if termination.terminate_on_collision and telemetry.collision:
            return EndReason.COLLISION
        if self.next_checkpoint >= len(self.track.checkpoints):
            return EndReason.FINISHED
        return None

    def _update_death_timers(self, speed: float, delta_time: float):
        if self.pass_fitness <= self.best_fitness_in_pass:
            self.fitness_death_timer += delta_time
        else:
            self.fitness_death_timer = 0.0
            self.best_fitness_in_pass = self.pass_fitness

        if speed < self.config.termination.termination_speed:
            self.speed_death_timer += delta_time
        else:
            self.speed_death_timer = 0.0

    def _update_fitness(self, position: Vector3):
        fitness_config = self.config.fitness
        self.next_checkpoint = advance_checkpoint(
            position, self.track.checkpoints, self.next_checkpoint, fitness_config.checkpoint_reach_distance
        )
        self.pass_fitness = running_fitness(position, self.track.checkpoints, self.next_checkpoint, fitness_config)

    # --- Transitions ---
    def _next_pass(self, reason: EndReason):
        run_aborted = self._post_pass(reason)
        self.pass_index += 1
        if self.pass_index >= self.config.evolution.pass_count or run_aborted:
            self._next_run()
        self._pre_pass()

    def _next_run(self):
        self._post_run()
        self.run_index += 1
        if self.run_index >= self.config.evolution.population_size:
            self._next_generation()
        self._pre_run()

    def _next_generation(self):
        self._post_generation()
        self.generation_index += 1
        self._pre_generation()

    def _pre_generation(self):
        self.phase = Phase.PRE_GENERATION
        evolution = self.config.evolution
        population = []
        for i in range(evolution.population_size):
            network = self.champion.copy()
            network.mutate(1, evolution.max_mutation * (i / evolution.population_size) ** evolution.mutation_power, self.rng)
            population.append(network)
        self.generation = population
        self.run_index = 0

    def _pre_run(self):
        self.phase = Phase.PRE_RUN
        self.network = self.generation[self.run_index]
        self.passes = []
        self.pass_index = 0

    def _pre_pass(self):
        self.phase = Phase.PRE_PASS
        self._reset_pass_state()
        evolution = self.config.evolution
        start_angle = map_range(
            self.pass_index, 0, evolution.pass_count - 1, evolution.start_angle_min, evolution.start_angle_max
        )
        self.simulator.reset(start_angle)
        self.driver.reset()
        self.phase = Phase.ACTIVE

    def _post_pass(self, reason: EndReason) -> bool:
        """Finish the pass; returns True when the rest of the run can be skipped."""
        self.phase = Phase.POST_PASS
        completed = self.next_checkpoint >= len(self.track.checkpoints)
        bonuses = pass_end_bonuses(
            completed, self.travelled, self.timer, self.steering_delta, self.config.fitness
        )
        fitness = finalize(self.pass_fitness, bonuses)
        self.last_pass = PassRecord(fitness, self.timer, self.next_checkpoint, reason)
        self.passes.append(self.last_pass)

        self._print(
            f"Gen {self.generation_index} run {self.run_index} pass {self.pass_index}: "
            f"{reason.value}, fitness={fitness:.4f} (running={self.pass_fitness:.4f}, "
            f"speed={bonuses.speed:.4f}, time={bonuses.time:.4f}, steering={bonuses.steering:.4f}), "
            f"time={self.timer:.2f}s, distance={self.travelled:.2f}"
        )

        # worst pass decides the run, so a pass that cannot beat the record ends it
        return self.config.evolution.run_accept_mode == RunAcceptMode.ALL and fitness <= self.best_run_fitness

    def _post_run(self):
        self.phase = Phase.POST_RUN
        result = aggregate_run(self.passes, self.config.evolution.run_accept_mode, len(self.track.checkpoints))
        breakthrough = self.check_best_result(result)
        self._log_run(result, breakthrough)

    def check_best_result(self, result: RunResult) -> bool:
        """Record the run result on the evaluated network; save it on a breakthrough."""
        network = self.generation[self.run_index]
        network.fitness = result.fitness

        # faster completion counts even when run 0 cannot set a new fitness record
        if result.min_time >= 0.0 and (result.min_time < self.accepted_min_time or self.accepted_min_time < 0.0):
            self.accepted_min_time = result.min_time

        if not is_breakthrough(result.fitness, self.best_run_fitness, self.run_index):
            return False

        self.breakthrough_count += 1
        network.breakthrough_count = self.breakthrough_count
        network.track_name = self.track.file_name
        self.best_run_fitness = result.fitness
        self.breakthrough_generation = self.generation_index
        self.breakthrough_run = self.run_index

        path = os.path.join(self.config.networks_dir, self.checkpoint_file_name())
        os.makedirs(self.config.networks_dir, exist_ok=True)
        network.save_to_file(path)
        self.last_checkpoint_path = path
        self.logger.info(f"Breakthrough {self.breakthrough_count}: gen {self.generation_index} "
                         f"run {self.run_index} fitness={result.fitness:.4f} saved to {path}")
        self._print(f"Breakthrough {self.breakthrough_count}: fitness={result.fitness:.4f}, saved {path}")

        if self.config.diagram_dir is not None:
            self._draw_breakthrough_diagram(network, path)
        return True

    def checkpoint_file_name(self) -> str:
        date_string = datetime.now().strftime("%Y-%m-%d_%H%M%S")
        time_string = f"t{self.accepted_min_time:.2f}" if self.accepted_min_time >= 0.0 else "tnone"
        return (f"{self.track.file_name}_{date_string}_{time_string}_bc{self.breakthrough_count}"
                f"_g{self.generation_index}r{self.run_index}.txt")

    def _draw_breakthrough_diagram(self, network: NeuralNetwork, checkpoint_path: str):
        diagram_name = os.path.splitext(os.path.basename(checkpoint_path))[0] + ".jpg"
        diagram_file = os.path.join(self.config.diagram_dir, diagram_name)
        try:
            draw_network_diagram(network, diagram_file)
            self._print(f"Saved diagram: {diagram_file}")
        except (OSError, ValueError) as e:
            self.logger.warning(f"Failed to draw network diagram {diagram_file}: {e}")
            self._print(f"Failed to draw network diagram: {e}")

    def _post_generation(self):
        self.phase = Phase.POST_GENERATION
        self.generation.sort(key=lambda n: n.fitness, reverse=True)
        fitnesses = np.array([n.fitness for n in self.generation])

        if self.generation[0].fitness > self.champion.fitness:
            self.champion = self.generation[0]

        summary = (f"Generation {self.generation_index}: best={fitnesses.max():.4f}, "
                   f"mean={fitnesses.mean():.4f}, champion={self.champion.id} "
                   f"({self.champion.fitness:.4f}), best run so far={self.best_run_fitness:.4f} "
                   f"(gen {self.breakthrough_generation} run {self.breakthrough_run}), "
                   f"min time={self.accepted_min_time:.2f}")
        self.logger.info(summary)
        self._print(summary)

    def _log_run(self, result: RunResult, breakthrough: bool):
        self.logger.info(f"Gen {self.generation_index} run {self.run_index}: fitness={result.fitness:.4f}, "
                         f"min_time={result.min_time:.2f}, passes={len(self.passes)}, "
                         f"breakthrough={breakthrough}")
        if self.metrics_path is None:
            return

        log_dict: Dict[str, object] = {
            'timestamp': time.time(),
            'generation': int(self.generation_index),
            'run': int(self.run_index),
            'run_fitness': float(result.fitness),
            'run_min_time': float(result.min_time),
            'passes': len(self.passes),
            'pass_fitnesses': [float(p.fitness) for p in self.passes],
            'best_run_fitness': float(self.best_run_fitness),
            'breakthrough_count': int(self.breakthrough_count),
            'is_breakthrough': bool(breakthrough),
        }
        with open(self.metrics_path, 'a', encoding='utf-8') as mf:
            mf.write(json.dumps(log_dict) + "\n")
