from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

DEFAULT_INPUT_NAMES = [
    "RayForward", "RayLeftFront45", "RayRightFront45", "RayLeft90", "RayRight90", "Speed",
]
DEFAULT_OUTPUT_NAMES = ["motor", "steering"]


class RunAcceptMode(Enum):
    """How the passes of a run are reduced to one run fitness."""
    ALL = "All"  # worst pass
    MEDIAN = "Median"  # positionally middle pass


@dataclass
class NetworkConfig:
    """Topology of freshly created networks.

    Attributes:
        input_names (List[str]): Names of the input neurons, one per sensor.
        output_names (List[str]): Names of the output neurons. The driver
            reads `motor` and `steering`.
        hidden_layers (int): Number of fully connected hidden layers.
        neurons_in_layer (int): Number of neurons in each hidden layer.
    """
    input_names: List[str] = field(default_factory=lambda: list(DEFAULT_INPUT_NAMES))
    output_names: List[str] = field(default_factory=lambda: list(DEFAULT_OUTPUT_NAMES))
    hidden_layers: int = 1
    neurons_in_layer: int = 2

    def __post_init__(self):
        if self.hidden_layers < 0 or self.neurons_in_layer < 0:
            raise ValueError("hidden_layers and neurons_in_layer must be non-negative")
        if len(set(self.input_names)) != len(self.input_names):
            raise ValueError("input_names must be unique")
        if len(set(self.output_names)) != len(self.output_names):
            raise ValueError("output_names must be unique")


@dataclass
class EvolutionConfig:
    """Population and run settings.

    Attributes:
        population_size (int): Networks per generation, including the
            unmutated copy of the champion at index 0.
        pass_count (int): Passes (episodes) per run.
        mutation_power (float): Exponent of the population index ramp that
            scales max_mutation per member. Neurons draw their rates with
            power 1.
        max_mutation (float): Upper bound of any single weight/bias change.
        run_accept_mode (RunAcceptMode): Reduction of pass fitnesses into
            the run fitness.
        start_angle_min (float): Start heading of the first pass, degrees.
        start_angle_max (float): Start heading of the last pass, degrees.
    """
    population_size: int = 10
    pass_count: int = 5
    mutation_power: float = 3.0
    max_mutation: float = 1.0
    run_accept_mode: RunAcceptMode = RunAcceptMode.ALL
    start_angle_min: float = -22.0
    start_angle_max: float = 22.0

    def __post_init__(self):
        if isinstance(self.run_accept_mode, str):
            self.run_accept_mode = RunAcceptMode(self.run_accept_mode)
        if self.population_size < 1:
            raise ValueError("population_size must be at least 1")
        if self.pass_count < 1:
            raise ValueError("pass_count must be at least 1")
        if self.max_mutation < 0:
            raise ValueError("max_mutation must be non-negative")


@dataclass(frozen=True)
class FitnessConfig:
    """Fitness weights, fixed for the duration of a run.

    Attributes:
        checkpoint_bonus_weight (float): Fitness per reached checkpoint.
        distance_bonus_weight (float): Numerator of the proximity bonus
            towards the next checkpoint.
        speed_bonus_weight (float): Scale of average speed inside tanh for
            passes that did not finish.
        steering_penalty_weight (float): Numerator of the smooth steering
            bonus.
        checkpoint_reach_distance (float): Distance under which the next
            checkpoint counts as reached.
    """
    checkpoint_bonus_weight: float = 100.0
    distance_bonus_weight: float = 10.0
    speed_bonus_weight: float = 1.0
    steering_penalty_weight: float = 0.0
    checkpoint_reach_distance: float = 5.0

    def __post_init__(self):
        if self.checkpoint_reach_distance < 0:
            raise ValueError("checkpoint_reach_distance must be non-negative")


@dataclass
class TerminationConfig:
    """Pass death conditions.

    Attributes:
        termination_delay (float): Seconds of stalled fitness or low speed
            after which the pass ends.
        termination_speed (float): Speed under which the low speed timer runs.
        fall_threshold (float): Vertical position under which the car is
            considered fallen off the track.
        terminate_on_collision (bool): End the pass on any collision.
    """
    termination_delay: float = 1.0
    termination_speed: float = 0.5
    fall_threshold: float = 0.0
    terminate_on_collision: bool = True


@dataclass
class DriverConfig:
    """Network-in-the-loop control settings.

    Attributes:
        max_motor_torque (float): Torque for a motor output of 1.
        max_steering_angle (float): Steering angle for a steering output of 1.
        steering_smoothing (int): Times the new steering angle is averaged
            with the previous command.
        input_delay (float): Seconds of sensor latency.
        output_delay (float): Seconds of actuator latency.
        averaged_input (bool): Feed the mean of the whole input queue
            instead of its oldest entry.
        tick_rate (int): Ticks per second used to size the delay queues.
    """
    max_motor_torque: float = 1000.0
    max_steering_angle: float = 45.0
    steering_smoothing: int = 1
    input_delay: float = 0.1
    output_delay: float = 0.1
    averaged_input: bool = True
    tick_rate: int = 60

    def __post_init__(self):
        if self.steering_smoothing < 0:
            raise ValueError("steering_smoothing must be non-negative")
        if self.input_delay < 0 or self.output_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.tick_rate <= 0:
            raise ValueError("tick_rate must be positive")


@dataclass
class OverallConfig:
    """Complete training configuration.

    Attributes:
        network (NetworkConfig): Topology of new networks.
        evolution (EvolutionConfig): Population and run settings.
        fitness (FitnessConfig): Fitness weights.
        termination (TerminationConfig): Pass death conditions.
        driver (DriverConfig): Control adapter settings.
        fixed_delta_time (float): Simulated seconds per tick.
        networks_dir (str): Directory for breakthrough checkpoints.
        log_dir (Optional[str]): Directory for the training log and metrics,
            None disables both.
        diagram_dir (Optional[str]): Directory for breakthrough diagrams,
            None disables them.
        reset_fitness (bool): Forget the fitness of a loaded champion.
        seed (Optional[int]): Seed of the mutation generator.
        verbose (bool): Print progress lines.
    """
    network: NetworkConfig = field(default_factory=NetworkConfig)
    evolution: EvolutionConfig = field(default_factory=EvolutionConfig)
    fitness: FitnessConfig = field(default_factory=FitnessConfig)
    termination: TerminationConfig = field(default_factory=TerminationConfig)
    driver: DriverConfig = field(default_factory=DriverConfig)

    fixed_delta_time: float = 1.0 / 60.0
    networks_dir: str = "Networks/"
    log_dir: Optional[str] = "logs/"
    diagram_dir: Optional[str] = None
    reset_fitness: bool = False
    seed: Optional[int] = None
    verbose: bool = True

    def __post_init__(self):
        if self.fixed_delta_time <= 0:
            raise ValueError("fixed_delta_time must be positive")
