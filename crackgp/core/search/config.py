# crackgp/core/search/config.py
"""
Configuration classes for the multigene GP search components.

GPConfig bundles run control, gene and fitness parameters; TreeConfig holds the
tree-building parameters used by the random tree generator.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

from crackgp.core.expressions.gene_math import FUNCTION_SET


COMPLEXITY_MEASURES = ("nodes", "expressional")
PARALLEL_BACKENDS = ("threading", "multiprocessing")


@dataclass
class TreeConfig:
    """Configuration for random gene tree generation."""

    num_inputs: int = 1
    max_depth: int = 4
    build_method: str = "ramped"  # "ramped", "grow", "full"
    function_set: Dict[str, int] = field(default_factory=lambda: dict(FUNCTION_SET))

    # Terminal choice: input variable, else random-constant placeholder or literal
    variable_probability: float = 0.6
    erc_probability: float = 0.5
    constant_range: tuple = (-10.0, 10.0)
    constant_precision: int = 3

    def __post_init__(self):
        if self.num_inputs <= 0:
            raise ValueError("num_inputs must be positive")

        if self.max_depth <= 0:
            raise ValueError("max_depth must be positive")

        valid_methods = ["ramped", "grow", "full"]
        if self.build_method not in valid_methods:
            raise ValueError(f"build_method must be one of {valid_methods}")

        unknown = set(self.function_set) - set(FUNCTION_SET)
        if unknown:
            raise ValueError(f"function_set contains unknown functions: {sorted(unknown)}")

        if not self.function_set:
            raise ValueError("function_set must not be empty")

        for name, arity in self.function_set.items():
            if FUNCTION_SET[name] != arity:
                raise ValueError(f"function '{name}' has arity {FUNCTION_SET[name]}, not {arity}")

        if not 0 <= self.variable_probability <= 1:
            raise ValueError("variable_probability must be between 0 and 1")

        if not 0 <= self.erc_probability <= 1:
            raise ValueError("erc_probability must be between 0 and 1")

        if self.constant_range[0] >= self.constant_range[1]:
            raise ValueError("constant_range must be (min, max) with min < max")


@dataclass
class GPConfig:
    """
    Configuration for a multigene GP run.

    Threshold parameters drive the auto-adjusting loss limits: during
    generations ``0..stage1`` the primary loss threshold follows the best
    fitness, during ``stage1+1..stage2`` the variance-loss threshold does.
    """

    # Run control
    population_size: int = 100
    generations: int = 50
    minimisation: bool = True
    random_state: Optional[int] = None
    quiet: bool = False
    verbose: bool = False

    # Genes
    multigene: bool = True
    max_genes: int = 4
    max_nodes: int = 15
    max_gene_attempts: int = 10000
    retry_warning_threshold: int = 100

    # Fitness
    complexity_measure: str = "expressional"  # "nodes" or "expressional"

    # Auto-adjusting thresholds
    auto_threshold: bool = False
    stage1: int = 10
    stage2: int = 20
    loss_threshold_factor: float = 0.5
    variance_threshold_factor: float = 0.5
    initial_loss_threshold: float = 1.0
    initial_variance_threshold: float = 1.0
    threshold_floor: float = 1e-10

    # Diagnostics
    sanity_min_complexity: int = 5
    sanity_max_fitness: float = 1.0

    # Performance
    enable_caching: bool = True
    enable_parallel: bool = False
    parallel_backend: str = "threading"
    n_jobs: int = -1  # -1 for all available cores

    tree: TreeConfig = field(default_factory=TreeConfig)

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.population_size <= 0:
            raise ValueError("population_size must be positive")

        if self.generations <= 0:
            raise ValueError("generations must be positive")

        if self.max_genes <= 0:
            raise ValueError("max_genes must be positive")

        if self.max_nodes <= 0:
            raise ValueError("max_nodes must be positive")

        if self.max_gene_attempts <= 0:
            raise ValueError("max_gene_attempts must be positive")

        if self.complexity_measure not in COMPLEXITY_MEASURES:
            raise ValueError(f"complexity_measure must be one of {list(COMPLEXITY_MEASURES)}")

        if self.parallel_backend not in PARALLEL_BACKENDS:
            raise ValueError(f"parallel_backend must be one of {list(PARALLEL_BACKENDS)}")

        if self.n_jobs == 0 or self.n_jobs < -1:
            raise ValueError("n_jobs must be positive or -1")

        if self.stage1 < 0 or self.stage2 < self.stage1:
            raise ValueError("stages must satisfy 0 <= stage1 <= stage2")

        if self.threshold_floor <= 0:
            raise ValueError("threshold_floor must be positive")

        if self.loss_threshold_factor <= 0 or self.variance_threshold_factor <= 0:
            raise ValueError("threshold factors must be positive")

    @property
    def effective_max_genes(self) -> int:
        """Upper bound on genes per individual (1 when multigene is off)."""
        return self.max_genes if self.multigene else 1


def create_default_config() -> GPConfig:
    """Create a default configuration suitable for most tasks."""
    return GPConfig()


def create_fast_config() -> GPConfig:
    """Create a configuration optimized for speed over accuracy."""
    return GPConfig(
        population_size=30,
        generations=10,
        max_genes=3,
        max_nodes=10,
        tree=TreeConfig(max_depth=3),
    )


def create_thorough_config() -> GPConfig:
    """Create a configuration optimized for solution quality."""
    return GPConfig(
        population_size=500,
        generations=200,
        max_genes=6,
        max_nodes=25,
        enable_parallel=True,
        auto_threshold=True,
        stage1=50,
        stage2=120,
        tree=TreeConfig(max_depth=5),
    )
