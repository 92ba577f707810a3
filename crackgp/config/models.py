# crackgp/config/models.py

from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

from crackgp.core.expressions.gene_math import FUNCTION_SET
from crackgp.core.search.config import COMPLEXITY_MEASURES, PARALLEL_BACKENDS, GPConfig, TreeConfig


# --- Section Models ---

class RunControlConfig(BaseModel):
    population_size: int = Field(100, gt=0)
    generations: int = Field(50, gt=0)
    minimisation: bool = True
    random_state: Optional[int] = None
    quiet: bool = False
    verbose: bool = False
    enable_caching: bool = True
    enable_parallel: bool = False
    parallel_backend: str = "threading"
    n_jobs: int = -1
    stage1: int = Field(10, ge=0)
    stage2: int = Field(20, ge=0)

    @field_validator('parallel_backend')
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v not in PARALLEL_BACKENDS:
            raise ValueError(f"parallel_backend must be one of {list(PARALLEL_BACKENDS)}")
        return v

    @model_validator(mode='after')
    def validate_stages(self):
        if self.stage2 < self.stage1:
            raise ValueError(f"stage2 ({self.stage2}) must not be before stage1 ({self.stage1})")
        return self


class GenesConfig(BaseModel):
    multigene: bool = True
    max_genes: int = Field(4, gt=0)
    max_gene_attempts: int = Field(10000, gt=0)
    retry_warning_threshold: int = Field(100, ge=0)


class TreeDefConfig(BaseModel):
    max_depth: int = Field(4, gt=0)
    max_nodes: int = Field(15, gt=0)
    build_method: str = "ramped"
    num_inputs: int = Field(1, gt=0)
    functions: Optional[List[str]] = None  # all known functions when omitted
    variable_probability: float = Field(0.6, ge=0, le=1)
    erc_probability: float = Field(0.5, ge=0, le=1)
    constant_range: Tuple[float, float] = (-10.0, 10.0)

    @field_validator('functions')
    @classmethod
    def validate_functions(cls, v):
        if v is None:
            return v
        unknown = [name for name in v if name not in FUNCTION_SET]
        if unknown:
            raise ValueError(f"unknown functions: {unknown}")
        return v

    def function_set(self) -> Dict[str, int]:
        names = self.functions or list(FUNCTION_SET)
        return {name: FUNCTION_SET[name] for name in names}


class FitnessConfig(BaseModel):
    complexity_measure: str = "expressional"
    auto_threshold: bool = False
    loss_threshold_factor: float = Field(0.5, gt=0)
    variance_threshold_factor: float = Field(0.5, gt=0)
    initial_loss_threshold: float = 1.0
    initial_variance_threshold: float = 1.0
    threshold_floor: float = Field(1e-10, gt=0)
    sanity_min_complexity: int = 5
    sanity_max_fitness: float = 1.0

    @field_validator('complexity_measure')
    @classmethod
    def validate_complexity_measure(cls, v: str) -> str:
        if v not in COMPLEXITY_MEASURES:
            raise ValueError(f"complexity_measure must be one of {list(COMPLEXITY_MEASURES)}")
        return v


# --- Main Configuration Model ---

class RunConfig(BaseModel):
    """Run configuration as written in a YAML file."""

    runcontrol: RunControlConfig = Field(default_factory=RunControlConfig)
    genes: GenesConfig = Field(default_factory=GenesConfig)
    treedef: TreeDefConfig = Field(default_factory=TreeDefConfig)
    fitness: FitnessConfig = Field(default_factory=FitnessConfig)

    model_config = {"extra": "forbid"}

    def to_gp_config(self) -> GPConfig:
        """Build the dataclass configuration used by the search components."""
        rc, genes, tree, fit = self.runcontrol, self.genes, self.treedef, self.fitness
        return GPConfig(
            population_size=rc.population_size,
            generations=rc.generations,
            minimisation=rc.minimisation,
            random_state=rc.random_state,
            quiet=rc.quiet,
            verbose=rc.verbose,
            multigene=genes.multigene,
            max_genes=genes.max_genes,
            max_nodes=tree.max_nodes,
            max_gene_attempts=genes.max_gene_attempts,
            retry_warning_threshold=genes.retry_warning_threshold,
            complexity_measure=fit.complexity_measure,
            auto_threshold=fit.auto_threshold,
            stage1=rc.stage1,
            stage2=rc.stage2,
            loss_threshold_factor=fit.loss_threshold_factor,
            variance_threshold_factor=fit.variance_threshold_factor,
            initial_loss_threshold=fit.initial_loss_threshold,
            initial_variance_threshold=fit.initial_variance_threshold,
            threshold_floor=fit.threshold_floor,
            sanity_min_complexity=fit.sanity_min_complexity,
            sanity_max_fitness=fit.sanity_max_fitness,
            enable_caching=rc.enable_caching,
            enable_parallel=rc.enable_parallel,
            parallel_backend=rc.parallel_backend,
            n_jobs=rc.n_jobs,
            tree=TreeConfig(
                num_inputs=tree.num_inputs,
                max_depth=tree.max_depth,
                build_method=tree.build_method,
                function_set=tree.function_set(),
                variable_probability=tree.variable_probability,
                erc_probability=tree.erc_probability,
                constant_range=tuple(tree.constant_range),
            ),
        )
