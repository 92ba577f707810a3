# crackgp/core/search/__init__.py
"""
crackgp Core Search Module

Components of the multigene GP engine, leaves first:

- RandomTreeGenerator: constrained random gene generation
- PopulationInitializer: builds the generation-0 population
- FitnessCache: per-slot memoization within a generation
- FitnessEvaluator: sequential or parallel fitness evaluation
- RunStatsTracker: best-of-generation, best-of-run, history and thresholds
- GeneKnockoutEditor: gene removal, refitting and sensitivity analysis
"""

from crackgp.core.search.config import (
    GPConfig,
    TreeConfig,
    create_default_config,
    create_fast_config,
    create_thorough_config,
)

from crackgp.core.search.context import RunContext
from crackgp.core.search.cache import FitnessCache
from crackgp.core.search.operators import RandomTreeGenerator
from crackgp.core.search.initialization import PopulationInitializer

from crackgp.core.search.evaluation import (
    EvaluationResult,
    FitnessEvaluator,
    FitnessFunction,
    FitnessRecord,
    FitnessResult,
)

from crackgp.core.search.stats import (
    FOUND_AT_INITIALIZATION,
    BestRecord,
    RunHistory,
    RunState,
    RunStatsTracker,
    Thresholds,
    sanitize_fitness,
)

from crackgp.core.search.knockout import (
    GeneKnockoutEditor,
    GeneSensitivity,
    SelectedModel,
    select_model,
    unique_genes,
)

__all__ = [
    # Configuration
    'GPConfig',
    'TreeConfig',
    'create_default_config',
    'create_fast_config',
    'create_thorough_config',

    # State
    'RunContext',
    'RunState',
    'RunHistory',
    'BestRecord',
    'Thresholds',
    'FOUND_AT_INITIALIZATION',

    # Components
    'FitnessCache',
    'RandomTreeGenerator',
    'PopulationInitializer',
    'FitnessEvaluator',
    'FitnessFunction',
    'FitnessRecord',
    'FitnessResult',
    'EvaluationResult',
    'RunStatsTracker',
    'sanitize_fitness',
    'GeneKnockoutEditor',
    'GeneSensitivity',
    'SelectedModel',
    'select_model',
    'unique_genes',
]
