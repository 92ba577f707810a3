# crackgp/core/search/evaluation.py
"""
Population fitness evaluation.

For every slot the evaluator either reuses the record cached for that slot in
the current generation or computes complexity and calls the fitness function
on the serialized individual. The scalar fitness of an individual is the mean
of the fitness vector returned by the fitness function.

Evaluation may fan out over a thread or process pool. Records are always
collected by slot index and the run context is merged back in slot order, so
the stored records never depend on completion order.
"""

import logging
import multiprocessing as mp
from abc import ABC, abstractmethod
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from crackgp.core.expressions.serializer import ExpressionSerializer, SerializedModel
from crackgp.core.individual import Individual
from crackgp.core.search.cache import FitnessCache
from crackgp.core.search.config import COMPLEXITY_MEASURES, PARALLEL_BACKENDS
from crackgp.core.search.context import RunContext
from crackgp.utils.exceptions import SearchError


# Failures a fitness function may raise on bad numerics; anything else propagates.
NUMERIC_ERRORS = (ArithmeticError, ValueError, FloatingPointError, np.linalg.LinAlgError)


@dataclass
class FitnessResult:
    """What a fitness function returns for one expression."""

    fitness_vector: Sequence[float]
    context: RunContext
    coefficients: Optional[np.ndarray] = None
    diagnostics: Dict[str, Any] = field(default_factory=dict)


class FitnessFunction(ABC):
    """
    Fitness capability injected into the evaluator.

    Implementations must behave as a pure function of (expression, data,
    context) for caching and parallel evaluation to be valid.
    """

    @abstractmethod
    def __call__(self, expression: SerializedModel, context: RunContext) -> FitnessResult:
        """
        Evaluate one serialized individual.

        Args:
            expression: The individual's genes in evaluable form
            context: Run context (may be updated and returned)

        Returns:
            FitnessResult with coefficients of length num_genes + 1
        """
        pass


def _values_equal(a, b) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return np.array_equal(np.asarray(a, dtype=float), np.asarray(b, dtype=float), equal_nan=True)


@dataclass(frozen=True, eq=False)
class FitnessRecord:
    """
    Fitness of one individual in one generation.

    Attributes:
        fitness: Scalar fitness (mean of fitness_vector), stored unsanitized
        complexity: Node count or expressional complexity, per configuration
        node_count: Total node count of the individual
        coefficients: Bias followed by one weight per gene, or None
        fitness_vector: Raw per-component fitness from the fitness function
        diagnostics: e.g. r2_train, r2_val, r2_test
    """

    fitness: float
    complexity: int
    node_count: int
    coefficients: Optional[np.ndarray] = None
    fitness_vector: Tuple[float, ...] = ()
    diagnostics: Mapping[str, Any] = field(default_factory=dict)

    def __eq__(self, other):
        if not isinstance(other, FitnessRecord):
            return NotImplemented
        return (
            _values_equal(self.fitness, other.fitness)
            and self.complexity == other.complexity
            and self.node_count == other.node_count
            and _values_equal(self.coefficients, other.coefficients)
            and _values_equal(self.fitness_vector, other.fitness_vector)
            and self.diagnostics.keys() == other.diagnostics.keys()
            and all(_values_equal(self.diagnostics[k], other.diagnostics[k]) for k in self.diagnostics)
        )

    __hash__ = None


@dataclass
class EvaluationResult:
    """Records for a whole population plus the context after evaluation."""

    records: Tuple[FitnessRecord, ...]
    context: RunContext
    computed: int = 0
    cached: int = 0


def _evaluate_expression_worker(
    fitness_fn: FitnessFunction,
    expression: SerializedModel,
    context: RunContext
) -> Tuple[Optional[FitnessResult], Optional[str]]:
    """
    Call the fitness function, converting numeric failures into an error string.

    Module level so the multiprocessing backend can pickle it.
    """
    try:
        return fitness_fn(expression, context), None
    except NUMERIC_ERRORS as e:
        return None, f"{type(e).__name__}: {e}"


def measure_complexity(individual: Individual, complexity_measure: str) -> int:
    """Complexity of an individual under the configured measure."""
    if complexity_measure == "nodes":
        return individual.node_count
    return individual.complexity


def make_record(
    individual: Individual,
    result: Optional[FitnessResult],
    complexity: int
) -> FitnessRecord:
    """
    Build a FitnessRecord from a fitness function result.

    A missing result (numeric failure) gives NaN fitness and no coefficients.

    Raises:
        SearchError: If the coefficient vector does not have num_genes + 1 entries
    """
    if result is None:
        return FitnessRecord(
            fitness=float('nan'),
            complexity=complexity,
            node_count=individual.node_count,
        )

    vector = np.atleast_1d(np.asarray(result.fitness_vector, dtype=float))
    fitness = float(np.sum(vector) / vector.size) if vector.size else float('nan')

    coefficients = None
    if result.coefficients is not None:
        coefficients = np.asarray(result.coefficients, dtype=float).ravel()
        if coefficients.size != individual.num_genes + 1:
            raise SearchError(
                f"Fitness function returned {coefficients.size} coefficients for "
                f"an individual with {individual.num_genes} genes",
                context={'expected': individual.num_genes + 1},
            )
        coefficients.setflags(write=False)

    return FitnessRecord(
        fitness=fitness,
        complexity=complexity,
        node_count=individual.node_count,
        coefficients=coefficients,
        fitness_vector=tuple(float(v) for v in vector),
        diagnostics=dict(result.diagnostics or {}),
    )


class FitnessEvaluator:
    """
    Computes or retrieves fitness records for every individual of a population.
    """

    def __init__(
        self,
        complexity_measure: str = "expressional",
        enable_caching: bool = True,
        enable_parallel: bool = False,
        parallel_backend: str = "threading",
        n_jobs: int = -1,
        serializer: Optional[ExpressionSerializer] = None
    ):
        """
        Args:
            complexity_measure: "nodes" or "expressional"
            enable_caching: Reuse cached records for slots that have one
            enable_parallel: Fan evaluations out over a worker pool
            parallel_backend: "threading" or "multiprocessing"
            n_jobs: Worker count, -1 for all available cores
            serializer: Converts individuals into evaluable form
        """
        if complexity_measure not in COMPLEXITY_MEASURES:
            raise ValueError(f"complexity_measure must be one of {list(COMPLEXITY_MEASURES)}")
        if parallel_backend not in PARALLEL_BACKENDS:
            raise ValueError(f"parallel_backend must be one of {list(PARALLEL_BACKENDS)}")

        self.complexity_measure = complexity_measure
        self.enable_caching = enable_caching
        self.enable_parallel = enable_parallel
        self.parallel_backend = parallel_backend
        self.n_jobs = n_jobs
        self.serializer = serializer or ExpressionSerializer()
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config) -> 'FitnessEvaluator':
        return cls(
            complexity_measure=config.complexity_measure,
            enable_caching=config.enable_caching,
            enable_parallel=config.enable_parallel,
            parallel_backend=config.parallel_backend,
            n_jobs=config.n_jobs,
        )

    def evaluate(
        self,
        population: Sequence[Individual],
        cache: Optional[FitnessCache],
        fitness_fn: FitnessFunction,
        context: RunContext,
        parallel: Optional[bool] = None
    ) -> EvaluationResult:
        """
        Evaluate every individual of the population.

        Args:
            population: Individuals indexed by slot
            cache: Generation-scoped cache (None or disabled caching skips it)
            fitness_fn: Fitness function to call for uncached slots
            context: Run context at the start of evaluation
            parallel: Override the configured parallel mode

        Returns:
            EvaluationResult with one record per slot, in slot order

        Raises:
            SearchError: If caching is enabled and the cache has no active generation
            CrackGPError: Structural errors from the fitness function, e.g. a
                gene referencing an input column the data does not have
        """
        use_cache = self.enable_caching and cache is not None
        if use_cache and cache.generation is None:
            raise SearchError(
                "Fitness cache has no active generation",
                suggestion="Call cache.begin_generation() before evaluating",
            )

        records: List[Optional[FitnessRecord]] = [None] * len(population)

        pending = []
        for i in range(len(population)):
            cached = cache.get(i) if use_cache else None
            if cached is not None:
                records[i] = cached
            else:
                pending.append(i)

        parallel = self.enable_parallel if parallel is None else parallel
        if parallel and len(pending) > 1:
            context = self._evaluate_parallel(population, pending, records, fitness_fn, context)
        else:
            context = self._evaluate_serial(population, pending, records, fitness_fn, context)

        if use_cache:
            for i in pending:
                cache.put(i, records[i])

        return EvaluationResult(
            records=tuple(records),
            context=context,
            computed=len(pending),
            cached=len(population) - len(pending),
        )

    def _evaluate_serial(
        self,
        population: Sequence[Individual],
        pending: Sequence[int],
        records: List[Optional[FitnessRecord]],
        fitness_fn: FitnessFunction,
        context: RunContext
    ) -> RunContext:
        """Sequential sweep; each call sees the context left by the previous one."""
        for i in pending:
            individual = population[i]
            complexity = measure_complexity(individual, self.complexity_measure)
            result, error = _evaluate_expression_worker(
                fitness_fn, self.serializer.serialize(individual), context
            )
            if error is not None:
                self.logger.debug(f"Fitness evaluation failed for individual {i}: {error}")
            else:
                context = result.context
            records[i] = make_record(individual, result, complexity)
        return context

    def _evaluate_parallel(
        self,
        population: Sequence[Individual],
        pending: Sequence[int],
        records: List[Optional[FitnessRecord]],
        fitness_fn: FitnessFunction,
        context: RunContext
    ) -> RunContext:
        """
        Parallel evaluation.

        Every task receives its own copy of the generation-start context and
        returned contexts are merged in slot order.
        """
        executor_class = (ThreadPoolExecutor if self.parallel_backend == "threading"
                          else ProcessPoolExecutor)
        max_workers = self.n_jobs if self.n_jobs > 0 else mp.cpu_count()
        max_workers = min(max_workers, len(pending))

        returned: Dict[int, RunContext] = {}

        with executor_class(max_workers=max_workers) as executor:
            future_to_idx = {}
            for i in pending:
                future = executor.submit(
                    _evaluate_expression_worker,
                    fitness_fn,
                    self.serializer.serialize(population[i]),
                    context.copy(),
                )
                future_to_idx[future] = i

            for future in as_completed(future_to_idx):
                i = future_to_idx[future]
                result, error = future.result()
                if error is not None:
                    self.logger.debug(f"Parallel evaluation failed for individual {i}: {error}")
                else:
                    returned[i] = result.context
                records[i] = make_record(
                    population[i], result,
                    measure_complexity(population[i], self.complexity_measure)
                )

        return context.merge([returned[i] for i in sorted(returned)])
