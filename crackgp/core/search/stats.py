# crackgp/core/search/stats.py
"""
Statistics tracking for multigene GP runs.

RunStatsTracker turns one generation's fitness records into a new RunState:
it sanitizes non-finite fitness, picks the best individual of the generation
under a deterministic tie-break, maintains the best-of-run record and the
best-of-run models by validation and test R², optionally rescales the loss
thresholds and appends best/mean/std fitness to the history.

The tracker never mutates the state it is given, so calling ``update`` twice
with the same inputs gives equal results.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional, Sequence, Tuple

import numpy as np

from crackgp.core.individual import Individual


# found_at value of a run-best established by the first update of a run
FOUND_AT_INITIALIZATION = 0


def sanitize_fitness(values: Sequence[float], minimisation: bool = True) -> np.ndarray:
    """
    Replace non-finite fitness by the worst possible value.

    For minimisation NaN becomes +inf. For maximisation NaN and +inf become
    -inf. Other values are returned unchanged.
    """
    sanitized = np.array(values, dtype=float)
    nan_mask = np.isnan(sanitized)
    if minimisation:
        sanitized[nan_mask] = np.inf
    else:
        sanitized[np.isposinf(sanitized)] = -np.inf
        sanitized[nan_mask] = -np.inf
    return sanitized


def select_best_index(
    fitness: np.ndarray,
    complexity: Sequence[int],
    minimisation: bool = True
) -> int:
    """
    Index of the best individual of a generation.

    Ties on fitness are broken by lowest complexity, then by lowest index.
    """
    best_value = fitness.min() if minimisation else fitness.max()
    candidates = np.flatnonzero(fitness == best_value)
    candidate_complexity = np.asarray(complexity)[candidates]
    return int(candidates[int(np.argmin(candidate_complexity))])


def finite_mean_std(values: np.ndarray) -> Tuple[float, float]:
    """Mean and sample standard deviation of the finite entries."""
    finite = values[np.isfinite(values)]
    if finite.size == 0:
        return float('nan'), float('nan')
    if finite.size == 1:
        return float(finite[0]), 0.0
    return float(np.mean(finite)), float(np.std(finite, ddof=1))


@dataclass(frozen=True, eq=False)
class BestRecord:
    """Snapshot of a best individual (of a generation or of the run)."""

    fitness: float
    genes: Tuple[str, ...]
    coefficients: Optional[np.ndarray]
    complexity: int
    node_count: int
    index: int
    found_at: int
    diagnostics: Mapping[str, Any] = field(default_factory=dict)

    def __eq__(self, other):
        if not isinstance(other, BestRecord):
            return NotImplemented
        same_coefficients = (
            (self.coefficients is None and other.coefficients is None)
            or (self.coefficients is not None and other.coefficients is not None
                and np.array_equal(self.coefficients, other.coefficients, equal_nan=True))
        )
        return (
            self.fitness == other.fitness
            and self.genes == other.genes
            and same_coefficients
            and self.complexity == other.complexity
            and self.node_count == other.node_count
            and self.index == other.index
            and self.found_at == other.found_at
        )

    __hash__ = None


def _snapshot(population, records, fitness: np.ndarray, index: int, generation: int) -> BestRecord:
    record = records[index]
    return BestRecord(
        fitness=float(fitness[index]),
        genes=tuple(population[index].gene_strings),
        coefficients=record.coefficients,
        complexity=record.complexity,
        node_count=record.node_count,
        index=index,
        found_at=generation,
        diagnostics=dict(record.diagnostics),
    )


def _update_partition_best(
    key: str,
    population,
    records,
    fitness: np.ndarray,
    generation: int,
    incumbent: Optional[BestRecord]
) -> Optional[BestRecord]:
    """
    Best-of-run model by a held-out R² diagnostic (``r2_val`` or ``r2_test``).

    The generation's highest finite score (lowest index on ties) replaces the
    incumbent only if it is strictly higher.
    """
    scores = np.array([
        np.nan if r.diagnostics.get(key) is None else r.diagnostics[key]
        for r in records
    ], dtype=float)
    finite = np.isfinite(scores)
    if not finite.any():
        return incumbent

    index = int(np.argmax(np.where(finite, scores, -np.inf)))
    if incumbent is not None and scores[index] <= incumbent.diagnostics[key]:
        return incumbent
    return _snapshot(population, records, fitness, index, generation)


@dataclass(frozen=True)
class Thresholds:
    """Auto-adjusting loss thresholds."""

    loss: float = 1.0
    variance: float = 1.0


@dataclass(frozen=True, eq=False)
class RunHistory:
    """Append-only per-generation fitness history."""

    best: Tuple[float, ...] = ()
    mean: Tuple[float, ...] = ()
    std: Tuple[float, ...] = ()

    def append(self, best: float, mean: float, std: float) -> 'RunHistory':
        return RunHistory(self.best + (best,), self.mean + (mean,), self.std + (std,))

    def __len__(self) -> int:
        return len(self.best)

    def _equal(self, other: 'RunHistory') -> bool:
        return all(
            np.array_equal(np.asarray(a, dtype=float), np.asarray(b, dtype=float), equal_nan=True)
            for a, b in ((self.best, other.best), (self.mean, other.mean), (self.std, other.std))
        )

    def __eq__(self, other):
        if not isinstance(other, RunHistory):
            return NotImplemented
        return len(self) == len(other) and self._equal(other)

    __hash__ = None


@dataclass(frozen=True)
class RunState:
    """
    Generational run state.

    Attributes:
        generation: Index of the next generation to be recorded
        best: Best individual of the last recorded generation
        run_best: Best individual of the run so far
        history: Best/mean/std fitness per recorded generation
        thresholds: Current loss thresholds
        val_best: Highest validation R² model of the run so far
        test_best: Highest test R² model of the run so far
    """

    generation: int = 0
    best: Optional[BestRecord] = None
    run_best: Optional[BestRecord] = None
    history: RunHistory = field(default_factory=RunHistory)
    thresholds: Thresholds = field(default_factory=Thresholds)
    val_best: Optional[BestRecord] = None
    test_best: Optional[BestRecord] = None


class RunStatsTracker:
    """
    Selects best-of-generation, maintains best-of-run and the fitness history,
    and auto-adjusts loss thresholds.
    """

    def __init__(
        self,
        minimisation: bool = True,
        auto_threshold: bool = False,
        stage1: int = 10,
        stage2: int = 20,
        loss_threshold_factor: float = 0.5,
        variance_threshold_factor: float = 0.5,
        threshold_floor: float = 1e-10,
        sanity_min_complexity: int = 5,
        sanity_max_fitness: float = 1.0,
        quiet: bool = False
    ):
        self.minimisation = minimisation
        self.auto_threshold = auto_threshold
        self.stage1 = stage1
        self.stage2 = stage2
        self.loss_threshold_factor = loss_threshold_factor
        self.variance_threshold_factor = variance_threshold_factor
        self.threshold_floor = threshold_floor
        self.sanity_min_complexity = sanity_min_complexity
        self.sanity_max_fitness = sanity_max_fitness
        self.quiet = quiet

        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config) -> 'RunStatsTracker':
        return cls(
            minimisation=config.minimisation,
            auto_threshold=config.auto_threshold,
            stage1=config.stage1,
            stage2=config.stage2,
            loss_threshold_factor=config.loss_threshold_factor,
            variance_threshold_factor=config.variance_threshold_factor,
            threshold_floor=config.threshold_floor,
            sanity_min_complexity=config.sanity_min_complexity,
            sanity_max_fitness=config.sanity_max_fitness,
            quiet=config.quiet,
        )

    def initial_state(self, loss_threshold: float = 1.0, variance_threshold: float = 1.0) -> RunState:
        """State before the first generation has been recorded."""
        return RunState(thresholds=Thresholds(loss=loss_threshold, variance=variance_threshold))

    def update(
        self,
        population: Sequence[Individual],
        records: Sequence,
        state: RunState
    ) -> RunState:
        """
        Record one generation.

        Args:
            population: Individuals of the generation, indexed by slot
            records: FitnessRecord per slot
            state: State after the previous generation (left unchanged)

        Returns:
            New RunState with ``generation`` advanced by one
        """
        if len(population) != len(records):
            raise ValueError(
                f"population has {len(population)} individuals but {len(records)} records were given"
            )
        if len(population) == 0:
            raise ValueError("cannot update statistics for an empty population")

        generation = state.generation
        fitness = sanitize_fitness([r.fitness for r in records], self.minimisation)
        complexity = [r.complexity for r in records]

        index = select_best_index(fitness, complexity, self.minimisation)
        best = _snapshot(population, records, fitness, index, generation)

        run_best = self._update_run_best(best, state.run_best, generation)
        val_best = _update_partition_best('r2_val', population, records, fitness, generation, state.val_best)
        test_best = _update_partition_best('r2_test', population, records, fitness, generation, state.test_best)
        thresholds = self._adjust_thresholds(best.fitness, generation, state.thresholds)

        mean, std = finite_mean_std(fitness)
        history = state.history.append(best.fitness, mean, std)

        self._sanity_check(best)

        return replace(
            state,
            generation=generation + 1,
            best=best,
            run_best=run_best,
            history=history,
            thresholds=thresholds,
            val_best=val_best,
            test_best=test_best,
        )

    def _is_better(self, candidate: BestRecord, incumbent: BestRecord) -> bool:
        """Lexicographic (fitness, complexity) comparison in the objective's direction."""
        if self.minimisation:
            improved = candidate.fitness < incumbent.fitness
        else:
            improved = candidate.fitness > incumbent.fitness
        simpler = candidate.fitness == incumbent.fitness and candidate.complexity < incumbent.complexity
        return improved or simpler

    def _update_run_best(
        self,
        best: BestRecord,
        run_best: Optional[BestRecord],
        generation: int
    ) -> BestRecord:
        if run_best is None:
            return replace(best, found_at=FOUND_AT_INITIALIZATION)

        if self._is_better(best, run_best):
            self.logger.debug(
                f"Generation {generation}: new run best {best.fitness:.6g} "
                f"(complexity {best.complexity})"
            )
            return replace(best, found_at=generation)

        return run_best

    def _adjust_thresholds(self, best_fitness: float, generation: int, thresholds: Thresholds) -> Thresholds:
        if not self.auto_threshold:
            return thresholds

        if generation <= self.stage1:
            return replace(thresholds, loss=self._scaled(best_fitness, self.loss_threshold_factor))
        if generation <= self.stage2:
            return replace(thresholds, variance=self._scaled(best_fitness, self.variance_threshold_factor))
        return thresholds

    def _scaled(self, best_fitness: float, factor: float) -> float:
        if best_fitness < self.threshold_floor:
            return self.threshold_floor
        return best_fitness * factor

    def _sanity_check(self, best: BestRecord):
        """Warn about suspicious best individuals; never alters results."""
        if self.quiet:
            return

        if not np.isfinite(best.fitness):
            self.logger.warning("No individual in this generation has a finite fitness")
            return

        if best.complexity < self.sanity_min_complexity:
            self.logger.warning(
                f"Best individual has complexity {best.complexity} "
                f"(< {self.sanity_min_complexity}): {'; '.join(best.genes)}"
            )

        if best.fitness > self.sanity_max_fitness:
            self.logger.warning(
                f"Best individual has fitness {best.fitness:.6g} (> {self.sanity_max_fitness})"
            )
