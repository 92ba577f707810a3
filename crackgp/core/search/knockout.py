# crackgp/core/search/knockout.py
"""
Gene knockout for model editing and sensitivity analysis.

Knocking genes out of a multigene model always re-invokes the fitness function
on the reduced gene set; the weights previously fitted for the retained genes
are discarded. Sensitivity analysis measures the training R² of a model with
each of its genes removed in turn and with each candidate gene from the
population added in turn, which exposes horizontal bloat and promising
additions.
"""

import logging
import numbers
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from crackgp.core.expressions.serializer import ExpressionSerializer, SerializedModel
from crackgp.core.individual import Individual
from crackgp.core.search.context import RunContext
from crackgp.core.search.evaluation import (
    FitnessFunction,
    FitnessRecord,
    _evaluate_expression_worker,
    make_record,
    measure_complexity,
)
from crackgp.utils.exceptions import InvalidSelectorError, MissingReturnValuesError


NUM_ADDITION_CANDIDATES = 5


@dataclass
class GeneSensitivity:
    """
    Result of a gene sensitivity analysis.

    Attributes:
        model_genes: Genes of the analysed model
        candidate_genes: Genes considered for addition
        full_r2: Training R² of the unmodified model
        r2_removed: Training R² with each model gene removed (0 when the model
            has one gene or the refit failed)
        r2_added: Training R² with each candidate appended (0 for candidates
            already in the model or failed refits)
        removal_candidate: Index of the model gene whose removal costs least
        addition_candidates: Indices of the best candidates to add, best first
    """

    model_genes: Tuple[str, ...]
    candidate_genes: Tuple[str, ...]
    full_r2: float
    r2_removed: np.ndarray
    r2_added: np.ndarray
    removal_candidate: Optional[int]
    addition_candidates: Tuple[int, ...]

    def summary(self) -> Dict[str, Any]:
        return {
            'full_r2': self.full_r2,
            'removal_candidate': (self.model_genes[self.removal_candidate]
                                  if self.removal_candidate is not None else None),
            'removal_r2': (float(self.r2_removed[self.removal_candidate])
                           if self.removal_candidate is not None else None),
            'addition_candidates': [self.candidate_genes[i] for i in self.addition_candidates],
            'addition_r2': [float(self.r2_added[i]) for i in self.addition_candidates],
        }


@dataclass
class SelectedModel:
    """A model picked out of a run by ``select_model``."""

    label: str
    individual: Individual
    coefficients: Optional[np.ndarray]
    fitness: float
    diagnostics: Mapping[str, Any] = field(default_factory=dict)
    index: Optional[int] = None

    def require_coefficients(self) -> np.ndarray:
        """
        Coefficients of the model.

        Raises:
            MissingReturnValuesError: If they were never computed
        """
        if self.coefficients is None:
            raise MissingReturnValuesError(self.label)
        return self.coefficients


def unique_genes(population: Sequence[Individual]) -> Tuple[str, ...]:
    """Distinct gene strings of a population, in order of first appearance."""
    seen = {}
    for individual in population:
        for text in individual.gene_strings:
            seen.setdefault(text, None)
    return tuple(seen)


def _from_best_record(label: str, record, population: Sequence[Individual]) -> SelectedModel:
    if len(population) == 0:
        raise InvalidSelectorError(label, "population is empty")
    return SelectedModel(
        label=label,
        individual=population[0].arena.individual(record.genes),
        coefficients=record.coefficients,
        fitness=record.fitness,
        diagnostics=record.diagnostics,
    )


def select_model(
    selector: Union[str, int],
    population: Sequence[Individual],
    records: Sequence[FitnessRecord],
    state
) -> SelectedModel:
    """
    Resolve a model selector.

    Args:
        selector: 'best' (best of run on training data), 'valbest' or
            'testbest' (highest validation/test R² of the run), or an
            integer population index
        population: Current population
        records: Fitness records of the current population
        state: Current RunState

    Returns:
        SelectedModel

    Raises:
        InvalidSelectorError: For unknown ids, missing partitions or
            unsupported selector types
    """
    if isinstance(selector, str):
        key = selector.lower()
        if key == 'best':
            run_best = state.run_best if state is not None else None
            if run_best is None:
                raise InvalidSelectorError(selector, "no generation has been recorded yet")
            return _from_best_record('best', run_best, population)
        if key in ('valbest', 'testbest'):
            if key == 'valbest':
                partition, record = "validation", getattr(state, 'val_best', None)
            else:
                partition, record = "test", getattr(state, 'test_best', None)
            if record is None:
                raise InvalidSelectorError(
                    selector,
                    f"no {partition} R² has been recorded; was {partition} data supplied for this run?"
                )
            return _from_best_record(key, record, population)
        raise InvalidSelectorError(selector, "unknown model name")

    if isinstance(selector, numbers.Integral) and not isinstance(selector, bool):
        index = int(selector)
        if not 0 <= index < len(population):
            raise InvalidSelectorError(selector, f"population has {len(population)} individuals")
        return _selected_from_slot(str(index), index, population, records)

    raise InvalidSelectorError(selector, f"unsupported selector type {type(selector).__name__}")


def _selected_from_slot(
    label: str,
    index: int,
    population: Sequence[Individual],
    records: Sequence[FitnessRecord]
) -> SelectedModel:
    record = records[index]
    return SelectedModel(
        label=label,
        individual=population[index],
        coefficients=record.coefficients,
        fitness=record.fitness,
        diagnostics=record.diagnostics,
        index=index,
    )


class GeneKnockoutEditor:
    """
    Removes genes from individuals and refits them from scratch.
    """

    def __init__(
        self,
        fitness_fn: FitnessFunction,
        complexity_measure: str = "expressional",
        max_workers: int = 1,
        serializer: Optional[ExpressionSerializer] = None
    ):
        """
        Args:
            fitness_fn: Fitness function used for every refit
            complexity_measure: "nodes" or "expressional"
            max_workers: Threads used by ``sensitivity`` (1 for sequential)
            serializer: Converts individuals into evaluable form
        """
        self.fitness_fn = fitness_fn
        self.complexity_measure = complexity_measure
        self.max_workers = max_workers
        self.serializer = serializer or ExpressionSerializer()
        self.logger = logging.getLogger(__name__)

    def knockout(self, individual: Individual, keep_mask: Sequence[bool]) -> Individual:
        """
        Keep the genes whose mask entry is true, preserving their order.

        Raises:
            InvalidSelectorError: If the mask length differs from the gene count
        """
        keep_mask = list(keep_mask)
        if len(keep_mask) != individual.num_genes:
            raise InvalidSelectorError(
                keep_mask,
                f"mask has {len(keep_mask)} entries for {individual.num_genes} genes",
            )
        return individual.with_genes(h for h, keep in zip(individual.handles, keep_mask) if keep)

    def refit(self, individual: Individual, context: RunContext) -> FitnessRecord:
        """Evaluate the individual from scratch; cached records are never consulted."""
        result, error = _evaluate_expression_worker(
            self.fitness_fn, self.serializer.serialize(individual), context.copy()
        )
        if error is not None:
            self.logger.debug(f"Refit of {individual} failed: {error}")
        return make_record(individual, result, measure_complexity(individual, self.complexity_measure))

    def edit(
        self,
        individual: Individual,
        keep_mask: Sequence[bool],
        context: RunContext
    ) -> Tuple[Individual, FitnessRecord]:
        """
        Permanently knock genes out of a model and refit it.

        Raises:
            InvalidSelectorError: If the mask length differs from the gene count
            MissingReturnValuesError: If the reduced model could not be fitted
        """
        reduced = self.knockout(individual, keep_mask)
        record = self.refit(reduced, context)
        if record.coefficients is None:
            raise MissingReturnValuesError(str(reduced))
        return reduced, record

    def sensitivity(
        self,
        individual: Individual,
        candidate_genes: Sequence[str],
        context: RunContext
    ) -> GeneSensitivity:
        """
        Training R² of the model with each gene removed and each candidate added.

        Args:
            individual: Model to analyse
            candidate_genes: Gene strings considered for addition, typically
                ``unique_genes(population)``
            context: Run context handed to every refit

        Returns:
            GeneSensitivity
        """
        full = self.serializer.serialize(individual)
        candidates = tuple(candidate_genes)
        n_genes = full.num_genes

        jobs: List[Optional[SerializedModel]] = [full]
        for i in range(n_genes):
            if n_genes > 1:
                mask = [j != i for j in range(n_genes)]
                jobs.append(full.without(mask))
            else:
                jobs.append(None)
        for gene in candidates:
            if gene in full.genes:
                jobs.append(None)
            else:
                jobs.append(SerializedModel(full.genes + (gene,)))

        scores = self._score_all(jobs, context)

        full_r2 = scores[0]
        r2_removed = np.array(scores[1:1 + n_genes], dtype=float)
        r2_added = np.array(scores[1 + n_genes:], dtype=float)

        removal_candidate = int(np.argmax(r2_removed)) if n_genes else None
        order = np.argsort(-r2_added, kind='stable')
        addition_candidates = tuple(int(i) for i in order[:NUM_ADDITION_CANDIDATES])

        return GeneSensitivity(
            model_genes=full.genes,
            candidate_genes=candidates,
            full_r2=full_r2,
            r2_removed=r2_removed,
            r2_added=r2_added,
            removal_candidate=removal_candidate,
            addition_candidates=addition_candidates,
        )

    def _score(self, model: Optional[SerializedModel], context: RunContext) -> float:
        """Training R² of a model, 0 for skipped jobs and failed refits."""
        if model is None:
            return 0.0

        result, error = _evaluate_expression_worker(self.fitness_fn, model, context.copy())
        if error is not None:
            self.logger.debug(f"Sensitivity refit failed: {error}")
            return 0.0

        fitness = np.asarray(result.fitness_vector, dtype=float)
        r2 = result.diagnostics.get('r2_train')
        if not np.all(np.isfinite(fitness)) or r2 is None or not np.isfinite(r2):
            return 0.0
        return float(r2)

    def _score_all(self, jobs: Sequence[Optional[SerializedModel]], context: RunContext) -> List[float]:
        if self.max_workers <= 1:
            return [self._score(job, context) for job in jobs]

        scores = [0.0] * len(jobs)
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_idx = {
                executor.submit(self._score, job, context): i
                for i, job in enumerate(jobs)
            }
            for future, i in future_to_idx.items():
                scores[i] = future.result()
        return scores
