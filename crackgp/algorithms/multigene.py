# crackgp/algorithms/multigene.py
"""
Multigene Genetic Programming Driver
====================================

Composes the search components into a generational run:

    initialise (generation 0) -> evaluate -> update statistics -> breed -> ...

Every phase receives the state it works on explicitly. Breeding is injected as
a callable ``(population, records, state, cache) -> Population``; the cache it
receives has already been restarted for the next generation, so a breeder that
copies individuals unchanged can carry their records over with
``cache.carry_over``. Without a breeder the population is carried over as is.
"""

import logging
from dataclasses import replace
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from crackgp.core.individual import GeneArena, Population
from crackgp.core.search.cache import FitnessCache
from crackgp.core.search.config import GPConfig
from crackgp.core.search.context import RunContext
from crackgp.core.search.evaluation import FitnessEvaluator, FitnessFunction, FitnessRecord
from crackgp.core.search.initialization import PopulationInitializer, TreeGenerator
from crackgp.core.search.knockout import GeneKnockoutEditor, SelectedModel, select_model
from crackgp.core.search.operators import RandomTreeGenerator
from crackgp.core.search.stats import RunState, RunStatsTracker
from crackgp.fitness.regression import MultigeneRegression, RegressionData


Breeder = Callable[[Population, Sequence[FitnessRecord], RunState, Optional[FitnessCache]], Population]


class MultigeneGP:
    """
    Generational multigene GP run.

    Attributes:
        population: Current population (None before initialisation)
        records: Fitness records of the current population
        state: Run state after the last recorded generation
        context: Run context handed to the fitness function
    """

    def __init__(
        self,
        fitness_fn: FitnessFunction,
        config: Optional[GPConfig] = None,
        tree_generator: Optional[TreeGenerator] = None,
        breeder: Optional[Breeder] = None,
        arena: Optional[GeneArena] = None
    ):
        """
        Args:
            fitness_fn: Fitness function evaluated on every individual
            config: Run configuration
            tree_generator: Random gene generator (RandomTreeGenerator by default)
            breeder: Produces the next generation (population carried over if None)
            arena: Gene arena shared by all individuals of the run
        """
        self.config = config or GPConfig()
        self.fitness_fn = fitness_fn
        self.breeder = breeder
        self.rng = np.random.default_rng(self.config.random_state)

        self.tree_generator = tree_generator or RandomTreeGenerator(self.config.tree, self.rng)
        self.initializer = PopulationInitializer(
            rng=self.rng,
            max_gene_attempts=self.config.max_gene_attempts,
            retry_warning_threshold=self.config.retry_warning_threshold,
            quiet=self.config.quiet,
            arena=arena,
        )
        self.evaluator = FitnessEvaluator.from_config(self.config)
        self.tracker = RunStatsTracker.from_config(self.config)
        self.cache = FitnessCache() if self.config.enable_caching else None

        self.population: Optional[Population] = None
        self.records: Tuple[FitnessRecord, ...] = ()
        self.state: RunState = self.tracker.initial_state(
            self.config.initial_loss_threshold, self.config.initial_variance_threshold
        )
        self.context = RunContext(
            loss_threshold=self.config.initial_loss_threshold,
            variance_threshold=self.config.initial_variance_threshold,
        )

        self.logger = logging.getLogger(__name__)

    @property
    def arena(self) -> GeneArena:
        return self.initializer.arena

    def initialize(self) -> Population:
        """Build the generation-0 population."""
        if self.config.verbose:
            self.logger.info(f"Initializing population of {self.config.population_size} individuals...")

        self.population = self.initializer.build(
            self.config.population_size,
            self.config.max_genes,
            self.config.multigene,
            self.config.max_nodes,
            self.tree_generator,
        )
        if self.cache is not None:
            self.cache.begin_generation(0)
        return self.population

    def step(self) -> RunState:
        """Evaluate and record the current generation."""
        if self.population is None:
            self.initialize()

        generation = self.state.generation
        self.context.generation = generation
        self.context.loss_threshold = self.state.thresholds.loss
        self.context.variance_threshold = self.state.thresholds.variance

        result = self.evaluator.evaluate(self.population, self.cache, self.fitness_fn, self.context)
        self.records = result.records
        self.context = result.context

        self.state = self.tracker.update(self.population, self.records, self.state)

        self.logger.debug(
            f"Generation {generation}: {result.computed} evaluated, {result.cached} from cache"
        )
        return self.state

    def advance(self) -> Population:
        """Produce the next generation's population."""
        if self.cache is not None:
            self.cache.begin_generation(self.state.generation)

        if self.breeder is None:
            if self.cache is not None:
                self.cache.carry_over(dict(enumerate(self.records)))
            return self.population

        population = self.breeder(self.population, self.records, self.state, self.cache)
        if len(population) != self.config.population_size:
            raise ValueError(
                f"breeder returned {len(population)} individuals, "
                f"expected {self.config.population_size}"
            )
        self.population = population
        return self.population

    def run(self) -> RunState:
        """
        Run all configured generations.

        Returns:
            Final RunState

        Raises:
            ConstraintUnsatisfiableError: If the initial population cannot be built
        """
        self.initialize()

        progress_bar = None
        if self.config.verbose:
            progress_bar = tqdm(total=self.config.generations, desc="Multigene GP")

        for generation in range(self.config.generations):
            state = self.step()

            if progress_bar:
                progress_bar.set_description(
                    f"Gen {generation}: Best={state.run_best.fitness:.6g}"
                )
                progress_bar.update(1)

            if generation < self.config.generations - 1:
                self.advance()

        if progress_bar:
            progress_bar.close()

        if self.config.verbose:
            self._log_final_results()

        return self.state

    def select_model(self, selector) -> SelectedModel:
        """Resolve 'best', 'valbest', 'testbest' or a population index."""
        return select_model(selector, self.population or (), self.records, self.state)

    def knockout_editor(self, max_workers: int = 1) -> GeneKnockoutEditor:
        return GeneKnockoutEditor(
            self.fitness_fn,
            complexity_measure=self.config.complexity_measure,
            max_workers=max_workers,
            serializer=self.evaluator.serializer,
        )

    def summary(self) -> Dict[str, Any]:
        run_best = self.state.run_best
        summary = {
            'generations': self.state.generation,
            'evaluations': self.context.evaluations,
            'best_fitness': run_best.fitness if run_best else None,
            'best_genes': list(run_best.genes) if run_best else None,
            'best_complexity': run_best.complexity if run_best else None,
            'found_at': run_best.found_at if run_best else None,
            'loss_threshold': self.state.thresholds.loss,
            'variance_threshold': self.state.thresholds.variance,
        }
        if self.cache is not None:
            summary['cache'] = self.cache.get_cache_stats()
        return summary

    def _log_final_results(self):
        summary = self.summary()
        self.logger.info("=" * 60)
        self.logger.info("MULTIGENE GP COMPLETED")
        self.logger.info("=" * 60)
        self.logger.info(f"Generations: {summary['generations']}")
        self.logger.info(f"Total evaluations: {summary['evaluations']}")
        if summary['best_fitness'] is not None:
            self.logger.info(f"Best fitness: {summary['best_fitness']:.6g} (found at generation {summary['found_at']})")
            self.logger.info(f"Best genes: {summary['best_genes']}")
            self.logger.info(f"Complexity: {summary['best_complexity']}")
        self.logger.info("=" * 60)


def run_multigene_gp(
    X: np.ndarray,
    y: np.ndarray,
    config: Optional[GPConfig] = None,
    X_val: Optional[np.ndarray] = None,
    y_val: Optional[np.ndarray] = None,
    X_test: Optional[np.ndarray] = None,
    y_test: Optional[np.ndarray] = None,
    groups: Optional[np.ndarray] = None,
    **kwargs
) -> Tuple[RunState, MultigeneGP]:
    """
    Convenience function to run multigene symbolic regression.

    Args:
        X, y: Training data
        config: GP configuration (the number of inputs is taken from X)
        X_val, y_val, X_test, y_test: Optional validation and test partitions
        groups: Optional group label per training row
        **kwargs: Additional parameters for MultigeneGP

    Returns:
        Tuple of (final_state, engine)
    """
    data = RegressionData(X, y, X_val, y_val, X_test, y_test, groups)
    config = config or GPConfig()
    config = replace(config, tree=replace(config.tree, num_inputs=data.num_inputs))

    engine = MultigeneGP(MultigeneRegression(data), config=config, **kwargs)
    state = engine.run()
    return state, engine
