"""
Unit tests for the fitness cache, run context and fitness evaluator.
"""

import pytest
import numpy as np
from unittest.mock import Mock

from conftest import GeneCountFitness

from crackgp.core.expressions.serializer import SerializedModel
from crackgp.core.individual import Population
from crackgp.core.search.cache import FitnessCache
from crackgp.core.search.context import RunContext
from crackgp.core.search.evaluation import (
    FitnessEvaluator,
    FitnessRecord,
    FitnessResult,
    _evaluate_expression_worker,
)
from crackgp.fitness.regression import MultigeneRegression
from crackgp.utils.exceptions import DataValidationError, SearchError


@pytest.fixture
def population(arena):
    return Population([
        arena.individual(["x1"]),
        arena.individual(["x1", "square(x2)"]),
        arena.individual(["plus(x1,x2)", "x2", "times(x1,x2)"]),
        arena.individual(["x2"]),
        arena.individual(["tanh(x1)", "x2"]),
    ])


class TestFitnessCache:
    """Test generation-scoped fitness caching."""

    def test_put_requires_generation(self):
        with pytest.raises(RuntimeError, match="begin_generation"):
            FitnessCache().put(0, "record")

    def test_cache_basic_operations(self):
        cache = FitnessCache()
        cache.begin_generation(0)
        cache.put(3, "record")
        assert cache.get(3) == "record"
        assert cache.get(1) is None
        assert 3 in cache
        assert len(cache) == 1

    def test_new_generation_invalidates_entries(self):
        cache = FitnessCache()
        cache.begin_generation(0)
        cache.put(0, "record")
        cache.begin_generation(1)
        assert cache.get(0) is None
        assert 0 not in cache
        assert len(cache) == 0

    def test_carry_over(self):
        cache = FitnessCache()
        cache.begin_generation(4)
        cache.carry_over({0: "a", 2: "b"})
        assert cache.get(0) == "a"
        assert cache.get(2) == "b"
        assert cache.get(1) is None

    def test_cache_stats(self):
        cache = FitnessCache()
        cache.begin_generation(2)
        cache.put(0, "record")
        cache.get(0)
        cache.get(0)
        cache.get(1)

        stats = cache.get_cache_stats()
        assert stats['generation'] == 2
        assert stats['size'] == 1
        assert stats['hit_count'] == 2
        assert stats['miss_count'] == 1
        assert stats['hit_ratio'] == pytest.approx(2 / 3)


class TestRunContext:
    """Test context copying and slot-ordered merging."""

    def test_copy_is_independent(self):
        context = RunContext(userdata={'seen': [1]})
        clone = context.copy()
        clone.userdata['seen'].append(2)
        assert context.userdata['seen'] == [1]

    def test_merge_adds_evaluation_deltas(self):
        base = RunContext(evaluations=10)
        updates = []
        for _ in range(3):
            update = base.copy()
            update.evaluations += 1
            updates.append(update)
        assert base.merge(updates).evaluations == 13
        assert base.evaluations == 10

    def test_merge_later_slot_wins(self):
        base = RunContext(userdata={'keep': 1})
        first, second = base.copy(), base.copy()
        first.userdata['last'] = 'first'
        second.userdata['last'] = 'second'
        second.constant_values['c1'] = 2.0

        merged = base.merge([first, second])
        assert merged.userdata == {'keep': 1, 'last': 'second'}
        assert merged.constant_values == {'c1': 2.0}

    def test_merge_ignores_unchanged_arrays(self):
        base = RunContext(userdata={'w': np.zeros(3)})
        changed = base.copy()
        changed.userdata['w'] = np.ones(3)
        unchanged = base.copy()

        merged = base.merge([changed, unchanged])
        np.testing.assert_array_equal(merged.userdata['w'], np.ones(3))

    def test_merge_propagates_deletions(self):
        base = RunContext(constant_values={'c1': 1.0}, userdata={'scratch': [1], 'keep': 2})
        worker = base.copy()
        del worker.userdata['scratch']
        del worker.constant_values['c1']

        merged = base.merge([worker, base.copy()])
        assert merged.userdata == {'keep': 2}
        assert merged.constant_values == {}
        assert base.userdata == {'scratch': [1], 'keep': 2}

    def test_merge_later_slot_sets_deleted_key(self):
        base = RunContext(userdata={'scratch': 0})
        first, second = base.copy(), base.copy()
        del first.userdata['scratch']
        second.userdata['scratch'] = 5

        assert base.merge([first, second]).userdata == {'scratch': 5}
        assert base.merge([second, first]).userdata == {}


class TestFitnessEvaluator:
    """Test fitness evaluation, caching and parallel execution."""

    def test_records_per_slot(self, population, gene_count_fitness, context):
        evaluator = FitnessEvaluator(complexity_measure="nodes")
        cache = FitnessCache()
        cache.begin_generation(0)

        result = evaluator.evaluate(population, cache, gene_count_fitness, context)

        assert len(result.records) == len(population)
        for individual, record in zip(population, result.records):
            n = individual.num_genes
            assert record.fitness == pytest.approx(0.2 * n)
            assert record.fitness_vector == pytest.approx((0.1 * n, 0.3 * n))
            assert record.complexity == individual.node_count
            assert record.node_count == individual.node_count
            assert len(record.coefficients) == n + 1
            assert record.diagnostics['r2_train'] == pytest.approx(1.0 - 0.1 * n)
        assert result.computed == len(population)
        assert len(cache) == len(population)

    def test_expressional_complexity_measure(self, population, gene_count_fitness, context):
        result = FitnessEvaluator().evaluate(population, None, gene_count_fitness, context)
        assert [r.complexity for r in result.records] == [ind.complexity for ind in population]

    def test_sequential_context_threading(self, population, gene_count_fitness, context):
        result = FitnessEvaluator().evaluate(population, None, gene_count_fitness, context)
        assert result.context.evaluations == len(population)
        assert context.evaluations == 0

    def test_cache_hit_reused_verbatim(self, population, context):
        cached = FitnessRecord(fitness=0.123, complexity=1, node_count=1, coefficients=np.array([0.0, 1.0]))
        cache = FitnessCache()
        cache.begin_generation(0)
        cache.put(0, cached)
        fitness_fn = Mock(side_effect=GeneCountFitness())

        result = FitnessEvaluator().evaluate(population, cache, fitness_fn, context)

        assert result.records[0] is cached
        assert fitness_fn.call_count == len(population) - 1
        assert result.cached == 1

    def test_cache_hit_matches_recomputation(self, population, gene_count_fitness, context):
        evaluator = FitnessEvaluator()
        cache = FitnessCache()
        cache.begin_generation(0)

        first = evaluator.evaluate(population, cache, gene_count_fitness, context)
        second = evaluator.evaluate(population, cache, gene_count_fitness, context)
        fresh = evaluator.evaluate(population, None, gene_count_fitness, context)

        assert second.cached == len(population)
        assert second.records == first.records == fresh.records

    def test_caching_disabled(self, population, gene_count_fitness, context):
        cache = FitnessCache()
        cache.begin_generation(0)
        cache.put(0, "stale")

        result = FitnessEvaluator(enable_caching=False).evaluate(population, cache, gene_count_fitness, context)

        assert isinstance(result.records[0], FitnessRecord)
        assert len(cache) == 1

    def test_numeric_failure_recovered(self, population, context):
        fitness_fn = Mock(side_effect=FloatingPointError("overflow"))
        result = FitnessEvaluator().evaluate(population, None, fitness_fn, context)

        for record in result.records:
            assert np.isnan(record.fitness)
            assert record.coefficients is None
        assert result.context.evaluations == 0

    def test_structural_error_propagates(self, population, context):
        fitness_fn = Mock(side_effect=KeyError("userdata"))
        with pytest.raises(KeyError):
            FitnessEvaluator().evaluate(population, None, fitness_fn, context)

    def test_non_finite_fitness_stored_unmodified(self, population, context):
        fitness_fn = Mock(return_value=FitnessResult([np.inf], context))
        result = FitnessEvaluator().evaluate(population, None, fitness_fn, context)
        assert all(r.fitness == np.inf for r in result.records)

    def test_coefficient_length_checked(self, population, context):
        fitness_fn = Mock(return_value=FitnessResult([0.5], context, coefficients=np.ones(7)))
        with pytest.raises(SearchError, match="coefficients"):
            FitnessEvaluator().evaluate(population, None, fitness_fn, context)

    def test_missing_input_column_propagates(self, arena, two_input_data, context):
        population = Population([arena.individual(["x1"]), arena.individual(["plus(x1,x3)"])])
        with pytest.raises(DataValidationError, match="x3"):
            FitnessEvaluator().evaluate(population, None, MultigeneRegression(two_input_data), context)

    def test_missing_input_column_propagates_in_parallel(self, arena, two_input_data, context):
        population = Population([arena.individual(["x1"]), arena.individual(["plus(x1,x3)"])])
        evaluator = FitnessEvaluator(enable_parallel=True, n_jobs=2)
        with pytest.raises(DataValidationError):
            evaluator.evaluate(population, None, MultigeneRegression(two_input_data), context)

    def test_cache_without_generation_rejected(self, population, context):
        fitness_fn = Mock(side_effect=GeneCountFitness())
        with pytest.raises(SearchError, match="active generation"):
            FitnessEvaluator().evaluate(population, FitnessCache(), fitness_fn, context)
        fitness_fn.assert_not_called()

    def test_worker_function(self, gene_count_fitness, context):
        result, error = _evaluate_expression_worker(gene_count_fitness, SerializedModel(("x1",)), context)
        assert error is None
        assert result.fitness_vector == pytest.approx([0.1, 0.3])

        failing = Mock(side_effect=ZeroDivisionError("boom"))
        result, error = _evaluate_expression_worker(failing, SerializedModel(("x1",)), context)
        assert result is None
        assert "ZeroDivisionError" in error

    def test_invalid_options(self):
        with pytest.raises(ValueError, match="complexity_measure"):
            FitnessEvaluator(complexity_measure="depth")
        with pytest.raises(ValueError, match="parallel_backend"):
            FitnessEvaluator(parallel_backend="mpi")


class TestParallelEvaluation:
    """Parallel evaluation must match the sequential path."""

    def test_threading_matches_sequential(self, population, gene_count_fitness, context):
        sequential = FitnessEvaluator().evaluate(population, None, gene_count_fitness, context)
        parallel = FitnessEvaluator(enable_parallel=True, n_jobs=4).evaluate(
            population, None, gene_count_fitness, context
        )
        assert parallel.records == sequential.records
        assert parallel.context.evaluations == sequential.context.evaluations

    def test_parallel_writes_cache(self, population, gene_count_fitness, context):
        cache = FitnessCache()
        cache.begin_generation(0)
        FitnessEvaluator(enable_parallel=True, n_jobs=2).evaluate(population, cache, gene_count_fitness, context)
        assert len(cache) == len(population)

    def test_parallel_override_argument(self, population, gene_count_fitness, context):
        evaluator = FitnessEvaluator(enable_parallel=False, n_jobs=2)
        result = evaluator.evaluate(population, None, gene_count_fitness, context, parallel=True)
        assert len(result.records) == len(population)

    def test_multiprocessing_matches_sequential(self, population, two_input_data, context):
        fitness_fn = MultigeneRegression(two_input_data)
        sequential = FitnessEvaluator().evaluate(population, None, fitness_fn, context)
        parallel = FitnessEvaluator(
            enable_parallel=True, parallel_backend="multiprocessing", n_jobs=2
        ).evaluate(population, None, fitness_fn, context)

        for p, s in zip(parallel.records, sequential.records):
            assert p.fitness == pytest.approx(s.fitness)
            np.testing.assert_allclose(p.coefficients, s.coefficients)
        assert parallel.context.evaluations == len(population)
