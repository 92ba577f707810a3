"""
Unit tests for gene knockout, sensitivity analysis and model selection.
"""

import pytest
import numpy as np
from unittest.mock import Mock

from conftest import GeneCountFitness

from crackgp.core.individual import Population
from crackgp.core.search.evaluation import FitnessRecord, FitnessResult
from crackgp.core.search.knockout import (
    GeneKnockoutEditor,
    GeneSensitivity,
    SelectedModel,
    select_model,
    unique_genes,
)
from crackgp.core.search.stats import RunStatsTracker
from crackgp.utils.exceptions import (
    DataValidationError,
    InvalidSelectorError,
    MissingReturnValuesError,
)


OVERFLOW_GENE = "exp(exp(times(x1,[100.0])))"


class TestKnockout:
    """Test gene removal and refitting."""

    @pytest.fixture
    def individual(self, arena):
        return arena.individual(["x1", "square(x2)", "tanh(x1)"])

    def test_all_true_mask_keeps_individual(self, individual, gene_count_fitness):
        editor = GeneKnockoutEditor(gene_count_fitness)
        assert editor.knockout(individual, [True, True, True]) == individual

    def test_all_false_mask_gives_empty_individual(self, individual, gene_count_fitness):
        editor = GeneKnockoutEditor(gene_count_fitness)
        assert editor.knockout(individual, [False, False, False]).num_genes == 0

    def test_order_preserved(self, individual, gene_count_fitness):
        reduced = GeneKnockoutEditor(gene_count_fitness).knockout(individual, [True, False, True])
        assert reduced.gene_strings == ("x1", "tanh(x1)")
        assert reduced.arena is individual.arena

    def test_mask_length_mismatch(self, individual, gene_count_fitness):
        with pytest.raises(InvalidSelectorError, match="mask"):
            GeneKnockoutEditor(gene_count_fitness).knockout(individual, [True, False])

    def test_refit_always_calls_fitness_function(self, individual, context):
        fitness_fn = Mock(side_effect=GeneCountFitness())
        editor = GeneKnockoutEditor(fitness_fn)

        editor.refit(individual, context)
        editor.refit(individual, context)

        assert fitness_fn.call_count == 2
        assert context.evaluations == 0

    def test_edit_refits_reduced_model(self, individual, context):
        fitness_fn = Mock(side_effect=GeneCountFitness())
        reduced, record = GeneKnockoutEditor(fitness_fn).edit(individual, [False, True, False], context)

        assert reduced.gene_strings == ("square(x2)",)
        assert len(record.coefficients) == 2
        assert record.fitness == pytest.approx(0.2)
        model = fitness_fn.call_args.args[0]
        assert model.genes == ("square(x2)",)

    def test_edit_without_coefficients_raises(self, individual, context):
        fitness_fn = Mock(return_value=FitnessResult([np.inf], context))
        with pytest.raises(MissingReturnValuesError):
            GeneKnockoutEditor(fitness_fn).edit(individual, [True, False, True], context)

    def test_refit_numeric_failure(self, individual, context):
        fitness_fn = Mock(side_effect=OverflowError("too big"))
        record = GeneKnockoutEditor(fitness_fn).refit(individual, context)
        assert np.isnan(record.fitness)
        assert record.coefficients is None


class TestSensitivity:
    """Test gene removal/addition R² analysis."""

    CANDIDATES = ["x1", "x2", "square(x1)", OVERFLOW_GENE]

    def test_removal_and_addition_scores(self, arena, regression, context):
        individual = arena.individual(["x1", "x2"])
        result = GeneKnockoutEditor(regression).sensitivity(individual, self.CANDIDATES, context)

        assert result.full_r2 == pytest.approx(1.0)
        assert result.r2_removed[0] > 0.99
        assert result.r2_removed[1] < 0.5
        assert result.removal_candidate == 0

        # genes already in the model and overflowing refits score 0
        assert result.r2_added[0] == 0.0
        assert result.r2_added[1] == 0.0
        assert result.r2_added[3] == 0.0
        assert result.r2_added[2] == pytest.approx(1.0)
        assert result.addition_candidates == (2, 0, 1, 3)

    def test_single_gene_model(self, arena, regression, context):
        individual = arena.individual(["x2"])
        result = GeneKnockoutEditor(regression).sensitivity(individual, ["x1"], context)

        np.testing.assert_array_equal(result.r2_removed, [0.0])
        assert result.removal_candidate == 0
        assert result.r2_added[0] > result.full_r2

    def test_addition_candidates_capped(self, arena, context):
        individual = arena.individual(["x1"])
        candidates = [f"times(x1,[{k}.0])" for k in range(2, 10)]
        result = GeneKnockoutEditor(GeneCountFitness()).sensitivity(individual, candidates, context)
        assert len(result.addition_candidates) == 5

    def test_threaded_matches_sequential(self, arena, regression, context):
        individual = arena.individual(["x1", "x2", "square(x1)"])
        sequential = GeneKnockoutEditor(regression).sensitivity(individual, self.CANDIDATES, context)
        threaded = GeneKnockoutEditor(regression, max_workers=4).sensitivity(
            individual, self.CANDIDATES, context
        )

        np.testing.assert_allclose(threaded.r2_removed, sequential.r2_removed)
        np.testing.assert_allclose(threaded.r2_added, sequential.r2_added)
        assert threaded.removal_candidate == sequential.removal_candidate
        assert threaded.addition_candidates == sequential.addition_candidates

    def test_missing_input_column_propagates(self, arena, regression, context):
        individual = arena.individual(["x1"])
        with pytest.raises(DataValidationError, match="x3"):
            GeneKnockoutEditor(regression).sensitivity(individual, ["plus(x1,x3)"], context)

    def test_missing_input_column_propagates_threaded(self, arena, regression, context):
        individual = arena.individual(["x1", "x2"])
        with pytest.raises(DataValidationError, match="x3"):
            GeneKnockoutEditor(regression, max_workers=2).sensitivity(
                individual, ["x1", "plus(x1,x3)"], context
            )

    def test_summary(self):
        result = GeneSensitivity(
            model_genes=("x1", "x2"),
            candidate_genes=("x3", "x4"),
            full_r2=0.9,
            r2_removed=np.array([0.8, 0.2]),
            r2_added=np.array([0.91, 0.95]),
            removal_candidate=0,
            addition_candidates=(1, 0),
        )
        summary = result.summary()
        assert summary['removal_candidate'] == "x1"
        assert summary['removal_r2'] == 0.8
        assert summary['addition_candidates'] == ["x4", "x3"]


class TestUniqueGenes:
    def test_order_of_first_appearance(self, arena):
        population = Population([
            arena.individual(["x2", "x1"]),
            arena.individual(["x1", "square(x1)"]),
        ])
        assert unique_genes(population) == ("x2", "x1", "square(x1)")


class TestSelectModel:
    """Test resolution of model selectors."""

    @pytest.fixture
    def population(self, arena):
        return Population([
            arena.individual(["x1"]),
            arena.individual(["x1", "x2"]),
            arena.individual(["square(x2)"]),
        ])

    @pytest.fixture
    def records(self):
        return [
            FitnessRecord(0.5, 1, 1, np.array([0.0, 1.0]), diagnostics={'r2_val': 0.4, 'r2_test': 0.1}),
            FitnessRecord(0.1, 5, 3, np.array([0.0, 1.0, 2.0]), diagnostics={'r2_val': 0.9, 'r2_test': np.nan}),
            FitnessRecord(0.3, 3, 2, None, diagnostics={'r2_val': 0.2, 'r2_test': 0.7}),
        ]

    @pytest.fixture
    def state(self, population, records):
        tracker = RunStatsTracker(quiet=True)
        return tracker.update(population, records, tracker.initial_state())

    def test_best(self, population, records, state):
        selected = select_model('best', population, records, state)
        assert selected.label == 'best'
        assert selected.individual.gene_strings == ("x1", "x2")
        assert selected.fitness == 0.1
        np.testing.assert_array_equal(selected.require_coefficients(), [0.0, 1.0, 2.0])

    def test_valbest(self, population, records, state):
        selected = select_model('valbest', population, records, state)
        assert selected.label == 'valbest'
        assert selected.individual.gene_strings == ("x1", "x2")
        assert selected.diagnostics['r2_val'] == 0.9
        np.testing.assert_array_equal(selected.require_coefficients(), [0.0, 1.0, 2.0])

    def test_testbest_skips_non_finite(self, population, records, state):
        selected = select_model('TestBest', population, records, state)
        assert selected.individual.gene_strings == ("square(x2)",)
        assert selected.diagnostics['r2_test'] == 0.7

    def test_valbest_kept_across_generations(self, population, records, state):
        tracker = RunStatsTracker(quiet=True)
        worse = [
            FitnessRecord(0.05, 1, 1, np.array([0.0, 1.0]), diagnostics={'r2_val': 0.5, 'r2_test': 0.8}),
        ] * 3
        later = tracker.update(population, worse, state)

        selected = select_model('valbest', population, worse, later)
        assert selected.individual.gene_strings == ("x1", "x2")
        assert later.val_best.found_at == 0

        selected = select_model('testbest', population, worse, later)
        assert selected.individual.gene_strings == ("x1",)
        assert later.test_best.found_at == 1

    def test_integer_index(self, population, records, state):
        selected = select_model(0, population, records, state)
        assert selected.index == 0
        assert selected.label == "0"
        selected = select_model(np.int64(2), population, records, state)
        assert selected.index == 2

    def test_missing_partition(self, population):
        records = [FitnessRecord(0.5, 1, 1, diagnostics={'r2_train': 0.5})] * 3
        tracker = RunStatsTracker(quiet=True)
        state = tracker.update(population, records, tracker.initial_state())
        with pytest.raises(InvalidSelectorError, match="validation"):
            select_model('valbest', population, records, state)
        with pytest.raises(InvalidSelectorError, match="test R²"):
            select_model('testbest', population, records, state)

    def test_best_before_first_generation(self, population, records):
        with pytest.raises(InvalidSelectorError):
            select_model('best', population, records, RunStatsTracker().initial_state())

    @pytest.mark.parametrize("selector", ["worst", 3, -1, True, 1.5, None, [0]])
    def test_invalid_selectors(self, population, records, state, selector):
        with pytest.raises(InvalidSelectorError):
            select_model(selector, population, records, state)

    def test_require_coefficients_missing(self, population, records, state):
        selected = select_model(2, population, records, state)
        with pytest.raises(MissingReturnValuesError) as exc_info:
            selected.require_coefficients()
        assert exc_info.value.context['model_id'] == "2"

    def test_selected_model_defaults(self, arena):
        selected = SelectedModel('x', arena.individual(["x1"]), None, 0.0)
        assert selected.index is None
        assert selected.diagnostics == {}
