import sys
from pathlib import Path

import numpy as np
import pytest

# --- Path Setup ---
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from crackgp.core.individual import GeneArena
from crackgp.core.search.context import RunContext
from crackgp.core.search.evaluation import FitnessFunction, FitnessRecord, FitnessResult
from crackgp.fitness.regression import MultigeneRegression, RegressionData


class GeneCountFitness(FitnessFunction):
    """Deterministic fitness depending only on the number of genes."""

    def __call__(self, expression, context):
        context = context.copy()
        context.evaluations += 1
        n = expression.num_genes
        return FitnessResult(
            fitness_vector=[0.1 * n, 0.3 * n],
            context=context,
            coefficients=np.ones(n + 1),
            diagnostics={'r2_train': 1.0 - 0.1 * n},
        )


def make_record(fitness, complexity, node_count=None, coefficients=None):
    """FitnessRecord with only the fields the statistics tracker reads."""
    return FitnessRecord(
        fitness=fitness,
        complexity=complexity,
        node_count=complexity if node_count is None else node_count,
        coefficients=np.zeros(2) if coefficients is None else coefficients,
        fitness_vector=(fitness,),
    )


@pytest.fixture
def arena():
    return GeneArena()


@pytest.fixture
def context():
    return RunContext()


@pytest.fixture
def gene_count_fitness():
    return GeneCountFitness()


@pytest.fixture
def two_input_data():
    """y = 10*cos(7*x1) + 0.1*x1 sampled on [0, 1], with x2 = cos(7*x1)."""
    x1 = np.linspace(0.0, 1.0, 30)
    x2 = np.cos(7 * x1)
    X = np.column_stack([x1, x2])
    y = 10 * x2 + 0.1 * x1
    return RegressionData(X, y)


@pytest.fixture
def quadratic_data():
    """y = 1 + 2*x1 + 3*x1^2 with validation and test partitions."""
    rng = np.random.default_rng(42)
    X = rng.uniform(-2, 2, size=(40, 1))
    X_val = rng.uniform(-2, 2, size=(10, 1))
    X_test = rng.uniform(-2, 2, size=(10, 1))
    f = lambda X: 1 + 2 * X[:, 0] + 3 * X[:, 0] ** 2
    return RegressionData(X, f(X), X_val, f(X_val), X_test, f(X_test))


@pytest.fixture
def regression(two_input_data):
    return MultigeneRegression(two_input_data)
