# crackgp/fitness/regression.py
"""
Multigene symbolic regression fitness.

A multigene individual predicts ``y = b0 + b1*g1(x) + ... + bn*gn(x)``. The gene
outputs are evaluated on the training inputs, a bias column is prepended and the
weights are fitted by ordinary least squares. Fitness is the training RMSE, one
entry per group of training rows when groups are given (for example one group
per crack-growth test series), so the scalar fitness is the mean RMSE over the
series.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from crackgp.core.expressions.serializer import SerializedModel
from crackgp.core.search.context import RunContext
from crackgp.core.search.evaluation import FitnessFunction, FitnessResult
from crackgp.utils.exceptions import DataValidationError


def r_squared(y_true: np.ndarray, y_pred: np.ndarray) -> float:
    """Coefficient of determination (0 when the target is constant)."""
    ss_res = np.sum((y_true - y_pred) ** 2)
    ss_tot = np.sum((y_true - np.mean(y_true)) ** 2)
    return float(1 - (ss_res / ss_tot)) if ss_tot > 0 else 0.0


def _as_inputs(X, partition: str) -> np.ndarray:
    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        X = X.reshape(-1, 1)
    if X.ndim != 2:
        raise DataValidationError(f"X must be 1-D or 2-D, got {X.ndim} dimensions", partition=partition)
    return X


def _check_partition(X, y, partition: str, n_inputs: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray]:
    X = _as_inputs(X, partition)
    y = np.asarray(y, dtype=float).ravel()

    if X.shape[0] != y.shape[0]:
        raise DataValidationError(
            f"X has {X.shape[0]} rows but y has {y.shape[0]} entries", partition=partition
        )
    if X.shape[0] == 0:
        raise DataValidationError("no samples", partition=partition)
    if n_inputs is not None and X.shape[1] != n_inputs:
        raise DataValidationError(
            f"X has {X.shape[1]} columns, expected {n_inputs}", partition=partition
        )
    if not (np.all(np.isfinite(X)) and np.all(np.isfinite(y))):
        raise DataValidationError("data contains NaN or inf values", partition=partition)
    return X, y


@dataclass
class RegressionData:
    """
    Training data plus optional validation and test partitions.

    Attributes:
        X_train, y_train: Training inputs (n_samples, n_inputs) and targets
        X_val, y_val: Optional validation partition
        X_test, y_test: Optional test partition
        groups: Optional integer group label per training row
    """

    X_train: np.ndarray
    y_train: np.ndarray
    X_val: Optional[np.ndarray] = None
    y_val: Optional[np.ndarray] = None
    X_test: Optional[np.ndarray] = None
    y_test: Optional[np.ndarray] = None
    groups: Optional[np.ndarray] = None

    def __post_init__(self):
        self.X_train, self.y_train = _check_partition(self.X_train, self.y_train, "train")
        n_inputs = self.X_train.shape[1]

        for name in ("val", "test"):
            X, y = getattr(self, f"X_{name}"), getattr(self, f"y_{name}")
            if (X is None) != (y is None):
                raise DataValidationError(f"X_{name} and y_{name} must be given together", partition=name)
            if X is not None:
                X, y = _check_partition(X, y, name, n_inputs)
                setattr(self, f"X_{name}", X)
                setattr(self, f"y_{name}", y)

        if self.groups is not None:
            self.groups = np.asarray(self.groups).ravel()
            if self.groups.shape[0] != self.X_train.shape[0]:
                raise DataValidationError(
                    f"groups has {self.groups.shape[0]} entries for {self.X_train.shape[0]} training rows",
                    partition="train",
                )

    @property
    def num_inputs(self) -> int:
        return self.X_train.shape[1]

    @property
    def has_validation(self) -> bool:
        return self.X_val is not None

    @property
    def has_test(self) -> bool:
        return self.X_test is not None


class MultigeneRegression(FitnessFunction):
    """
    Least-squares weighted multigene regression fitness.

    Returns a fitness vector of training RMSE values (per group), the
    coefficient vector ``[b0, b1, ..., bn]`` and R² on every available
    partition. Gene outputs that are not finite on the training data give an
    infinite fitness and no coefficients.
    """

    def __init__(self, data: RegressionData):
        self.data = data
        self.logger = logging.getLogger(__name__)

    def __call__(self, expression: SerializedModel, context: RunContext) -> FitnessResult:
        context = context.copy()
        context.evaluations += 1

        gene_outputs = expression.evaluate(self.data.X_train, context.constant_values)
        if not np.all(np.isfinite(gene_outputs)):
            self.logger.debug(f"Non-finite gene output on training data for {expression.genes}")
            return FitnessResult(fitness_vector=[np.inf], context=context)

        design = self._design_matrix(gene_outputs)
        coefficients, *_ = np.linalg.lstsq(design, self.data.y_train, rcond=None)
        predictions = design @ coefficients

        diagnostics: Dict[str, float] = {'r2_train': r_squared(self.data.y_train, predictions)}
        if self.data.has_validation:
            diagnostics['r2_val'] = self._partition_r2(
                expression, coefficients, self.data.X_val, self.data.y_val, context
            )
        if self.data.has_test:
            diagnostics['r2_test'] = self._partition_r2(
                expression, coefficients, self.data.X_test, self.data.y_test, context
            )

        return FitnessResult(
            fitness_vector=self._rmse_vector(predictions),
            context=context,
            coefficients=coefficients,
            diagnostics=diagnostics,
        )

    def predict(
        self,
        expression: SerializedModel,
        coefficients: np.ndarray,
        X: np.ndarray,
        context: Optional[RunContext] = None
    ) -> np.ndarray:
        """Model output ``b0 + sum(bi * gi(X))`` for new inputs."""
        constants = context.constant_values if context is not None else None
        gene_outputs = expression.evaluate(_as_inputs(X, "predict"), constants)
        return self._design_matrix(gene_outputs) @ np.asarray(coefficients, dtype=float)

    def _design_matrix(self, gene_outputs: np.ndarray) -> np.ndarray:
        return np.hstack([np.ones((gene_outputs.shape[0], 1)), gene_outputs])

    def _rmse_vector(self, predictions: np.ndarray) -> np.ndarray:
        residuals = self.data.y_train - predictions
        if self.data.groups is None:
            return np.array([np.sqrt(np.mean(residuals ** 2))])
        return np.array([
            np.sqrt(np.mean(residuals[self.data.groups == g] ** 2))
            for g in np.unique(self.data.groups)
        ])

    def _partition_r2(self, expression, coefficients, X, y, context) -> float:
        with np.errstate(all='ignore'):
            predictions = self.predict(expression, coefficients, X, context)
        if not np.all(np.isfinite(predictions)):
            return float('nan')
        return r_squared(y, predictions)
