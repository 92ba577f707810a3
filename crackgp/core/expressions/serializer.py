# crackgp/core/expressions/serializer.py
"""
Conversion of individuals into a directly evaluable form.

A SerializedModel only carries gene strings, so it pickles cheaply for the
multiprocessing evaluation backend; compilation happens on first evaluation in
whichever process receives it and is memoized there by ``compile_gene``.
"""

from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Tuple

import numpy as np

from crackgp.core.expressions.gene_math import compile_gene


@dataclass(frozen=True)
class SerializedModel:
    """Evaluable form of a multigene individual."""

    genes: Tuple[str, ...]

    @property
    def num_genes(self) -> int:
        return len(self.genes)

    def evaluate(
        self,
        X: np.ndarray,
        constant_values: Optional[Mapping[str, float]] = None
    ) -> np.ndarray:
        """
        Evaluate every gene on the rows of X.

        Returns:
            Array of shape (n_samples, num_genes)
        """
        outputs = np.empty((X.shape[0], len(self.genes)), dtype=float)
        for j, text in enumerate(self.genes):
            outputs[:, j] = compile_gene(text).evaluate(X, constant_values)
        return outputs

    def without(self, keep_mask: Sequence[bool]) -> 'SerializedModel':
        """Drop genes whose mask entry is false."""
        return SerializedModel(tuple(g for g, keep in zip(self.genes, keep_mask) if keep))


class ExpressionSerializer:
    """Serializes individuals (or raw gene lists) into SerializedModel."""

    def serialize(self, individual) -> SerializedModel:
        if hasattr(individual, 'gene_strings'):
            return SerializedModel(tuple(individual.gene_strings))
        return SerializedModel(tuple(individual))
