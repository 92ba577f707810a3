# crackgp/core/search/initialization.py
"""
Initial population construction.

Every individual receives between 1 and max_genes genes. Each gene is
regenerated until it fits within max_nodes, differs textually from the genes
already accepted for the same individual, and references at least one input
variable. Duplicate genes are only disallowed here; later generations may
contain them.
"""

import logging
from collections import Counter
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from crackgp.core.expressions.gene_math import count_constant_placeholders, find_variables
from crackgp.core.individual import GeneArena, Individual, Population
from crackgp.utils.exceptions import ConstraintUnsatisfiableError


TreeGenerator = Callable[..., Tuple[str, int]]

REJECT_TOO_LARGE = "too_large"
REJECT_DUPLICATE = "duplicate"
REJECT_NO_VARIABLE = "no_variable"


def _exceeds_node_limit(node_count: int, max_nodes: int) -> bool:
    return node_count > max_nodes


def _is_duplicate(gene_text: str, accepted: Sequence[str]) -> bool:
    """True if the gene textually matches a gene already in the individual."""
    return gene_text in accepted


def _has_variable_reference(gene_text: str) -> bool:
    """True if the gene uses at least one input variable."""
    return bool(find_variables(gene_text))


class PopulationInitializer:
    """
    Builds the generation-0 population under size, uniqueness and node-count
    constraints.
    """

    def __init__(
        self,
        rng: Optional[np.random.Generator] = None,
        max_gene_attempts: int = 10000,
        retry_warning_threshold: int = 100,
        quiet: bool = False,
        arena: Optional[GeneArena] = None
    ):
        """
        Args:
            rng: Random generator used to draw gene counts
            max_gene_attempts: Attempts allowed per gene before giving up
            retry_warning_threshold: Attempts after which a warning is logged
            quiet: Suppress the retry warning
            arena: Gene arena to intern genes into (a new one if omitted)
        """
        self.rng = rng if rng is not None else np.random.default_rng()
        self.max_gene_attempts = max_gene_attempts
        self.retry_warning_threshold = retry_warning_threshold
        self.quiet = quiet
        self.arena = arena if arena is not None else GeneArena()
        self.logger = logging.getLogger(__name__)

    def build(
        self,
        pop_size: int,
        max_genes: int,
        multigene: bool,
        max_nodes: int,
        tree_generator: TreeGenerator
    ) -> Population:
        """
        Build the initial population.

        Args:
            pop_size: Number of individuals
            max_genes: Maximum genes per individual (ignored unless multigene)
            multigene: Whether individuals may have more than one gene
            max_nodes: Maximum nodes per gene
            tree_generator: Callable ``(depth_constraints, erc_count_used) ->
                (gene_text, node_count)``

        Returns:
            Population of exactly pop_size individuals

        Raises:
            ConstraintUnsatisfiableError: If a gene cannot be built within
                max_gene_attempts
        """
        if not multigene:
            max_genes = 1

        individuals = []
        for i in range(pop_size):
            num_genes = 1
            if max_genes > 1:
                num_genes = int(self.rng.integers(1, max_genes + 1))
            individuals.append(self._build_individual(i, num_genes, max_nodes, tree_generator))

        return Population(individuals)

    def _build_individual(
        self,
        index: int,
        num_genes: int,
        max_nodes: int,
        tree_generator: TreeGenerator
    ) -> Individual:
        accepted: List[str] = []
        erc_count_used = 0

        for z in range(num_genes):
            gene_text = self._build_gene(index, z, accepted, erc_count_used, max_nodes, tree_generator)
            accepted.append(gene_text)
            erc_count_used += count_constant_placeholders(gene_text)

        return self.arena.individual(accepted)

    def _build_gene(
        self,
        index: int,
        z: int,
        accepted: Sequence[str],
        erc_count_used: int,
        max_nodes: int,
        tree_generator: TreeGenerator
    ) -> str:
        rejections: Counter = Counter()
        warned = False

        for attempt in range(1, self.max_gene_attempts + 1):
            gene_text, node_count = tree_generator(None, erc_count_used)

            if _exceeds_node_limit(node_count, max_nodes):
                rejections[REJECT_TOO_LARGE] += 1
            elif _is_duplicate(gene_text, accepted):
                rejections[REJECT_DUPLICATE] += 1
            elif not _has_variable_reference(gene_text):
                rejections[REJECT_NO_VARIABLE] += 1
            else:
                return gene_text

            if attempt > self.retry_warning_threshold and not warned and not self.quiet:
                self.logger.warning(
                    f"Iterating tree build loop for gene {z + 1} of individual {index} "
                    f"because of constraints ({dict(rejections)})"
                )
                warned = True

        raise ConstraintUnsatisfiableError(
            individual_index=index,
            gene_index=z + 1,
            attempts=self.max_gene_attempts,
            rejections=rejections,
        )
