# crackgp/core/expressions/gene.py
"""
Gene value type.

A Gene wraps one serialized expression tree. It is parsed at construction,
so malformed genes never enter a population; structural metrics are derived
from the memoized parse tree.
"""

from dataclasses import dataclass, field
from typing import Tuple

from crackgp.core.expressions.gene_math import (
    count_nodes,
    expressional_complexity,
    find_constants,
    find_variables,
    count_constant_placeholders,
    parse_gene,
)


@dataclass(frozen=True)
class Gene:
    """
    One expression-tree component of an individual.

    Attributes:
        text: Prefix-notation gene string, e.g. ``plus(x1,c1)``
        node_count: Number of nodes in the tree
    """

    text: str
    node_count: int = field(init=False, compare=False)

    def __post_init__(self):
        parse_gene(self.text)
        object.__setattr__(self, 'node_count', count_nodes(self.text))

    @property
    def complexity(self) -> int:
        """Expressional complexity of the gene."""
        return expressional_complexity(self.text)

    @property
    def variables(self) -> Tuple[str, ...]:
        return tuple(find_variables(self.text))

    @property
    def constants(self) -> Tuple[str, ...]:
        return tuple(find_constants(self.text))

    @property
    def constant_count(self) -> int:
        """Number of random-constant placeholder occurrences."""
        return count_constant_placeholders(self.text)

    @property
    def has_variable_reference(self) -> bool:
        return bool(self.variables)

    def __str__(self) -> str:
        return self.text
