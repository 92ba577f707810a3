# crackgp/core/individual.py
"""
Individuals and Populations
===========================

Multigene individuals do not own their gene strings. Genes are interned in a
GeneArena and individuals hold ordered integer handles into it, so a gene shared
by many individuals (common after reproduction) is stored and parsed once.
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple

from crackgp.core.expressions.gene import Gene


class GeneArena:
    """Interning store for immutable Gene values."""

    def __init__(self):
        self._genes: List[Gene] = []
        self._handles: Dict[str, int] = {}
        self._lock = threading.Lock()

    def intern(self, text: str) -> int:
        """Return the handle for ``text``, adding the gene if it is new."""
        with self._lock:
            handle = self._handles.get(text)
            if handle is None:
                gene = Gene(text)
                handle = len(self._genes)
                self._genes.append(gene)
                self._handles[text] = handle
            return handle

    def __getitem__(self, handle: int) -> Gene:
        return self._genes[handle]

    def __len__(self) -> int:
        return len(self._genes)

    def __contains__(self, text: str) -> bool:
        return text in self._handles

    def individual(self, gene_texts: Iterable[str]) -> 'Individual':
        """Build an Individual from gene strings, interning each one."""
        return Individual(tuple(self.intern(text) for text in gene_texts), self)


@dataclass(frozen=True)
class Individual:
    """
    One candidate model: an ordered sequence of genes.

    Attributes:
        handles: Gene handles into ``arena``, in model order
        arena: The GeneArena the handles refer to
    """

    handles: Tuple[int, ...]
    arena: GeneArena = field(compare=False, repr=False)

    @property
    def genes(self) -> Tuple[Gene, ...]:
        return tuple(self.arena[h] for h in self.handles)

    @property
    def gene_strings(self) -> Tuple[str, ...]:
        return tuple(gene.text for gene in self.genes)

    @property
    def num_genes(self) -> int:
        return len(self.handles)

    @property
    def node_count(self) -> int:
        """Total number of nodes over all genes."""
        return sum(gene.node_count for gene in self.genes)

    @property
    def complexity(self) -> int:
        """Total expressional complexity over all genes."""
        return sum(gene.complexity for gene in self.genes)

    def with_genes(self, handles: Sequence[int]) -> 'Individual':
        """A new individual sharing this one's arena."""
        return Individual(tuple(handles), self.arena)

    def __eq__(self, other):
        if not isinstance(other, Individual):
            return NotImplemented
        return self.gene_strings == other.gene_strings

    def __hash__(self):
        return hash(self.gene_strings)

    def __len__(self) -> int:
        return len(self.handles)

    def __str__(self) -> str:
        return "[" + "; ".join(self.gene_strings) + "]"


class Population(Sequence):
    """
    Fixed-size, index-addressable collection of individuals.

    A slot index identifies an individual only within one generation.
    """

    def __init__(self, individuals: Iterable[Individual]):
        self._individuals: Tuple[Individual, ...] = tuple(individuals)

    def __getitem__(self, index):
        return self._individuals[index]

    def __len__(self) -> int:
        return len(self._individuals)

    def __iter__(self) -> Iterator[Individual]:
        return iter(self._individuals)

    def __eq__(self, other):
        if not isinstance(other, Population):
            return NotImplemented
        return self._individuals == other._individuals

    def __repr__(self) -> str:
        return f"Population(size={len(self)})"

    def with_individual(self, index: int, individual: Individual) -> 'Population':
        """Copy of the population with slot ``index`` replaced."""
        individuals = list(self._individuals)
        individuals[index] = individual
        return Population(individuals)
