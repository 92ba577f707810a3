# crackgp/core/search/operators.py
"""
Gene tree generation.

This module provides the random tree generator used to seed populations. It
builds prefix-notation gene strings over the configured function set and
numbers random-constant placeholders so that numbering stays unique across the
genes of one individual.
"""

from typing import List, Optional, Tuple

import numpy as np

from crackgp.core.search.config import TreeConfig


GROW_TERMINAL_PROBABILITY = 0.3


class RandomTreeGenerator:
    """
    Generates random gene trees using ramped half-and-half.

    With ``build_method="ramped"`` the target depth is drawn uniformly from
    ``1..max_depth`` and the tree is built with 'grow' or 'full' with equal
    probability, a probabilistic version of Koza's ramped half-and-half.
    """

    def __init__(self, tree_config: Optional[TreeConfig] = None, rng: Optional[np.random.Generator] = None):
        """
        Initialize the tree generator.

        Args:
            tree_config: Tree building parameters
            rng: Random generator (a fresh unseeded one if omitted)
        """
        self.config = tree_config or TreeConfig()
        self.rng = rng if rng is not None else np.random.default_rng()
        self._functions: List[Tuple[str, int]] = sorted(self.config.function_set.items())

    def __call__(self, depth_constraints: Optional[int] = None, erc_count_used: int = 0) -> Tuple[str, int]:
        return self.generate(depth_constraints, erc_count_used)

    def generate(self, depth_constraints: Optional[int] = None, erc_count_used: int = 0) -> Tuple[str, int]:
        """
        Generate one random gene.

        Args:
            depth_constraints: Maximum depth override (defaults to config.max_depth)
            erc_count_used: Placeholders already used by earlier genes of the
                same individual; new placeholders continue the numbering

        Returns:
            (gene_text, node_count)
        """
        max_depth = depth_constraints or self.config.max_depth
        method = self.config.build_method

        if method == "ramped":
            depth = int(self.rng.integers(1, max_depth + 1))
            method = "grow" if self.rng.random() < 0.5 else "full"
        else:
            depth = max_depth

        self._next_erc = erc_count_used
        self._node_count = 0
        text = self._build(depth, method, current_depth=0)
        return text, self._node_count

    def _build(self, depth: int, method: str, current_depth: int) -> str:
        self._node_count += 1

        # Depth d means levels 0..d-1; the last level is always terminal.
        if current_depth >= depth - 1:
            return self._terminal()

        if method == "grow" and current_depth > 0 and self.rng.random() < GROW_TERMINAL_PROBABILITY:
            return self._terminal()

        name, arity = self._functions[int(self.rng.integers(len(self._functions)))]
        args = []
        for _ in range(arity):
            args.append(self._build(depth, method, current_depth + 1))
        return f"{name}({','.join(args)})"

    def _terminal(self) -> str:
        if self.rng.random() < self.config.variable_probability:
            index = int(self.rng.integers(1, self.config.num_inputs + 1))
            return f"x{index}"

        if self.rng.random() < self.config.erc_probability:
            self._next_erc += 1
            return f"c{self._next_erc}"

        low, high = self.config.constant_range
        value = round(float(self.rng.uniform(low, high)), self.config.constant_precision)
        return f"[{value}]"
