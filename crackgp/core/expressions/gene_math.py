# crackgp/core/expressions/gene_math.py
"""
Gene Mathematics
================

Parsing, measuring and compiling of gene strings.

Genes are stored in prefix (function-call) notation over a small function set,
e.g. ``plus(x1,times(c1,square(x2)))``. Terminals are input variables ``x<k>``
(1-based column index), numbered random-constant placeholders ``c<k>`` and
literal constants written in brackets, e.g. ``[2.5]``.

Compilation goes through SymPy: each gene is converted into a SymPy expression
and lambdified against numpy, with protected operators mapped to the numpy
implementations defined below. Compiled genes are memoized by gene text.
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import numpy as np
import sympy as sp

from crackgp.utils.exceptions import DataValidationError, ExpressionParsingError


# Function name -> arity
FUNCTION_SET: Dict[str, int] = {
    'plus': 2,
    'minus': 2,
    'times': 2,
    'rdivide': 2,
    'power': 2,
    'square': 1,
    'sqrt': 1,
    'exp': 1,
    'log': 1,
    'tanh': 1,
    'neg': 1,
}

DIVISION_EPSILON = 1e-10

_TOKEN_RE = re.compile(r"\s*(?:(\[[^\]]*\])|([A-Za-z_][A-Za-z_0-9]*)|([(),]))")
_VARIABLE_RE = re.compile(r"^x(\d+)$")
_CONSTANT_RE = re.compile(r"^c(\d+)$")


@dataclass(frozen=True)
class GeneNode:
    """A node of a parsed gene tree."""

    label: str
    kind: str  # 'func', 'var', 'erc' or 'const'
    children: Tuple['GeneNode', ...] = ()
    value: Optional[float] = None

    def walk(self):
        """Yield every node of the subtree in prefix order."""
        yield self
        for child in self.children:
            yield from child.walk()


def _tokenize(text: str) -> List[str]:
    tokens = []
    pos = 0
    stripped = text.rstrip()
    while pos < len(stripped):
        match = _TOKEN_RE.match(stripped, pos)
        if match is None or match.end() == pos:
            raise ExpressionParsingError(text, f"unexpected character at position {pos}")
        tokens.append(next(group for group in match.groups() if group is not None))
        pos = match.end()
    return tokens


def _parse_node(text: str, tokens: List[str], pos: int) -> Tuple[GeneNode, int]:
    if pos >= len(tokens):
        raise ExpressionParsingError(text, "unexpected end of gene")

    token = tokens[pos]

    if token.startswith('['):
        try:
            value = float(token[1:-1])
        except ValueError:
            raise ExpressionParsingError(text, f"bad literal constant {token}")
        return GeneNode(token, 'const', value=value), pos + 1

    var_match = _VARIABLE_RE.match(token)
    if var_match:
        if int(var_match.group(1)) < 1:
            raise ExpressionParsingError(text, "input variables are numbered from x1")
        return GeneNode(token, 'var'), pos + 1

    if _CONSTANT_RE.match(token):
        return GeneNode(token, 'erc'), pos + 1

    if token not in FUNCTION_SET:
        raise ExpressionParsingError(text, f"unknown symbol '{token}'")

    arity = FUNCTION_SET[token]
    if pos + 1 >= len(tokens) or tokens[pos + 1] != '(':
        raise ExpressionParsingError(text, f"missing '(' after '{token}'")

    children = []
    pos += 2
    for i in range(arity):
        child, pos = _parse_node(text, tokens, pos)
        children.append(child)
        expected = ',' if i < arity - 1 else ')'
        if pos >= len(tokens) or tokens[pos] != expected:
            raise ExpressionParsingError(
                text, f"'{token}' expects {arity} argument(s)"
            )
        pos += 1

    return GeneNode(token, 'func', tuple(children)), pos


@lru_cache(maxsize=8192)
def parse_gene(text: str) -> GeneNode:
    """
    Parse a gene string into a tree of GeneNode.

    Raises:
        ExpressionParsingError: If the string is not a well-formed gene
    """
    tokens = _tokenize(text)
    if not tokens:
        raise ExpressionParsingError(text, "empty gene")
    root, pos = _parse_node(text, tokens, 0)
    if pos != len(tokens):
        raise ExpressionParsingError(text, "trailing symbols after gene")
    return root


def count_nodes(text: str) -> int:
    """Number of nodes (functions and terminals) in a gene."""
    return sum(1 for _ in parse_gene(text).walk())


def expressional_complexity(text: str) -> int:
    """
    Expressional complexity of a gene.

    This is the sum, over every node, of the number of nodes in the subtree
    rooted at that node. It grows faster than the node count for deep trees
    and so favours flat expressions of the same size.
    """
    def _visit(node: GeneNode) -> Tuple[int, int]:
        size = 1
        total = 0
        for child in node.children:
            child_size, child_total = _visit(child)
            size += child_size
            total += child_total
        return size, total + size

    return _visit(parse_gene(text))[1]


def find_variables(text: str) -> List[str]:
    """Distinct input variable names in order of first appearance."""
    seen: Dict[str, None] = {}
    for node in parse_gene(text).walk():
        if node.kind == 'var':
            seen.setdefault(node.label)
    return list(seen)


def find_constants(text: str) -> List[str]:
    """Distinct random-constant placeholder names in order of first appearance."""
    seen: Dict[str, None] = {}
    for node in parse_gene(text).walk():
        if node.kind == 'erc':
            seen.setdefault(node.label)
    return list(seen)


def count_constant_placeholders(text: str) -> int:
    """Number of placeholder occurrences in a gene."""
    return sum(1 for node in parse_gene(text).walk() if node.kind == 'erc')


# Protected operators used by compiled genes

def _pdivide(a, b):
    a, b = np.broadcast_arrays(np.asarray(a, dtype=float), np.asarray(b, dtype=float))
    with np.errstate(divide='ignore', invalid='ignore'):
        out = np.divide(a, b)
    return np.where(np.abs(b) < DIVISION_EPSILON, a, out)


def _plog(a):
    a = np.abs(np.asarray(a, dtype=float))
    with np.errstate(divide='ignore'):
        return np.where(a == 0.0, 0.0, np.log(np.where(a == 0.0, 1.0, a)))


def _psqrt(a):
    return np.sqrt(np.abs(np.asarray(a, dtype=float)))


def _ppower(a, b):
    with np.errstate(over='ignore', invalid='ignore', divide='ignore'):
        out = np.power(np.abs(np.asarray(a, dtype=float)), b)
    return np.where(np.isfinite(out), out, 0.0)


_PROTECTED_MODULE = {
    'pdivide': _pdivide,
    'plog': _plog,
    'psqrt': _psqrt,
    'ppower': _ppower,
}

_PDIVIDE = sp.Function('pdivide')
_PLOG = sp.Function('plog')
_PSQRT = sp.Function('psqrt')
_PPOWER = sp.Function('ppower')


def _to_sympy(node: GeneNode) -> sp.Expr:
    if node.kind in ('var', 'erc'):
        return sp.Symbol(node.label)
    if node.kind == 'const':
        return sp.Float(node.value)

    args = [_to_sympy(child) for child in node.children]
    label = node.label

    if label == 'plus':
        return args[0] + args[1]
    if label == 'minus':
        return args[0] - args[1]
    if label == 'times':
        return args[0] * args[1]
    if label == 'rdivide':
        return _PDIVIDE(args[0], args[1])
    if label == 'power':
        return _PPOWER(args[0], args[1])
    if label == 'square':
        return args[0] ** 2
    if label == 'sqrt':
        return _PSQRT(args[0])
    if label == 'exp':
        return sp.exp(args[0])
    if label == 'log':
        return _PLOG(args[0])
    if label == 'tanh':
        return sp.tanh(args[0])
    if label == 'neg':
        return -args[0]

    raise ExpressionParsingError(label, "no symbolic form for function")


def gene_to_sympy(text: str) -> sp.Expr:
    """Symbolic form of a gene (protected operators kept as named functions)."""
    return _to_sympy(parse_gene(text))


@dataclass(frozen=True)
class CompiledGene:
    """A gene lambdified into a numpy callable."""

    text: str
    variables: Tuple[str, ...]
    constants: Tuple[str, ...]
    func: Callable

    def evaluate(self, X: np.ndarray, constant_values: Optional[Mapping[str, float]] = None) -> np.ndarray:
        """
        Evaluate the gene on the rows of X.

        Placeholders missing from ``constant_values`` evaluate to 1.0.

        Raises:
            DataValidationError: If the gene references an input column X does not have
        """
        constant_values = constant_values or {}
        columns = []
        for name in self.variables:
            col = int(name[1:]) - 1
            if col >= X.shape[1]:
                raise DataValidationError(
                    f"Gene '{self.text}' references {name} but data has {X.shape[1]} inputs",
                    partition="inputs",
                )
            columns.append(X[:, col])
        args = columns + [float(constant_values.get(name, 1.0)) for name in self.constants]

        with np.errstate(all='ignore'):
            out = self.func(*args)
        return np.broadcast_to(np.asarray(out, dtype=float), (X.shape[0],)).copy()


def _symbol_order(name: str) -> int:
    return int(name[1:])


@lru_cache(maxsize=4096)
def compile_gene(text: str) -> CompiledGene:
    """
    Compile a gene string into a numpy callable via SymPy lambdify.

    Results are memoized by gene text.
    """
    expr = gene_to_sympy(text)
    variables = tuple(sorted(find_variables(text), key=_symbol_order))
    constants = tuple(sorted(find_constants(text), key=_symbol_order))
    symbols = [sp.Symbol(name) for name in variables + constants]
    func = sp.lambdify(symbols, expr, modules=[_PROTECTED_MODULE, 'numpy'])
    return CompiledGene(text=text, variables=variables, constants=constants, func=func)
