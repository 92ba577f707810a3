# crackgp/core/expressions/__init__.py
"""Gene parsing, measurement, compilation and serialization."""

from crackgp.core.expressions.gene import Gene
from crackgp.core.expressions.gene_math import (
    FUNCTION_SET,
    GeneNode,
    CompiledGene,
    parse_gene,
    count_nodes,
    expressional_complexity,
    find_variables,
    find_constants,
    count_constant_placeholders,
    gene_to_sympy,
    compile_gene,
)
from crackgp.core.expressions.serializer import ExpressionSerializer, SerializedModel

__all__ = [
    'Gene',
    'FUNCTION_SET',
    'GeneNode',
    'CompiledGene',
    'parse_gene',
    'count_nodes',
    'expressional_complexity',
    'find_variables',
    'find_constants',
    'count_constant_placeholders',
    'gene_to_sympy',
    'compile_gene',
    'ExpressionSerializer',
    'SerializedModel',
]
