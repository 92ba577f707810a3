# crackgp/core/__init__.py
"""Core data model and search components."""

from crackgp.core.individual import GeneArena, Individual, Population

__all__ = ['GeneArena', 'Individual', 'Population']
