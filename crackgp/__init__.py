# crackgp/__init__.py
"""
crackgp: multigene genetic programming for crack-growth model discovery.

Evolves multigene individuals whose genes are combined by least-squares
weighting into interpretable regression models
``y = b0 + b1*g1(x) + ... + bn*gn(x)``.
"""

from crackgp.algorithms.multigene import MultigeneGP, run_multigene_gp
from crackgp.config.loader import load_config
from crackgp.core.search.config import GPConfig, TreeConfig
from crackgp.fitness.regression import MultigeneRegression, RegressionData

__version__ = "0.1.0"

__all__ = [
    'MultigeneGP',
    'run_multigene_gp',
    'load_config',
    'GPConfig',
    'TreeConfig',
    'MultigeneRegression',
    'RegressionData',
]
