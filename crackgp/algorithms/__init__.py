from crackgp.algorithms.multigene import MultigeneGP, run_multigene_gp

__all__ = ['MultigeneGP', 'run_multigene_gp']
