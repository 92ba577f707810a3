from crackgp.fitness.regression import MultigeneRegression, RegressionData, r_squared

__all__ = ['MultigeneRegression', 'RegressionData', 'r_squared']
