"""
Finalizers turning merged accumulators into regression results.
"""

from mergereg.estimators.ols import (
    LinearRegression,
    RobustLinearRegression,
    solve_normal_equations,
    r_squared
)

from mergereg.estimators.hetero import HeteroLinearRegression

__all__ = [
    'LinearRegression',
    'RobustLinearRegression',
    'HeteroLinearRegression',
    'solve_normal_equations',
    'r_squared'
]
