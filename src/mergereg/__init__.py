"""
MergeReg: Mergeable Sufficient Statistics for Distributed Regression

Main API:
- LinearRegressionAccumulator / LinearRegression: OLS accumulate-merge-finalize
- HeteroLinearRegressionAccumulator / HeteroLinearRegression: heteroskedasticity test
- RobustLinearRegressionAccumulator / RobustLinearRegression: Huber-White standard errors
- OLS: Dask driver running the accumulators over partitioned data
"""

from mergereg.accumulators import (
    DimensionMismatchError,
    LinearRegressionAccumulator,
    HeteroLinearRegressionAccumulator,
    RobustLinearRegressionAccumulator,
)
from mergereg.estimators import LinearRegression, HeteroLinearRegression, RobustLinearRegression
from mergereg.results import (
    LinearRegressionResult,
    HeteroLinearRegressionResult,
    RobustLinearRegressionResult,
)
from mergereg.api import OLS, squared_residuals
from mergereg.data import StreamData, DatasetInfo

__all__ = [
    'DimensionMismatchError',
    'LinearRegressionAccumulator',
    'HeteroLinearRegressionAccumulator',
    'RobustLinearRegressionAccumulator',
    'LinearRegression',
    'HeteroLinearRegression',
    'RobustLinearRegression',
    'LinearRegressionResult',
    'HeteroLinearRegressionResult',
    'RobustLinearRegressionResult',
    'OLS',
    'squared_residuals',
    'StreamData',
    'DatasetInfo'
]

__version__ = '0.1.0'
