import time
import numpy as np
import pandas as pd
import dask.dataframe as dd
from dask.distributed import Client, progress
from typing import Union, Optional, Dict, Any, List, Literal, Tuple, Callable
from pathlib import Path
import logging

from mergereg import state
from mergereg.accumulators import (
    LinearRegressionAccumulator,
    HeteroLinearRegressionAccumulator,
    RobustLinearRegressionAccumulator,
)
from mergereg.data import StreamData, DEFAULT_CHUNK_SIZE
from mergereg.estimators.ols import LinearRegression, RobustLinearRegression
from mergereg.estimators.hetero import HeteroLinearRegression
from mergereg.results import (
    LinearRegressionResult,
    HeteroLinearRegressionResult,
    RobustLinearRegressionResult,
)

logger = logging.getLogger(__name__)

DEFAULT_SPLIT_EVERY = 8

AuxiliaryFunc = Callable[[np.ndarray, np.ndarray], np.ndarray]
DataSource = Union[str, Path, pd.DataFrame, dd.DataFrame, StreamData]


def squared_residuals(residuals: np.ndarray, X: np.ndarray) -> np.ndarray:
    """Auxiliary term of the Koenker form of the Breusch-Pagan test."""
    return residuals ** 2


def _design_matrix(partition_df: pd.DataFrame, feature_cols: List[str], target_col: str,
                   add_intercept: bool) -> Tuple[np.ndarray, np.ndarray]:
    """Extract finite rows of a partition as (X, y), prepending the intercept column."""
    X = partition_df[feature_cols].to_numpy(dtype=float)
    y = partition_df[target_col].to_numpy(dtype=float)

    valid_mask = np.isfinite(X).all(axis=1) & np.isfinite(y)
    X = X[valid_mask]
    y = y[valid_mask]

    if add_intercept:
        X = np.column_stack([np.ones(len(X)), X])

    return X, y


# Module-level chunk functions keep dask task hashing deterministic
def _linregr_chunk(partition_df, feature_cols, target_col, add_intercept):
    X, y = _design_matrix(partition_df, feature_cols, target_col, add_intercept)
    acc = LinearRegressionAccumulator().add_rows(X, y)
    logger.debug(f"Partition folded: {acc.num_rows:,} rows")
    return state.to_dict(acc)


def _hetero_chunk(partition_df, feature_cols, target_col, add_intercept, coef, auxiliary):
    X, y = _design_matrix(partition_df, feature_cols, target_col, add_intercept)
    residuals = y - X @ coef
    a = np.asarray(auxiliary(residuals, X), dtype=float)
    return state.to_dict(HeteroLinearRegressionAccumulator().add_rows(X, a))


def _robust_chunk(partition_df, feature_cols, target_col, add_intercept, coef):
    X, y = _design_matrix(partition_df, feature_cols, target_col, add_intercept)
    return state.to_dict(RobustLinearRegressionAccumulator(coef).add_rows(X, y))


def _combine_states(payloads, empty):
    """Merge serialized partial accumulators, starting from the identity element."""
    acc = state.from_dict(empty)
    for payload in payloads:
        acc.merge(state.from_dict(payload))
    return state.to_dict(acc)


class OLS:
    """
    Ordinary Least Squares over Dask partitions via mergeable sufficient statistics.

    Usage:
    ------
    >>> model = OLS(['x1', 'x2'], 'y')
    >>> model.fit(df)
    >>> print(model.summary())
    >>> bp = model.hetero_test(df, auxiliary=squared_residuals)
    """

    def __init__(
        self,
        feature_cols: List[str],
        target_col: str,
        add_intercept: bool = True,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        split_every: Optional[int] = None,
        se_type: Literal['HC0', 'HC1'] = 'HC1',
        client: Optional[Client] = None
    ):
        """
        Initialize OLS estimator.

        Parameters:
        -----------
        feature_cols : list of str
            Column names for features
        target_col : str
            Column name for target variable
        add_intercept : bool
            Whether to prepend a constant column
        chunk_size : int
            Rows per partition when fitting a pandas DataFrame
        split_every : int, optional
            Fan-in of the Dask tree reduction. Defaults to twice the worker
            count of ``client`` (between 4 and 32), else DEFAULT_SPLIT_EVERY
        se_type : str
            Robust standard error type used by ``robust()``: 'HC0' or 'HC1'
        client : dask.distributed.Client, optional
            Client to run the reductions on. If None, the default Dask
            scheduler is used
        """
        if not feature_cols:
            raise ValueError("feature_cols must name at least one column")
        if split_every is not None and split_every < 2:
            raise ValueError(f"split_every must be at least 2, got {split_every}")

        self.feature_cols = list(feature_cols)
        self.target_col = target_col
        self.add_intercept = add_intercept
        self.chunk_size = chunk_size
        self.se_type = se_type
        self._client = client

        if split_every is None:
            split_every = self._default_split_every()
        self.split_every = split_every

        self.feature_names = (['intercept'] if add_intercept else []) + self.feature_cols

        # Populated after fit
        self._accumulator = None
        self._results = None

    def _default_split_every(self) -> int:
        if self._client is None:
            return DEFAULT_SPLIT_EVERY
        n_workers = len(self._client.scheduler_info()['workers'])
        split_every = max(4, min(n_workers * 2, 32))
        logger.debug(f"Using split_every={split_every} for {n_workers} workers")
        return split_every

    def _prepare(self, data: DataSource) -> dd.DataFrame:
        if not isinstance(data, StreamData):
            data = StreamData(data, chunk_size=self.chunk_size)
        return data.select(self.feature_cols + [self.target_col])

    def _reduce(self, df: dd.DataFrame, chunk: Callable, chunk_kwargs: Dict[str, Any],
                empty) -> Any:
        """Tree-reduce per-partition accumulators into one."""
        empty_payload = state.to_dict(empty)
        reduction_result = df.reduction(
            chunk=chunk,
            combine=_combine_states,
            aggregate=_combine_states,
            chunk_kwargs={
                'feature_cols': self.feature_cols,
                'target_col': self.target_col,
                'add_intercept': self.add_intercept,
                **chunk_kwargs
            },
            combine_kwargs={'empty': empty_payload},
            aggregate_kwargs={'empty': empty_payload},
            meta=object,
            split_every=self.split_every
        )

        if self._client is None:
            return state.from_dict(reduction_result.compute())

        future = self._client.compute(reduction_result)
        if logger.isEnabledFor(logging.DEBUG):
            progress(future)
        return state.from_dict(future.result())

    def fit(self, data: DataSource) -> 'OLS':
        """
        Fit the OLS model.

        Parameters:
        -----------
        data : str, Path, DataFrame, dask DataFrame or StreamData
            Data source; rows with non-finite features or target are dropped

        Returns:
        --------
        self : OLS
            Fitted model
        """
        start_time = time.time()
        logger.info(f"Starting OLS estimation: {len(self.feature_names)} features")

        df = self._prepare(data)
        self._accumulator = self._reduce(df, _linregr_chunk, {}, LinearRegressionAccumulator())
        self._results = LinearRegression.compute(self._accumulator)

        elapsed = time.time() - start_time
        logger.info(
            f"Completed in {elapsed:.1f}s: {self._results.num_rows:,} obs, "
            f"R²={self._results.r2:.4f}"
        )

        return self

    def hetero_test(self, data: DataSource,
                    auxiliary: AuxiliaryFunc) -> HeteroLinearRegressionResult:
        """
        Test the fitted model for heteroskedasticity.

        Parameters:
        -----------
        data : same data source passed to ``fit``
        auxiliary : callable
            ``auxiliary(residuals, X) -> a`` computing the per-row regressand of
            the auxiliary regression, e.g. ``squared_residuals``
        """
        self._check_fitted()
        df = self._prepare(data)
        acc = self._reduce(
            df, _hetero_chunk,
            {'coef': np.asarray(self._results.coef), 'auxiliary': auxiliary},
            HeteroLinearRegressionAccumulator()
        )
        return HeteroLinearRegression.compute(acc)

    def robust(self, data: DataSource) -> RobustLinearRegressionResult:
        """Huber-White standard errors for the fitted coefficients."""
        self._check_fitted()
        coef = np.asarray(self._results.coef)
        df = self._prepare(data)
        acc = self._reduce(df, _robust_chunk, {'coef': coef},
                           RobustLinearRegressionAccumulator(coef))
        return RobustLinearRegression.compute(acc, se_type=self.se_type)

    def _check_fitted(self) -> None:
        if self._results is None:
            raise ValueError("Model must be fitted first")

    def summary(self) -> pd.DataFrame:
        """
        Get regression summary table.

        Returns:
        --------
        DataFrame with coefficients, standard errors, t-stats, and p-values
        """
        self._check_fitted()
        return self._results.summary(self.feature_names)

    def predict(self, X: Union[pd.DataFrame, np.ndarray]) -> np.ndarray:
        """Make predictions on new data."""
        self._check_fitted()

        if isinstance(X, pd.DataFrame):
            X = X[self.feature_cols].to_numpy(dtype=float)
        X = np.asarray(X, dtype=float)
        if self.add_intercept:
            X = np.column_stack([np.ones(len(X)), X])

        return X @ self._results.coef

    # Scikit-learn style properties
    @property
    def results_(self) -> LinearRegressionResult:
        self._check_fitted()
        return self._results

    @property
    def accumulator_(self) -> LinearRegressionAccumulator:
        """Merged sufficient statistics of the last fit."""
        self._check_fitted()
        return self._accumulator

    @property
    def coef_(self) -> np.ndarray:
        """Coefficient estimates."""
        return self.results_.coef

    @property
    def se_(self) -> np.ndarray:
        """Standard errors."""
        return self.results_.std_err

    @property
    def r_squared_(self) -> float:
        return self.results_.r2

    @property
    def n_obs_(self) -> int:
        return self.results_.num_rows
