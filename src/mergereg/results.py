import numpy as np
import pandas as pd
from scipy import stats
from typing import Dict, List, Optional, Any, Tuple
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)


def _significance_stars(p: float) -> str:
    if not np.isfinite(p):
        return ''
    return '***' if p < 0.01 else '**' if p < 0.05 else '*' if p < 0.10 else ''


def _coefficient_table(coef: np.ndarray, std_err: np.ndarray, t_stats: np.ndarray,
                       p_values: np.ndarray, feature_names: Optional[List[str]]) -> pd.DataFrame:
    if feature_names is None:
        feature_names = [f"x{i}" for i in range(len(coef))]
    elif len(feature_names) != len(coef):
        raise ValueError(
            f"Got {len(feature_names)} feature names for {len(coef)} coefficients"
        )

    df = pd.DataFrame({
        'coefficient': coef,
        'std_error': std_err,
        't_statistic': t_stats,
        'p_value': p_values
    }, index=feature_names)

    df['sig'] = df['p_value'].apply(_significance_stars)

    return df


@dataclass(frozen=True)
class LinearRegressionResult:
    """
    Immutable OLS result computed from one fully merged accumulator.

    Degenerate inputs are encoded in the values (NaN/inf standard errors, a
    very large or infinite condition number) instead of raising.
    """
    # Core results
    coef: np.ndarray
    r2: float
    std_err: np.ndarray
    t_stats: np.ndarray
    p_values: np.ndarray
    condition_no: float

    # Diagnostics
    num_rows: int
    rank: int
    df_resid: int
    sse: float
    sst: float
    adj_r2: float
    covariance: np.ndarray

    def summary(self, feature_names: Optional[List[str]] = None) -> pd.DataFrame:
        """Get summary table of results."""
        return _coefficient_table(self.coef, self.std_err, self.t_stats,
                                  self.p_values, feature_names)

    def get_confidence_interval(self, index: int, alpha: float = 0.05) -> Tuple[float, float]:
        """Student-t confidence interval for one coefficient."""
        if self.df_resid <= 0:
            return (float('nan'), float('nan'))

        t_crit = stats.t.ppf(1 - alpha / 2, self.df_resid)
        coef = float(self.coef[index])
        se = float(self.std_err[index])
        return (coef - t_crit * se, coef + t_crit * se)

    def to_dict(self, feature_names: Optional[List[str]] = None) -> Dict[str, Any]:
        """Convert results to dictionary for serialization."""
        table = self.summary(feature_names)
        return {
            'num_rows': int(self.num_rows),
            'rank': int(self.rank),
            'df_resid': int(self.df_resid),
            'r2': float(self.r2),
            'adj_r2': float(self.adj_r2),
            'sse': float(self.sse),
            'sst': float(self.sst),
            'condition_no': float(self.condition_no),
            'coefficients': {
                str(name): {
                    'estimate': float(row['coefficient']),
                    'std_error': float(row['std_error']),
                    't_statistic': float(row['t_statistic']),
                    'p_value': float(row['p_value'])
                }
                for name, row in table.iterrows()
            }
        }

    def __repr__(self) -> str:
        return (f"LinearRegressionResult(num_rows={self.num_rows:,}, "
                f"n_features={len(self.coef)}, "
                f"r2={self.r2:.4f}, "
                f"condition_no={self.condition_no:.3g})")


@dataclass(frozen=True)
class RobustLinearRegressionResult:
    """Huber-White (sandwich) inference for a fixed coefficient vector."""
    coef: np.ndarray
    std_err: np.ndarray
    t_stats: np.ndarray
    p_values: np.ndarray
    covariance: np.ndarray
    num_rows: int
    df_resid: int
    se_type: str

    def summary(self, feature_names: Optional[List[str]] = None) -> pd.DataFrame:
        return _coefficient_table(self.coef, self.std_err, self.t_stats,
                                  self.p_values, feature_names)

    def __repr__(self) -> str:
        return (f"RobustLinearRegressionResult(se_type={self.se_type}, "
                f"num_rows={self.num_rows:,}, n_features={len(self.coef)})")


@dataclass(frozen=True)
class HeteroLinearRegressionResult:
    """Breusch-Pagan style test of constant residual variance."""
    test_statistic: float
    p_value: float
    df: int
    num_rows: int
    r2: float

    def reject(self, alpha: float = 0.05) -> bool:
        """Whether homoskedasticity is rejected at level ``alpha``."""
        return bool(np.isfinite(self.p_value) and self.p_value < alpha)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'test_statistic': float(self.test_statistic),
            'p_value': float(self.p_value),
            'df': int(self.df),
            'num_rows': int(self.num_rows),
            'r2': float(self.r2)
        }

    def __repr__(self) -> str:
        return (f"HeteroLinearRegressionResult(test_statistic={self.test_statistic:.4f}, "
                f"p_value={self.p_value:.4g}, df={self.df})")
