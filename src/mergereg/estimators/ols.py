import numpy as np
from scipy import stats
from typing import Literal, NamedTuple
import logging

from mergereg.accumulators import LinearRegressionAccumulator, RobustLinearRegressionAccumulator
from mergereg.linalg import (
    LinAlgHelper,
    SymmetricDecomposition,
    CONDITION_NUMBER_THRESHOLD,
    EXACT_FIT_TOLERANCE,
)
from mergereg.results import LinearRegressionResult, RobustLinearRegressionResult

logger = logging.getLogger(__name__)


class NormalEquationsFit(NamedTuple):
    coef: np.ndarray
    decomposition: SymmetricDecomposition
    sse: float
    sst: float


def solve_normal_equations(XtX: np.ndarray, Xtv: np.ndarray, v_sum: float,
                           v_square_sum: float, num_rows: int) -> NormalEquationsFit:
    """
    Solve ``XtX @ coef = Xtv`` through the pseudo-inverse and derive sums of squares.

    ``sse`` is clamped at zero since cancellation can push an exact fit
    slightly negative. ``sst`` is NaN when there are no rows.
    """
    coef, decomposition = LinAlgHelper.pinv_solve(XtX, Xtv)

    if num_rows > 0:
        sst = v_square_sum - v_sum ** 2 / num_rows
    else:
        sst = float('nan')
    sse = max(0.0, float(v_square_sum - coef @ Xtv))

    return NormalEquationsFit(coef=coef, decomposition=decomposition, sse=sse, sst=float(sst))


def r_squared(sse: float, sst: float, scale: float) -> float:
    """
    Calculate R-squared as ``1 - SSE/SST``.

    A constant response (SST within rounding of zero relative to ``scale``)
    yields 1.0 when the fit is also exact and 0.0 otherwise. SSE carries the
    rounding of the solve, so exactness is judged on the looser
    ``EXACT_FIT_TOLERANCE``.
    """
    if not np.isfinite(sst):
        return float('nan')
    if LinAlgHelper.is_zero(sst, scale):
        return 1.0 if LinAlgHelper.is_zero(sse, scale, EXACT_FIT_TOLERANCE) else 0.0
    return 1.0 - sse / sst


def _frozen(arr: np.ndarray) -> np.ndarray:
    arr = np.array(arr, dtype=float, copy=True)
    arr.setflags(write=False)
    return arr


def _t_inference(coef: np.ndarray, covariance: np.ndarray, df_resid: int):
    """Standard errors, t statistics and two-sided p-values from a covariance matrix."""
    diag_values = np.diag(covariance)
    if np.any(diag_values < 0):
        n_negative = (diag_values < 0).sum()
        logger.error(f"Negative variances detected: {n_negative}/{len(diag_values)}")

    std_err = np.sqrt(np.maximum(diag_values, 0.0))

    with np.errstate(divide='ignore', invalid='ignore'):
        t_stats = coef / std_err

    if df_resid > 0:
        p_values = 2 * (1 - stats.t.cdf(np.abs(t_stats), df_resid))
    else:
        p_values = np.full_like(coef, np.nan)

    return std_err, t_stats, p_values


class LinearRegression:
    """
    Finalizer turning a merged LinearRegressionAccumulator into an OLS result.

    Usage:
    ------
    >>> result = LinearRegression.compute(acc)
    >>> result.coef, result.std_err, result.condition_no
    """

    @classmethod
    def compute(cls, state: LinearRegressionAccumulator) -> LinearRegressionResult:
        """Solve the normal equations and derive fit diagnostics and inference."""
        if not state.is_initialized:
            logger.warning("Finalizing an empty accumulator")
            return cls._empty_result(state.num_rows)

        n = state.num_rows
        p = state.width_of_x

        fit = solve_normal_equations(state.X_transp_X, state.X_transp_Y,
                                     state.y_sum, state.y_square_sum, n)
        decomposition = fit.decomposition
        rank = decomposition.rank

        cls._log_conditioning(n, p, rank, decomposition.condition_no)

        r2 = r_squared(fit.sse, fit.sst, state.y_square_sum)

        df_resid = n - rank
        if df_resid > 0:
            sigma2 = fit.sse / df_resid
            adj_r2 = 1.0 - (1.0 - r2) * (n - 1) / df_resid
        else:
            sigma2 = float('nan')
            adj_r2 = float('nan')

        covariance = sigma2 * decomposition.pinv
        std_err, t_stats, p_values = _t_inference(fit.coef, covariance, df_resid)

        return LinearRegressionResult(
            coef=_frozen(fit.coef),
            r2=float(r2),
            std_err=_frozen(std_err),
            t_stats=_frozen(t_stats),
            p_values=_frozen(p_values),
            condition_no=float(decomposition.condition_no),
            num_rows=int(n),
            rank=int(rank),
            df_resid=int(df_resid),
            sse=float(fit.sse),
            sst=float(fit.sst),
            adj_r2=float(adj_r2),
            covariance=_frozen(covariance)
        )

    @staticmethod
    def _log_conditioning(n: int, p: int, rank: int, condition_no: float) -> None:
        if n < p:
            logger.warning(f"Fewer rows than features ({n:,} < {p}), estimates are not identified")
        elif rank < p:
            logger.warning(f"X'X is rank deficient (rank {rank} of {p}), using pseudo-inverse")
        if not LinAlgHelper.check_condition_number(condition_no, CONDITION_NUMBER_THRESHOLD):
            logger.warning(f"X'X ill-conditioned (cond={condition_no:.2e})")

    @staticmethod
    def _empty_result(num_rows: int) -> LinearRegressionResult:
        empty = _frozen(np.zeros(0))
        nan = float('nan')
        return LinearRegressionResult(
            coef=empty, r2=nan, std_err=empty, t_stats=empty, p_values=empty,
            condition_no=nan, num_rows=int(num_rows), rank=0, df_resid=int(num_rows),
            sse=nan, sst=nan, adj_r2=nan, covariance=_frozen(np.zeros((0, 0)))
        )


class RobustLinearRegression:
    """Finalizer for Huber-White heteroskedasticity-consistent standard errors."""

    @classmethod
    def compute(cls, state: RobustLinearRegressionAccumulator,
                se_type: Literal['HC0', 'HC1'] = 'HC1') -> RobustLinearRegressionResult:
        """
        Compute the sandwich covariance ``bread @ meat @ bread``.

        Parameters:
        -----------
        state : RobustLinearRegressionAccumulator
            Merged accumulator built against the OLS coefficients
        se_type : str
            'HC0' for White's estimator with no correction,
            'HC1' for the degrees-of-freedom correction n/(n-k)
        """
        if se_type not in ('HC0', 'HC1'):
            raise ValueError(f"se_type must be 'HC0' or 'HC1', got '{se_type}'")

        coef = state.coef
        n = state.num_rows

        if not state.is_initialized:
            logger.warning("Finalizing an empty robust accumulator")
            nan_vec = np.full_like(coef, np.nan)
            return RobustLinearRegressionResult(
                coef=_frozen(coef), std_err=_frozen(nan_vec), t_stats=_frozen(nan_vec),
                p_values=_frozen(nan_vec),
                covariance=_frozen(np.full((len(coef), len(coef)), np.nan)),
                num_rows=int(n), df_resid=int(n), se_type=se_type
            )

        decomposition = LinAlgHelper.decompose(state.X_transp_X)
        bread = decomposition.pinv
        df_resid = n - decomposition.rank

        if se_type == 'HC1':
            correction = n / df_resid if df_resid > 0 else float('nan')
        else:
            correction = 1.0

        V = correction * (bread @ state.meat @ bread)
        V = 0.5 * (V + V.T)

        std_err, t_stats, p_values = _t_inference(coef, V, df_resid)

        return RobustLinearRegressionResult(
            coef=_frozen(coef),
            std_err=_frozen(std_err),
            t_stats=_frozen(t_stats),
            p_values=_frozen(p_values),
            covariance=_frozen(V),
            num_rows=int(n),
            df_resid=int(df_resid),
            se_type=se_type
        )
