import numpy as np
from scipy import stats
import logging

from mergereg.accumulators import HeteroLinearRegressionAccumulator
from mergereg.estimators.ols import solve_normal_equations
from mergereg.linalg import LinAlgHelper
from mergereg.results import HeteroLinearRegressionResult

logger = logging.getLogger(__name__)


class HeteroLinearRegression:
    """
    Test for heteroskedasticity from the auxiliary regression of ``a`` on X.

    The statistic is ``num_rows * R²`` of the auxiliary regression,
    asymptotically chi-square with ``width_of_x - 1`` degrees of freedom
    under constant residual variance. X is expected to include an intercept
    column, as in the first-phase fit.
    """

    @classmethod
    def compute(cls, state: HeteroLinearRegressionAccumulator) -> HeteroLinearRegressionResult:
        nan = float('nan')
        if not state.is_initialized:
            logger.warning("Finalizing an empty hetero accumulator")
            return HeteroLinearRegressionResult(
                test_statistic=nan, p_value=nan, df=0, num_rows=int(state.num_rows), r2=nan
            )

        n = state.num_rows
        df = state.width_of_x - 1

        fit = solve_normal_equations(state.X_transp_X, state.X_transp_A,
                                     state.a_sum, state.a_square_sum, n)

        if fit.decomposition.rank < state.width_of_x:
            logger.warning(
                f"Auxiliary regression is rank deficient "
                f"(rank {fit.decomposition.rank} of {state.width_of_x})"
            )

        # Constant auxiliary term carries no evidence against homoskedasticity
        if LinAlgHelper.is_zero(fit.sst, state.a_square_sum):
            r2 = 0.0
        else:
            r2 = 1.0 - fit.sse / fit.sst

        test_statistic = n * r2

        if df > 0:
            p_value = float(1 - stats.chi2.cdf(test_statistic, df))
        else:
            logger.warning("Hetero test needs at least one regressor besides the intercept")
            p_value = nan

        logger.debug(f"Hetero test: statistic={test_statistic:.4f}, df={df}, p={p_value:.4g}")

        return HeteroLinearRegressionResult(
            test_statistic=float(test_statistic),
            p_value=p_value,
            df=int(df),
            num_rows=int(n),
            r2=float(r2)
        )
