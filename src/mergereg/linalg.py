import numpy as np
from typing import NamedTuple, Tuple
import logging

logger = logging.getLogger(__name__)

# Constants
CONDITION_NUMBER_THRESHOLD = 1e12
EPS = np.finfo(float).eps
ZERO_TOLERANCE = 16 * EPS
# Relative cutoff for declaring an exact fit once SST has vanished
EXACT_FIT_TOLERANCE = np.sqrt(EPS)


class SymmetricDecomposition(NamedTuple):
    """Pseudo-inverse of a symmetric PSD matrix together with its spectrum."""
    pinv: np.ndarray
    singular_values: np.ndarray
    rank: int
    condition_no: float


class LinAlgHelper:
    """Helper class for rank-aware linear algebra on sufficient statistics."""

    @staticmethod
    def decompose(A: np.ndarray) -> SymmetricDecomposition:
        """
        Decompose a symmetric positive semi-definite matrix via SVD.

        Singular values at or below ``max(s) * p * eps`` count as zero, the
        cutoff ``numpy.linalg.matrix_rank`` uses. The pseudo-inverse is
        built from the retained singular triplets only, so rank-deficient input
        never raises.
        """
        A = np.asarray(A, dtype=float)
        p = A.shape[0]
        if p == 0:
            return SymmetricDecomposition(
                pinv=np.zeros((0, 0)),
                singular_values=np.zeros(0),
                rank=0,
                condition_no=float('nan')
            )

        U, s, Vt = np.linalg.svd(A, hermitian=True)

        tol = s.max() * p * EPS
        keep = s > tol
        rank = int(keep.sum())

        inv_s = np.zeros_like(s)
        inv_s[keep] = 1.0 / s[keep]
        pinv = (Vt.T * inv_s) @ U.T
        pinv = 0.5 * (pinv + pinv.T)

        return SymmetricDecomposition(
            pinv=pinv,
            singular_values=s,
            rank=rank,
            condition_no=LinAlgHelper.condition_number(s)
        )

    @staticmethod
    def condition_number(singular_values: np.ndarray) -> float:
        """Ratio of largest to smallest singular value (inf when singular)."""
        if singular_values.size == 0:
            return float('nan')
        s_max = float(singular_values.max())
        s_min = float(singular_values.min())
        if s_min <= 0.0:
            return float('inf') if s_max > 0.0 else float('nan')
        return s_max / s_min

    @staticmethod
    def pinv_solve(A: np.ndarray, b: np.ndarray) -> Tuple[np.ndarray, SymmetricDecomposition]:
        """Minimum-norm solution of ``A x = b`` for symmetric PSD ``A``."""
        decomposition = LinAlgHelper.decompose(A)
        return decomposition.pinv @ np.asarray(b, dtype=float), decomposition

    @staticmethod
    def check_condition_number(condition_no: float,
                               threshold: float = CONDITION_NUMBER_THRESHOLD) -> bool:
        """Check if a condition number indicates a well-conditioned system."""
        return bool(np.isfinite(condition_no) and condition_no < threshold)

    @staticmethod
    def is_zero(value: float, scale: float, tolerance: float = ZERO_TOLERANCE) -> bool:
        """Whether ``value`` vanishes (or is negative from rounding) relative to ``scale``."""
        return value <= tolerance * max(abs(scale), 1.0)
