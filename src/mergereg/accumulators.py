"""
Mergeable sufficient-statistics accumulators.

Every accumulator follows the same pattern: a row count, a feature width that
is fixed by the first ingestion or merge, running sums of a per-row scalar and
its square, the cross-product of the features with that scalar, and the sum
of feature outer products. Partial accumulators built on disjoint partitions
can be merged in any order or tree shape; the empty accumulator is the
identity of the merge.
"""
import numpy as np
from dataclasses import dataclass, field
from typing import ClassVar, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class DimensionMismatchError(ValueError):
    """Input width differs from the established width, or input is not finite."""


def _empty_vector() -> np.ndarray:
    return np.zeros(0)


def _empty_matrix() -> np.ndarray:
    return np.zeros((0, 0))


def _check_block(width_of_x: Optional[int], X, *columns) -> Tuple[np.ndarray, ...]:
    """Validate a block of rows and its per-row scalar columns without side effects."""
    X = np.asarray(X, dtype=float)
    if X.ndim != 2:
        raise DimensionMismatchError(f"Expected a 2-D feature block, got {X.ndim}-D")

    n_rows, width = X.shape
    if width_of_x is not None and width != width_of_x:
        raise DimensionMismatchError(
            f"Feature width {width} does not match established width {width_of_x}"
        )

    checked = [X]
    for col in columns:
        col = np.asarray(col, dtype=float).reshape(-1)
        if len(col) != n_rows:
            raise DimensionMismatchError(
                f"Got {len(col)} response values for {n_rows} rows"
            )
        checked.append(col)

    if not all(np.isfinite(arr).all() for arr in checked):
        raise DimensionMismatchError("Non-finite value in observation")

    return tuple(checked)


def _check_row(width_of_x: Optional[int], x, value) -> Tuple[np.ndarray, np.ndarray]:
    """Validate one observation and lift it to a single-row block."""
    x = np.asarray(x, dtype=float)
    if x.ndim != 1:
        raise DimensionMismatchError(f"Expected a 1-D feature vector, got {x.ndim}-D")
    if np.ndim(value) != 0:
        raise DimensionMismatchError("Expected a scalar per-row value")
    return _check_block(width_of_x, x[np.newaxis, :], [value])


def _establish_width(acc, width: int, vector_name: str) -> None:
    acc.width_of_x = width
    setattr(acc, vector_name, np.zeros(width))
    acc.X_transp_X = np.zeros((width, width))


def _fold_block(acc, X: np.ndarray, v: np.ndarray,
                sum_name: str, square_name: str, vector_name: str) -> None:
    """Add the sums of ``X`` and per-row scalar ``v`` to ``acc`` (inputs already validated)."""
    if acc.width_of_x is None:
        _establish_width(acc, X.shape[1], vector_name)

    acc.num_rows += X.shape[0]
    setattr(acc, sum_name, getattr(acc, sum_name) + float(v.sum()))
    setattr(acc, square_name, getattr(acc, square_name) + float(v @ v))
    getattr(acc, vector_name)[:] += X.T @ v
    acc.X_transp_X += X.T @ X


def _merge_fields(target, source, scalar_names: Tuple[str, ...],
                  array_names: Tuple[str, ...]) -> None:
    """Fieldwise sum of ``source`` into ``target``, honouring the identity element."""
    if type(source) is not type(target):
        raise TypeError(
            f"Cannot merge {type(source).__name__} into {type(target).__name__}"
        )
    if source.width_of_x is None:
        return
    if target.width_of_x is None:
        target.width_of_x = source.width_of_x
        target.num_rows = source.num_rows
        for name in scalar_names:
            setattr(target, name, getattr(source, name))
        for name in array_names:
            setattr(target, name, np.array(getattr(source, name), dtype=float, copy=True))
        return
    if source.width_of_x != target.width_of_x:
        raise DimensionMismatchError(
            f"Cannot merge width {source.width_of_x} into width {target.width_of_x}"
        )

    target.num_rows += source.num_rows
    for name in scalar_names:
        setattr(target, name, getattr(target, name) + getattr(source, name))
    for name in array_names:
        getattr(target, name)[...] += getattr(source, name)


class _MergeableMixin:
    """Copy and ``+`` support shared by the accumulator records."""

    @property
    def is_initialized(self) -> bool:
        return self.width_of_x is not None

    def copy(self):
        new = type(self).__new__(type(self))
        for name in self.__dataclass_fields__:
            value = getattr(self, name)
            setattr(new, name, value.copy() if isinstance(value, np.ndarray) else value)
        return new

    def __add__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.copy().merge(other)


@dataclass(eq=False)
class LinearRegressionAccumulator(_MergeableMixin):
    """
    Sufficient statistics of an OLS fit.

    Usage:
    ------
    >>> acc = LinearRegressionAccumulator()
    >>> acc.add([1.0, 2.0], 3.0)
    >>> acc.merge(other_partition)
    """
    num_rows: int = 0
    width_of_x: Optional[int] = None
    y_sum: float = 0.0
    y_square_sum: float = 0.0
    X_transp_Y: np.ndarray = field(default_factory=_empty_vector)
    X_transp_X: np.ndarray = field(default_factory=_empty_matrix)

    SCALAR_FIELDS: ClassVar[Tuple[str, ...]] = ('y_sum', 'y_square_sum')
    ARRAY_FIELDS: ClassVar[Tuple[str, ...]] = ('X_transp_Y', 'X_transp_X')

    def add(self, x, y: float) -> 'LinearRegressionAccumulator':
        """Fold one observation in (rank-1 update)."""
        X, y = _check_row(self.width_of_x, x, y)
        _fold_block(self, X, y, 'y_sum', 'y_square_sum', 'X_transp_Y')
        return self

    def add_rows(self, X, y) -> 'LinearRegressionAccumulator':
        """Fold a block of observations in; the whole block is validated first."""
        X, y = _check_block(self.width_of_x, X, y)
        if X.shape[0] == 0:
            return self
        _fold_block(self, X, y, 'y_sum', 'y_square_sum', 'X_transp_Y')
        return self

    def merge(self, other: 'LinearRegressionAccumulator') -> 'LinearRegressionAccumulator':
        """Merge another partial accumulator into this one."""
        _merge_fields(self, other, self.SCALAR_FIELDS, self.ARRAY_FIELDS)
        return self


@dataclass(eq=False)
class HeteroLinearRegressionAccumulator(_MergeableMixin):
    """
    Sufficient statistics of the auxiliary regression of a per-row term ``a`` on X.

    ``a`` is computed by the caller from a previous OLS fit (typically a
    function of the residuals).
    """
    num_rows: int = 0
    width_of_x: Optional[int] = None
    a_sum: float = 0.0
    a_square_sum: float = 0.0
    X_transp_A: np.ndarray = field(default_factory=_empty_vector)
    X_transp_X: np.ndarray = field(default_factory=_empty_matrix)

    SCALAR_FIELDS: ClassVar[Tuple[str, ...]] = ('a_sum', 'a_square_sum')
    ARRAY_FIELDS: ClassVar[Tuple[str, ...]] = ('X_transp_A', 'X_transp_X')

    def add(self, x, a: float) -> 'HeteroLinearRegressionAccumulator':
        X, a = _check_row(self.width_of_x, x, a)
        _fold_block(self, X, a, 'a_sum', 'a_square_sum', 'X_transp_A')
        return self

    def add_rows(self, X, a) -> 'HeteroLinearRegressionAccumulator':
        X, a = _check_block(self.width_of_x, X, a)
        if X.shape[0] == 0:
            return self
        _fold_block(self, X, a, 'a_sum', 'a_square_sum', 'X_transp_A')
        return self

    def merge(self, other: 'HeteroLinearRegressionAccumulator') -> 'HeteroLinearRegressionAccumulator':
        _merge_fields(self, other, self.SCALAR_FIELDS, self.ARRAY_FIELDS)
        return self


@dataclass(eq=False)
class RobustLinearRegressionAccumulator(_MergeableMixin):
    """
    Bread and meat of the Huber-White sandwich for a fixed coefficient vector.

    ``coef`` comes from a finished OLS fit over the same data; partials can
    only be merged when they were built against identical coefficients.
    """
    coef: np.ndarray = field(default_factory=_empty_vector)
    num_rows: int = 0
    width_of_x: Optional[int] = None
    X_transp_X: np.ndarray = field(default_factory=_empty_matrix)
    meat: np.ndarray = field(default_factory=_empty_matrix)

    SCALAR_FIELDS: ClassVar[Tuple[str, ...]] = ()
    ARRAY_FIELDS: ClassVar[Tuple[str, ...]] = ('X_transp_X', 'meat')

    def __post_init__(self):
        self.coef = np.array(self.coef, dtype=float, copy=True).reshape(-1)

    def add(self, x, y: float) -> 'RobustLinearRegressionAccumulator':
        X, y = _check_row(self._coef_width(), x, y)
        self._fold(X, y)
        return self

    def add_rows(self, X, y) -> 'RobustLinearRegressionAccumulator':
        X, y = _check_block(self._coef_width(), X, y)
        if X.shape[0] == 0:
            return self
        self._fold(X, y)
        return self

    def merge(self, other: 'RobustLinearRegressionAccumulator') -> 'RobustLinearRegressionAccumulator':
        if type(other) is type(self) and not np.array_equal(self.coef, other.coef):
            raise DimensionMismatchError(
                "Cannot merge robust accumulators built against different coefficients"
            )
        _merge_fields(self, other, self.SCALAR_FIELDS, self.ARRAY_FIELDS)
        return self

    def _coef_width(self) -> int:
        return len(self.coef)

    def _fold(self, X: np.ndarray, y: np.ndarray) -> None:
        if self.width_of_x is None:
            self.width_of_x = X.shape[1]
            self.X_transp_X = np.zeros((self.width_of_x, self.width_of_x))
            self.meat = np.zeros((self.width_of_x, self.width_of_x))

        errors = y - X @ self.coef
        Xe = X * errors[:, np.newaxis]
        self.num_rows += X.shape[0]
        self.X_transp_X += X.T @ X
        self.meat += Xe.T @ Xe
