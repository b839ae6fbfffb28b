import numpy as np
import pytest

from mergereg.accumulators import (
    DimensionMismatchError,
    LinearRegressionAccumulator,
    HeteroLinearRegressionAccumulator,
    RobustLinearRegressionAccumulator,
)


def _snapshot(acc):
    return {name: (value.copy() if isinstance(value, np.ndarray) else value)
            for name, value in vars(acc).items()}


def _assert_unchanged(acc, snapshot):
    for name, value in snapshot.items():
        if isinstance(value, np.ndarray):
            np.testing.assert_array_equal(getattr(acc, name), value)
        else:
            assert getattr(acc, name) == value


def _assert_same_stats(a, b, rtol=1e-10):
    assert a.num_rows == b.num_rows
    assert a.width_of_x == b.width_of_x
    assert np.isclose(a.y_sum, b.y_sum, rtol=rtol)
    assert np.isclose(a.y_square_sum, b.y_square_sum, rtol=rtol)
    np.testing.assert_allclose(a.X_transp_Y, b.X_transp_Y, rtol=rtol, atol=1e-9)
    np.testing.assert_allclose(a.X_transp_X, b.X_transp_X, rtol=rtol, atol=1e-9)


def _fold(X, y):
    acc = LinearRegressionAccumulator()
    for xi, yi in zip(X, y):
        acc.add(xi, yi)
    return acc


class TestIngestion:
    """Tests for folding observations into an accumulator."""

    def test_initialization(self):
        acc = LinearRegressionAccumulator()

        assert acc.num_rows == 0
        assert acc.width_of_x is None
        assert not acc.is_initialized
        assert acc.y_sum == 0.0

    def test_single_observation(self):
        acc = LinearRegressionAccumulator()
        acc.add([1.0, 2.0], 3.0)

        assert acc.num_rows == 1
        assert acc.width_of_x == 2
        assert acc.y_sum == 3.0
        assert acc.y_square_sum == 9.0
        np.testing.assert_array_equal(acc.X_transp_Y, [3.0, 6.0])
        np.testing.assert_array_equal(acc.X_transp_X, [[1.0, 2.0], [2.0, 4.0]])

    def test_sufficient_statistics(self, regression_arrays):
        X, y = regression_arrays
        acc = _fold(X, y)

        assert acc.num_rows == len(y)
        assert np.isclose(acc.y_sum, y.sum())
        assert np.isclose(acc.y_square_sum, (y ** 2).sum())
        np.testing.assert_allclose(acc.X_transp_Y, X.T @ y)
        np.testing.assert_allclose(acc.X_transp_X, X.T @ X)
        np.testing.assert_allclose(acc.X_transp_X, acc.X_transp_X.T)

    def test_batch_vs_sequential(self, regression_arrays):
        """Block ingestion gives the same statistics as row-by-row ingestion."""
        X, y = regression_arrays

        batch = LinearRegressionAccumulator().add_rows(X, y)
        sequential = _fold(X, y)

        _assert_same_stats(batch, sequential)

    def test_order_independence(self, regression_arrays):
        X, y = regression_arrays
        perm = np.random.default_rng(0).permutation(len(y))

        _assert_same_stats(_fold(X, y), _fold(X[perm], y[perm]))

    def test_empty_block_is_noop(self):
        acc = LinearRegressionAccumulator().add_rows(np.zeros((0, 3)), np.zeros(0))

        assert acc.num_rows == 0
        assert not acc.is_initialized


class TestDimensionMismatch:
    """Rejected input must leave the accumulator untouched."""

    @pytest.fixture
    def acc(self):
        acc = LinearRegressionAccumulator()
        acc.add([1.0, 2.0], 1.0)
        acc.add([1.0, 3.0], 2.0)
        return acc

    def test_wrong_width(self, acc):
        snapshot = _snapshot(acc)

        with pytest.raises(DimensionMismatchError):
            acc.add([1.0, 2.0, 3.0], 1.0)

        _assert_unchanged(acc, snapshot)

    def test_non_finite_feature(self, acc):
        snapshot = _snapshot(acc)

        with pytest.raises(DimensionMismatchError):
            acc.add([1.0, np.nan], 1.0)

        _assert_unchanged(acc, snapshot)

    def test_non_finite_response(self, acc):
        snapshot = _snapshot(acc)

        with pytest.raises(DimensionMismatchError):
            acc.add([1.0, 2.0], np.inf)

        _assert_unchanged(acc, snapshot)

    def test_bad_row_in_block(self, acc):
        snapshot = _snapshot(acc)
        X = np.array([[1.0, 4.0], [1.0, np.inf], [1.0, 5.0]])

        with pytest.raises(DimensionMismatchError):
            acc.add_rows(X, [1.0, 2.0, 3.0])

        _assert_unchanged(acc, snapshot)

    def test_response_length_mismatch(self, acc):
        with pytest.raises(DimensionMismatchError):
            acc.add_rows(np.ones((3, 2)), [1.0, 2.0])

    def test_matrix_passed_as_row(self):
        acc = LinearRegressionAccumulator()

        with pytest.raises(DimensionMismatchError):
            acc.add(np.ones((2, 2)), 1.0)

        assert not acc.is_initialized

    def test_is_value_error(self, acc):
        with pytest.raises(ValueError):
            acc.add([1.0], 1.0)


class TestMerge:
    """Tests for combining partial accumulators."""

    def test_identity_right(self, regression_arrays):
        X, y = regression_arrays
        acc = LinearRegressionAccumulator().add_rows(X, y)
        snapshot = _snapshot(acc)

        acc.merge(LinearRegressionAccumulator())

        _assert_unchanged(acc, snapshot)

    def test_identity_left(self, regression_arrays):
        X, y = regression_arrays
        acc = LinearRegressionAccumulator().add_rows(X, y)

        merged = LinearRegressionAccumulator().merge(acc)

        _assert_same_stats(merged, acc, rtol=0)

    def test_adopted_state_is_a_copy(self, regression_arrays):
        X, y = regression_arrays
        source = LinearRegressionAccumulator().add_rows(X[:10], y[:10])
        target = LinearRegressionAccumulator().merge(source)
        before = target.X_transp_X.copy()

        source.add_rows(X[10:20], y[10:20])

        np.testing.assert_array_equal(target.X_transp_X, before)

    def test_width_mismatch(self):
        a = LinearRegressionAccumulator().add([1.0, 2.0], 1.0)
        b = LinearRegressionAccumulator().add([1.0, 2.0, 3.0], 1.0)
        snapshot = _snapshot(a)

        with pytest.raises(DimensionMismatchError):
            a.merge(b)

        _assert_unchanged(a, snapshot)

    def test_different_kinds(self):
        a = LinearRegressionAccumulator().add([1.0, 2.0], 1.0)
        b = HeteroLinearRegressionAccumulator().add([1.0, 2.0], 1.0)

        with pytest.raises(TypeError):
            a.merge(b)
        with pytest.raises(TypeError):
            a + b

    def test_add_operator_leaves_inputs(self, regression_arrays):
        X, y = regression_arrays
        a = LinearRegressionAccumulator().add_rows(X[:100], y[:100])
        b = LinearRegressionAccumulator().add_rows(X[100:], y[100:])
        snap_a, snap_b = _snapshot(a), _snapshot(b)

        merged = a + b

        _assert_unchanged(a, snap_a)
        _assert_unchanged(b, snap_b)
        _assert_same_stats(merged, LinearRegressionAccumulator().add_rows(X, y))

    def test_partition_and_tree_shape_independence(self, regression_arrays):
        """Any partition merged in any order or tree shape matches single-pass accumulation."""
        X, y = regression_arrays
        reference = _fold(X, y)
        rng = np.random.default_rng(123)

        for k in (2, 3, 7, 16):
            cuts = np.sort(rng.choice(np.arange(1, len(y)), size=k - 1, replace=False))
            parts = [LinearRegressionAccumulator().add_rows(Xp, yp)
                     for Xp, yp in zip(np.split(X, cuts), np.split(y, cuts))]
            parts.append(LinearRegressionAccumulator())

            # Left fold
            left = LinearRegressionAccumulator()
            for part in parts:
                left.merge(part)
            _assert_same_stats(left, reference)

            # Right fold in shuffled order
            order = rng.permutation(len(parts))
            right = LinearRegressionAccumulator()
            for i in order[::-1]:
                right = parts[i].copy().merge(right)
            _assert_same_stats(right, reference)

            # Balanced pairwise tree
            level = [p.copy() for p in parts]
            while len(level) > 1:
                level = [level[i] + level[i + 1] if i + 1 < len(level) else level[i]
                         for i in range(0, len(level), 2)]
            _assert_same_stats(level[0], reference)

    def test_commutativity(self, regression_arrays):
        X, y = regression_arrays
        a = LinearRegressionAccumulator().add_rows(X[:120], y[:120])
        b = LinearRegressionAccumulator().add_rows(X[120:], y[120:])

        _assert_same_stats(a + b, b + a)


class TestHeteroAccumulator:
    """The hetero accumulator follows the same contract over (x, a)."""

    def test_sufficient_statistics(self, regression_arrays):
        X, _ = regression_arrays
        a = np.abs(np.sin(np.arange(len(X))))

        acc = HeteroLinearRegressionAccumulator()
        for xi, ai in zip(X, a):
            acc.add(xi, ai)

        assert acc.num_rows == len(a)
        assert np.isclose(acc.a_sum, a.sum())
        assert np.isclose(acc.a_square_sum, (a ** 2).sum())
        np.testing.assert_allclose(acc.X_transp_A, X.T @ a)
        np.testing.assert_allclose(acc.X_transp_X, X.T @ X)

    def test_merge_matches_single_pass(self, regression_arrays):
        X, _ = regression_arrays
        a = np.cos(np.arange(len(X))) ** 2

        whole = HeteroLinearRegressionAccumulator().add_rows(X, a)
        parts = HeteroLinearRegressionAccumulator().add_rows(X[:50], a[:50])
        parts.merge(HeteroLinearRegressionAccumulator().add_rows(X[50:], a[50:]))
        parts.merge(HeteroLinearRegressionAccumulator())

        assert parts.num_rows == whole.num_rows
        assert np.isclose(parts.a_sum, whole.a_sum)
        np.testing.assert_allclose(parts.X_transp_A, whole.X_transp_A)
        np.testing.assert_allclose(parts.X_transp_X, whole.X_transp_X)

    def test_width_mismatch(self):
        acc = HeteroLinearRegressionAccumulator().add([1.0, 2.0], 0.5)
        snapshot = _snapshot(acc)

        with pytest.raises(DimensionMismatchError):
            acc.add([1.0], 0.5)

        _assert_unchanged(acc, snapshot)


class TestRobustAccumulator:
    """Tests for the Huber-White meat accumulator."""

    def test_meat(self, regression_arrays):
        X, y = regression_arrays
        coef = np.linalg.lstsq(X, y, rcond=None)[0]

        acc = RobustLinearRegressionAccumulator(coef).add_rows(X, y)

        e = y - X @ coef
        np.testing.assert_allclose(acc.meat, (X * e[:, None] ** 2).T @ X)
        np.testing.assert_allclose(acc.X_transp_X, X.T @ X)

    def test_coef_width_enforced(self):
        acc = RobustLinearRegressionAccumulator(np.array([1.0, 2.0]))

        with pytest.raises(DimensionMismatchError):
            acc.add([1.0, 2.0, 3.0], 1.0)

        assert not acc.is_initialized

    def test_merge_requires_same_coef(self):
        a = RobustLinearRegressionAccumulator([1.0, 2.0]).add([1.0, 0.5], 2.0)
        b = RobustLinearRegressionAccumulator([1.0, 2.5]).add([1.0, 0.5], 2.0)

        with pytest.raises(DimensionMismatchError):
            a.merge(b)
