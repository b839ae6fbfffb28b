"""
Pytest configuration and fixtures for mergereg tests.
"""
import pytest
import numpy as np
import pandas as pd
from pathlib import Path
import tempfile
import shutil


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    dirpath = tempfile.mkdtemp()
    yield Path(dirpath)
    shutil.rmtree(dirpath)


@pytest.fixture
def regression_arrays():
    """Design matrix with intercept and response: y = 1 + 2*x1 - x2 + 0.5*x3 + noise."""
    rng = np.random.default_rng(42)
    n = 300
    X = np.column_stack([np.ones(n), rng.normal(size=(n, 3))])
    y = X @ np.array([1.0, 2.0, -1.0, 0.5]) + 0.3 * rng.normal(size=n)
    return X, y


@pytest.fixture
def simple_data():
    """Generate simple regression data."""
    np.random.seed(42)
    n = 5000
    df = pd.DataFrame({
        'x1': np.random.randn(n),
        'x2': np.random.randn(n),
        'x3': np.random.randn(n)
    })
    df['y'] = 1.0 + 2.0 * df['x1'] + 3.0 * df['x2'] - 1.5 * df['x3'] + 0.5 * np.random.randn(n)
    return df


@pytest.fixture
def heteroskedastic_data():
    """Residual variance grows with x1."""
    rng = np.random.default_rng(7)
    n = 2000
    x1 = rng.uniform(1.0, 10.0, size=n)
    x2 = rng.normal(size=n)
    y = 0.5 + 1.5 * x1 - 2.0 * x2 + x1 * rng.normal(size=n)
    return pd.DataFrame({'x1': x1, 'x2': x2, 'y': y})
