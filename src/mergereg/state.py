"""
Transition-state boundary for moving accumulators between processes.

Two representations are supported:

- ``to_dict`` / ``from_dict``: a tagged dict of python scalars and numpy
  arrays, convenient for pickling through an execution engine.
- ``to_array`` / ``from_array``: a flat float64 vector laid out as
  ``[num_rows, width_of_x, *scalars, *vectors, *matrices (row-major)]``,
  suitable for database aggregates or message payloads. A width of 0
  encodes an uninitialized accumulator.
"""
import numpy as np
from typing import Dict, Any, Union
import logging

from mergereg.accumulators import (
    LinearRegressionAccumulator,
    HeteroLinearRegressionAccumulator,
    RobustLinearRegressionAccumulator,
)

logger = logging.getLogger(__name__)

Accumulator = Union[
    LinearRegressionAccumulator,
    HeteroLinearRegressionAccumulator,
    RobustLinearRegressionAccumulator,
]

# kind tag -> (class, scalar fields, vector fields, matrix fields)
_LAYOUTS = {
    'linregr': (LinearRegressionAccumulator,
                ('y_sum', 'y_square_sum'), ('X_transp_Y',), ('X_transp_X',)),
    'hetero': (HeteroLinearRegressionAccumulator,
               ('a_sum', 'a_square_sum'), ('X_transp_A',), ('X_transp_X',)),
    'robust': (RobustLinearRegressionAccumulator,
               (), ('coef',), ('X_transp_X', 'meat')),
}

_KIND_BY_CLASS = {layout[0]: kind for kind, layout in _LAYOUTS.items()}


def kind_of(acc: Accumulator) -> str:
    try:
        return _KIND_BY_CLASS[type(acc)]
    except KeyError:
        raise TypeError(f"Unsupported accumulator type: {type(acc).__name__}")


def _layout(kind: str):
    if kind not in _LAYOUTS:
        raise ValueError(f"Unknown accumulator kind '{kind}', expected one of {sorted(_LAYOUTS)}")
    return _LAYOUTS[kind]


def to_dict(acc: Accumulator) -> Dict[str, Any]:
    """Read-only snapshot of an accumulator's numeric fields."""
    kind = kind_of(acc)
    _, scalars, vectors, matrices = _layout(kind)

    payload = {
        'kind': kind,
        'num_rows': int(acc.num_rows),
        'width_of_x': acc.width_of_x,
    }
    for name in scalars:
        payload[name] = float(getattr(acc, name))
    for name in vectors + matrices:
        payload[name] = np.array(getattr(acc, name), dtype=float, copy=True)
    return payload


def from_dict(payload: Dict[str, Any]) -> Accumulator:
    """Rebuild an accumulator from ``to_dict`` output."""
    if 'kind' not in payload:
        raise ValueError("State payload is missing the 'kind' tag")
    cls, scalars, vectors, matrices = _layout(payload['kind'])

    missing = [name for name in ('num_rows', 'width_of_x') + scalars + vectors + matrices
               if name not in payload]
    if missing:
        raise ValueError(f"State payload is missing fields: {missing}")

    width = payload['width_of_x']
    width = None if width is None else int(width)

    kwargs = {'num_rows': int(payload['num_rows']), 'width_of_x': width}
    for name in scalars:
        kwargs[name] = float(payload[name])
    for name in vectors:
        kwargs[name] = np.array(payload[name], dtype=float, copy=True).reshape(-1)
    for name in matrices:
        kwargs[name] = np.array(payload[name], dtype=float, copy=True)

    acc = cls(**kwargs)
    _validate_shapes(acc, payload['kind'])
    return acc


def _validate_shapes(acc: Accumulator, kind: str) -> None:
    _, _, vectors, matrices = _layout(kind)
    p = acc.width_of_x
    if p is None:
        if acc.num_rows != 0:
            raise ValueError(f"Uninitialized state cannot hold {acc.num_rows} rows")
        return
    for name in vectors:
        if name == 'coef':
            continue
        if getattr(acc, name).shape != (p,):
            raise ValueError(f"Field '{name}' has shape {getattr(acc, name).shape}, expected ({p},)")
    for name in matrices:
        if getattr(acc, name).shape != (p, p):
            raise ValueError(f"Field '{name}' has shape {getattr(acc, name).shape}, expected ({p}, {p})")


def to_array(acc: Accumulator) -> np.ndarray:
    """Flatten an accumulator into a float64 transition-state vector."""
    kind = kind_of(acc)
    _, scalars, vectors, matrices = _layout(kind)

    parts = [np.array([acc.num_rows, acc.width_of_x or 0], dtype=float)]
    parts.append(np.array([getattr(acc, name) for name in scalars], dtype=float))
    if kind == 'robust':
        parts.append(np.array([len(acc.coef)], dtype=float))
    for name in vectors + matrices:
        parts.append(np.asarray(getattr(acc, name), dtype=float).reshape(-1))
    return np.concatenate(parts)


def from_array(arr, kind: str) -> Accumulator:
    """Rebuild an accumulator of the given kind from ``to_array`` output."""
    cls, scalars, vectors, matrices = _layout(kind)
    arr = np.asarray(arr, dtype=float).reshape(-1)

    header = 2 + len(scalars)
    if len(arr) < header:
        raise ValueError(f"Transition state too short: {len(arr)} values")

    num_rows = int(arr[0])
    width = int(arr[1])
    offset = header

    payload = {'kind': kind, 'num_rows': num_rows, 'width_of_x': width or None}
    for i, name in enumerate(scalars):
        payload[name] = float(arr[2 + i])

    if kind == 'robust':
        if len(arr) <= offset:
            raise ValueError("Transition state is missing the coefficient length")
        coef_len = int(arr[offset])
        offset += 1
        sizes = [(name, (coef_len,)) for name in vectors]
    else:
        sizes = [(name, (width,)) for name in vectors]
    sizes += [(name, (width, width)) for name in matrices]

    expected = offset + sum(int(np.prod(shape)) for _, shape in sizes)
    if len(arr) != expected:
        raise ValueError(
            f"Transition state of kind '{kind}' with width {width} "
            f"must have {expected} values, got {len(arr)}"
        )

    for name, shape in sizes:
        size = int(np.prod(shape))
        payload[name] = arr[offset:offset + size].reshape(shape)
        offset += size

    return from_dict(payload)
