import numpy as np
import pandas as pd
import dask.dataframe as dd
from pathlib import Path
from typing import Union, List, Optional
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 100_000


@dataclass
class DatasetInfo:
    """Metadata about a dataset."""
    n_cols: int
    columns: List[str]
    numeric_columns: List[str]
    source_type: str  # 'dataframe', 'dask', 'parquet', 'partitioned'
    n_partitions: int
    source_path: Optional[Path] = None


class StreamData:
    """
    Unified data interface handing partitions to the accumulators.

    Supports:
    - Pandas DataFrame (split into Dask partitions of ``chunk_size`` rows)
    - Dask DataFrame (used as is)
    - Single or partitioned parquet dataset (read with the PyArrow engine)
    """

    def __init__(
        self,
        data: Union[str, Path, pd.DataFrame, dd.DataFrame],
        chunk_size: int = DEFAULT_CHUNK_SIZE
    ):
        """
        Initialize data source.

        Parameters:
        -----------
        data : str, Path, DataFrame, or dask DataFrame
            Data source to load
        chunk_size : int
            Rows per Dask partition when splitting a pandas DataFrame
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.chunk_size = chunk_size
        self._dask_df = None

        self._setup_data_source(data)

    @property
    def dask_df(self) -> dd.DataFrame:
        return self._dask_df

    def _setup_data_source(self, data: Union[str, Path, pd.DataFrame, dd.DataFrame]):
        """Setup data source and extract metadata."""
        if isinstance(data, pd.DataFrame):
            self._setup_dataframe(data)
        elif isinstance(data, dd.DataFrame):
            self._dask_df = data
            self.info = self._build_info('dask')
        else:
            path = Path(data)
            if not path.exists():
                raise FileNotFoundError(f"Data source not found: {path}")

            if path.is_dir() or path.suffix == '.parquet':
                self._setup_parquet(path)
            else:
                raise ValueError(f"Unsupported data source: {path}")

    def _setup_dataframe(self, df: pd.DataFrame):
        """Setup from DataFrame by converting to Dask DataFrame."""
        npartitions = max(1, int(np.ceil(len(df) / self.chunk_size)))
        self._dask_df = dd.from_pandas(df, npartitions=npartitions)
        self.info = self._build_info('dataframe')

        logger.debug(f"Loaded DataFrame as Dask: {len(df):,} rows, {self.info.n_partitions} partitions")

    def _setup_parquet(self, path: Path):
        """Setup from parquet file(s) as Dask DataFrame."""
        try:
            self._dask_df = dd.read_parquet(str(path), engine='pyarrow')
        except Exception as e:
            raise ValueError(f"Failed to load parquet from {path}: {e}") from e

        source_type = 'partitioned' if path.is_dir() else 'parquet'
        self.info = self._build_info(source_type, source_path=path)

        logger.info(f"Loaded parquet as Dask: {self.info.n_cols} columns, {self.info.n_partitions} partitions")

    def _build_info(self, source_type: str, source_path: Optional[Path] = None) -> DatasetInfo:
        columns = [str(col) for col in self._dask_df.columns]
        numeric_cols = [
            str(col) for col, dtype in self._dask_df.dtypes.items()
            if pd.api.types.is_numeric_dtype(dtype)
        ]
        return DatasetInfo(
            n_cols=len(columns),
            columns=columns,
            numeric_columns=numeric_cols,
            source_type=source_type,
            n_partitions=self._dask_df.npartitions,
            source_path=source_path
        )

    def validate_columns(self, required_cols: List[str]) -> None:
        """Validate that required columns exist."""
        missing = [col for col in required_cols if col not in self.info.columns]
        if missing:
            raise ValueError(f"Missing required columns: {missing}")

    def select(self, columns: List[str]) -> dd.DataFrame:
        """Project the Dask DataFrame onto ``columns``."""
        self.validate_columns(columns)
        return self._dask_df[columns]
