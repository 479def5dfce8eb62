from collections.abc import Sequence
from typing import Any

import pandas as pd
import pyarrow as pa

__all__ = [
    'pandas_numpy_data_loader',
    'pandas_pyarrow_data_loader',
]


def pandas_numpy_data_loader(rows: Sequence[dict[str, Any]], columns: Sequence[str]) -> pd.DataFrame:
    """Standard pandas DataFrame loader using NumPy.

    Always returns a DataFrame, never None, with columns preserved for empty results.
    """
    if not rows:
        return pd.DataFrame(columns=list(columns))
    return pd.DataFrame.from_records(list(rows), columns=list(columns))


def pandas_pyarrow_data_loader(rows: Sequence[dict[str, Any]], columns: Sequence[str]) -> pd.DataFrame:
    """PyArrow-based pandas DataFrame loader.

    Always returns a DataFrame, never None, with columns preserved for empty results.
    """
    if not rows:
        return pd.DataFrame(columns=list(columns))

    columns_data = [[row[col] for row in rows] for col in columns]
    return pa.table(columns_data, names=list(columns)).to_pandas(types_mapper=pd.ArrowDtype)
