################################################################################
##
##  tdingest
##
##  Licensed under the Apache License, Version 2.0 (the "License");
##  you may not use this file except in compliance with the License.
##  You may obtain a copy of the License at
##
##  http://www.apache.org/licenses/LICENSE-2.0
##
##  Unless required by applicable law or agreed to in writing, software
##  distributed under the License is distributed on an "AS IS" BASIS,
##  WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
##  See the License for the specific language governing permissions and
##  limitations under the License.
##
################################################################################

"""pandas conversions for payloads and query results."""

from typing import List, Optional

from .ingress import IngressError, IngressErrorCode, Measurement

_MISSING_DEPS_MSG = (
    'Missing dependencies: `pandas` and `numpy` must be installed. '
    'Install them with `pip install tdingest[dataframe]`.')


def _import_pandas():
    try:
        import numpy as np
        import pandas as pd
    except ImportError as ie:
        raise ImportError(_MISSING_DEPS_MSG) from ie
    return pd, np


def _bad_df(msg: str) -> IngressError:
    return IngressError(IngressErrorCode.BadDataFrame, msg)


def _to_py(np, value):
    if isinstance(value, np.generic):
        return value.item()
    return value


def _column(df, name):
    if name not in df.columns:
        raise _bad_df(f'Bad column {name!r}: Not found in the DataFrame.')
    return df[name]


def _timestamps_ms(pd, series) -> List[int]:
    if series.isna().any():
        raise _bad_df(
            f'Bad column {series.name!r}: Timestamps must not be null.')
    if pd.api.types.is_datetime64_any_dtype(series):
        if getattr(series.dt, 'tz', None) is not None:
            series = series.dt.tz_convert('UTC').dt.tz_localize(None)
        epoch = pd.Timestamp('1970-01-01')
        return ((series - epoch) // pd.Timedelta(milliseconds=1)).tolist()
    if pd.api.types.is_integer_dtype(series):
        return series.tolist()
    raise _bad_df(
        f'Bad column {series.name!r}: Expected an integer or datetime64 '
        f'dtype, not {series.dtype}.')


def measurements_from_dataframe(
        df,
        *,
        metric: Optional[str],
        metric_col: Optional[str],
        timestamp_col: str,
        value_col: str,
        tag_cols: List[str]) -> List[Measurement]:
    pd, np = _import_pandas()
    if not isinstance(df, pd.DataFrame):
        raise _bad_df(f'Expected a pandas DataFrame, not {type(df).__name__}.')
    if (metric is None) == (metric_col is None):
        raise _bad_df('Exactly one of `metric` and `metric_col` is required.')
    if not tag_cols:
        raise _bad_df('At least one tag column is required.')

    timestamps = _timestamps_ms(pd, _column(df, timestamp_col))
    values = _column(df, value_col)
    if not pd.api.types.is_numeric_dtype(values) or \
            pd.api.types.is_bool_dtype(values):
        raise _bad_df(
            f'Bad column {value_col!r}: Expected a numeric dtype, '
            f'not {values.dtype}.')
    tag_series = [(name, _column(df, name)) for name in tag_cols]
    metrics = _column(df, metric_col) if metric_col is not None else None

    rows = []
    for index in range(len(df)):
        value = _to_py(np, values.iat[index])
        if pd.isna(value):
            raise _bad_df(f'Bad column {value_col!r}: Null at row {index}.')
        tags = {}
        for name, series in tag_series:
            tag_value = _to_py(np, series.iat[index])
            if pd.isna(tag_value):
                raise _bad_df(f'Bad column {name!r}: Null at row {index}.')
            tags[name] = tag_value
        row_metric = metric if metrics is None else metrics.iat[index]
        try:
            rows.append(Measurement(
                row_metric, int(timestamps[index]), value, tags))
        except IngressError as e:
            raise _bad_df(f'Bad row {index}: {e}') from e
    return rows


def result_to_dataframe(fields, data):
    pd, _np = _import_pandas()
    return pd.DataFrame(data, columns=[field[0] for field in fields])
