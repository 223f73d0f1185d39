#!/usr/bin/env python3

import sys
sys.dont_write_bytecode = True
import unittest

import patch_path

import tdingest.ingress as ti
from tdingest.connection import QueryResult

try:
    import pandas as pd
    import numpy as np
except ImportError:
    pd = None


def _dataframe(*args, **kwargs):
    payload = ti.Payload()
    payload.dataframe(*args, **kwargs)
    return str(payload)


if pd is not None:
    DF1 = pd.DataFrame({
        'metric': ['meters.current', 'meters.voltage', 'meters.current'],
        'ts': pd.to_datetime([
            '2022-03-28 01:56:51.249',
            '2022-03-28 01:56:51.249',
            '2022-03-28 01:56:51.250']),
        'value': [10.3, 219.0, 12.6],
        'location': ['Beijing.Chaoyang', 'Beijing.Haidian', 'Beijing.Chaoyang'],
        'groupid': [2, 1, 2]})


@unittest.skipIf(pd is None, 'pandas not installed')
class TestPandas(unittest.TestCase):
    def test_metric_col(self):
        self.assertEqual(
            _dataframe(
                DF1, metric_col='metric', timestamp_col='ts',
                value_col='value', tag_cols=['location', 'groupid']),
            'meters.current 1648432611249 10.3 location=Beijing.Chaoyang groupid=2\n'
            'meters.voltage 1648432611249 219.0 location=Beijing.Haidian groupid=1\n'
            'meters.current 1648432611250 12.6 location=Beijing.Chaoyang groupid=2')

    def test_metric(self):
        df = pd.DataFrame({
            'ts': [1648432611249, 1648432611250],
            'value': [219, 218],
            'location': ['Beijing.Haidian', 'Beijing.Haidian']})
        self.assertEqual(
            _dataframe(
                df, metric='meters.voltage', timestamp_col='ts',
                value_col='value', tag_cols=['location']),
            'meters.voltage 1648432611249 219 location=Beijing.Haidian\n'
            'meters.voltage 1648432611250 218 location=Beijing.Haidian')

    def test_tz_aware_timestamps(self):
        df = pd.DataFrame({
            'ts': pd.to_datetime(['2022-03-28 09:56:51.249']).tz_localize(
                'Asia/Shanghai'),
            'value': [1.5],
            'tag': ['a']})
        self.assertEqual(
            _dataframe(
                df, metric='m', timestamp_col='ts', value_col='value',
                tag_cols=['tag']),
            'm 1648432611249 1.5 tag=a')

    def test_python_scalars(self):
        payload = ti.Payload().dataframe(
            DF1, metric_col='metric', timestamp_col='ts', value_col='value',
            tag_cols=['location', 'groupid'])
        first = payload[0]
        self.assertIs(type(first.value), float)
        self.assertIs(type(first.timestamp), int)
        self.assertIs(type(first.tags['groupid']), int)
        self.assertEqual(first.to_json_obj(), {
            'metric': 'meters.current',
            'timestamp': 1648432611249,
            'value': 10.3,
            'tags': {'location': 'Beijing.Chaoyang', 'groupid': 2}})

    def test_metric_args(self):
        for kwargs in ({}, {'metric': 'm', 'metric_col': 'metric'}):
            with self.assertRaisesRegex(
                    ti.IngressError, 'Exactly one of `metric`') as capture:
                _dataframe(
                    DF1, timestamp_col='ts', value_col='value',
                    tag_cols=['location'], **kwargs)
            self.assertEqual(
                capture.exception.code, ti.IngressErrorCode.BadDataFrame)

    def test_no_tag_cols(self):
        with self.assertRaisesRegex(ti.IngressError, 'At least one tag column'):
            _dataframe(
                DF1, metric='m', timestamp_col='ts', value_col='value',
                tag_cols=[])

    def test_bad_dataframe(self):
        with self.assertRaisesRegex(ti.IngressError, 'Expected a pandas DataFrame'):
            _dataframe(
                [], metric='m', timestamp_col='ts', value_col='value',
                tag_cols=['t'])

    def test_missing_column(self):
        with self.assertRaisesRegex(ti.IngressError, "'nope': Not found"):
            _dataframe(
                DF1, metric='m', timestamp_col='nope', value_col='value',
                tag_cols=['location'])

    def test_null_timestamp(self):
        df = pd.DataFrame({
            'ts': pd.to_datetime(['2022-03-28', None]),
            'value': [1.0, 2.0],
            'tag': ['a', 'b']})
        with self.assertRaisesRegex(ti.IngressError, 'must not be null'):
            _dataframe(
                df, metric='m', timestamp_col='ts', value_col='value',
                tag_cols=['tag'])

    def test_bad_timestamp_dtype(self):
        df = pd.DataFrame({'ts': [1.5], 'value': [1.0], 'tag': ['a']})
        with self.assertRaisesRegex(ti.IngressError, 'integer or datetime64'):
            _dataframe(
                df, metric='m', timestamp_col='ts', value_col='value',
                tag_cols=['tag'])

    def test_bad_value_dtype(self):
        for values in (['1.0'], [True]):
            df = pd.DataFrame({'ts': [1], 'value': values, 'tag': ['a']})
            with self.assertRaisesRegex(ti.IngressError, 'Expected a numeric'):
                _dataframe(
                    df, metric='m', timestamp_col='ts', value_col='value',
                    tag_cols=['tag'])

    def test_null_value(self):
        df = pd.DataFrame({'ts': [1, 2], 'value': [1.0, np.nan], 'tag': ['a', 'b']})
        with self.assertRaisesRegex(ti.IngressError, "'value': Null at row 1"):
            _dataframe(
                df, metric='m', timestamp_col='ts', value_col='value',
                tag_cols=['tag'])

    def test_null_tag(self):
        df = pd.DataFrame({'ts': [1, 2], 'value': [1, 2], 'tag': ['a', None]})
        with self.assertRaisesRegex(ti.IngressError, "'tag': Null at row 1"):
            _dataframe(
                df, metric='m', timestamp_col='ts', value_col='value',
                tag_cols=['tag'])

    def test_bad_row(self):
        df = pd.DataFrame({
            'ts': [1, 2], 'value': [1, 2], 'tag': ['a', 'Beijing Chaoyang']})
        with self.assertRaisesRegex(ti.IngressError, 'Bad row 1: ') as capture:
            _dataframe(
                df, metric='m', timestamp_col='ts', value_col='value',
                tag_cols=['tag'])
        self.assertEqual(
            capture.exception.code, ti.IngressErrorCode.BadDataFrame)

    def test_payload_unchanged_on_error(self):
        payload = ti.Payload().row('m', 1, 1, tags={'t': 'v'})
        df = pd.DataFrame({'ts': [1, 2], 'value': [1, 2], 'tag': ['a', None]})
        with self.assertRaises(ti.IngressError):
            payload.dataframe(
                df, metric='m', timestamp_col='ts', value_col='value',
                tag_cols=['tag'])
        self.assertEqual(payload.to_telnet_lines(), ['m 1 1 t=v'])

    def test_query_result(self):
        result = QueryResult(
            [['ts', 'TIMESTAMP', 8], ['current', 'FLOAT', 4]],
            [['2022-03-28 09:56:51.249', 10.3], ['2022-03-28 09:56:51.250', 12.6]])
        df = result.to_dataframe()
        self.assertEqual(list(df.columns), ['ts', 'current'])
        self.assertEqual(len(df), 2)
        self.assertEqual(df['current'].tolist(), [10.3, 12.6])


if __name__ == '__main__':
    unittest.main()
