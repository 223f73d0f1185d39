#!/usr/bin/env python3
import sys

sys.dont_write_bytecode = True
import contextlib
import io
import json
import socket
import unittest
from unittest import mock

import patch_path

from mock_server import HttpServer, DB_ALREADY_EXISTS

import tdingest.ingress as ti
from tdingest.connection import Connection

import insert_json
import insert_telnet


def unused_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(('127.0.0.1', 0))
        return sock.getsockname()[1]


class TestBases:
    __test__ = False

    class TestExample(unittest.TestCase):
        def _run(self, port):
            stderr = io.StringIO()
            orig_close = Connection.close
            with mock.patch.object(
                    Connection, 'close', autospec=True,
                    side_effect=orig_close) as close, \
                    contextlib.redirect_stderr(stderr):
                self.module.example('127.0.0.1', port)
            return close, stderr.getvalue()

        def test_database_prepared(self):
            with HttpServer() as server:
                self._run(server.port)
            self.assertEqual(server.databases, {'test'})
            self.assertEqual(server.sql_requests(), [
                'SELECT SERVER_VERSION()',
                'CREATE DATABASE test',
                'USE test'])
            self.assertEqual(server.insert_requests(), [self.insert_path])

        def test_close_once_on_success(self):
            with HttpServer() as server:
                close, stderr = self._run(server.port)
            self.assertEqual(close.call_count, 1)
            self.assertEqual(stderr, '')

        def test_close_once_on_insert_error(self):
            error = ti.IngressError(
                ti.IngressErrorCode.ServerError, 'Could not insert: boom')
            with HttpServer() as server, mock.patch.object(
                    Connection, self.insert_method, side_effect=error):
                close, stderr = self._run(server.port)
            self.assertEqual(close.call_count, 1)
            self.assertEqual(stderr, 'insert error: Could not insert: boom\n')
            self.assertEqual(server.rows['test'], [])

        def test_connect_failure_is_fatal(self):
            stderr = io.StringIO()
            with mock.patch.object(Connection, self.insert_method) as insert, \
                    mock.patch.object(Connection, 'exec') as exec_, \
                    contextlib.redirect_stderr(stderr):
                with self.assertRaises(SystemExit) as capture:
                    self.module.example('127.0.0.1', unused_port())
            self.assertEqual(capture.exception.code, 1)
            self.assertTrue(stderr.getvalue().startswith('fail to connect, err: '))
            insert.assert_not_called()
            exec_.assert_not_called()

        def test_prepare_failure_is_fatal(self):
            orig_close = Connection.close
            with HttpServer(databases={'test'}) as server, mock.patch.object(
                    Connection, 'close', autospec=True,
                    side_effect=orig_close) as close:
                with self.assertRaises(ti.IngressError) as capture:
                    self.module.example('127.0.0.1', server.port)
            self.assertEqual(close.call_count, 1)
            self.assertEqual(capture.exception.server_code, DB_ALREADY_EXISTS)
            self.assertEqual(server.insert_requests(), [])
            self.assertEqual(server.sql_requests()[-1], 'CREATE DATABASE test')


class TestInsertJson(TestBases.TestExample):
    module = insert_json
    insert_method = 'insert_json_payload'
    insert_path = '/opentsdb/v1/put/json/test'

    def test_rows(self):
        with HttpServer() as server:
            self._run(server.port)
        rows = server.rows['test']
        self.assertEqual(len(rows), 4)
        self.assertEqual(rows, json.loads(insert_json.PAYLOAD))
        self.assertEqual(
            [row['metric'] for row in rows],
            ['meters.current', 'meters.voltage'] * 2)


class TestInsertTelnet(TestBases.TestExample):
    module = insert_telnet
    insert_method = 'insert_telnet_lines'
    insert_path = '/opentsdb/v1/put/telnet/test'

    def test_rows(self):
        with HttpServer() as server:
            self._run(server.port)
        rows = server.rows['test']
        self.assertEqual(len(rows), 8)
        for line, row in zip(insert_telnet.LINES, rows):
            metric, timestamp, value, *tags = line.split(' ')
            self.assertEqual(row['metric'], metric)
            self.assertEqual(row['timestamp'], int(timestamp))
            self.assertEqual(row['value'], float(value))
            self.assertEqual(len(row['tags']), 2)
            self.assertEqual(row['tags'], dict(t.split('=') for t in tags))


if __name__ == '__main__':
    unittest.main()
