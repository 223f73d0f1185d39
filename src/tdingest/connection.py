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

"""
Connect to a time-series server through its HTTP adapter, run SQL
statements and insert schemaless data.

.. code-block:: python

    from tdingest.connection import connect

    with connect('localhost', 'root', 'taosdata', '', 6041) as conn:
        conn.exec('CREATE DATABASE test')
        conn.exec('USE test')
        conn.insert_telnet_lines([
            'meters.current 1648432611249 10.3 location=Beijing.Chaoyang groupid=2'])

The connection is released when the ``with`` block ends, whether or not
the block raised.
"""

__all__ = [
    "Connection",
    "DEFAULT_PORT",
    "QueryResult",
    "Transport",
    "connect",
]

import json
import logging
import os
import re
from datetime import timedelta
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

import requests

from . import __version__
from .ingress import (
    IngressError,
    IngressErrorCode,
    Payload,
    Precision,
    SchemalessProtocol,
    TaggedEnum,
)

logger = logging.getLogger(__name__)

DEFAULT_PORT = 6041
CONF_ENV_VAR = 'TDINGEST_CLIENT_CONF'

# Server codes reported for rejected credentials.
_AUTH_FAILURE_CODES = frozenset({0x0357})

_USE_RE = re.compile(r'^\s*use\s+`?(\w+)`?\s*;?\s*$', re.IGNORECASE)

Field = Tuple[str, Any, int]


class Transport(TaggedEnum):
    """
    Transport used to reach the server's HTTP adapter.
    """
    Http = ('http', 0)
    Https = ('https', 1)

    @property
    def tls_enabled(self) -> bool:
        return self is Transport.Https


class QueryResult:
    """
    Rows returned by :func:`Connection.query`.

    ``fields`` lists ``(name, type, length)`` for each column, in order.
    """

    def __init__(self, fields: List[Field], data: List[List[Any]]):
        self.fields = fields
        self.data = data

    @property
    def rowcount(self) -> int:
        return len(self.data)

    @property
    def column_names(self) -> List[str]:
        return [field[0] for field in self.fields]

    def to_dataframe(self):
        """
        Convert to a pandas DataFrame.

        This feature requires the ``pandas`` and ``numpy`` packages.
        """
        from .dataframe import result_to_dataframe
        return result_to_dataframe(self.fields, self.data)

    def __len__(self) -> int:
        return len(self.data)

    def __iter__(self) -> Iterator[List[Any]]:
        return iter(self.data)

    def __repr__(self) -> str:
        return f'<QueryResult columns={self.column_names!r} rows={self.rowcount}>'


def _parse_timeout(value) -> float:
    """Milliseconds (or a ``timedelta``) to seconds."""
    if isinstance(value, timedelta):
        return value.total_seconds()
    try:
        millis = int(value)
    except (TypeError, ValueError):
        raise IngressError(
            IngressErrorCode.ConfigError,
            f'"timeout" must be an int number of milliseconds or a '
            f'timedelta, not {value!r}.') from None
    if millis <= 0:
        raise IngressError(
            IngressErrorCode.ConfigError,
            f'"timeout" must be positive, not {millis}.')
    return millis / 1000


def _parse_tls_verify(value) -> bool:
    if isinstance(value, bool):
        return value
    if value == 'on':
        return True
    if value == 'unsafe_off':
        return False
    raise IngressError(
        IngressErrorCode.ConfigError,
        f'"tls_verify" must be a bool, "on" or "unsafe_off", not {value!r}.')


def _parse_port(value) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise IngressError(
            IngressErrorCode.ConfigError,
            f'Bad port {value!r}: Not an integer.') from None
    if not 0 < port < 65536:
        raise IngressError(
            IngressErrorCode.ConfigError,
            f'Bad port {port}: Out of range.')
    return port


def parse_conf(conf_str: str) -> Tuple[Transport, Dict[str, str]]:
    """
    Parse a configuration string such as
    ``http::addr=localhost:6041;username=root;password=taosdata;``.

    A literal ``;`` inside a value is written as ``;;``.
    """
    service, sep, rest = conf_str.partition('::')
    if not sep:
        raise IngressError(
            IngressErrorCode.ConfigError,
            f'Bad configuration string {conf_str!r}: '
            'Missing "::" after the transport name.')
    try:
        transport = Transport.parse(service)
    except IngressError as e:
        raise IngressError(IngressErrorCode.ConfigError, str(e)) from e

    params = {}
    key = None
    token = []
    index = 0
    while index < len(rest):
        char = rest[index]
        if key is None:
            if char == '=':
                key = ''.join(token)
                token = []
            elif char == ';':
                raise IngressError(
                    IngressErrorCode.ConfigError,
                    f'Bad configuration string {conf_str!r}: '
                    f'Missing "=" after key {"".join(token)!r}.')
            else:
                token.append(char)
        elif char == ';':
            if rest[index + 1:index + 2] == ';':
                token.append(';')
                index += 1
            else:
                if not key:
                    raise IngressError(
                        IngressErrorCode.ConfigError,
                        f'Bad configuration string {conf_str!r}: Empty key.')
                if key in params:
                    raise IngressError(
                        IngressErrorCode.ConfigError,
                        f'Duplicate key {key!r} in configuration string.')
                params[key] = ''.join(token)
                key = None
                token = []
        else:
            token.append(char)
        index += 1
    if key is not None or token:
        raise IngressError(
            IngressErrorCode.ConfigError,
            f'Bad configuration string {conf_str!r}: '
            'Must end with ";".')
    return transport, params


_CONF_KEYS = {
    'username': 'user',
    'password': 'password',
    'database': 'database',
    'timeout': 'timeout',
    'tls_verify': 'tls_verify',
}


class Connection:
    """
    A connection to the server's HTTP adapter.

    The adapter is stateless: the connection keeps the active database
    (selected with a ``USE <db>`` statement or the ``database`` argument) and
    sends it along with every request.

    Connection Constructor Arguments:
      * ``host`` (``str``): Server host name or IP address.
      * ``port`` (``int``): HTTP adapter port. Defaults to ``6041``.
      * ``transport`` (``Transport`` or ``str``): ``'http'`` or ``'https'``.
      * ``user`` / ``password`` (``str``): Credentials for HTTP basic auth.
      * ``database`` (``str``): Initially active database, if any.
      * ``timeout`` (``int`` milliseconds or ``timedelta``): Per-request
        timeout. Defaults to 10 seconds.
      * ``tls_verify`` (``bool``, ``'on'`` or ``'unsafe_off'``): Verify the
        server's certificate when using ``https``.

    .. code-block:: python

        conn = Connection('localhost', 6041, database='test')
        conn.open()
        try:
            conn.insert_json_payload(payload)
        finally:
            conn.close()
    """

    def __init__(
            self,
            host: str = 'localhost',
            port: Union[int, str] = DEFAULT_PORT,
            *,
            transport: Union[Transport, str] = Transport.Http,
            user: str = 'root',
            password: str = 'taosdata',
            database: Optional[str] = None,
            timeout: Union[int, str, timedelta] = 10000,
            tls_verify: Union[bool, str] = True):
        if not host:
            raise IngressError(
                IngressErrorCode.ConfigError, 'Host must not be empty.')
        try:
            self._transport = Transport.parse(transport)
        except IngressError as e:
            raise IngressError(IngressErrorCode.ConfigError, str(e)) from e
        self._host = host
        self._port = _parse_port(port)
        self._auth = (user, password)
        self._database = database or None
        self._timeout = _parse_timeout(timeout)
        self._tls_verify = _parse_tls_verify(tls_verify)
        self._session: Optional[requests.Session] = None
        self._closed = False
        self._server_version: Optional[str] = None

    @staticmethod
    def from_conf(conf_str: str, **kwargs) -> 'Connection':
        """
        Construct a connection from a configuration string.

        .. code-block:: python

            Connection.from_conf(
                'http::addr=localhost:6041;username=root;password=taosdata;')

        The additional arguments specify parameters missing from the
        configuration string. Parameters already present in the string
        cannot be overridden.
        """
        transport, params = parse_conf(conf_str)
        addr = params.pop('addr', None)
        if addr is None:
            raise IngressError(
                IngressErrorCode.ConfigError,
                'Missing "addr" parameter in configuration string.')
        host, sep, port = addr.rpartition(':')
        if not sep:
            host, port = addr, DEFAULT_PORT

        init_kwargs = {}
        for key, value in params.items():
            try:
                arg_name = _CONF_KEYS[key]
            except KeyError:
                raise IngressError(
                    IngressErrorCode.ConfigError,
                    f'Unknown configuration parameter {key!r}.') from None
            init_kwargs[arg_name] = value
        for arg_name, value in kwargs.items():
            if arg_name in ('host', 'port', 'transport') or \
                    arg_name in init_kwargs:
                raise IngressError(
                    IngressErrorCode.ConfigError,
                    f'"{arg_name}" is already specified in the '
                    'configuration string.')
            init_kwargs[arg_name] = value
        return Connection(host, port, transport=transport, **init_kwargs)

    @staticmethod
    def from_env(**kwargs) -> 'Connection':
        """
        Construct a connection from the configuration string held in the
        ``TDINGEST_CLIENT_CONF`` environment variable.
        """
        conf_str = os.environ.get(CONF_ENV_VAR)
        if conf_str is None:
            raise IngressError(
                IngressErrorCode.ConfigError,
                f'Environment variable {CONF_ENV_VAR} is not set.')
        return Connection.from_conf(conf_str, **kwargs)

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def url(self) -> str:
        return f'{self._transport.tag}://{self._host}:{self._port}'

    @property
    def database(self) -> Optional[str]:
        """The active database, or ``None`` if none was selected."""
        return self._database

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self):
        """
        Open the connection and check that the server is reachable and
        accepts the credentials.

        Raises ``IngressError`` with the ``CouldNotConnect`` code if the
        server can't be reached and ``AuthError`` if the credentials are
        rejected.
        """
        if self._closed:
            raise IngressError(
                IngressErrorCode.InvalidApiCall, 'Connection is closed.')
        if self._session is not None:
            raise IngressError(
                IngressErrorCode.InvalidApiCall, 'Connection is already open.')
        logger.debug('Connecting to %s', self.url)
        session = requests.Session()
        session.auth = self._auth
        session.verify = self._tls_verify
        self._session = session
        try:
            result = self._sql('SELECT SERVER_VERSION()', opening=True)
        except IngressError:
            self._session = None
            session.close()
            raise
        if result.data and result.data[0]:
            self._server_version = str(result.data[0][0])
        logger.debug(
            'Connected to %s, server version %s',
            self.url, self._server_version)

    def _check_open(self) -> requests.Session:
        if self._closed:
            raise IngressError(
                IngressErrorCode.InvalidApiCall, 'Connection is closed.')
        if self._session is None:
            raise IngressError(
                IngressErrorCode.InvalidApiCall, 'Connection is not open.')
        return self._session

    def _check_database(self) -> str:
        if self._database is None:
            raise IngressError(
                IngressErrorCode.InvalidApiCall,
                'No database selected: '
                'Execute a "USE <database>" statement first.')
        return self._database

    def _post(
            self,
            path: str,
            body: str,
            content_type: str,
            params: Optional[Dict[str, str]] = None,
            opening: bool = False) -> requests.Response:
        session = self._check_open()
        url = self.url + path
        try:
            return session.post(
                url,
                data=body.encode('utf-8'),
                params=params,
                headers={'Content-Type': content_type},
                timeout=self._timeout)
        except requests.exceptions.ConnectionError as e:
            # Also covers ConnectTimeout.
            code = (
                IngressErrorCode.CouldNotConnect
                if opening else IngressErrorCode.SocketError)
            raise IngressError(
                code, f'Could not connect to {url}: {e}') from e
        except requests.exceptions.Timeout as e:
            raise IngressError(
                IngressErrorCode.SocketError,
                f'Request to {url} timed out: {e}') from e
        except requests.exceptions.RequestException as e:
            raise IngressError(
                IngressErrorCode.SocketError,
                f'Request to {url} failed: {e}') from e

    @staticmethod
    def _check_response(resp: requests.Response, what: str) -> Dict[str, Any]:
        body = {}
        if resp.content:
            try:
                body = resp.json()
            except ValueError:
                body = {}
        if not isinstance(body, dict):
            body = {}
        server_code = body.get('code')
        failed = (
            resp.status_code >= 400 or
            body.get('status') == 'error' or
            (isinstance(server_code, int) and server_code != 0))
        if not failed:
            return body
        desc = body.get('desc') or resp.text or resp.reason
        if not isinstance(server_code, int) or server_code == 0:
            server_code = None
        if resp.status_code == 401 or server_code in _AUTH_FAILURE_CODES:
            code = IngressErrorCode.AuthError
        else:
            code = IngressErrorCode.ServerError
        raise IngressError(
            code,
            f'Could not {what}: HTTP {resp.status_code}, '
            f'server code {server_code}: {desc}',
            server_code=server_code)

    def _sql(self, sql: str, opening: bool = False) -> QueryResult:
        path = '/rest/sql'
        if self._database is not None:
            path += f'/{self._database}'
        logger.debug('Executing %r', sql)
        resp = self._post(path, sql, 'text/plain', opening=opening)
        body = self._check_response(resp, f'execute {sql!r}')
        fields = [tuple(meta) for meta in body.get('column_meta') or []]
        if not fields and body.get('head'):
            fields = [(name, None, 0) for name in body['head']]
        return QueryResult(fields, body.get('data') or [])

    def exec(self, sql: str) -> int:
        """
        Execute a statement and return the number of affected rows.

        A successful ``USE <db>`` statement selects ``<db>`` as the active
        database for all subsequent calls.

        .. code-block:: python

            conn.exec('CREATE DATABASE test')
            conn.exec('USE test')
        """
        result = self._sql(sql)
        match = _USE_RE.match(sql)
        if match:
            self._database = match.group(1)
            logger.debug('Active database is now %r', self._database)
        if result.column_names == ['affected_rows'] and result.data:
            return int(result.data[0][0])
        return result.rowcount

    def query(self, sql: str) -> QueryResult:
        """Execute a query and return its rows."""
        result = self._sql(sql)
        logger.debug('Query returned %d rows', result.rowcount)
        return result

    def insert_json_payload(self, payload: Union[str, Payload]):
        """
        Insert measurements from an OpenTSDB-style JSON array.

        .. code-block:: python

            conn.insert_json_payload(
                '[{"metric": "meters.current", "timestamp": 1648432611249, '
                '"value": 10.3, "tags": {"location": "Beijing.Chaoyang", '
                '"groupid": 2}}]')

        :param payload: A JSON string or a :class:`Payload`.
        """
        if isinstance(payload, Payload):
            body = payload.to_json()
        elif isinstance(payload, str):
            try:
                parsed = json.loads(payload)
            except ValueError as e:
                raise IngressError(
                    IngressErrorCode.InvalidApiCall,
                    f'Bad JSON payload: {e}') from e
            if not isinstance(parsed, (list, dict)):
                raise IngressError(
                    IngressErrorCode.InvalidApiCall,
                    'JSON payload must be an array or an object.')
            body = payload
        else:
            raise IngressError(
                IngressErrorCode.InvalidApiCall,
                'Payload must be a str or a Payload, '
                f'not {type(payload).__name__}.')
        self._check_open()
        database = self._check_database()
        logger.debug('Inserting JSON payload into %r', database)
        resp = self._post(
            f'/opentsdb/v1/put/json/{database}', body, 'application/json')
        self._check_response(resp, 'insert JSON payload')

    @staticmethod
    def _text_lines(lines: Union[Iterable[str], Payload]) -> List[str]:
        if isinstance(lines, Payload):
            return lines.to_telnet_lines()
        if isinstance(lines, str):
            raise IngressError(
                IngressErrorCode.InvalidApiCall,
                'Lines must be a sequence of str, not a single str.')
        checked = []
        for line in lines:
            if not isinstance(line, str):
                raise IngressError(
                    IngressErrorCode.InvalidApiCall,
                    f'Lines must be str, not {type(line).__name__}.')
            if not line or '\n' in line:
                raise IngressError(
                    IngressErrorCode.InvalidApiCall,
                    f'Bad line {line!r}: '
                    'Must be non-empty and contain no newline.')
            checked.append(line)
        if not checked:
            raise IngressError(
                IngressErrorCode.InvalidApiCall, 'No lines to insert.')
        return checked

    def insert_telnet_lines(self, lines: Union[Iterable[str], Payload]):
        """
        Insert measurements from telnet lines, one measurement per line:
        ``<metric> <timestamp> <value> <tag>=<value> [<tag>=<value> ...]``.

        :param lines: A sequence of ``str`` lines or a :class:`Payload`.
        """
        lines = self._text_lines(lines)
        self._check_open()
        database = self._check_database()
        logger.debug('Inserting %d telnet lines into %r', len(lines), database)
        resp = self._post(
            f'/opentsdb/v1/put/telnet/{database}',
            '\n'.join(lines),
            'text/plain')
        self._check_response(resp, 'insert telnet lines')

    def insert_influx_lines(
            self,
            lines: Iterable[str],
            precision: Union[Precision, str, int] = Precision.Milliseconds):
        """
        Insert InfluxDB line protocol lines.

        :param precision: Precision of the timestamps in the lines.
        """
        lines = self._text_lines(lines)
        precision = Precision.parse(precision)
        self._check_open()
        database = self._check_database()
        params = {'db': database}
        if precision is not Precision.NotConfigured:
            params['precision'] = precision.tag
        logger.debug(
            'Inserting %d influx lines into %r', len(lines), database)
        resp = self._post(
            '/influxdb/v1/write', '\n'.join(lines), 'text/plain', params=params)
        self._check_response(resp, 'insert influx lines')

    def schemaless_insert(
            self,
            lines: Union[str, Iterable[str]],
            protocol: Union[SchemalessProtocol, str, int],
            precision: Union[Precision, str, int] = Precision.NotConfigured):
        """
        Insert schemaless data in the given protocol.

        For the ``Json`` protocol, ``lines`` may be a single JSON string or a
        sequence of strings, each holding a JSON object or array. The
        sequence is sent as one merged array.
        The ``Telnet`` and ``Json`` protocols carry their own timestamp
        precision and only accept ``NotConfigured`` or ``Milliseconds``.
        """
        protocol = SchemalessProtocol.parse(protocol)
        precision = Precision.parse(precision)
        if protocol is SchemalessProtocol.Line:
            self.insert_influx_lines(lines, precision)
            return
        if protocol is SchemalessProtocol.Unknown:
            raise IngressError(
                IngressErrorCode.InvalidApiCall,
                'Protocol must be one of "line", "telnet" or "json".')
        if precision not in (Precision.NotConfigured, Precision.Milliseconds):
            raise IngressError(
                IngressErrorCode.InvalidApiCall,
                f'Precision {precision.name} is not supported by the '
                f'{protocol.tag} protocol.')
        if protocol is SchemalessProtocol.Telnet:
            self.insert_telnet_lines(lines)
        elif isinstance(lines, str):
            self.insert_json_payload(lines)
        else:
            self.insert_json_payload(self._merge_json_lines(lines))

    @staticmethod
    def _merge_json_lines(lines: Iterable[str]) -> str:
        """Merge JSON objects and arrays, one per line, into one array."""
        records = []
        for line in lines:
            if not isinstance(line, str):
                raise IngressError(
                    IngressErrorCode.InvalidApiCall,
                    f'Lines must be str, not {type(line).__name__}.')
            try:
                parsed = json.loads(line)
            except ValueError as e:
                raise IngressError(
                    IngressErrorCode.InvalidApiCall,
                    f'Bad JSON line {line!r}: {e}') from e
            if isinstance(parsed, list):
                records.extend(parsed)
            elif isinstance(parsed, dict):
                records.append(parsed)
            else:
                raise IngressError(
                    IngressErrorCode.InvalidApiCall,
                    f'Bad JSON line {line!r}: '
                    'Must be an array or an object.')
        if not records:
            raise IngressError(
                IngressErrorCode.InvalidApiCall, 'No lines to insert.')
        return json.dumps(records)

    def flush(
            self,
            payload: Payload,
            protocol: Union[SchemalessProtocol, str, int] = SchemalessProtocol.Json,
            clear: bool = True):
        """
        Send a :class:`Payload` and clear it.

        If the insert fails the payload is kept unchanged.
        """
        protocol = SchemalessProtocol.parse(protocol)
        if not len(payload):
            return
        if protocol is SchemalessProtocol.Json:
            self.insert_json_payload(payload)
        elif protocol is SchemalessProtocol.Telnet:
            self.insert_telnet_lines(payload)
        else:
            raise IngressError(
                IngressErrorCode.InvalidApiCall,
                'Payloads can only be flushed as "json" or "telnet".')
        if clear:
            payload.clear()

    def server_info(self) -> Optional[str]:
        """The server version reported when the connection was opened."""
        self._check_open()
        return self._server_version

    @staticmethod
    def client_info() -> str:
        return __version__

    def close(self) -> bool:
        """
        Release the connection.

        Returns ``True`` if the connection was released by this call and
        ``False`` if it was already closed.
        """
        if self._closed:
            return False
        self._closed = True
        session, self._session = self._session, None
        if session is not None:
            session.close()
        logger.debug('Closed connection to %s', self.url)
        return True

    def __enter__(self) -> 'Connection':
        if self._session is None:
            self.open()
        return self

    def __exit__(self, exc_type, _exc_value, _traceback):
        self.close()

    def __repr__(self) -> str:
        state = 'closed' if self._closed else (
            'open' if self._session is not None else 'not open')
        return f'<Connection {self.url} database={self._database!r} {state}>'


def connect(
        host: str = 'localhost',
        user: str = 'root',
        password: str = 'taosdata',
        database: str = '',
        port: Union[int, str] = DEFAULT_PORT,
        **kwargs) -> Connection:
    """
    Open a connection.

    An empty ``database`` means no database is active until a ``USE``
    statement is executed.
    """
    conn = Connection(
        host,
        port,
        user=user,
        password=password,
        database=database or None,
        **kwargs)
    conn.open()
    return conn
