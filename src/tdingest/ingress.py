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
Measurements, payloads and errors for schemaless ingestion.

A :class:`Payload` collects :class:`Measurement` records and renders them
either as an OpenTSDB-style JSON array or as telnet lines.

.. code-block:: python

    from tdingest.ingress import Payload

    payload = Payload()
    payload.row(
        'meters.current', 1648432611249, 10.3,
        tags={'location': 'Beijing.Chaoyang', 'groupid': 2})

    payload.to_json()
    # '[{"metric": "meters.current", "timestamp": 1648432611249, ...}]'

    payload.to_telnet_lines()
    # ['meters.current 1648432611249 10.3 location=Beijing.Chaoyang groupid=2']
"""

__all__ = [
    "IngressError",
    "IngressErrorCode",
    "Measurement",
    "Payload",
    "Precision",
    "SchemalessProtocol",
    "TaggedEnum",
]

import json
import logging
import math
import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r'\s')
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

TagValue = Union[str, int, float, bool]
Value = Union[int, float]


class IngressErrorCode(Enum):
    """Category of Error."""
    CouldNotConnect = 1
    SocketError = 2
    AuthError = 3
    InvalidApiCall = 4
    InvalidName = 5
    InvalidTimestamp = 6
    InvalidValue = 7
    InvalidTag = 8
    ServerError = 9
    ConfigError = 10
    BadDataFrame = 11

    def __str__(self) -> str:
        return self.name


class IngressError(Exception):
    """An error whilst using the ``Connection`` or building a ``Payload``."""

    def __init__(
            self,
            code: IngressErrorCode,
            msg: str,
            server_code: Optional[int] = None):
        super().__init__(msg)
        self._code = code
        self._server_code = server_code

    @property
    def code(self) -> IngressErrorCode:
        """Return the error code."""
        return self._code

    @property
    def server_code(self) -> Optional[int]:
        """
        The numeric error code reported by the server, if any.

        Only set for errors with the ``ServerError`` or ``AuthError`` code.
        """
        return self._server_code


class TaggedEnum(Enum):
    """
    Base class for tagged enums.

    Each member's value is a ``(tag, c_value)`` pair.
    """

    @property
    def tag(self) -> str:
        """
        Short name.
        """
        return self.value[0]

    @property
    def c_value(self) -> int:
        return self.value[1]

    @classmethod
    def parse(cls, tag):
        """
        Parse from the tag name.

        Members and their numeric ``c_value`` are accepted as well.
        """
        if isinstance(tag, cls):
            return tag
        if isinstance(tag, int) and not isinstance(tag, bool):
            for entry in cls:
                if entry.c_value == tag:
                    return entry
        elif isinstance(tag, str):
            for entry in cls:
                if entry.tag == tag:
                    return entry
        raise IngressError(
            IngressErrorCode.InvalidApiCall,
            f'Invalid {cls.__name__} {tag!r}, must be one of: ' +
            ', '.join(repr(entry.tag) for entry in cls))


class SchemalessProtocol(TaggedEnum):
    """
    Encoding of the lines passed to ``Connection.schemaless_insert``.
    """
    Unknown = ('unknown', 0)
    Line = ('line', 1)
    Telnet = ('telnet', 2)
    Json = ('json', 3)


class Precision(TaggedEnum):
    """
    Timestamp precision of schemaless data.

    The tag is the ``precision`` query parameter understood by the
    InfluxDB-compatible write endpoint.
    """
    NotConfigured = ('', 0)
    Hours = ('h', 1)
    Minutes = ('m', 2)
    Seconds = ('s', 3)
    Milliseconds = ('ms', 4)
    Microseconds = ('u', 5)
    Nanoseconds = ('ns', 6)


def _check_metric(metric) -> str:
    if not isinstance(metric, str):
        raise IngressError(
            IngressErrorCode.InvalidName,
            f'Metric name must be a str, not {type(metric).__name__}.')
    if not metric:
        raise IngressError(
            IngressErrorCode.InvalidName,
            'Metric names must have a non-zero length.')
    match = _WHITESPACE_RE.search(metric)
    if match:
        raise IngressError(
            IngressErrorCode.InvalidName,
            f'Bad metric name {metric!r}: '
            f'Found whitespace at position {match.start()}.')
    return metric


def _check_timestamp(timestamp) -> int:
    if isinstance(timestamp, datetime):
        if timestamp.tzinfo is None:
            raise IngressError(
                IngressErrorCode.InvalidTimestamp,
                'datetime timestamps must have a timezone, '
                'e.g. datetime.now(tz=timezone.utc).')
        timestamp = (timestamp - _EPOCH) // timedelta(milliseconds=1)
    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        raise IngressError(
            IngressErrorCode.InvalidTimestamp,
            'Timestamp must be an int (milliseconds since epoch) or a '
            f'datetime, not {type(timestamp).__name__}.')
    if timestamp < 0:
        raise IngressError(
            IngressErrorCode.InvalidTimestamp,
            f'Timestamp {timestamp} is negative.')
    return timestamp


def _check_value(value) -> Value:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise IngressError(
            IngressErrorCode.InvalidValue,
            f'Value must be an int or a float, not {type(value).__name__}.')
    if isinstance(value, float) and not math.isfinite(value):
        raise IngressError(
            IngressErrorCode.InvalidValue,
            f'Value must be finite, not {value!r}.')
    return value


def _check_tags(tags) -> Dict[str, TagValue]:
    if not isinstance(tags, dict):
        raise IngressError(
            IngressErrorCode.InvalidTag,
            f'Tags must be a dict, not {type(tags).__name__}.')
    if not tags:
        raise IngressError(
            IngressErrorCode.InvalidTag,
            'At least one tag is required.')
    checked = {}
    for name, tag_value in tags.items():
        if not isinstance(name, str) or not name:
            raise IngressError(
                IngressErrorCode.InvalidTag,
                f'Tag names must be non-empty strings, not {name!r}.')
        if _WHITESPACE_RE.search(name) or '=' in name:
            raise IngressError(
                IngressErrorCode.InvalidTag,
                f'Bad tag name {name!r}: '
                'Tag names can\'t contain whitespace or \'=\'.')
        if isinstance(tag_value, str):
            if not tag_value or _WHITESPACE_RE.search(tag_value):
                raise IngressError(
                    IngressErrorCode.InvalidTag,
                    f'Bad value {tag_value!r} for tag {name!r}: '
                    'Must be non-empty and contain no whitespace.')
        elif isinstance(tag_value, float):
            if not math.isfinite(tag_value):
                raise IngressError(
                    IngressErrorCode.InvalidTag,
                    f'Bad value {tag_value!r} for tag {name!r}: '
                    'Must be finite.')
        elif not isinstance(tag_value, int):  # bool is an int
            raise IngressError(
                IngressErrorCode.InvalidTag,
                f'Bad value for tag {name!r}: Must be a str, int, float '
                f'or bool, not {type(tag_value).__name__}.')
        checked[name] = tag_value
    return checked


def _format_scalar(value) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float):
        return repr(value)
    return str(value)


def _parse_number(text: str) -> Value:
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        raise IngressError(
            IngressErrorCode.InvalidValue,
            f'Bad value {text!r}: Not a number.') from None


class Measurement:
    """
    A single value of a metric at a point in time, identified by its tags.

    .. code-block:: python

        Measurement(
            'meters.voltage', 1648432611249, 219,
            tags={'location': 'Beijing.Haidian', 'groupid': 1})

    :param metric: Name of the measured quantity. Must not contain whitespace.
    :param timestamp: Milliseconds since the UNIX epoch (UTC), or a
        timezone-aware ``datetime.datetime``.
    :param value: The numeric reading.
    :param tags: Non-empty mapping of tag name to ``str``, ``int``, ``float``
        or ``bool`` value.
    """

    __slots__ = ('_metric', '_timestamp', '_value', '_tags')

    def __init__(
            self,
            metric: str,
            timestamp: Union[int, datetime],
            value: Value,
            tags: Dict[str, TagValue]):
        self._metric = _check_metric(metric)
        self._timestamp = _check_timestamp(timestamp)
        self._value = _check_value(value)
        self._tags = _check_tags(tags)

    @property
    def metric(self) -> str:
        return self._metric

    @property
    def timestamp(self) -> int:
        """Milliseconds since the UNIX epoch."""
        return self._timestamp

    @property
    def value(self) -> Value:
        return self._value

    @property
    def tags(self) -> Dict[str, TagValue]:
        return dict(self._tags)

    def to_json_obj(self) -> Dict[str, Any]:
        return {
            'metric': self._metric,
            'timestamp': self._timestamp,
            'value': self._value,
            'tags': dict(self._tags)}

    def to_telnet_line(self) -> str:
        """
        Render as ``<metric> <timestamp> <value> <tag>=<value> ...``.
        """
        tags = ' '.join(
            f'{name}={_format_scalar(tag_value)}'
            for name, tag_value in self._tags.items())
        return (
            f'{self._metric} {self._timestamp} '
            f'{_format_scalar(self._value)} {tags}')

    @classmethod
    def from_json_obj(cls, obj) -> 'Measurement':
        if not isinstance(obj, dict):
            raise IngressError(
                IngressErrorCode.InvalidApiCall,
                f'Expected a JSON object, not {type(obj).__name__}.')
        missing = [
            key for key in ('metric', 'timestamp', 'value', 'tags')
            if key not in obj]
        if missing:
            raise IngressError(
                IngressErrorCode.InvalidApiCall,
                f'Missing {", ".join(missing)} in {obj!r}.')
        return cls(obj['metric'], obj['timestamp'], obj['value'], obj['tags'])

    @classmethod
    def from_telnet_line(cls, line: str) -> 'Measurement':
        """
        Parse a single telnet line.

        Tag values are kept as strings, the value is parsed as an ``int``
        if possible and as a ``float`` otherwise.
        """
        fields = line.rstrip('\r\n').split(' ')
        if len(fields) < 4:
            raise IngressError(
                IngressErrorCode.InvalidApiCall,
                f'Bad telnet line {line!r}: Expected '
                '"<metric> <timestamp> <value> <tag>=<value> ...".')
        metric, timestamp, value = fields[:3]
        try:
            timestamp = int(timestamp)
        except ValueError:
            raise IngressError(
                IngressErrorCode.InvalidTimestamp,
                f'Bad timestamp {timestamp!r} in line {line!r}.') from None
        tags = {}
        for pair in fields[3:]:
            name, sep, tag_value = pair.partition('=')
            if not sep:
                raise IngressError(
                    IngressErrorCode.InvalidTag,
                    f'Bad tag {pair!r} in line {line!r}: Missing \'=\'.')
            tags[name] = tag_value
        return cls(metric, timestamp, _parse_number(value), tags)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Measurement):
            return NotImplemented
        return self.to_json_obj() == other.to_json_obj()

    def __hash__(self):
        return hash((
            self._metric, self._timestamp, self._value,
            tuple(self._tags.items())))

    def __repr__(self) -> str:
        return (
            f'Measurement({self._metric!r}, {self._timestamp!r}, '
            f'{self._value!r}, tags={self._tags!r})')


class Payload:
    """
    An ordered batch of measurements for a single insertion call.

    Rows are validated as they are added: a failed :func:`Payload.row`
    leaves the payload unchanged.

    Flushing a payload via ``Connection.flush`` clears it by default, so the
    same object can be reused for the next batch.
    """

    def __init__(self, measurements: Optional[Iterable[Measurement]] = None):
        self._rows: List[Measurement] = []
        if measurements is not None:
            self.extend(measurements)

    def row(
            self,
            metric: str,
            timestamp: Union[int, datetime],
            value: Value,
            *,
            tags: Dict[str, TagValue]) -> 'Payload':
        """
        Add a single measurement.

        .. code-block:: python

            payload.row(
                'meters.current', 1648432611250, 12.6,
                tags={'location': 'Beijing.Chaoyang', 'groupid': 2})
        """
        self._rows.append(Measurement(metric, timestamp, value, tags))
        return self

    def extend(self, measurements: Iterable[Measurement]) -> 'Payload':
        new_rows = list(measurements)
        for measurement in new_rows:
            if not isinstance(measurement, Measurement):
                raise IngressError(
                    IngressErrorCode.InvalidApiCall,
                    'Expected Measurement objects, '
                    f'not {type(measurement).__name__}.')
        self._rows.extend(new_rows)
        return self

    def dataframe(
            self,
            df,
            *,
            metric: Optional[str] = None,
            metric_col: Optional[str] = None,
            timestamp_col: str,
            value_col: str,
            tag_cols: List[str]) -> 'Payload':
        """
        Add one measurement per row of a pandas DataFrame.

        This feature requires the ``pandas`` and ``numpy`` packages.

        :param metric: Metric name shared by all rows.
        :param metric_col: Column holding the metric name of each row.
            Exactly one of ``metric`` and ``metric_col`` must be given.
        :param timestamp_col: Integer column of milliseconds since epoch, or
            a ``datetime64`` column. Naive datetimes are taken as UTC.
        :param value_col: Numeric column of readings.
        :param tag_cols: Columns to serialize as tags.
        """
        from .dataframe import measurements_from_dataframe
        rows = measurements_from_dataframe(
            df,
            metric=metric,
            metric_col=metric_col,
            timestamp_col=timestamp_col,
            value_col=value_col,
            tag_cols=tag_cols)
        self._rows.extend(rows)
        logger.debug('Added %d rows from dataframe', len(rows))
        return self

    def clear(self):
        """Remove all measurements."""
        self._rows.clear()

    def to_json_objs(self) -> List[Dict[str, Any]]:
        return [measurement.to_json_obj() for measurement in self._rows]

    def to_json(self) -> str:
        """The OpenTSDB-style JSON array of all measurements."""
        return json.dumps(self.to_json_objs())

    def to_telnet_lines(self) -> List[str]:
        return [measurement.to_telnet_line() for measurement in self._rows]

    @classmethod
    def from_json(cls, text: Union[str, bytes]) -> 'Payload':
        """Parse a JSON array (or a single JSON object) of measurements."""
        try:
            parsed = json.loads(text)
        except ValueError as e:
            raise IngressError(
                IngressErrorCode.InvalidApiCall,
                f'Bad JSON payload: {e}') from e
        if isinstance(parsed, dict):
            parsed = [parsed]
        if not isinstance(parsed, list):
            raise IngressError(
                IngressErrorCode.InvalidApiCall,
                'JSON payload must be an array or an object, '
                f'not {type(parsed).__name__}.')
        return cls(Measurement.from_json_obj(obj) for obj in parsed)

    @classmethod
    def from_telnet_lines(cls, lines: Iterable[str]) -> 'Payload':
        return cls(
            Measurement.from_telnet_line(line)
            for line in lines
            if line.strip())

    def __len__(self) -> int:
        """The number of measurements in the payload."""
        return len(self._rows)

    def __iter__(self) -> Iterator[Measurement]:
        return iter(self._rows)

    def __getitem__(self, index):
        return self._rows[index]

    def __str__(self) -> str:
        """Return the payload as telnet lines. Use for debugging."""
        return '\n'.join(self.to_telnet_lines())

    def __repr__(self) -> str:
        return f'<Payload with {len(self._rows)} measurements>'
