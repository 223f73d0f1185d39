from tdingest import Connection, IngressError, Payload
import datetime
import sys


def example(host: str = 'localhost', port: int = 6041):
    try:
        conf = (
            f'http::addr={host}:{port};' +
            'username=root;' +
            'password=taosdata;' +
            'timeout=5000;')
        with Connection.from_conf(conf) as conn:
            conn.exec('CREATE DATABASE IF NOT EXISTS power')
            conn.exec('USE power')

            payload = Payload()
            # Timestamps are milliseconds since epoch, or timezone-aware
            # datetime objects.
            payload.row(
                'meters.current',
                datetime.datetime.now(tz=datetime.timezone.utc),
                10.3,
                tags={'location': 'Beijing.Chaoyang', 'groupid': 2})
            payload.row(
                'meters.voltage',
                1648432611249,
                219,
                tags={'location': 'Beijing.Haidian', 'groupid': 1})

            # Sent as a JSON array. The payload is cleared afterwards.
            conn.flush(payload)

            # The same rows can also go out as telnet lines.
            payload.row(
                'meters.current', 1648432611250, 12.6,
                tags={'location': 'Beijing.Chaoyang', 'groupid': 2})
            conn.flush(payload, protocol='telnet')

            result = conn.query('SELECT COUNT(*) FROM `meters.current`')
            print(f'meters.current rows: {result.data[0][0]}')

    except IngressError as e:
        sys.stderr.write(f'Got error: {e}\n')


if __name__ == '__main__':
    example()
