from tdingest import IngressError, connect
import sys

PAYLOAD = '''[
    {"metric": "meters.current", "timestamp": 1648432611249, "value": 10.3, "tags": {"location": "Beijing.Chaoyang", "groupid": 2}},
    {"metric": "meters.voltage", "timestamp": 1648432611249, "value": 219, "tags": {"location": "Beijing.Haidian", "groupid": 1}},
    {"metric": "meters.current", "timestamp": 1648432611250, "value": 12.6, "tags": {"location": "Beijing.Chaoyang", "groupid": 2}},
    {"metric": "meters.voltage", "timestamp": 1648432611250, "value": 221, "tags": {"location": "Beijing.Haidian", "groupid": 1}}
]'''


def prepare_database(conn, database: str = 'test'):
    # Any failure here is fatal: the error propagates.
    conn.exec(f'CREATE DATABASE {database}')
    conn.exec(f'USE {database}')


def example(host: str = 'localhost', port: int = 6041):
    try:
        conn = connect(host, 'root', 'taosdata', '', port)
    except IngressError as e:
        sys.stderr.write(f'fail to connect, err: {e}\n')
        sys.exit(1)

    # The connection is closed when the `with` block ends.
    with conn:
        prepare_database(conn)
        try:
            conn.insert_json_payload(PAYLOAD)
        except IngressError as e:
            sys.stderr.write(f'insert error: {e}\n')


if __name__ == '__main__':
    example()
