from tdingest import IngressError, connect
import sys

LINES = [
    'meters.current 1648432611249 10.3 location=Beijing.Chaoyang groupid=2',
    'meters.current 1648432611250 12.6 location=Beijing.Chaoyang groupid=2',
    'meters.current 1648432611249 10.8 location=Beijing.Haidian groupid=3',
    'meters.current 1648432611250 11.3 location=Beijing.Haidian groupid=3',
    'meters.voltage 1648432611249 219 location=Beijing.Chaoyang groupid=2',
    'meters.voltage 1648432611250 218 location=Beijing.Chaoyang groupid=2',
    'meters.voltage 1648432611249 221 location=Beijing.Haidian groupid=3',
    'meters.voltage 1648432611250 217 location=Beijing.Haidian groupid=3',
]


def prepare_database(conn, database: str = 'test'):
    conn.exec(f'CREATE DATABASE {database}')
    conn.exec(f'USE {database}')


def example(host: str = 'localhost', port: int = 6041):
    try:
        conn = connect(host, 'root', 'taosdata', '', port)
    except IngressError as e:
        sys.stderr.write(f'fail to connect, err: {e}\n')
        sys.exit(1)

    with conn:
        prepare_database(conn)
        try:
            conn.insert_telnet_lines(LINES)
        except IngressError as e:
            sys.stderr.write(f'insert error: {e}\n')


if __name__ == '__main__':
    example()
