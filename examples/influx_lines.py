from tdingest import IngressError, Precision, SchemalessProtocol, connect
import sys


def example(host: str = 'localhost', port: int = 6041):
    try:
        with connect(host, 'root', 'taosdata', '', port) as conn:
            conn.exec('CREATE DATABASE IF NOT EXISTS power')
            conn.exec('USE power')
            lines = [
                'meters,location=Beijing.Haidian,groupid=2 '
                'current=11.8,voltage=221,phase=0.28 1648432611249',
                'meters,location=Beijing.Haidian,groupid=2 '
                'current=13.4,voltage=223,phase=0.29 1648432611250',
            ]
            conn.schemaless_insert(
                lines, SchemalessProtocol.Line, Precision.Milliseconds)
    except IngressError as e:
        sys.stderr.write(f'Got error: {e}\n')


if __name__ == '__main__':
    example()
