from tdingest import Connection, Payload
import pandas as pd


def example(host: str = 'localhost', port: int = 6041):
    df = pd.DataFrame({
        'metric': ['meters.current', 'meters.voltage'],
        'location': pd.Categorical(['Beijing.Chaoyang', 'Beijing.Haidian']),
        'groupid': [2, 1],
        'value': [10.3, 219.0],
        'ts': pd.to_datetime(['2022-03-28 01:56:51.249', '2022-03-28 01:56:51.250'])})
    with Connection(host, port, database='power') as conn:
        payload = Payload().dataframe(
            df,
            metric_col='metric',
            timestamp_col='ts',
            value_col='value',
            tag_cols=['location', 'groupid'])
        conn.flush(payload)

        print(conn.query('SHOW DATABASES').to_dataframe())


if __name__ == '__main__':
    example()
