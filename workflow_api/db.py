import json

import psycopg2

from workflow_api.config import env


def get_connection():
    return psycopg2.connect(
        database=env("DB_NAME", "camunda"),
        user=env("DB_USER", "camunda"),
        password=env("DB_PASSWORD", "camunda"),
        host=env("DB_HOST", "postgres"),
        port=env("DB_PORT", "5432")
    )


def insert_audit_entry(conn, action: str, details: dict):
    """Write one audit row. Caller owns the connection."""
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO audit_log (action, details, created_at)
            VALUES (%s, %s, NOW())
            """,
            (action, json.dumps(details, default=str))
        )
    conn.commit()
