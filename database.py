import json
import logging

import mysql.connector
from mysql.connector import pooling

from config import DB_CONFIG

logger = logging.getLogger(__name__)

# Create connection pool
connection_pool = None


def init_db():
    """Initialize database and create tables"""
    global connection_pool

    # First connect without database to create it if needed
    try:
        conn = mysql.connector.connect(
            host=DB_CONFIG['host'],
            user=DB_CONFIG['user'],
            password=DB_CONFIG['password']
        )
        cursor = conn.cursor()
        cursor.execute(f"CREATE DATABASE IF NOT EXISTS {DB_CONFIG['database']} CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci")
        conn.close()
    except mysql.connector.Error as e:
        logger.error("Error creating database: %s", e)

    # Create connection pool
    try:
        connection_pool = pooling.MySQLConnectionPool(**DB_CONFIG)
    except mysql.connector.Error as e:
        logger.error("Error creating connection pool: %s", e)
        return

    create_tables()


def get_connection():
    """Get connection from pool"""
    global connection_pool
    if connection_pool is None:
        init_db()
    if connection_pool is None:
        raise RuntimeError("Database connection pool is not available")
    return connection_pool.get_connection()


def create_tables():
    """Create all necessary tables"""
    conn = get_connection()
    cursor = conn.cursor()

    # Append-only result history, one row per completed test
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS test_results (
            id INT AUTO_INCREMENT PRIMARY KEY,
            student VARCHAR(200) NOT NULL,
            variant VARCHAR(50) NOT NULL,
            overall_band FLOAT DEFAULT 0,
            payload JSON NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    conn.commit()
    cursor.close()
    conn.close()


# Result history operations
def append_result(record):
    conn = get_connection()
    cursor = conn.cursor()
    cursor.execute('''
        INSERT INTO test_results (student, variant, overall_band, payload)
        VALUES (%s, %s, %s, %s)
    ''', (
        record.get('student'),
        record.get('variant'),
        record.get('overallBand', 0),
        json.dumps(record, ensure_ascii=False)
    ))
    conn.commit()
    cursor.close()
    conn.close()


def get_results(student=None, limit=50):
    conn = get_connection()
    cursor = conn.cursor(dictionary=True)
    if student:
        cursor.execute(
            "SELECT payload FROM test_results WHERE student = %s ORDER BY id ASC LIMIT %s",
            (student, limit)
        )
    else:
        cursor.execute("SELECT payload FROM test_results ORDER BY id ASC LIMIT %s", (limit,))
    rows = cursor.fetchall()
    cursor.close()
    conn.close()
    results = []
    for row in rows:
        payload = row['payload']
        if isinstance(payload, (bytes, bytearray)):
            payload = payload.decode('utf-8')
        results.append(json.loads(payload))
    return results
