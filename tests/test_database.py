import json

import database


# Mock the database connection for testing
class MockCursor:
    def __init__(self, data=None):
        self.data = data or []
        self.executed = []

    def execute(self, query, params=None):
        self.executed.append((query, params))

    def fetchone(self):
        return self.data[0] if self.data else None

    def fetchall(self):
        return self.data

    def close(self):
        pass


class MockConn:
    def __init__(self, data=None):
        self._cursor = MockCursor(data)
        self.committed = False

    def cursor(self, **kwargs):
        return self._cursor

    def commit(self):
        self.committed = True

    def close(self):
        pass


def test_append_result_inserts_json_payload(monkeypatch):
    conn = MockConn()
    monkeypatch.setattr(database, "get_connection", lambda: conn)

    record = {'student': "Abduraxmatov Abdulaziz", 'variant': "ielts_academic", 'overallBand': 7.5}
    database.append_result(record)

    query, params = conn._cursor.executed[0]
    assert "INSERT INTO test_results" in query
    assert params[:3] == ("Abduraxmatov Abdulaziz", "ielts_academic", 7.5)
    assert json.loads(params[3]) == record
    assert conn.committed


def test_get_results_decodes_payloads(monkeypatch):
    rows = [
        {'payload': json.dumps({'overallBand': 6.5})},
        {'payload': json.dumps({'overallBand': 7.0}).encode('utf-8')},
    ]
    conn = MockConn(rows)
    monkeypatch.setattr(database, "get_connection", lambda: conn)

    results = database.get_results(student="Abduraxmatov Abdulaziz")

    assert results == [{'overallBand': 6.5}, {'overallBand': 7.0}]
    query, params = conn._cursor.executed[0]
    assert "WHERE student = %s" in query
    assert params == ("Abduraxmatov Abdulaziz", 50)
