"""Tests for GET /health."""


class TestHealth:

    def test_returns_ok(self, client):
        resp = client.get('/health')
        assert resp.status_code == 200
        assert resp.get_json() == {'status': 'ok'}
