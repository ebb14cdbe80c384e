"""
Tests for the service endpoints: /health, /ping and the API index.
"""
from unittest.mock import patch

from linktrack.models import base as db_base


class TestHealthEndpoint:
    """Test /health endpoint."""

    def test_healthy(self, client):
        """Test a connected database reports healthy."""
        response = client.get('/health')

        assert response.status_code == 200
        assert response.content_type == 'application/json'
        data = response.get_json()
        assert data['status'] == 'healthy'
        assert data['database'] == 'connected'
        assert isinstance(data['version'], str)

    def test_scheduler_stopped_in_tests(self, client):
        """Test the expiration scheduler is not started under TESTING."""
        data = client.get('/health').get_json()

        assert data['expiration_scheduler'] == 'stopped'

    def test_scheduler_running(self, app, client):
        """Test a running scheduler is reported."""
        scheduler = type('Scheduler', (), {'running': True})()
        app.extensions['expiration_scheduler'] = scheduler

        data = client.get('/health').get_json()

        assert data['expiration_scheduler'] == 'running'

    def test_database_not_initialized(self, client):
        """Test a missing session factory degrades the service."""
        with patch.object(db_base, 'SessionLocal', None):
            response = client.get('/health')

        assert response.status_code == 503
        assert response.get_json()['database'] == 'not_initialized'

    def test_no_auth_required(self, client):
        assert client.get('/health').status_code == 200


class TestPingEndpoint:
    """Test /ping endpoint."""

    def test_ping_returns_pong(self, client):
        response = client.get('/ping')

        assert response.status_code == 200
        assert response.get_json() == {'message': 'pong'}


class TestIndex:
    """Test the API index and generic errors."""

    def test_index_lists_endpoints(self, client):
        data = client.get('/').get_json()

        assert data['name'] == 'linktrack'
        assert data['endpoints']['links'] == '/api/v1/links'
        assert data['endpoints']['track'] == '/api/v1/track'

    def test_cors_headers(self, client):
        response = client.get('/ping')

        assert response.headers['Access-Control-Allow-Origin'] == '*'
        assert 'X-API-Key' in response.headers['Access-Control-Allow-Headers']

    def test_unknown_route(self, client):
        response = client.get('/nope')

        assert response.status_code == 404
        assert response.get_json()['error'] == 'Not found'

    def test_method_not_allowed(self, client):
        response = client.delete('/ping')

        assert response.status_code == 405
