"""
Tests for geo and device resolution.

External HTTP calls are mocked.
"""
from unittest.mock import Mock, patch

import pytest
import requests

from linktrack.services.geo_device import (
    GeoDeviceResolver,
    HttpGeolocationClient,
    NullGeolocationClient,
    is_public_ip,
    parse_user_agent,
)
from tests.fixtures.test_data import (
    IP_PRIVATE,
    LOCATION_US,
    MOCK_IP_API_COM_RESPONSE,
    MOCK_IPAPI_ERROR_RESPONSE,
    MOCK_IPAPI_RESPONSE,
    PUBLIC_IP_GB,
    PUBLIC_IP_US,
    UA_ANDROID_CHROME,
    UA_ANDROID_OPERA,
    UA_DESKTOP_CHROME,
    UA_DESKTOP_EDGE,
    UA_IPAD_SAFARI,
    UA_IPHONE_SAFARI,
    UA_LINUX_FIREFOX,
    UA_MAC_SAFARI,
)


def _response(payload, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"{status_code} error")
    else:
        response.raise_for_status.return_value = None
    return response


class TestParseUserAgent:
    """Test user agent parsing."""

    @pytest.mark.parametrize('user_agent,device_type,browser,os_name', [
        (UA_DESKTOP_CHROME, 'desktop', 'Chrome', 'Windows'),
        (UA_DESKTOP_EDGE, 'desktop', 'Edge', 'Windows'),
        (UA_MAC_SAFARI, 'desktop', 'Safari', 'macOS'),
        (UA_LINUX_FIREFOX, 'desktop', 'Firefox', 'Linux'),
        (UA_IPHONE_SAFARI, 'mobile', 'Safari', 'iOS'),
        (UA_ANDROID_CHROME, 'mobile', 'Chrome', 'Android'),
        (UA_ANDROID_OPERA, 'mobile', 'Opera', 'Android'),
        (UA_IPAD_SAFARI, 'tablet', 'Safari', 'iOS'),
    ])
    def test_known_user_agents(self, user_agent, device_type, browser, os_name):
        """Test device class, browser and OS for common user agents."""
        device = parse_user_agent(user_agent)

        assert device['type'] == device_type
        assert device['browser'] == browser
        assert device['os'] == os_name

    def test_flags_match_type(self):
        """Test exactly one of the is_* flags is set."""
        device = parse_user_agent(UA_IPAD_SAFARI)

        assert device['is_tablet'] is True
        assert device['is_mobile'] is False
        assert device['is_desktop'] is False

    def test_unknown_user_agent(self):
        """Test unrecognised agents are desktop with unknown browser and OS."""
        device = parse_user_agent('curl/8.4.0')

        assert device['type'] == 'desktop'
        assert device['browser'] == 'Unknown'
        assert device['os'] == 'Unknown'

    @pytest.mark.parametrize('user_agent', [None, '', '   '])
    def test_missing_user_agent(self, user_agent):
        """Test a missing user agent yields no device."""
        assert parse_user_agent(user_agent) is None


class TestIsPublicIp:
    """Test address filtering before lookups."""

    def test_public_addresses(self):
        """Test globally routable addresses are public."""
        assert is_public_ip(PUBLIC_IP_US)
        assert is_public_ip('2001:4860:4860::8888')

    @pytest.mark.parametrize('ip', [IP_PRIVATE, '127.0.0.1', '0.0.0.0', '10.1.2.3', '::1', 'not-an-ip', '', None])
    def test_non_public_addresses(self, ip):
        """Test private, loopback, unspecified and invalid addresses."""
        assert is_public_ip(ip) is False


class TestHttpGeolocationClient:
    """Test HttpGeolocationClient."""

    def test_lookup_ipapi_format(self):
        """Test ipapi.co style responses are normalised."""
        session = Mock()
        session.get.return_value = _response(MOCK_IPAPI_RESPONSE)
        client = HttpGeolocationClient('https://ipapi.co/', timeout=1.5, session=session)

        location = client.lookup(PUBLIC_IP_US)

        assert location == LOCATION_US
        session.get.assert_called_once_with(f'https://ipapi.co/{PUBLIC_IP_US}', timeout=1.5)

    def test_lookup_ip_api_com_format(self):
        """Test ip-api.com style responses are normalised."""
        session = Mock()
        session.get.return_value = _response(MOCK_IP_API_COM_RESPONSE)
        client = HttpGeolocationClient('http://ip-api.com/json', session=session)

        location = client.lookup(PUBLIC_IP_GB)

        assert location['country_code'] == 'GB'
        assert location['country_name'] == 'United Kingdom'
        assert location['region'] == 'England'
        assert location['latitude'] == 51.5142

    def test_lookup_error_payload(self):
        """Test error payloads yield no location."""
        session = Mock()
        session.get.return_value = _response(MOCK_IPAPI_ERROR_RESPONSE)
        client = HttpGeolocationClient('https://ipapi.co', session=session)

        assert client.lookup(PUBLIC_IP_US) is None

    def test_lookup_timeout(self):
        """Test timeouts yield no location."""
        session = Mock()
        session.get.side_effect = requests.exceptions.Timeout()
        client = HttpGeolocationClient('https://ipapi.co', session=session)

        assert client.lookup(PUBLIC_IP_US) is None

    def test_lookup_http_error(self):
        """Test HTTP errors yield no location."""
        session = Mock()
        session.get.return_value = _response({}, status_code=429)
        client = HttpGeolocationClient('https://ipapi.co', session=session)

        assert client.lookup(PUBLIC_IP_US) is None

    def test_lookup_invalid_json(self):
        """Test non-JSON bodies yield no location."""
        session = Mock()
        response = _response(None)
        response.json.side_effect = ValueError("No JSON object could be decoded")
        session.get.return_value = response
        client = HttpGeolocationClient('https://ipapi.co', session=session)

        assert client.lookup(PUBLIC_IP_US) is None

    @patch('linktrack.services.geo_device.requests.Session')
    def test_default_session(self, mock_session_cls):
        """Test a requests session is created when none is given."""
        mock_session_cls.return_value.get.return_value = _response(MOCK_IPAPI_RESPONSE)

        client = HttpGeolocationClient('https://ipapi.co')

        assert client.lookup(PUBLIC_IP_US)['city'] == 'Mountain View'
        mock_session_cls.assert_called_once()


class TestGeoDeviceResolver:
    """Test GeoDeviceResolver."""

    def test_null_client_by_default(self):
        """Test no lookup service means no location."""
        resolver = GeoDeviceResolver()

        assert isinstance(resolver.geolocation_client, NullGeolocationClient)
        assert resolver.resolve_location(PUBLIC_IP_US) is None

    def test_private_ip_not_looked_up(self):
        """Test private addresses never reach the client."""
        client = Mock()
        resolver = GeoDeviceResolver(client)

        assert resolver.resolve_location(IP_PRIVATE) is None
        client.lookup.assert_not_called()

    def test_client_exception_is_not_fatal(self):
        """Test a crashing client yields no location."""
        client = Mock()
        client.lookup.side_effect = RuntimeError("boom")
        resolver = GeoDeviceResolver(client)

        assert resolver.resolve_location(PUBLIC_IP_US) is None

    def test_resolve_both_signals(self):
        """Test resolve returns location and device together."""
        client = Mock()
        client.lookup.return_value = LOCATION_US
        resolver = GeoDeviceResolver(client)

        signals = resolver.resolve(PUBLIC_IP_US, UA_ANDROID_CHROME)

        assert signals['location'] == LOCATION_US
        assert signals['device']['type'] == 'mobile'
        client.lookup.assert_called_once_with(PUBLIC_IP_US)
