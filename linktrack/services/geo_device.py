"""
Geo and device resolution for click events.

Location comes from an IP geolocation HTTP API and is strictly best-effort:
private addresses are never looked up, and timeouts or malformed responses
yield no location. Device information is parsed from the user agent.
"""
import ipaddress
import logging
import re
from typing import Dict, Optional

import requests

from linktrack.config import settings

logger = logging.getLogger(__name__)

_TABLET = re.compile(r'tablet|ipad', re.I)
_MOBILE = re.compile(r'mobile|android|iphone|ipod|blackberry|opera mini', re.I)

# Checked in order; more specific tokens first since most UAs mention several
_BROWSERS = (
    ('Edge', re.compile(r'edg(e|a|ios)?/', re.I)),
    ('Opera', re.compile(r'opr/|opera', re.I)),
    ('Chrome', re.compile(r'chrome|crios', re.I)),
    ('Firefox', re.compile(r'firefox|fxios', re.I)),
    ('Safari', re.compile(r'safari', re.I)),
)

_OPERATING_SYSTEMS = (
    ('Windows', re.compile(r'windows', re.I)),
    ('Android', re.compile(r'android', re.I)),
    ('iOS', re.compile(r'iphone|ipad|ipod', re.I)),
    ('macOS', re.compile(r'mac os', re.I)),
    ('Linux', re.compile(r'linux', re.I)),
)


def parse_user_agent(user_agent: Optional[str]) -> Optional[Dict]:
    """
    Parse a user agent into device class, browser and OS.

    Args:
        user_agent: Raw User-Agent header

    Returns:
        Dictionary with type (mobile|tablet|desktop), is_mobile, is_tablet,
        is_desktop, browser and os; None when no user agent was sent
    """
    if not user_agent or not user_agent.strip():
        return None

    if _TABLET.search(user_agent):
        device_type = 'tablet'
    elif _MOBILE.search(user_agent):
        device_type = 'mobile'
    else:
        device_type = 'desktop'

    browser = next((name for name, pattern in _BROWSERS if pattern.search(user_agent)), 'Unknown')
    os_name = next((name for name, pattern in _OPERATING_SYSTEMS if pattern.search(user_agent)), 'Unknown')

    return {
        'type': device_type,
        'is_mobile': device_type == 'mobile',
        'is_tablet': device_type == 'tablet',
        'is_desktop': device_type == 'desktop',
        'browser': browser,
        'os': os_name,
    }


def is_public_ip(ip: Optional[str]) -> bool:
    """Only globally routable addresses are worth a geolocation lookup."""
    if not ip:
        return False
    try:
        return ipaddress.ip_address(ip.strip()).is_global
    except ValueError:
        return False


class NullGeolocationClient:
    """Geolocation client used when no lookup service is configured."""

    def lookup(self, ip: str) -> Optional[Dict]:
        return None


class HttpGeolocationClient:
    """
    Client for a JSON IP geolocation API.

    Requests ``{api_url}/{ip}`` and normalises the common response shapes
    (ipapi.co and ip-api.com field names) into one location dictionary.
    """

    def __init__(self, api_url: str, timeout: float = 2.0, session: Optional[requests.Session] = None):
        """
        Initialize the geolocation client.

        Args:
            api_url: Base URL of the lookup endpoint
            timeout: Request timeout in seconds
            session: Optional requests session (for connection reuse)
        """
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def lookup(self, ip: str) -> Optional[Dict]:
        """
        Resolve an IP address to a coarse location.

        Returns:
            Dictionary with country_code, country_name, region, city,
            latitude and longitude, or None if the lookup failed
        """
        try:
            response = self.session.get(f"{self.api_url}/{ip}", timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.Timeout:
            logger.warning("[Geolocation] Lookup timed out after %ss", self.timeout)
            return None
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning("[Geolocation] Lookup failed: %s", e)
            return None

        if not isinstance(data, dict) or data.get('error') or data.get('status') == 'fail':
            logger.info("[Geolocation] No location for address")
            return None

        country_code = data.get('country_code') or data.get('countryCode')
        if not country_code:
            return None

        return {
            'country_code': country_code,
            'country_name': data.get('country_name') or data.get('country'),
            'region': data.get('region') or data.get('regionName'),
            'city': data.get('city'),
            'latitude': data.get('latitude', data.get('lat')),
            'longitude': data.get('longitude', data.get('lon')),
        }


class GeoDeviceResolver:
    """Derives location and device signals for a click."""

    def __init__(self, geolocation_client=None):
        self.geolocation_client = geolocation_client or NullGeolocationClient()

    def resolve_location(self, ip: Optional[str]) -> Optional[Dict]:
        if not is_public_ip(ip):
            return None
        try:
            return self.geolocation_client.lookup(ip.strip())
        except Exception as e:
            # Location is optional; a broken client must not fail the click
            logger.error("[Geolocation] Client error: %s", e, exc_info=True)
            return None

    def resolve_device(self, user_agent: Optional[str]) -> Optional[Dict]:
        return parse_user_agent(user_agent)

    def resolve(self, ip: Optional[str], user_agent: Optional[str]) -> Dict:
        """
        Resolve both signals.

        Returns:
            Dictionary with ``location`` and ``device`` (either may be None)
        """
        return {
            'location': self.resolve_location(ip),
            'device': self.resolve_device(user_agent),
        }


def build_geolocation_client():
    """Create the geolocation client described by settings."""
    if settings.geolocation_api_url:
        return HttpGeolocationClient(settings.geolocation_api_url, timeout=settings.geolocation_timeout)
    return NullGeolocationClient()
