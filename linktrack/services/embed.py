"""
Public URLs and the embeddable tracking snippet for a link.
"""
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from linktrack.config import settings

SNIPPET_TEMPLATE = """<!-- linktrack click tracking -->
<script>
  (function() {{
    var endpoint = '{click_endpoint}';
    document.addEventListener('click', function(e) {{
      var link = e.target.closest('a');
      if (link && link.href.indexOf('ref={tracking_id}') !== -1) {{
        navigator.sendBeacon(endpoint, JSON.stringify({{
          landing_page: window.location.pathname,
          referrer: document.referrer || 'direct'
        }}));
      }}
    }});
  }})();
</script>
<!-- end linktrack -->"""


def build_tracking_url(target_url: str, tracking_id: str) -> str:
    """
    Append ``ref=<tracking_id>`` to the target URL, keeping its query.

    >>> build_tracking_url('https://shop.example.com/', 'LINK-1')
    'https://shop.example.com/?ref=LINK-1'
    """
    parts = urlsplit(target_url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"target_url must be an absolute URL: {target_url!r}")

    query = [(key, value) for key, value in parse_qsl(parts.query, keep_blank_values=True) if key != 'ref']
    query.append(('ref', tracking_id))
    path = parts.path or '/'
    return urlunsplit((parts.scheme, parts.netloc, path, urlencode(query), parts.fragment))


def short_url(short_code: str) -> str:
    return f"{settings.short_domain.rstrip('/')}/{short_code.lower()}"


def analytics_url(tracking_id: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/admin/links/{tracking_id}"


def click_endpoint(tracking_id: str) -> str:
    return f"{settings.backend_url.rstrip('/')}/api/v1/track/{tracking_id}/click"


def embed_snippet(tracking_id: str) -> str:
    """HTML snippet that beacons clicks on links carrying this tracking id."""
    return SNIPPET_TEMPLATE.format(
        tracking_id=tracking_id,
        click_endpoint=click_endpoint(tracking_id),
    )


def link_urls(link) -> dict:
    """All public URLs for a tracking link plus its snippet."""
    return {
        'tracking_url': link.tracking_url,
        'short_url': short_url(link.short_code),
        'analytics_url': analytics_url(link.tracking_id),
        'embed_code': embed_snippet(link.tracking_id),
    }
