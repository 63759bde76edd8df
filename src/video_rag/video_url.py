"""Video URL parsing and validation."""

import re
from urllib.parse import parse_qs, urlparse

from .errors import InvalidReference
from .schemas import VideoReference

_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_PATH_ID_RE = re.compile(r"^/(?:shorts|embed|live|v)/([A-Za-z0-9_-]+)")
_SHORT_LINK_HOSTS = ("youtu.be", "www.youtu.be")


def extract_video_id(url: str) -> str | None:
    """Extract the video id from a video URL.

    Recognises ``?v=<id>`` query parameters, ``youtu.be/<id>`` short links
    and ``/shorts/<id>``, ``/embed/<id>``, ``/live/<id>`` paths.

    Args:
        url: Candidate video URL.

    Returns:
        The video id, or None if the URL is not a supported video URL.

    Examples:
        >>> extract_video_id("https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=42s")
        'dQw4w9WgXcQ'
        >>> extract_video_id("https://youtu.be/dQw4w9WgXcQ?si=abc")
        'dQw4w9WgXcQ'
        >>> extract_video_id("not a url") is None
        True
    """
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None

    host = parsed.hostname.lower()
    if host in _SHORT_LINK_HOSTS:
        candidate = parsed.path.strip("/").split("/")[0]
        return candidate if _VIDEO_ID_RE.match(candidate) else None

    candidate = parse_qs(parsed.query).get("v", [""])[0]
    if candidate and _VIDEO_ID_RE.match(candidate):
        return candidate

    match = _PATH_ID_RE.match(parsed.path)
    if match:
        return match.group(1)

    return None


def parse_video_reference(url: str) -> VideoReference:
    """Validate a video URL and wrap it as a VideoReference.

    Raises:
        InvalidReference: If no video id can be extracted from ``url``.
    """
    video_id = extract_video_id(url or "")
    if not video_id:
        raise InvalidReference(f"Not a supported video URL: {url!r}")
    return VideoReference(url=url.strip(), video_id=video_id)
