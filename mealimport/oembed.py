import json
import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from mealimport.errors import MealImportError

logger = logging.getLogger(__name__)

OEMBED_MAX_BYTES = 256_000

TIKTOK_OEMBED = "https://www.tiktok.com/oembed"
YOUTUBE_OEMBED = "https://www.youtube.com/oembed"
INSTAGRAM_OEMBED = "https://graph.facebook.com/v18.0/instagram_oembed"


@dataclass
class OEmbedInfo:
    title: str | None = None
    author_name: str | None = None
    thumbnail_url: str | None = None
    html: str | None = None


def oembed_endpoint(url: str, platform: str, instagram_token: str | None = None) -> str | None:
    if platform == "tiktok":
        return f"{TIKTOK_OEMBED}?{urlencode({'url': url})}"
    if platform == "youtube":
        return f"{YOUTUBE_OEMBED}?{urlencode({'format': 'json', 'url': url})}"
    if platform == "instagram" and instagram_token:
        return f"{INSTAGRAM_OEMBED}?{urlencode({'url': url, 'access_token': instagram_token})}"
    return None


def _text(value, max_len: int) -> str | None:
    if not isinstance(value, str):
        return None
    text = " ".join(value.split())
    return text[:max_len] or None


def fetch_oembed(url: str, platform: str, fetcher, instagram_token: str | None = None) -> OEmbedInfo | None:
    endpoint = oembed_endpoint(url, platform, instagram_token)
    if not endpoint:
        return None

    try:
        resource = fetcher.fetch(endpoint, OEMBED_MAX_BYTES, label="oEmbed response")
    except (httpx.HTTPError, MealImportError) as exc:
        logger.info("oEmbed lookup failed for %s: %s", url, exc)
        return None
    if not resource.ok:
        logger.info("oEmbed lookup for %s returned HTTP %s", url, resource.status_code)
        return None

    try:
        payload = json.loads(resource.text)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None

    info = OEmbedInfo(
        title=_text(payload.get("title"), 4000),
        author_name=_text(payload.get("author_name"), 255),
        thumbnail_url=_text(payload.get("thumbnail_url"), 2048),
        html=payload.get("html") if isinstance(payload.get("html"), str) else None,
    )
    if not info.title and not info.author_name:
        return None
    return info
