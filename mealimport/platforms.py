import re
from urllib.parse import parse_qs, quote, urlparse

TIKTOK_VIDEO_ID_RE = re.compile(r"^\d{8,}$")


def _path_parts(url: str) -> list[str]:
    try:
        return [part for part in urlparse(url).path.split("/") if part]
    except ValueError:
        return []


def guess_platform(url: str) -> str:
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return "other"
    if "tiktok.com" in host:
        return "tiktok"
    if "instagram.com" in host:
        return "instagram"
    if host == "youtu.be" or "youtube.com" in host:
        return "youtube"
    return "other"


def extract_tiktok_video_id(url: str) -> str | None:
    parts = _path_parts(url)
    if "video" in parts:
        idx = parts.index("video")
        if idx + 1 < len(parts) and TIKTOK_VIDEO_ID_RE.match(parts[idx + 1]):
            return parts[idx + 1]
    return None


def extract_instagram_shortcode(url: str) -> str | None:
    parts = _path_parts(url)
    for idx, part in enumerate(parts):
        if part in {"reel", "reels", "p"} and idx + 1 < len(parts):
            return parts[idx + 1]
    return None


def extract_youtube_video_id(url: str) -> str | None:
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    parts = _path_parts(url)
    if host == "youtu.be":
        return parts[0] if parts else None
    if parts and parts[0] in {"shorts", "embed", "live"} and len(parts) > 1:
        return parts[1]
    video_ids = parse_qs(parsed.query).get("v")
    return video_ids[0] if video_ids else None


def embed_urls(url: str, platform: str) -> list[tuple[str, str]]:
    """Embed pages worth scraping when the canonical page hides the video."""
    attempts = []
    if platform == "tiktok":
        video_id = extract_tiktok_video_id(url)
        if video_id:
            attempts.append((f"https://www.tiktok.com/embed/v2/{quote(video_id)}", "tiktok_embed_html"))
    elif platform == "instagram":
        shortcode = extract_instagram_shortcode(url)
        if shortcode:
            attempts.append(
                (f"https://www.instagram.com/reel/{quote(shortcode)}/embed/captioned/", "instagram_embed_html")
            )
            attempts.append(
                (f"https://www.instagram.com/p/{quote(shortcode)}/embed/captioned/", "instagram_embed_html")
            )
    return attempts
