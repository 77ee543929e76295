import json
import logging
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from mealimport.errors import AiValidationError, MealImportError
from mealimport.fetching import FetchedResource, SafeFetcher
from mealimport.platforms import embed_urls
from mealimport.scraping import extract_video_url_from_html

logger = logging.getLogger(__name__)

RESOLVER_RESPONSE_MAX_BYTES = 64_000


@dataclass
class PageSnapshot:
    """First response for the shared link, before any video is resolved."""

    url: str
    final_url: str
    platform: str
    html: str = ""


@dataclass
class ResolvedVideo:
    video_url: str
    mime_type: str
    data: bytes
    extracted_from: list[str] = field(default_factory=list)


class VideoResolver(Protocol):
    name: str

    def resolve(self, page: PageSnapshot) -> ResolvedVideo | None:
        ...


def resource_to_video(resource: FetchedResource, extracted_from: list[str]) -> ResolvedVideo:
    return ResolvedVideo(
        video_url=resource.url,
        mime_type=resource.video_mime_type,
        data=resource.body,
        extracted_from=list(extracted_from),
    )


def _video_read_policy(max_bytes: int):
    def policy(url: str, content_type: str):
        if content_type.startswith("video/") or content_type == "application/octet-stream":
            return max_bytes, "Video"
        return None

    return policy


def download_video(fetcher: SafeFetcher, video_url: str, max_bytes: int, extracted_from: list[str]) -> ResolvedVideo:
    resource = fetcher.fetch(video_url, max_bytes, read_policy=_video_read_policy(max_bytes))
    if not resource.ok:
        raise AiValidationError(f"Could not access video content (HTTP {resource.status_code}).")
    if not resource.is_video:
        raise AiValidationError("Resolved a link, but it did not return a video file.")
    return resource_to_video(resource, extracted_from)


class HtmlVideoResolver:
    """Finds a video reference in the page, then in the platform embed pages."""

    name = "html"

    def __init__(self, fetcher: SafeFetcher, video_max_bytes: int, html_max_bytes: int):
        self.fetcher = fetcher
        self.video_max_bytes = video_max_bytes
        self.html_max_bytes = html_max_bytes

    def resolve(self, page: PageSnapshot) -> ResolvedVideo | None:
        if page.html:
            extracted = extract_video_url_from_html(page.html, page.final_url)
            if extracted:
                video_url, strategy = extracted
                logger.info("Found video for %s via %s", page.url, strategy)
                try:
                    return download_video(self.fetcher, video_url, self.video_max_bytes, [strategy])
                except (httpx.HTTPError, MealImportError) as exc:
                    logger.warning("Video download via %s failed for %s: %s", strategy, page.url, exc)

        return self._resolve_from_embeds(page)

    def _resolve_from_embeds(self, page: PageSnapshot) -> ResolvedVideo | None:
        for embed_url, tag in embed_urls(page.final_url or page.url, page.platform):
            try:
                embed = self.fetcher.fetch(
                    embed_url,
                    self.html_max_bytes,
                    label="Embed content",
                    read_policy=self._html_read_policy,
                )
                if not embed.ok or not embed.body:
                    continue
                extracted = extract_video_url_from_html(embed.text, embed.url)
                if not extracted:
                    continue
                video_url, strategy = extracted
                logger.info("Found video for %s via %s/%s", page.url, tag, strategy)
                return download_video(self.fetcher, video_url, self.video_max_bytes, [tag, strategy])
            except (httpx.HTTPError, MealImportError) as exc:
                logger.info("Embed attempt %s failed for %s: %s", embed_url, page.url, exc)
        return None

    def _html_read_policy(self, url: str, content_type: str):
        if "text/html" in content_type or content_type == "":
            return self.html_max_bytes, "Embed content"
        return None


class RemoteVideoResolver:
    """Asks an external resolver service for a direct media URL.

    The service receives ``{"url": ...}`` and answers ``{"videoUrl": ...}``.
    """

    name = "remote"

    def __init__(self, fetcher: SafeFetcher, endpoint: str, video_max_bytes: int, token: str | None = None):
        self.fetcher = fetcher
        self.endpoint = endpoint
        self.video_max_bytes = video_max_bytes
        self.token = token

    def resolve(self, page: PageSnapshot) -> ResolvedVideo | None:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            answer = self.fetcher.fetch(
                self.endpoint,
                RESOLVER_RESPONSE_MAX_BYTES,
                label="Resolver response",
                method="POST",
                json={"url": page.url, "platform": page.platform},
                headers=headers,
            )
        except (httpx.HTTPError, MealImportError) as exc:
            logger.warning("Remote video resolver failed for %s: %s", page.url, exc)
            return None
        if not answer.ok:
            logger.warning("Remote video resolver returned HTTP %s for %s", answer.status_code, page.url)
            return None

        try:
            payload = json.loads(answer.text)
        except json.JSONDecodeError:
            return None
        video_url = payload.get("videoUrl") if isinstance(payload, dict) else None
        if not isinstance(video_url, str) or not video_url.strip():
            return None

        try:
            return download_video(self.fetcher, video_url.strip(), self.video_max_bytes, ["remote_resolver"])
        except (httpx.HTTPError, MealImportError) as exc:
            logger.warning("Remote resolver video download failed for %s: %s", page.url, exc)
            return None


def build_video_resolvers(settings, fetcher: SafeFetcher) -> list:
    resolvers = [HtmlVideoResolver(fetcher, settings.video_max_bytes, settings.html_max_bytes)]
    if settings.video_resolver_url:
        resolvers.append(
            RemoteVideoResolver(
                fetcher,
                settings.video_resolver_url,
                settings.video_max_bytes,
                token=settings.video_resolver_token,
            )
        )
    return resolvers


def resolve_video(page: PageSnapshot, resolvers) -> ResolvedVideo | None:
    for resolver in resolvers:
        video = resolver.resolve(page)
        if video is not None:
            return video
    return None
