import logging
from dataclasses import dataclass
from urllib.parse import urljoin

import httpx

from mealimport.errors import AiTimeoutError, AiValidationError
from mealimport.scraping import is_likely_mp4_url
from mealimport.security import validate_public_url

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 5

BROWSER_HEADERS = {
    # Some platforms block unknown user agents.
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36"
    ),
    "Accept": "video/*,text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


def normalize_content_type(value: str | None) -> str:
    raw = (value or "").strip().lower()
    if not raw:
        return ""
    return raw.split(";")[0].strip()


@dataclass
class FetchedResource:
    url: str
    status_code: int
    content_type: str
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    @property
    def is_video(self) -> bool:
        if self.content_type.startswith("video/"):
            return True
        return self.content_type == "application/octet-stream" and is_likely_mp4_url(self.url)

    @property
    def video_mime_type(self) -> str:
        return self.content_type if self.content_type.startswith("video/") else "video/mp4"


class SafeFetcher:
    """GETs public URLs with per-hop SSRF checks and a streamed byte cap."""

    def __init__(
        self,
        client: httpx.Client | None = None,
        timeout: float = 12.0,
        allow_private: bool = False,
    ):
        self.client = client or httpx.Client(timeout=timeout, headers=BROWSER_HEADERS)
        self.timeout = timeout
        self.allow_private = allow_private

    def close(self) -> None:
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def fetch(
        self,
        url: str,
        max_bytes: int,
        label: str = "Page content",
        read_policy=None,
        method: str = "GET",
        json: dict | None = None,
        headers: dict | None = None,
    ) -> FetchedResource:
        """Fetch ``url`` following redirects by hand.

        ``read_policy`` receives ``(url, content_type)`` and returns the
        ``(max_bytes, label)`` to read the body with, or None to leave it unread.
        """
        current = validate_public_url(url, allow_private=self.allow_private)
        for _ in range(MAX_REDIRECTS + 1):
            request = self.client.build_request(
                method,
                current,
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
            try:
                response = self.client.send(request, stream=True, follow_redirects=False)
            except httpx.TimeoutException as exc:
                raise AiTimeoutError("Request timed out.") from exc

            try:
                if response.is_redirect:
                    current = validate_public_url(
                        urljoin(current, response.headers["location"]),
                        allow_private=self.allow_private,
                    )
                    logger.debug("Following redirect to %s", current)
                    method, json = "GET", None
                    continue

                content_type = normalize_content_type(response.headers.get("content-type"))
                body = b""
                limit = (max_bytes, label) if read_policy is None else read_policy(current, content_type)
                if response.is_success and limit is not None:
                    body = self._read_limited(response, *limit)
                return FetchedResource(
                    url=str(response.url),
                    status_code=response.status_code,
                    content_type=content_type,
                    body=body,
                )
            finally:
                response.close()

        raise AiValidationError("Too many redirects.")

    def _read_limited(self, response: httpx.Response, max_bytes: int, label: str) -> bytes:
        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > max_bytes:
            raise AiValidationError(self._too_large_message(label, max_bytes))

        chunks = []
        total = 0
        try:
            for chunk in response.iter_bytes():
                total += len(chunk)
                if total > max_bytes:
                    raise AiValidationError(self._too_large_message(label, max_bytes))
                chunks.append(chunk)
        except httpx.TimeoutException as exc:
            raise AiTimeoutError("Request timed out.") from exc
        return b"".join(chunks)

    @staticmethod
    def _too_large_message(label: str, max_bytes: int) -> str:
        megabytes = round(max_bytes / 1024 / 1024)
        return f"{label} is too large. Please use a shorter video (max {megabytes}MB)."
