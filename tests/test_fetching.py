import unittest

import httpx

from mealimport.errors import AiTimeoutError, AiValidationError, UnsafeUrlError
from mealimport.fetching import SafeFetcher, normalize_content_type


def make_fetcher(handler, allow_private=True):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return SafeFetcher(client=client, allow_private=allow_private)


class SafeFetcherTestCase(unittest.TestCase):
    def test_follows_relative_redirects(self):
        def handler(request):
            if request.url.path == "/a":
                return httpx.Response(301, headers={"Location": "/b"})
            return httpx.Response(200, headers={"Content-Type": "text/html; charset=utf-8"}, content=b"<p>ok</p>")

        with make_fetcher(handler) as fetcher:
            resource = fetcher.fetch("https://example.com/a", 10_000)

        self.assertEqual(resource.url, "https://example.com/b")
        self.assertEqual(resource.content_type, "text/html")
        self.assertEqual(resource.text, "<p>ok</p>")
        self.assertTrue(resource.ok)

    def test_redirect_into_private_network_is_blocked(self):
        def handler(request):
            return httpx.Response(302, headers={"Location": "http://127.0.0.1/admin"})

        with make_fetcher(handler, allow_private=False) as fetcher:
            with self.assertRaises(UnsafeUrlError):
                fetcher.fetch("https://93.184.216.34/start", 10_000)

    def test_redirect_loop_is_cut_off(self):
        def handler(request):
            return httpx.Response(302, headers={"Location": "/again"})

        with make_fetcher(handler) as fetcher:
            with self.assertRaises(AiValidationError) as ctx:
                fetcher.fetch("https://example.com/start", 10_000)
        self.assertEqual(str(ctx.exception), "Too many redirects.")

    def test_body_over_limit_is_rejected(self):
        def handler(request):
            return httpx.Response(200, headers={"Content-Type": "video/mp4"}, content=b"x" * 3 * 1024 * 1024)

        with make_fetcher(handler) as fetcher:
            with self.assertRaises(AiValidationError) as ctx:
                fetcher.fetch("https://example.com/clip.mp4", 2 * 1024 * 1024, label="Video")
        self.assertIn("Video is too large", str(ctx.exception))
        self.assertIn("max 2MB", str(ctx.exception))

    def test_read_policy_can_skip_body(self):
        def handler(request):
            return httpx.Response(200, headers={"Content-Type": "application/pdf"}, content=b"%PDF-1.4")

        with make_fetcher(handler) as fetcher:
            resource = fetcher.fetch("https://example.com/menu.pdf", 10_000, read_policy=lambda url, ct: None)

        self.assertEqual(resource.body, b"")
        self.assertEqual(resource.content_type, "application/pdf")

    def test_error_status_is_returned_without_body(self):
        def handler(request):
            return httpx.Response(404, content=b"not found")

        with make_fetcher(handler) as fetcher:
            resource = fetcher.fetch("https://example.com/gone", 10_000)

        self.assertFalse(resource.ok)
        self.assertEqual(resource.status_code, 404)
        self.assertEqual(resource.body, b"")

    def test_timeout_maps_to_ai_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with make_fetcher(handler) as fetcher:
            with self.assertRaises(AiTimeoutError):
                fetcher.fetch("https://example.com/slow", 10_000)

    def test_octet_stream_mp4_counts_as_video(self):
        def handler(request):
            return httpx.Response(200, headers={"Content-Type": "application/octet-stream"}, content=b"\x00\x01")

        with make_fetcher(handler) as fetcher:
            resource = fetcher.fetch("https://cdn.example.com/v/clip.mp4?sig=1", 10_000)

        self.assertTrue(resource.is_video)
        self.assertEqual(resource.video_mime_type, "video/mp4")


class ContentTypeTestCase(unittest.TestCase):
    def test_normalize_content_type(self):
        self.assertEqual(normalize_content_type("Text/HTML; charset=UTF-8"), "text/html")
        self.assertEqual(normalize_content_type(None), "")


if __name__ == "__main__":
    unittest.main()
