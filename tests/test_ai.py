import json
import unittest
from types import SimpleNamespace

import httpx
from google.genai import errors as genai_errors

from mealimport.ai import (
    NO_VIDEO_MESSAGE,
    GeminiClient,
    ImportContext,
    OpenAIClient,
    build_ai_client,
    extract_json_object,
    run_extraction_pipeline,
)
from mealimport.config import ImportSettings
from mealimport.errors import AiConfigError, AiProviderError, AiTimeoutError, AiValidationError
from mealimport.video import ResolvedVideo

PASTA_JSON = json.dumps(
    {"recipes": [{"name": "lemon pasta", "cuisines": ["Italian"], "ingredients": [{"name": "spaghetti", "quantity": 200, "unit": "g"}]}]}
)


class FakeAiClient:
    def __init__(self, answers, supports_video=True):
        self.answers = list(answers)
        self.supports_video = supports_video
        self.calls = []

    def generate(self, system, prompt, video=None):
        self.calls.append({"system": system, "prompt": prompt, "video": video})
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer


def _video():
    return ResolvedVideo(
        video_url="https://cdn.example.com/clip.mp4",
        mime_type="video/mp4",
        data=b"\x00\x00\x00\x18ftypmp42",
        extracted_from=["og_video_meta"],
    )


class ExtractJsonObjectTestCase(unittest.TestCase):
    def test_strips_code_fences(self):
        self.assertEqual(extract_json_object('```json\n{"recipes": []}\n```'), {"recipes": []})

    def test_recovers_object_from_prose(self):
        self.assertEqual(extract_json_object('Sure! {"a": 1} Enjoy.'), {"a": 1})

    def test_error_messages(self):
        for raw, message in [
            ("", "AI returned an empty response."),
            ("no json here", "AI returned a non-JSON response."),
            ("{bad: json}", "AI returned invalid JSON."),
        ]:
            with self.subTest(raw=raw):
                with self.assertRaises(AiValidationError) as ctx:
                    extract_json_object(raw)
                self.assertEqual(str(ctx.exception), message)


class ExtractionPipelineTestCase(unittest.TestCase):
    def test_video_stage_succeeds(self):
        client = FakeAiClient([PASTA_JSON])
        ctx = ImportContext(url="https://www.tiktok.com/@c/video/1", platform="tiktok", video=_video(), caption="Lemon pasta!")

        recipes, stages = run_extraction_pipeline(client, ctx, 12, 3)

        self.assertEqual(stages, ["video"])
        self.assertEqual(recipes[0]["name"], "Lemon Pasta")
        self.assertIs(client.calls[0]["video"], ctx.video)
        self.assertIn("Lemon pasta!", client.calls[0]["prompt"])

    def test_falls_back_to_caption_when_video_has_no_recipe(self):
        client = FakeAiClient(['{"recipes": []}', PASTA_JSON])
        ctx = ImportContext(url="https://x.test/v", platform="other", video=_video(), caption="200g spaghetti, lemon")

        recipes, stages = run_extraction_pipeline(client, ctx, 12, 3)

        self.assertEqual(stages, ["video", "caption"])
        self.assertIsNone(client.calls[1]["video"])
        self.assertEqual(len(recipes), 1)

    def test_provider_error_on_video_falls_back_to_caption(self):
        client = FakeAiClient([AiProviderError("boom"), PASTA_JSON])
        ctx = ImportContext(url="https://x.test/v", platform="other", video=_video(), page_text="Recipe: pasta")

        _, stages = run_extraction_pipeline(client, ctx, 12, 3)

        self.assertEqual(stages, ["video", "caption"])

    def test_repairs_unparseable_answer(self):
        client = FakeAiClient(["Here is the recipe: lemon pasta with spaghetti", PASTA_JSON])
        ctx = ImportContext(url="https://x.test/v", platform="other", caption="lemon pasta")

        recipes, stages = run_extraction_pipeline(client, ctx, 12, 3)

        self.assertEqual(stages, ["caption", "caption_repair"])
        self.assertIn("lemon pasta with spaghetti", client.calls[1]["prompt"])
        self.assertEqual(recipes[0]["ingredients"], [{"name": "Spaghetti", "unit": "g", "quantity": 200}])

    def test_text_only_client_skips_video(self):
        client = FakeAiClient([PASTA_JSON], supports_video=False)
        ctx = ImportContext(url="https://x.test/v", platform="other", video=_video(), caption="pasta")

        _, stages = run_extraction_pipeline(client, ctx, 12, 3)

        self.assertEqual(stages, ["caption"])

    def test_text_only_client_without_caption(self):
        client = FakeAiClient([], supports_video=False)
        ctx = ImportContext(url="https://x.test/v", platform="other", video=_video())
        with self.assertRaises(AiValidationError) as ctx_err:
            run_extraction_pipeline(client, ctx, 12, 3)
        self.assertIn("cannot analyze video", str(ctx_err.exception))

    def test_nothing_to_analyze(self):
        client = FakeAiClient([])
        with self.assertRaises(AiValidationError) as ctx_err:
            run_extraction_pipeline(client, ImportContext(url="https://x.test/v", platform="other"), 12, 3)
        self.assertEqual(str(ctx_err.exception), NO_VIDEO_MESSAGE)
        self.assertEqual(client.calls, [])

    def test_last_stage_error_propagates(self):
        client = FakeAiClient([AiTimeoutError("slow")])
        ctx = ImportContext(url="https://x.test/v", platform="other", caption="pasta")
        with self.assertRaises(AiTimeoutError):
            run_extraction_pipeline(client, ctx, 12, 3)


class FakeGenaiModels:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


class FakeGenaiClient:
    def __init__(self, models):
        self.models = models
        self.closed = False

    def close(self):
        self.closed = True


class GeminiClientTestCase(unittest.TestCase):
    def test_sends_inline_video_and_reads_text(self):
        models = FakeGenaiModels(response=SimpleNamespace(text=' {"recipes": []} '))
        client = GeminiClient("secret", "gemini-2.0-flash", client=FakeGenaiClient(models))

        answer = client.generate("system text", "prompt text", video=_video())

        self.assertEqual(answer, '{"recipes": []}')
        call = models.calls[0]
        self.assertEqual(call["model"], "gemini-2.0-flash")
        video_part, prompt = call["contents"]
        self.assertEqual(video_part.inline_data.mime_type, "video/mp4")
        self.assertEqual(video_part.inline_data.data, _video().data)
        self.assertEqual(prompt, "prompt text")
        self.assertEqual(call["config"].system_instruction, "system text")
        self.assertEqual(call["config"].response_mime_type, "application/json")

    def test_text_only_prompt(self):
        models = FakeGenaiModels(response=SimpleNamespace(text=None))
        client = GeminiClient("secret", "gemini-2.0-flash", client=FakeGenaiClient(models))

        self.assertEqual(client.generate("s", "just text"), "")
        self.assertEqual(models.calls[0]["contents"], ["just text"])

    def test_api_error_becomes_provider_error(self):
        error = genai_errors.ClientError(
            400, {"error": {"code": 400, "message": "API key not valid.", "status": "INVALID_ARGUMENT"}}
        )
        client = GeminiClient("bad", "gemini-2.0-flash", client=FakeGenaiClient(FakeGenaiModels(error=error)))
        with self.assertRaises(AiProviderError) as ctx:
            client.generate("s", "p")
        self.assertIn("API key not valid.", str(ctx.exception))

    def test_timeout(self):
        client = GeminiClient("k", "m", client=FakeGenaiClient(FakeGenaiModels(error=httpx.ReadTimeout("timed out"))))
        with self.assertRaises(AiTimeoutError):
            client.generate("s", "p")

    def test_close_releases_sdk_client(self):
        sdk = FakeGenaiClient(FakeGenaiModels())
        GeminiClient("k", "m", client=sdk).close()
        self.assertTrue(sdk.closed)


class OpenAIClientTestCase(unittest.TestCase):
    def test_uses_responses_api(self):
        calls = []

        def create(**kwargs):
            calls.append(kwargs)
            return SimpleNamespace(output_text="  {}  ")

        fake = SimpleNamespace(responses=SimpleNamespace(create=create))
        client = OpenAIClient("sk-test", "gpt-4.1-mini", client=fake)

        self.assertEqual(client.generate("sys", "prompt"), "{}")
        self.assertEqual(calls, [{"model": "gpt-4.1-mini", "instructions": "sys", "input": "prompt"}])
        self.assertFalse(client.supports_video)

    def test_close_releases_sdk_client(self):
        closed = []
        fake = SimpleNamespace(close=lambda: closed.append(True))
        OpenAIClient("sk-test", "gpt-4.1-mini", client=fake).close()
        self.assertEqual(closed, [True])


class BuildAiClientTestCase(unittest.TestCase):
    def test_missing_keys_and_unknown_provider(self):
        with self.assertRaises(AiConfigError):
            build_ai_client(ImportSettings(ai_provider="openai", openai_api_key=None))
        with self.assertRaises(AiConfigError):
            build_ai_client(ImportSettings(ai_provider="gemini", gemini_api_key=None))
        with self.assertRaises(AiConfigError):
            build_ai_client(ImportSettings(ai_provider="llama", openai_api_key="x"))

    def test_gemini_client(self):
        client = build_ai_client(ImportSettings(ai_provider="Gemini", gemini_api_key="g-key"))
        self.assertIsInstance(client, GeminiClient)
        self.assertTrue(client.supports_video)
        client.close()

    def test_gemini_is_the_default_provider(self):
        settings = ImportSettings.from_mapping({"GEMINI_API_KEY": "g-key"})
        self.assertEqual(settings.ai_provider, "gemini")
        client = build_ai_client(settings)
        self.assertIsInstance(client, GeminiClient)
        client.close()


if __name__ == "__main__":
    unittest.main()
