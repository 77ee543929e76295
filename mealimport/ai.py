import json
import logging
import re
from dataclasses import dataclass
from typing import Protocol

import httpx
import openai
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from openai import OpenAI

from mealimport.errors import AiConfigError, AiProviderError, AiTimeoutError, AiValidationError
from mealimport.meals import ALLOWED_CUISINES, ALLOWED_UNITS, validate_imported_recipes
from mealimport.video import ResolvedVideo

logger = logging.getLogger(__name__)

MAX_PAGE_TEXT_CHARS = 6000
MAX_REPAIR_INPUT_CHARS = 6000

NO_VIDEO_MESSAGE = (
    "Could not find a downloadable video for that link. "
    "TikTok/Instagram may block access without an approved API."
)

VIDEO_UNSUPPORTED_MESSAGE = "The configured AI provider cannot analyze video files without a caption."

REPAIR_SYSTEM_INSTRUCTION = (
    "You repair malformed JSON produced by another model. "
    "Return ONLY valid JSON (no markdown, no code fences, no explanations)."
)


@dataclass
class ImportContext:
    url: str
    platform: str
    video: ResolvedVideo | None = None
    caption: str | None = None
    title: str | None = None
    author: str | None = None
    page_text: str | None = None

    @property
    def has_text_context(self) -> bool:
        return bool(self.caption or self.page_text)


def extract_json_object(raw_text: str):
    text = (raw_text or "").strip()
    if not text:
        raise AiValidationError("AI returned an empty response.")

    if text.startswith("```"):
        text = re.sub(r"^```[a-zA-Z0-9]*\s*", "", text)
        text = re.sub(r"\s*```$", "", text)

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Accidental prose around the payload.
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last <= first:
        raise AiValidationError("AI returned a non-JSON response.")
    try:
        return json.loads(text[first : last + 1])
    except json.JSONDecodeError as exc:
        raise AiValidationError("AI returned invalid JSON.") from exc


def build_system_instruction(max_ingredients: int, max_recipes: int) -> str:
    return "\n".join(
        [
            "You extract recipes from short social cooking videos for a meal planning app.",
            "Return ONLY valid JSON (no markdown, no code fences, no explanations).",
            "The JSON MUST match exactly this shape:",
            '{ "recipes": [ { "name": string, "cuisines": string[]|null, "ingredients": '
            '[ { "name": string, "quantity": number|null, "unit": string, "category": string|null } ] } ] }',
            "Rules:",
            f"- recipes must be 0..{max_recipes} items",
            f"- ingredients must be 1..{max_ingredients} items",
            "- each ingredient.name must be non-empty",
            "- prefer including quantity + unit for every ingredient, but quantity may be null",
            f"- unit must be one of: {', '.join(ALLOWED_UNITS)} (never null; choose the closest match if unsure)",
            f"- cuisines must be null OR 1..2 items picked ONLY from: {', '.join(ALLOWED_CUISINES)}",
            "- category should be one of: Produce, Pantry, Meat, Dairy, Bakery, Other (or null)",
        ]
    )


def _header_lines(ctx: ImportContext, max_ingredients: int, max_recipes: int) -> list[str]:
    return [
        f"Video URL: {ctx.url}",
        f"Platform: {ctx.platform}",
        f"Max recipes: {max_recipes}",
        f"Max ingredients per recipe: {max_ingredients}",
    ]


def build_video_prompt(ctx: ImportContext, max_ingredients: int, max_recipes: int) -> str:
    lines = _header_lines(ctx, max_ingredients, max_recipes)
    if ctx.caption:
        lines += ["", "Caption (may list ingredients):", ctx.caption]
    lines += [
        "",
        "Task:",
        "- Analyze the provided cooking video (visuals + audio).",
        "- Extract 1 or more recipe candidates; if the video clearly contains multiple distinct recipes/variations, return multiple.",
        "- Use spoken words, on-screen text, and visuals (ingredients shown) to infer ingredient names and rough quantities.",
        "- If a quantity is unknown, return null quantity.",
        '- If no recipe is present, return { "recipes": [] }.',
    ]
    return "\n".join(lines)


def build_text_prompt(ctx: ImportContext, max_ingredients: int, max_recipes: int) -> str:
    lines = _header_lines(ctx, max_ingredients, max_recipes)
    if ctx.title:
        lines.append(f"Post title: {ctx.title}")
    if ctx.author:
        lines.append(f"Author: {ctx.author}")
    if ctx.caption:
        lines += ["", "Caption:", ctx.caption]
    if ctx.page_text:
        lines += ["", "Page text excerpt:", ctx.page_text[:MAX_PAGE_TEXT_CHARS]]
    lines += [
        "",
        "Task:",
        "- The video itself is not available; use only the caption and page text above.",
        "- Extract every recipe the text describes, with ingredient names and quantities where given.",
        "- Do not invent ingredients that the text does not mention or clearly imply.",
        "- If a quantity is unknown, return null quantity.",
        '- If the text does not describe a recipe, return { "recipes": [] }.',
    ]
    return "\n".join(lines)


def build_repair_prompt(raw_text: str, max_ingredients: int, max_recipes: int) -> str:
    return "\n".join(
        [
            "The response below was supposed to be JSON of this shape:",
            '{ "recipes": [ { "name": string, "cuisines": string[]|null, "ingredients": '
            '[ { "name": string, "quantity": number|null, "unit": string, "category": string|null } ] } ] }',
            f"Keep at most {max_recipes} recipes and {max_ingredients} ingredients per recipe.",
            "Fix it and return only the corrected JSON. Do not add recipes that are not in it.",
            "",
            "Response:",
            (raw_text or "")[:MAX_REPAIR_INPUT_CHARS],
        ]
    )


class AiClient(Protocol):
    supports_video: bool

    def generate(self, system: str, prompt: str, video: ResolvedVideo | None = None) -> str:
        ...

    def close(self) -> None:
        ...


class OpenAIClient:
    supports_video = False

    def __init__(self, api_key: str, model: str, timeout: float = 45.0, client: OpenAI | None = None):
        self.model = model
        self.client = client or OpenAI(api_key=api_key, timeout=timeout, max_retries=1)

    def generate(self, system: str, prompt: str, video: ResolvedVideo | None = None) -> str:
        try:
            response = self.client.responses.create(model=self.model, instructions=system, input=prompt)
        except openai.APITimeoutError as exc:
            raise AiTimeoutError("AI provider request timed out.") from exc
        except openai.OpenAIError as exc:
            raise AiProviderError(str(exc) or "OpenAI request failed.") from exc
        return (response.output_text or "").strip()

    def close(self) -> None:
        self.client.close()


class GeminiClient:
    """Gemini via google-genai; the video travels inline with the prompt."""

    supports_video = True

    def __init__(self, api_key: str, model: str, timeout: float = 45.0, client: genai.Client | None = None):
        self.model = model
        self.client = client or genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(timeout * 1000)),
        )

    def generate(self, system: str, prompt: str, video: ResolvedVideo | None = None) -> str:
        contents = []
        if video is not None:
            contents.append(types.Part.from_bytes(data=video.data, mime_type=video.mime_type))
        contents.append(prompt)

        config = types.GenerateContentConfig(
            system_instruction=system,
            temperature=0.25,
            max_output_tokens=1800,
            response_mime_type="application/json",
        )
        try:
            response = self.client.models.generate_content(model=self.model, contents=contents, config=config)
        except httpx.TimeoutException as exc:
            raise AiTimeoutError("AI provider request timed out.") from exc
        except genai_errors.APIError as exc:
            raise AiProviderError(exc.message or f"Gemini request failed ({exc.code}).") from exc
        except httpx.HTTPError as exc:
            raise AiProviderError(f"Gemini request failed: {exc}") from exc
        return (response.text or "").strip()

    def close(self) -> None:
        self.client.close()


def build_ai_client(settings) -> AiClient:
    provider = (settings.ai_provider or "gemini").lower()
    if provider == "gemini":
        if not settings.gemini_api_key:
            raise AiConfigError("GEMINI_API_KEY is not configured.")
        return GeminiClient(settings.gemini_api_key, settings.gemini_model, timeout=settings.provider_timeout)
    if provider == "openai":
        if not settings.openai_api_key:
            raise AiConfigError("OPENAI_API_KEY is not configured.")
        return OpenAIClient(settings.openai_api_key, settings.openai_model, timeout=settings.provider_timeout)
    raise AiConfigError(f"Unsupported AI provider: {provider}")


def _recipes_from_answer(client: AiClient, answer: str, stage: str, stages: list, max_ingredients: int, max_recipes: int):
    try:
        parsed = extract_json_object(answer)
    except AiValidationError as exc:
        logger.info("Stage %s returned unparseable output (%s); asking for a repair", stage, exc)
        stages.append(f"{stage}_repair")
        repaired = client.generate(REPAIR_SYSTEM_INSTRUCTION, build_repair_prompt(answer, max_ingredients, max_recipes))
        parsed = extract_json_object(repaired)
    return validate_imported_recipes(parsed, max_ingredients, max_recipes)


def run_extraction_pipeline(client: AiClient, ctx: ImportContext, max_ingredients: int, max_recipes: int):
    """Try the video prompt, then the caption/page-text prompt.

    Returns ``(recipes, stages)``. The last stage's error propagates when
    every stage fails.
    """
    attempts = []
    if ctx.video is not None and client.supports_video:
        attempts.append(("video", build_video_prompt(ctx, max_ingredients, max_recipes), ctx.video))
    if ctx.has_text_context:
        attempts.append(("caption", build_text_prompt(ctx, max_ingredients, max_recipes), None))
    if not attempts:
        if ctx.video is not None:
            raise AiValidationError(VIDEO_UNSUPPORTED_MESSAGE)
        raise AiValidationError(NO_VIDEO_MESSAGE)

    system = build_system_instruction(max_ingredients, max_recipes)
    stages = []
    for index, (stage, prompt, video) in enumerate(attempts):
        stages.append(stage)
        try:
            answer = client.generate(system, prompt, video=video)
            recipes = _recipes_from_answer(client, answer, stage, stages, max_ingredients, max_recipes)
        except (AiProviderError, AiTimeoutError, AiValidationError) as exc:
            if index == len(attempts) - 1:
                raise
            logger.warning("Extraction stage %s failed for %s: %s", stage, ctx.url, exc)
            continue
        logger.info("Extracted %d recipe(s) from %s via %s", len(recipes), ctx.url, stage)
        return recipes, stages

    raise AiValidationError("No recipes found in that video.")
