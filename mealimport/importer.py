"""Recipe import from shared social/video links.

The pipeline is best-effort: the shared page is fetched once, then each
source of recipe data is tried in turn (structured JSON-LD, the video itself,
the caption) until one yields at least one valid recipe.
"""
import logging
import math
from dataclasses import dataclass, field

from mealimport.ai import VIDEO_UNSUPPORTED_MESSAGE, ImportContext, build_ai_client, run_extraction_pipeline
from mealimport.errors import AiValidationError
from mealimport.fetching import SafeFetcher
from mealimport.meals import safe_trim, validate_imported_recipes
from mealimport.oembed import fetch_oembed
from mealimport.platforms import guess_platform
from mealimport.scraping import (
    clean_text,
    extract_caption,
    extract_recipes_from_jsonld,
    extract_title,
    is_likely_mp4_url,
)
from mealimport.security import MAX_URL_LENGTH, validate_public_url
from mealimport.video import PageSnapshot, build_video_resolvers, resolve_video, resource_to_video

logger = logging.getLogger(__name__)

DEFAULT_MAX_INGREDIENTS = 12
DEFAULT_MAX_RECIPES = 3
MAX_PAGE_TEXT_CHARS = 6000


@dataclass
class ImportVideoMealInput:
    url: str
    max_ingredients: int = DEFAULT_MAX_INGREDIENTS
    max_recipes: int = DEFAULT_MAX_RECIPES


@dataclass
class ImportResult:
    recipes: list
    meta: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"recipes": self.recipes, "meta": self.meta}


def _clamp(value, low: int, high: int, default: int) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return default
    return min(max(math.floor(value + 0.5), low), high)


def clamp_max_ingredients(value) -> int:
    return _clamp(value, 1, 30, DEFAULT_MAX_INGREDIENTS)


def clamp_max_recipes(value) -> int:
    return _clamp(value, 1, 5, DEFAULT_MAX_RECIPES)


def validate_import_video_meal_input(raw, allow_private: bool = False) -> ImportVideoMealInput:
    if isinstance(raw, ImportVideoMealInput):
        raw = {"url": raw.url, "maxIngredients": raw.max_ingredients, "maxRecipes": raw.max_recipes}
    if not isinstance(raw, dict):
        raise AiValidationError("Invalid JSON body.")

    url = safe_trim(raw.get("url"), MAX_URL_LENGTH + 1)
    if not url:
        raise AiValidationError("Missing required field: url")
    url = validate_public_url(url, allow_private=allow_private)

    max_ingredients = raw.get("maxIngredients", raw.get("max_ingredients"))
    max_recipes = raw.get("maxRecipes", raw.get("max_recipes"))
    return ImportVideoMealInput(
        url=url,
        max_ingredients=clamp_max_ingredients(max_ingredients),
        max_recipes=clamp_max_recipes(max_recipes),
    )


def _first_response_policy(settings, read_video: bool):
    def policy(url: str, content_type: str):
        if content_type.startswith("video/") or (
            content_type == "application/octet-stream" and is_likely_mp4_url(url)
        ):
            return (settings.video_max_bytes, "Video") if read_video else None
        if "text/html" in content_type or content_type in ("", "application/octet-stream"):
            return settings.html_max_bytes, "Page content"
        return None

    return policy


def import_meal_from_video(raw_input, settings, fetcher=None, ai_client=None, resolvers=None) -> ImportResult:
    validated = validate_import_video_meal_input(raw_input, allow_private=settings.allow_private_urls)
    owns_client = ai_client is None
    client = ai_client or build_ai_client(settings)

    owns_fetcher = fetcher is None
    if owns_fetcher:
        fetcher = SafeFetcher(timeout=settings.fetch_timeout, allow_private=settings.allow_private_urls)
    try:
        if resolvers is None:
            resolvers = build_video_resolvers(settings, fetcher)
        return _import(validated, settings, fetcher, client, resolvers)
    finally:
        if owns_fetcher:
            fetcher.close()
        if owns_client:
            client.close()


def _import(validated: ImportVideoMealInput, settings, fetcher, client, resolvers) -> ImportResult:
    url = validated.url
    max_ingredients = validated.max_ingredients
    max_recipes = validated.max_recipes
    platform = guess_platform(url)

    first = fetcher.fetch(
        url,
        settings.html_max_bytes,
        read_policy=_first_response_policy(settings, read_video=client.supports_video),
    )
    if not first.ok:
        raise AiValidationError(f"Could not access that link (HTTP {first.status_code}).")

    # Short links redirect to the post; embeds and oEmbed key off where we landed.
    landed_url = first.url or url
    page_platform = guess_platform(landed_url)

    ctx = ImportContext(url=url, platform=page_platform)
    text_sources = []
    page = None

    if first.is_video:
        if not client.supports_video:
            raise AiValidationError(VIDEO_UNSUPPORTED_MESSAGE)
        ctx.video = resource_to_video(first, ["direct_video_url"])
    elif "text/html" in first.content_type or first.content_type in ("", "application/octet-stream"):
        html_text = first.text
        page = PageSnapshot(url=url, final_url=landed_url, platform=page_platform, html=html_text)

        structured = extract_recipes_from_jsonld(html_text)
        if structured:
            try:
                recipes = validate_imported_recipes(structured, max_ingredients, max_recipes)
            except AiValidationError as exc:
                logger.info("JSON-LD recipe on %s was unusable: %s", url, exc)
            else:
                logger.info("Imported %d recipe(s) from JSON-LD on %s", len(recipes), url)
                return ImportResult(
                    recipes=recipes,
                    meta=_meta(platform, ["jsonld_recipe"], None, ["jsonld"]),
                )

        ctx.caption = extract_caption(html_text)
        if ctx.caption:
            text_sources.append("og_caption")
        ctx.title = extract_title(html_text)
        ctx.page_text = clean_text(html_text)[:MAX_PAGE_TEXT_CHARS] or None
    else:
        raise AiValidationError("Unsupported link type. Please share a public TikTok/Reel link.")

    if not ctx.caption:
        info = fetch_oembed(landed_url, page_platform, fetcher, settings.instagram_oembed_token)
        if info is not None:
            ctx.caption = info.title
            ctx.author = info.author_name
            ctx.title = ctx.title or info.title
            text_sources.append("oembed_caption")

    if ctx.video is None and page is not None and client.supports_video:
        ctx.video = resolve_video(page, resolvers)
        if ctx.video is None:
            logger.info("No downloadable video found for %s", url)

    recipes, stages = run_extraction_pipeline(client, ctx, max_ingredients, max_recipes)

    winning_stage = [stage for stage in stages if not stage.endswith("_repair")][-1]
    if winning_stage == "video":
        extracted_from = list(ctx.video.extracted_from)
    else:
        extracted_from = text_sources or ["page_text"]
    return ImportResult(
        recipes=recipes,
        meta=_meta(platform, extracted_from, ctx.video.video_url if ctx.video else None, stages),
    )


def _meta(platform: str, extracted_from: list, video_url: str | None, stages: list) -> dict:
    return {
        "platform": platform,
        "extractedFrom": extracted_from,
        "videoUrl": video_url,
        "stages": stages,
    }
