import json
import re
from html import unescape
from urllib.parse import urljoin

META_TAG_RE = re.compile(r"<meta\b[^>]*>", re.IGNORECASE)
ATTR_RE = re.compile(r"([a-zA-Z_:.-]+)\s*=\s*([\"'])(.*?)\2", re.DOTALL)
VIDEO_TAG_RE = re.compile(r"<(video|source)\b[^>]*\bsrc=([\"'])(.*?)\2[^>]*>", re.IGNORECASE | re.DOTALL)
ABSOLUTE_URL_RE = re.compile(r"https?://[^\s\"'<>\\]+", re.IGNORECASE)
MP4_RE = re.compile(r"\.mp4(?:$|[?#])", re.IGNORECASE)
JSON_STRING = r"\"((?:[^\"\\]|\\.)*)\""

EMBEDDED_VIDEO_PATTERNS = [
    (re.compile(r"\"playAddr\"\s*:\s*\"([^\"]+)\"", re.IGNORECASE), "tiktok_sigi_state"),
    (re.compile(r"\"downloadAddr\"\s*:\s*\"([^\"]+)\"", re.IGNORECASE), "tiktok_sigi_state"),
    (re.compile(r"\"playUrl\"\s*:\s*\"([^\"]+)\"", re.IGNORECASE), "tiktok_sigi_state"),
    (re.compile(r"\"video_url\"\s*:\s*\"([^\"]+)\"", re.IGNORECASE), "instagram_json"),
    (re.compile(r"\"videoUrl\"\s*:\s*\"([^\"]+)\"", re.IGNORECASE), "instagram_json"),
    (re.compile(r"\"contentUrl\"\s*:\s*\"([^\"]+)\"", re.IGNORECASE), "instagram_json"),
]

EMBEDDED_CAPTION_PATTERNS = [
    re.compile(r"\"edge_media_to_caption\"\s*:\s*\{\s*\"edges\"\s*:\s*\[\s*\{\s*\"node\"\s*:\s*\{\s*\"text\"\s*:\s*" + JSON_STRING),
    re.compile(r"\"caption\"\s*:\s*\{[^{}]*?\"text\"\s*:\s*" + JSON_STRING),
    re.compile(r"\"caption\"\s*:\s*" + JSON_STRING),
    re.compile(r"\"desc\"\s*:\s*" + JSON_STRING),
]
CAPTION_DIV_RE = re.compile(r"<div[^>]+class=[\"'][^\"']*\bCaption\b[^\"']*[\"'][^>]*>(.*?)</div>", re.IGNORECASE | re.DOTALL)

MAX_URL_SCAN = 25
MAX_CAPTION_LENGTH = 4000

UNICODE_FRACTIONS = {
    "½": 0.5,
    "⅓": 1 / 3,
    "⅔": 2 / 3,
    "¼": 0.25,
    "¾": 0.75,
    "⅕": 0.2,
    "⅛": 0.125,
    "⅜": 0.375,
    "⅝": 0.625,
    "⅞": 0.875,
}

INGREDIENT_UNIT_WORDS = {
    "g", "gram", "grams", "kg", "kilogram", "kilograms",
    "oz", "ounce", "ounces", "lb", "lbs", "pound", "pounds",
    "ml", "milliliter", "milliliters", "millilitre", "millilitres",
    "l", "liter", "liters", "litre", "litres",
    "cup", "cups", "tbsp", "tablespoon", "tablespoons", "tsp", "teaspoon", "teaspoons",
    "slice", "slices", "loaf", "piece", "pieces", "can", "cans",
    "pkg", "package", "packages", "pack", "packs", "whole", "stalk", "stalks",
}

QUANTITY_RE = re.compile(
    r"^(?:(?P<mixed>\d+)\s+)?(?P<num>\d+)\s*/\s*(?P<den>\d+)"
    r"|^(?P<whole>\d+(?:[.,]\d+)?)?\s*(?P<uni>[½⅓⅔¼¾⅕⅛⅜⅝⅞])?"
)


def normalize_whitespace(value: str) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


def parse_meta_tags(html_text: str) -> list[dict]:
    tags = []
    for match in META_TAG_RE.finditer(html_text or ""):
        attrs = {}
        for attr in ATTR_RE.finditer(match.group(0)):
            key = attr.group(1).lower()
            if key:
                attrs[key] = attr.group(3)
        if attrs:
            tags.append(attrs)
    return tags


def find_meta_content(html_text: str, key: str, value: str, tags: list[dict] | None = None) -> str | None:
    key_lower = key.lower()
    value_lower = value.lower()
    for attrs in tags if tags is not None else parse_meta_tags(html_text):
        if (attrs.get(key_lower) or "").lower() != value_lower:
            continue
        content = attrs.get("content")
        if isinstance(content, str) and content.strip():
            return content.strip()
    return None


def decode_html_entities(value: str) -> str:
    return unescape(value)


def decode_possible_escapes(value: str) -> str:
    out = decode_html_entities(value.strip().strip("\"'"))
    replacements = [
        ("\\\\u0026", "&"),
        ("\\u0026", "&"),
        ("\\\\u003d", "="),
        ("\\u003d", "="),
        ("\\\\u002f", "/"),
        ("\\u002f", "/"),
        ("\\\\u002F", "/"),
        ("\\u002F", "/"),
        ("\\\\/", "/"),
        ("\\/", "/"),
    ]
    for old, new in replacements:
        out = out.replace(old, new)
    return out


def is_likely_mp4_url(url: str) -> bool:
    return bool(MP4_RE.search(url or ""))


def _resolve(raw: str, base_url: str) -> str | None:
    try:
        resolved = urljoin(base_url, raw)
    except ValueError:
        return None
    return resolved if resolved.lower().startswith(("http://", "https://")) else None


def extract_video_url_from_video_tags(html_text: str, base_url: str) -> str | None:
    for match in VIDEO_TAG_RE.finditer(html_text or ""):
        raw_src = match.group(3)
        if not raw_src:
            continue
        resolved = _resolve(decode_possible_escapes(raw_src), base_url)
        if resolved and is_likely_mp4_url(resolved):
            return resolved
    return None


def extract_video_url_from_embedded_json(html_text: str, base_url: str) -> tuple[str, str] | None:
    for pattern, extracted_from in EMBEDDED_VIDEO_PATTERNS:
        for match in pattern.finditer(html_text or ""):
            raw = match.group(1)
            if not raw:
                continue
            resolved = _resolve(decode_possible_escapes(raw), base_url)
            if resolved and is_likely_mp4_url(resolved):
                return resolved, extracted_from
    return None


def extract_video_url_from_html(html_text: str, base_url: str) -> tuple[str, str] | None:
    """Return ``(video_url, strategy)`` for the first video reference found."""
    tags = parse_meta_tags(html_text)

    og_video = (
        find_meta_content(html_text, "property", "og:video", tags)
        or find_meta_content(html_text, "property", "og:video:url", tags)
        or find_meta_content(html_text, "property", "og:video:secure_url", tags)
    )
    if og_video:
        resolved = _resolve(decode_html_entities(og_video), base_url)
        if resolved:
            return resolved, "og_video_meta"

    twitter_stream = find_meta_content(html_text, "name", "twitter:player:stream", tags) or find_meta_content(
        html_text, "name", "twitter:player:stream:url", tags
    )
    if twitter_stream:
        resolved = _resolve(decode_html_entities(twitter_stream), base_url)
        if resolved:
            return resolved, "twitter_stream_meta"

    tag_src = extract_video_url_from_video_tags(html_text, base_url)
    if tag_src:
        return tag_src, "html_video_tag"

    embedded = extract_video_url_from_embedded_json(html_text, base_url)
    if embedded:
        return embedded

    for index, match in enumerate(ABSOLUTE_URL_RE.finditer(html_text or "")):
        if index >= MAX_URL_SCAN:
            break
        resolved = _resolve(decode_possible_escapes(match.group(0)), base_url)
        if resolved and is_likely_mp4_url(resolved):
            return resolved, "html_mp4_url"

    return None


def clean_text(html_text: str) -> str:
    text = re.sub(r"(?is)<script[^>]*>.*?</script>", " ", html_text or "")
    text = re.sub(r"(?is)<style[^>]*>.*?</style>", " ", text)
    text = re.sub(r"(?is)<noscript[^>]*>.*?</noscript>", " ", text)
    text = re.sub(r"(?s)<[^>]+>", " ", text)
    text = unescape(text)
    return re.sub(r"\s+", " ", text).strip()


def extract_title(html_text: str) -> str | None:
    og = find_meta_content(html_text, "property", "og:title")
    if og:
        return normalize_whitespace(unescape(og))[:255] or None

    title = re.search(r"<title[^>]*>(.*?)</title>", html_text or "", flags=re.IGNORECASE | re.DOTALL)
    if title:
        return normalize_whitespace(unescape(title.group(1)))[:255] or None
    return None


def _decode_json_string(raw: str) -> str:
    try:
        return json.loads(f'"{raw}"')
    except json.JSONDecodeError:
        return decode_possible_escapes(raw)


def _clean_caption(value: str | None) -> str | None:
    if not value:
        return None
    text = normalize_whitespace(unescape(value))
    return text[:MAX_CAPTION_LENGTH] or None


def extract_caption(html_text: str) -> str | None:
    tags = parse_meta_tags(html_text)
    for key, value in [
        ("property", "og:description"),
        ("name", "description"),
        ("name", "twitter:description"),
        ("property", "twitter:description"),
    ]:
        caption = _clean_caption(find_meta_content(html_text, key, value, tags))
        if caption:
            return caption

    for pattern in EMBEDDED_CAPTION_PATTERNS:
        match = pattern.search(html_text or "")
        if match:
            caption = _clean_caption(_decode_json_string(match.group(1)))
            if caption:
                return caption

    div = CAPTION_DIV_RE.search(html_text or "")
    if div:
        return _clean_caption(clean_text(div.group(1)))
    return None


def _iter_nodes(data):
    if isinstance(data, dict):
        yield data
        for value in data.values():
            yield from _iter_nodes(value)
    elif isinstance(data, list):
        for item in data:
            yield from _iter_nodes(item)


def _node_has_type(node: dict, target: str) -> bool:
    raw_type = node.get("@type")
    if isinstance(raw_type, str):
        return raw_type.lower() == target.lower()
    if isinstance(raw_type, list):
        return any(isinstance(t, str) and t.lower() == target.lower() for t in raw_type)
    return False


def _parse_quantity(text: str) -> tuple[float | None, str]:
    match = QUANTITY_RE.match(text)
    if not match or not match.group(0).strip():
        return None, text

    quantity = 0.0
    if match.group("mixed"):
        quantity += int(match.group("mixed"))
    if match.group("whole"):
        quantity += float(match.group("whole").replace(",", "."))
    if match.group("num") and match.group("den") and int(match.group("den")) != 0:
        quantity += int(match.group("num")) / int(match.group("den"))
    if match.group("uni"):
        quantity += UNICODE_FRACTIONS[match.group("uni")]

    rest = text[match.end():].lstrip()
    # "2-3 cloves" keeps the lower bound.
    rest = re.sub(r"^(?:-|–|to)\s*[\d½⅓⅔¼¾⅕⅛⅜⅝⅞./]+\s*", "", rest)
    return (round(quantity, 3) if quantity > 0 else None), rest


def parse_ingredient_line(line: str) -> dict | None:
    text = normalize_whitespace(unescape(line or ""))
    if not text:
        return None

    quantity, rest = _parse_quantity(text)
    unit = None
    words = rest.split(" ", 1)
    first = words[0].lower().rstrip(".,")
    if first in INGREDIENT_UNIT_WORDS and len(words) > 1:
        unit = first
        rest = words[1]
    rest = re.sub(r"^of\s+", "", rest, flags=re.IGNORECASE).strip(" ,")
    if not rest:
        return None
    return {"name": rest, "quantity": quantity, "unit": unit}


def _as_string_list(value) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [item for item in value if isinstance(item, str)]
    return []


def extract_recipes_from_jsonld(html_text: str) -> list[dict]:
    scripts = re.findall(
        r"<script[^>]+type=[\"']application/ld\+json[\"'][^>]*>(.*?)</script>",
        html_text or "",
        flags=re.IGNORECASE | re.DOTALL,
    )
    recipes = []
    for raw_script in scripts:
        raw_script = raw_script.strip()
        if not raw_script:
            continue
        try:
            parsed = json.loads(raw_script)
        except json.JSONDecodeError:
            continue

        for node in _iter_nodes(parsed):
            if not _node_has_type(node, "Recipe"):
                continue
            ingredients = [
                parsed_line
                for parsed_line in (
                    parse_ingredient_line(line)
                    for line in _as_string_list(node.get("recipeIngredient") or node.get("ingredients"))
                )
                if parsed_line
            ]
            recipes.append(
                {
                    "name": node.get("name") if isinstance(node.get("name"), str) else "",
                    "cuisines": _as_string_list(node.get("recipeCuisine")) or None,
                    "ingredients": ingredients,
                }
            )
    return recipes
