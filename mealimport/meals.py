import math
import re

from mealimport.errors import AiValidationError

MAX_NAME_LENGTH = 80
MAX_CUISINE_LENGTH = 40
MAX_CATEGORY_LENGTH = 24
MAX_CUISINES = 2

ALLOWED_CUISINES = [
    "American",
    "Italian",
    "Mexican",
    "Greek",
    "French",
    "Spanish",
    "Mediterranean",
    "Middle Eastern",
    "Indian",
    "Thai",
    "Vietnamese",
    "Chinese",
    "Japanese",
    "Korean",
    "Brazilian",
    "Caribbean",
    "African",
    "Vegetarian",
    "Vegan",
]

ALLOWED_UNITS = ["g", "kg", "oz", "lb", "ml", "l", "cup", "tbsp", "tsp", "slice", "loaf", "piece", "can", "pkg", "whole"]

UNIT_SYNONYMS = {
    "gram": "g",
    "grams": "g",
    "kilogram": "kg",
    "kilograms": "kg",
    "ounce": "oz",
    "ounces": "oz",
    "pound": "lb",
    "pounds": "lb",
    "lbs": "lb",
    "milliliter": "ml",
    "milliliters": "ml",
    "millilitre": "ml",
    "millilitres": "ml",
    "liter": "l",
    "liters": "l",
    "litre": "l",
    "litres": "l",
    "cups": "cup",
    "tablespoon": "tbsp",
    "tablespoons": "tbsp",
    "teaspoon": "tsp",
    "teaspoons": "tsp",
    "slices": "slice",
    "pieces": "piece",
    "cans": "can",
    "package": "pkg",
    "packages": "pkg",
    "pack": "pkg",
    "packs": "pkg",
    "stalk": "piece",
    "stalks": "piece",
    "stock": "piece",
    "stocks": "piece",
}

# Name rules first, then category, then common solids.
UNIT_NAME_RULES = [
    (re.compile(r"\b(oil|vinegar)\b"), "tbsp"),
    (re.compile(r"\b(soy sauce|fish sauce|oyster sauce)\b"), "tbsp"),
    (re.compile(r"\b(water|milk|cream|broth|stock|juice|wine)\b"), "ml"),
    (re.compile(r"\b(salt|pepper|spice|powder|seasoning|cinnamon|paprika|cumin|oregano|basil|chili)\b"), "tsp"),
    (re.compile(r"\b(loaf)\b"), "loaf"),
    (re.compile(r"\b(bread)\b"), "slice"),
    (re.compile(r"\b(egg|eggs)\b"), "piece"),
    (re.compile(r"\b(canned|tin)\b"), "can"),
]
UNIT_BY_CATEGORY = {"produce": "piece", "bakery": "slice", "meat": "g", "dairy": "g", "pantry": "g"}
SOLIDS_RE = re.compile(r"\b(rice|pasta|flour|sugar|cheese|beef|chicken|pork|fish|shrimp|tofu|quinoa|lentil|bean|butter)\b")

ALL_CAPS_RE = re.compile(r"^[^a-z]*[A-Z][^a-z]*$")
CUISINE_SPLIT_RE = re.compile(r"[,/|+&-]|\band\b", re.IGNORECASE)


def normalize_whitespace(value: str) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


def normalize_key(value: str) -> str:
    return normalize_whitespace(value).lower()


CUISINE_BY_KEY = {normalize_key(cuisine): cuisine for cuisine in ALLOWED_CUISINES}
UNIT_BY_KEY = {normalize_key(unit): unit for unit in ALLOWED_UNITS}


def safe_trim(value, max_len: int) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = normalize_whitespace(value)
    return trimmed[:max_len] or None


def _title_case_fragment(fragment: str) -> str:
    clean = fragment.lower()
    return clean[:1].upper() + clean[1:]


def _title_case_token(token: str) -> str:
    clean = token.strip()
    if not clean:
        return ""
    # BBQ, API
    if ALL_CAPS_RE.match(clean) and len(clean) <= 4:
        return clean
    return "-".join(
        "'".join(_title_case_fragment(piece) for piece in part.split("'")) for part in clean.split("-")
    )


def normalize_title_case(value: str) -> str:
    text = normalize_whitespace(value)
    if not text:
        return ""
    return " ".join(token for token in (_title_case_token(t) for t in text.split(" ")) if token)


def normalize_meal_name(value) -> str | None:
    if not isinstance(value, str):
        return None
    return normalize_title_case(value) or None


def normalize_unit(raw) -> str | None:
    if not isinstance(raw, str) or not normalize_whitespace(raw):
        return None
    key = normalize_key(re.sub(r"[()]", " ", raw).replace(".", " "))
    return UNIT_BY_KEY.get(key) or UNIT_SYNONYMS.get(key)


def infer_unit_from_ingredient(name: str, category: str | None = None) -> str:
    key = normalize_key(name)
    for pattern, unit in UNIT_NAME_RULES:
        if pattern.search(key):
            return unit

    by_category = UNIT_BY_CATEGORY.get(normalize_key(category or ""))
    if by_category:
        return by_category

    if SOLIDS_RE.search(key):
        return "g"
    return "piece"


def normalize_cuisines(raw) -> list[str]:
    if isinstance(raw, list):
        items = [entry for entry in raw if isinstance(entry, str)]
    elif isinstance(raw, str):
        items = [raw]
    else:
        items = []

    out = []
    seen = set()

    def add(cuisine: str) -> bool:
        key = normalize_key(cuisine)
        if key not in seen:
            seen.add(key)
            out.append(cuisine)
        return len(out) >= MAX_CUISINES

    for item in items:
        text = normalize_key(item)
        if not text:
            continue

        # Prose like "Japanese - Italian fusion" still names known cuisines.
        embedded = [cuisine for cuisine in ALLOWED_CUISINES if normalize_key(cuisine) in text]
        if embedded:
            for cuisine in embedded:
                if add(cuisine):
                    return out
            continue

        parts = [normalize_whitespace(p) for p in CUISINE_SPLIT_RE.split(text.replace("–", "-").replace("—", "-"))]
        for part in [p for p in parts if p] or [item]:
            direct = CUISINE_BY_KEY.get(normalize_key(part))
            if direct and add(direct):
                return out

    return out


def _positive_number(value) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def normalize_ingredient(raw) -> dict | None:
    if not isinstance(raw, dict):
        return None
    name_raw = raw.get("name") if isinstance(raw.get("name"), str) else ""
    name = normalize_title_case(name_raw)[:MAX_NAME_LENGTH]
    if not name:
        return None

    category = safe_trim(raw.get("category"), MAX_CATEGORY_LENGTH)
    unit = normalize_unit(raw.get("unit")) or infer_unit_from_ingredient(name, category)
    ingredient = {"name": name, "unit": unit}
    quantity = _positive_number(raw.get("quantity"))
    if quantity is not None:
        ingredient["quantity"] = quantity
    if category:
        ingredient["category"] = category
    return ingredient


def validate_generated_meal(raw, max_ingredients: int) -> dict:
    root = raw.get("meal") if isinstance(raw, dict) and isinstance(raw.get("meal"), dict) else raw
    if not isinstance(root, dict):
        raise AiValidationError("AI response did not match the expected schema.")

    name = (normalize_meal_name(root.get("name")) or "")[:MAX_NAME_LENGTH]
    if not name:
        raise AiValidationError("AI response is missing meal.name.")

    cuisines = normalize_cuisines(root.get("cuisines") if root.get("cuisines") is not None else root.get("cuisine"))

    ingredients_raw = root.get("ingredients") if isinstance(root.get("ingredients"), list) else []
    ingredients = [item for item in (normalize_ingredient(i) for i in ingredients_raw) if item]
    if not ingredients:
        raise AiValidationError("AI response is missing a usable ingredients list.")

    meal = {"name": name, "ingredients": ingredients[: max(1, max_ingredients)]}
    if cuisines:
        meal["cuisines"] = cuisines
        meal["cuisine"] = ", ".join(cuisines)[:MAX_CUISINE_LENGTH]
    return meal


def _recipe_candidates(raw) -> list:
    if isinstance(raw, list):
        return list(raw)
    if isinstance(raw, dict):
        if isinstance(raw.get("recipes"), list):
            return list(raw["recipes"])
        if isinstance(raw.get("meals"), list):
            return list(raw["meals"])
        if isinstance(raw.get("meal"), dict):
            return [raw["meal"]]
    return [raw]


def validate_imported_recipes(raw, max_ingredients: int, max_recipes: int) -> list[dict]:
    out = []
    seen_names = set()
    for candidate in _recipe_candidates(raw):
        try:
            meal = validate_generated_meal(candidate, max_ingredients)
        except AiValidationError:
            continue
        key = meal["name"].strip().lower()
        if not key or key in seen_names:
            continue
        seen_names.add(key)
        out.append(meal)
        if len(out) >= max_recipes:
            break

    if not out:
        raise AiValidationError("No recipes found in that video.")
    return out
