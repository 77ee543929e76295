import argparse
import json
import sys
from pathlib import Path

import httpx

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from mealimport import create_app
from mealimport.config import ImportSettings
from mealimport.errors import MealImportError
from mealimport.importer import import_meal_from_video


def main():
    parser = argparse.ArgumentParser(
        description="Extract recipes from a TikTok/Reel/video link and print them as JSON."
    )
    parser.add_argument("url", help="Public link to a cooking video or recipe post.")
    parser.add_argument(
        "--max-ingredients",
        type=int,
        default=12,
        help="Max ingredients per recipe (default: 12, max 30).",
    )
    parser.add_argument(
        "--max-recipes",
        type=int,
        default=3,
        help="Max recipes to return (default: 3, max 5).",
    )
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        settings = ImportSettings.from_mapping(app.config)
        try:
            result = import_meal_from_video(
                {"url": args.url, "maxIngredients": args.max_ingredients, "maxRecipes": args.max_recipes},
                settings,
            )
        except MealImportError as exc:
            print(f"Import failed: {exc}", file=sys.stderr)
            sys.exit(1)
        except httpx.HTTPError as exc:
            print(f"Import failed: could not reach {args.url} ({exc})", file=sys.stderr)
            sys.exit(1)
        print(json.dumps(result.to_dict(), indent=2))


if __name__ == "__main__":
    main()
