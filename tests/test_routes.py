import tempfile
import unittest
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import patch
from uuid import uuid4

from mealimport import create_app, db
from mealimport.errors import AiConfigError, AiProviderError, AiTimeoutError, AiValidationError
from mealimport.importer import ImportResult
from mealimport.models import AiUsage, User
from mealimport.usage import IMPORT_VIDEO_FEATURE

IMPORT_URL = "/api/ai/meals/import-video"
TIKTOK_URL = "https://www.tiktok.com/@chef/video/7234567890123456789"

RESULT = ImportResult(
    recipes=[{"name": "Lemon Pasta", "ingredients": [{"name": "Spaghetti", "unit": "g", "quantity": 200}]}],
    meta={"platform": "tiktok", "extractedFrom": ["og_caption"], "videoUrl": None, "stages": ["caption"]},
)


class ImportVideoRouteTestCase(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.db_file = Path(tempfile.gettempdir()) / f"mealimport-routes-{uuid4().hex}.db"
        cls.app = create_app(
            {
                "TESTING": True,
                "SECRET_KEY": "test-secret",
                "SQLALCHEMY_DATABASE_URI": f"sqlite:///{cls.db_file.as_posix()}",
                "AI_IMPORT_ALLOW_PRIVATE_URLS": True,
                "OPENAI_API_KEY": "sk-test",
            }
        )

        with cls.app.app_context():
            db.drop_all()
            db.create_all()
            pro = User(email="pro@example.com", pro_override=True)
            free = User(email="free@example.com")
            lapsed = User(email="lapsed@example.com", pro_expires_at=datetime.utcnow() - timedelta(days=1))
            db.session.add_all([pro, free, lapsed])
            db.session.commit()
            cls.pro_id = pro.id
            cls.free_id = free.id
            cls.lapsed_id = lapsed.id

    @classmethod
    def tearDownClass(cls):
        with cls.app.app_context():
            db.session.remove()
            db.drop_all()
            db.engine.dispose()
        if cls.db_file.exists():
            cls.db_file.unlink()

    def setUp(self):
        self.client = self.app.test_client()
        self.app.extensions.pop("import_rate_limiter", None)
        with self.app.app_context():
            AiUsage.query.delete()
            db.session.commit()

    def _login(self, user_id: int):
        with self.client.session_transaction() as sess:
            sess["user_id"] = user_id

    def _usage(self, user_id: int) -> int:
        with self.app.app_context():
            row = AiUsage.query.filter_by(user_id=user_id, feature=IMPORT_VIDEO_FEATURE).first()
            return row.used if row else 0

    def test_healthz(self):
        response = self.client.get("/healthz")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {"ok": True})

    def test_requires_login(self):
        response = self.client.post(IMPORT_URL, json={"url": TIKTOK_URL})
        self.assertEqual(response.status_code, 401)
        body = response.get_json()
        self.assertEqual(body["error"], "unauthorized")
        self.assertEqual(response.headers["X-Request-Id"], body["requestId"])

    def test_requires_pro(self):
        for user_id in [self.free_id, self.lapsed_id]:
            with self.subTest(user_id=user_id):
                self._login(user_id)
                response = self.client.post(IMPORT_URL, json={"url": TIKTOK_URL})
                self.assertEqual(response.status_code, 402)
                body = response.get_json()
                self.assertEqual(body["error"], "subscription_required")
                self.assertEqual(body["feature"], IMPORT_VIDEO_FEATURE)
                self.assertEqual(self._usage(user_id), 0)

    def test_invalid_json_body(self):
        self._login(self.pro_id)
        response = self.client.post(IMPORT_URL, data="not json", content_type="application/json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "Invalid JSON body.")

    def test_invalid_url_does_not_consume_usage(self):
        self._login(self.pro_id)
        response = self.client.post(IMPORT_URL, json={"url": "ftp://files.example.com/x"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "invalid_request")
        self.assertEqual(self._usage(self.pro_id), 0)

    def test_missing_url(self):
        self._login(self.pro_id)
        response = self.client.post(IMPORT_URL, json={"maxRecipes": 2})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["message"], "Missing required field: url")

    @patch("mealimport.routes.import_meal_from_video", return_value=RESULT)
    def test_success(self, mock_import):
        self._login(self.pro_id)
        response = self.client.post(IMPORT_URL, json={"url": TIKTOK_URL, "maxIngredients": 50})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), RESULT.to_dict())
        self.assertEqual(response.headers["Cache-Control"], "no-store")
        self.assertTrue(response.headers["X-Request-Id"])
        self.assertEqual(self._usage(self.pro_id), 1)

        validated, settings = mock_import.call_args.args
        self.assertEqual(validated.url, TIKTOK_URL)
        self.assertEqual(validated.max_ingredients, 30)
        self.assertEqual(settings.openai_api_key, "sk-test")

    def test_pipeline_errors_map_to_statuses(self):
        cases = [
            (AiTimeoutError("slow"), 504, "ai_timeout"),
            (AiProviderError("bad gateway"), 502, "ai_provider_error"),
            (AiValidationError("No recipes found in that video."), 400, "invalid_request"),
            (AiConfigError("OPENAI_API_KEY is not configured."), 500, "server_misconfigured"),
            (RuntimeError("kaboom"), 500, "internal_error"),
        ]
        self._login(self.pro_id)
        for exc, status, error in cases:
            with self.subTest(error=error):
                self.app.extensions.pop("import_rate_limiter", None)
                with patch("mealimport.routes.import_meal_from_video", side_effect=exc):
                    response = self.client.post(IMPORT_URL, json={"url": TIKTOK_URL})
                self.assertEqual(response.status_code, status)
                self.assertEqual(response.get_json()["error"], error)
        self.assertNotIn("kaboom", response.get_data(as_text=True))

    def test_rate_limited(self):
        self._login(self.pro_id)
        self.app.config["AI_IMPORT_RATE_LIMIT_MAX"] = 1
        try:
            first = self.client.post(IMPORT_URL, data="{}", content_type="application/json")
            second = self.client.post(IMPORT_URL, data="{}", content_type="application/json")
        finally:
            self.app.config["AI_IMPORT_RATE_LIMIT_MAX"] = 6
            self.app.extensions.pop("import_rate_limiter", None)

        self.assertEqual(first.status_code, 400)
        self.assertEqual(second.status_code, 429)
        self.assertEqual(second.get_json()["error"], "rate_limited")
        self.assertGreater(int(second.headers["Retry-After"]), 0)

    @patch("mealimport.routes.import_meal_from_video", return_value=RESULT)
    def test_monthly_limit(self, mock_import):
        self._login(self.pro_id)
        self.app.config["AI_IMPORT_VIDEO_MONTHLY_LIMIT"] = 1
        try:
            first = self.client.post(IMPORT_URL, json={"url": TIKTOK_URL})
            second = self.client.post(IMPORT_URL, json={"url": TIKTOK_URL})
        finally:
            self.app.config["AI_IMPORT_VIDEO_MONTHLY_LIMIT"] = 20

        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 429)
        body = second.get_json()
        self.assertEqual(body["error"], "usage_limit_reached")
        self.assertEqual((body["limit"], body["used"]), (1, 1))
        self.assertIn("resetsAt", body)
        self.assertIn("Retry-After", second.headers)
        self.assertEqual(mock_import.call_count, 1)


if __name__ == "__main__":
    unittest.main()
