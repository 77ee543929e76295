from datetime import datetime, timezone
from functools import wraps
from uuid import uuid4

from flask import Blueprint, current_app, g, jsonify, request, session

from mealimport import db
from mealimport.config import ImportSettings
from mealimport.errors import (
    AiConfigError,
    AiProviderError,
    AiTimeoutError,
    AiUsageLimitError,
    AiValidationError,
    SubscriptionRequiredError,
)
from mealimport.importer import import_meal_from_video, validate_import_video_meal_input
from mealimport.models import User
from mealimport.usage import (
    IMPORT_VIDEO_FEATURE,
    RateLimiter,
    consume_ai_usage,
    monthly_limit,
    require_pro_subscription,
)

bp = Blueprint("main", __name__)


def get_rate_limiter() -> RateLimiter:
    limiter = current_app.extensions.get("import_rate_limiter")
    if limiter is None:
        limiter = RateLimiter(
            current_app.config["AI_IMPORT_RATE_LIMIT_MAX"],
            current_app.config["AI_IMPORT_RATE_LIMIT_WINDOW_SECONDS"],
        )
        current_app.extensions["import_rate_limiter"] = limiter
    return limiter


def json_response(payload: dict, status: int, request_id: str, retry_after: int | None = None):
    response = jsonify(payload)
    response.status_code = status
    response.headers["X-Request-Id"] = request_id
    response.headers["Cache-Control"] = "no-store"
    if retry_after is not None:
        response.headers["Retry-After"] = str(retry_after)
    return response


def json_error(status: int, error: str, message: str, request_id: str, retry_after: int | None = None, **meta):
    payload = {"error": error, "message": message, "requestId": request_id, **meta}
    return json_response(payload, status, request_id, retry_after=retry_after)


@bp.before_app_request
def load_logged_in_user():
    user_id = session.get("user_id")
    g.user = db.session.get(User, user_id) if user_id else None


def api_login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if g.user is None:
            return json_error(401, "unauthorized", "You must be signed in to import a meal.", str(uuid4()))
        return view(*args, **kwargs)

    return wrapped


@bp.get("/healthz")
def healthz():
    return jsonify({"ok": True})


@bp.post("/api/ai/meals/import-video")
@api_login_required
def import_video_meal():
    request_id = str(uuid4())
    logger = current_app.logger

    try:
        require_pro_subscription(g.user, IMPORT_VIDEO_FEATURE)

        retry_after = get_rate_limiter().hit(g.user.id)
        if retry_after is not None:
            return json_error(
                429,
                "rate_limited",
                f"Too many requests. Try again in {retry_after}s.",
                request_id,
                retry_after=retry_after,
            )

        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            return json_error(400, "invalid_request", "Invalid JSON body.", request_id)

        settings = ImportSettings.from_mapping(current_app.config)
        try:
            validated = validate_import_video_meal_input(body, allow_private=settings.allow_private_urls)
        except AiValidationError as exc:
            return json_error(400, "invalid_request", str(exc), request_id)

        consume_ai_usage(
            g.user.id,
            IMPORT_VIDEO_FEATURE,
            monthly_limit(IMPORT_VIDEO_FEATURE, current_app.config),
        )

        logger.info("[%s] importing recipe from %s for user_id=%s", request_id, validated.url, g.user.id)
        result = import_meal_from_video(validated, settings)
        return json_response(result.to_dict(), 200, request_id)

    except AiTimeoutError:
        return json_error(504, "ai_timeout", "AI provider timed out. Please try again.", request_id)
    except AiProviderError as exc:
        logger.warning("[%s] AI provider error: %s", request_id, exc)
        return json_error(502, "ai_provider_error", "AI provider error. Please try again.", request_id)
    except AiValidationError as exc:
        # Typically an unreachable link or a post without a usable video.
        return json_error(400, "invalid_request", str(exc), request_id)
    except AiConfigError as exc:
        logger.error("[%s] AI import misconfigured: %s", request_id, exc)
        return json_error(500, "server_misconfigured", "AI provider is not configured.", request_id)
    except SubscriptionRequiredError as exc:
        return json_error(
            exc.status,
            exc.code,
            "Upgrade to Pro to import meals from videos.",
            request_id,
            feature=exc.feature,
        )
    except AiUsageLimitError as exc:
        resets_at = exc.period.ends_at
        retry_after = max(1, int((resets_at - datetime.now(timezone.utc)).total_seconds() + 0.999))
        return json_error(
            exc.status,
            exc.code,
            f"Monthly AI limit reached. Try again after {resets_at.isoformat()}.",
            request_id,
            retry_after=retry_after,
            feature=exc.feature,
            period=exc.period.key,
            limit=exc.limit,
            used=exc.used,
            resetsAt=resets_at.isoformat(),
        )
    except Exception:
        logger.exception("[%s] AI video import failed", request_id)
        return json_error(500, "internal_error", "Something went wrong importing your meal.", request_id)
