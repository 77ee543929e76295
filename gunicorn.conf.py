import os


def _env_number(name: str, default, cast=int):
    raw = os.getenv(name)
    try:
        return cast(raw) if raw not in (None, "") else cast(default)
    except (TypeError, ValueError):
        return cast(default)


wsgi_app = "mealimport:create_app()"

# One import request holds a thread for a page fetch, a video download and
# up to two provider round trips (video, then caption).
_fetch_timeout = _env_number("AI_IMPORT_FETCH_TIMEOUT", 12.0, float)
_provider_timeout = _env_number("AI_PROVIDER_TIMEOUT", 45.0, float)
_worst_case_request = int(3 * _fetch_timeout + 2 * _provider_timeout) + 15

worker_class = os.getenv("GUNICORN_WORKER_CLASS", "gthread")
workers = max(1, min(_env_number("GUNICORN_WORKERS", _env_number("WEB_CONCURRENCY", 2)), 4))
threads = max(1, min(_env_number("GUNICORN_THREADS", 4), 8))

timeout = max(_env_number("GUNICORN_TIMEOUT", _worst_case_request), 30)
graceful_timeout = _env_number("GUNICORN_GRACEFUL_TIMEOUT", 30)
keepalive = _env_number("GUNICORN_KEEPALIVE", 5)

# Video payloads are held in memory; recycle workers now and then.
max_requests = _env_number("GUNICORN_MAX_REQUESTS", 200)
max_requests_jitter = _env_number("GUNICORN_MAX_REQUESTS_JITTER", 40)

accesslog = "-"
errorlog = "-"
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")
