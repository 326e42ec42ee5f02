import os

# gunicorn -c gunicorn.conf.py config.wsgi
wsgi_app = "config.wsgi:application"
bind = os.getenv("GATEWAY_BIND", "0.0.0.0:8000")

LOCAL_CACHE = "django.core.cache.backends.locmem.LocMemCache"
shared_cache = os.getenv("DJANGO_CACHE_BACKEND", LOCAL_CACHE) != LOCAL_CACHE

# carts, checkout locks and throttles live in the cache; a per-process
# cache would split them between workers
if shared_cache:
    _default_workers = min(max(2, (os.cpu_count() or 1) * 2), 8)
else:
    _default_workers = 1
workers = int(os.getenv("GATEWAY_WORKERS", str(_default_workers)))
if workers > 1 and not shared_cache:
    raise RuntimeError("GATEWAY_WORKERS > 1 requires a shared DJANGO_CACHE_BACKEND")

# catalog and settlement calls block on IO
worker_class = "gthread"
threads = int(os.getenv("GATEWAY_THREADS", "4"))

# must exceed the worst-case settlement call (timeout x retries + backoff)
timeout = int(os.getenv("GATEWAY_TIMEOUT", "60"))
graceful_timeout = int(os.getenv("GATEWAY_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GATEWAY_KEEPALIVE", "5"))

preload_app = True
max_requests = int(os.getenv("GATEWAY_MAX_REQUESTS", "2000"))
max_requests_jitter = int(os.getenv("GATEWAY_MAX_REQUESTS_JITTER", "200"))

# application logs go through Django LOGGING (JSON); these are gunicorn's own
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info").lower()
