from django.core.cache import cache
from django.http import JsonResponse

from apps.shop import providers


def health_view(_request):
    catalog_ok = providers.get_catalog().health()

    cache_ok = False
    try:
        cache.set("monitoring:probe", 1, timeout=5)
        cache_ok = cache.get("monitoring:probe") == 1
    except Exception:
        cache_ok = False

    ok = catalog_ok and cache_ok
    code = 200 if ok else 503
    return JsonResponse(
        {"ok": ok, "components": {"catalog": {"ok": catalog_ok}, "sessions": {"ok": cache_ok}}},
        status=code,
    )
