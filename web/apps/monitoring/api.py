from django.db import connection
from django.http import JsonResponse

from apps.orders.http_adapters import _gateway_cb


def health_view(_request):
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except Exception:
        db_ok = False

    # an open circuit degrades checkout but the API itself is still up
    gateway_state = _gateway_cb.state
    code = 200 if db_ok else 503
    return JsonResponse(
        {
            "ok": db_ok,
            "components": {
                "db": {"ok": db_ok},
                "gateway": {"ok": gateway_state == "CLOSED", "circuit": gateway_state},
            },
        },
        status=code,
    )
