from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    generate_latest,
    Counter,
    Gauge,
    Histogram,
)

# -------------------------
# Outcome Metrics
# -------------------------

URLS_PROCESSED = Counter(
    "politecrawl_urls_processed_total",
    "Terminal outcomes recorded per URL",
    ["status"],
)

# -------------------------
# Fetch / Retry Metrics
# -------------------------

FETCH_ATTEMPTS = Counter(
    "politecrawl_fetch_attempts_total",
    "Fetch attempts started after throttle admission",
)

FETCH_RETRIES = Counter(
    "politecrawl_fetch_retries_total",
    "Retries scheduled after a retryable failure",
)

FETCH_LATENCY = Histogram(
    "politecrawl_fetch_latency_seconds",
    "Time spent inside a single fetch attempt",
)

# -------------------------
# Policy Metrics
# -------------------------

POLICY_FETCHES = Counter(
    "politecrawl_policy_fetches_total",
    "robots.txt fetches by result",
    ["result"],
)

POLICY_DENIED = Counter(
    "politecrawl_policy_denied_total",
    "URLs skipped because the origin policy disallows them",
)

POLICY_CACHE_SIZE = Gauge(
    "politecrawl_policy_cache_origins",
    "Origins with a cached policy",
)

# -------------------------
# Throttle Metrics
# -------------------------

THROTTLE_GLOBAL_ACTIVE = Gauge(
    "politecrawl_throttle_global_active",
    "Requests currently holding a throttle slot",
)

THROTTLE_ORIGIN_ACTIVE = Gauge(
    "politecrawl_throttle_origin_active",
    "Requests currently holding a throttle slot per origin",
    ["origin"],
)

ADMISSION_WAIT = Histogram(
    "politecrawl_throttle_admission_wait_seconds",
    "Time spent waiting for throttle admission",
)


# -------------------------
# /metrics endpoint
# -------------------------

async def metrics_handler(request):
    data = generate_latest()

    # aiohttp rejects a content_type that carries a charset
    ctype = CONTENT_TYPE_LATEST.split(";")[0]

    return web.Response(
        body=data,
        content_type=ctype
    )


async def start_metrics_server(host="0.0.0.0", port=8000):
    app = web.Application()
    app.router.add_get("/metrics", metrics_handler)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()

    return runner, site
