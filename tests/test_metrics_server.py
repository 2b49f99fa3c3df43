import pytest

from politecrawl.monitoring.metrics_server import URLS_PROCESSED, metrics_handler


@pytest.mark.asyncio
async def test_metrics_handler_exposes_crawl_metrics():
    URLS_PROCESSED.labels(status="success").inc()

    response = await metrics_handler(None)
    body = response.body.decode()

    assert response.content_type == "text/plain"
    assert 'politecrawl_urls_processed_total{status="success"}' in body
    assert "politecrawl_throttle_global_active" in body
    assert "politecrawl_policy_fetches_total" in body
