import pytest

from etfsectors import pipeline

_ENV_VARS = (
    "APP_ENV",
    "FETCH_TIMEOUT_MS",
    "ETF_MAX_CANDIDATES",
    "ETF_CONCURRENCY",
    "ETF_SEARCH_ENDPOINT",
    "ETF_ACCESS_PASSWORD",
    "ETF_SESSION_SECRET",
    "ETF_SESSION_MINUTES",
    "RECAPTCHA_SECRET_KEY",
    "ALLOW_ORIGINS",
)


@pytest.fixture(autouse=True)
def _development_env(monkeypatch):
    # No captcha/session checks and no cached resolver between tests
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("APP_ENV", "development")
    monkeypatch.setattr(pipeline, "_default_resolver", None)


class FakeScraper:
    """Scripted stand-in for FakerCrawl: url -> result dict, or an exception to raise."""

    def __init__(self, pages=None, on_scrape=None):
        self.pages = dict(pages or {})
        self.calls = []
        self.on_scrape = on_scrape

    def scrape(self, url, formats=("markdown",), only_main_content=False, timeout_ms=None):
        self.calls.append(url)
        if self.on_scrape:
            self.on_scrape(url)
        page = self.pages.get(url)
        if page is None:
            raise RuntimeError(f"404 for {url}")
        if isinstance(page, Exception):
            raise page
        return page


@pytest.fixture
def fake_scraper():
    return FakeScraper
