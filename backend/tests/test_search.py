import pytest
import requests

from etfsectors.search import (
    build_search_query,
    decode_redirect,
    parse_results_html,
    search_candidates,
    strip_tracking,
)

RESULTS_HTML = """
<html><body>
  <div class="result"><a class="result__a"
     href="//duckduckgo.com/l/?uddg=https%3A%2F%2Fwww.vanguard.com.au%2Fvgs%3Futm_source%3Dddg&amp;rut=abc">VGS</a></div>
  <div class="result"><a class="result__a" href="https://www.vanguard.com.au/vgs?utm_source=newsletter">VGS again</a></div>
  <div class="result"><a class="result__a" href="https://www.morningstar.com.au/etfs/vgs?tab=portfolio">Morningstar</a></div>
  <div class="result"><a class="result__a" href="https://duckduckgo.com/settings">Settings</a></div>
  <div class="result"><a class="result__a" href="mailto:someone@example.com">Mail</a></div>
  <table><tr><td><a class="result-link" href="https://www.marketindex.com.au/asx/vgs">Lite</a></td></tr></table>
</body></html>
"""


class R:  # tiny fake Response
    def __init__(self, status_code, text=""):
        self.status_code = status_code
        self.text = text


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append((url, params, timeout))
        if self.exc:
            raise self.exc
        return self.response


def test_build_search_query():
    assert build_search_query("vgs") == "ASX:VGS ETF sector breakdown fact sheet"
    assert build_search_query(None, "https://www.ssga.com/au/fund") == "www.ssga.com ETF sector breakdown fact sheet"


def test_decode_redirect():
    assert decode_redirect("//duckduckgo.com/l/?uddg=https%3A%2F%2Fa.com%2Fx") == "https://a.com/x"
    assert decode_redirect("https://a.com/y") == "https://a.com/y"
    assert decode_redirect("") is None


def test_strip_tracking_keeps_other_params():
    assert strip_tracking("https://a.com/x?id=1&utm_source=ddg&utm_medium=cpc") == "https://a.com/x?id=1"
    assert strip_tracking("https://a.com/x?id=1") == "https://a.com/x?id=1"


def test_parse_results_dedupes_and_filters():
    assert parse_results_html(RESULTS_HTML) == [
        "https://www.vanguard.com.au/vgs",
        "https://www.morningstar.com.au/etfs/vgs?tab=portfolio",
        "https://www.marketindex.com.au/asx/vgs",
    ]


def test_urls_differing_only_by_utm_source_collapse():
    html = (
        '<a class="result__a" href="https://a.com/fund?utm_source=x">1</a>'
        '<a class="result__a" href="https://a.com/fund?utm_source=y">2</a>'
    )
    assert parse_results_html(html) == ["https://a.com/fund"]


def test_search_candidates_ok():
    session = FakeSession(R(200, RESULTS_HTML))
    out = search_candidates("ASX:VGS ETF", endpoint="https://search.test/html/", timeout=5, session=session)
    assert out[0] == "https://www.vanguard.com.au/vgs"
    assert session.calls == [("https://search.test/html/", {"q": "ASX:VGS ETF"}, 5)]


def test_search_candidates_non_2xx_is_empty():
    assert search_candidates("q", session=FakeSession(R(503, RESULTS_HTML))) == []


def test_search_candidates_transport_error_propagates():
    with pytest.raises(requests.ConnectionError):
        search_candidates("q", session=FakeSession(exc=requests.ConnectionError("dns")))


def test_blank_query_makes_no_request():
    session = FakeSession(R(200, RESULTS_HTML))
    assert search_candidates("  ", session=session) == []
    assert session.calls == []
