import pytest

from etfsectors.registry import ETF_URLS, lookup_ticker, normalize_ticker, portfolio_section


def test_normalize_ticker():
    assert normalize_ticker(" vgs.ax ") == "VGS"
    assert normalize_ticker("A200.ASX") == "A200"
    assert normalize_ticker(None) == ""


def test_lookup_ticker():
    assert lookup_ticker("vgs") == ETF_URLS["VGS"]
    assert lookup_ticker("NOPE") is None
    assert lookup_ticker("") is None


def test_portfolio_section_returns_copies():
    rows = portfolio_section("cba")
    assert len(rows) == 8
    rows[0]["sum"] = 0
    assert portfolio_section("cba")[0]["sum"] == 28382
    assert portfolio_section("nab") == ()
    with pytest.raises(KeyError):
        portfolio_section("westpac")
