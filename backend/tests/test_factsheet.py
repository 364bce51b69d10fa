from etfsectors.factsheet import find_factsheet_url, score_link


def test_markdown_fact_sheet_link_resolved_against_base():
    md = "Some intro.\n\n[Download Fact Sheet](docs/fs.pdf)\n"
    assert find_factsheet_url(md, [], "https://x.com/a/") == "https://x.com/a/docs/fs.pdf"


def test_markdown_link_beats_scored_links():
    md = "[Monthly factsheet](https://cdn.example.com/m.pdf)"
    links = ["https://x.com/documents/factsheet-pds.pdf"]
    assert find_factsheet_url(md, links, "https://x.com/") == "https://cdn.example.com/m.pdf"


def test_highest_scoring_link_wins():
    links = ["report.pdf", "factsheet-2024.pdf", "terms.html"]
    assert find_factsheet_url("", links, "https://x.com/a/") == "https://x.com/a/factsheet-2024.pdf"


def test_ties_go_to_first_seen():
    links = ["https://x.com/a.pdf", "https://x.com/b.pdf"]
    assert find_factsheet_url("", links, "https://x.com/") == "https://x.com/a.pdf"


def test_no_candidate_returns_none():
    assert find_factsheet_url("nothing here", ["https://x.com/about", "mailto:a@b.c"], "https://x.com/") is None


def test_unresolvable_links_are_skipped():
    links = ["javascript:void(0)", "http://[bad/factsheet.pdf", "https://x.com/pds.pdf"]
    assert find_factsheet_url("", links, "https://x.com/") == "https://x.com/pds.pdf"


def test_score_link():
    assert score_link("https://x.com/fact-sheet.pdf?v=2") == 7
    assert score_link("https://x.com/downloads/product-disclosure") == 2
    assert score_link("https://x.com/about") == 0
