import pytest

from app.discovery.classify import (
    DOCUMENT,
    HUB,
    LINK_RULES,
    SITEMAP_RELEVANCE_PATTERNS,
    classify_file_type,
    classify_link,
    infer_document_type,
    is_relevant,
    is_same_site,
    title_from_url,
)


@pytest.mark.parametrize(
    "url",
    [
        "https://www.justice.gov/epstein/doj-disclosures",
        "https://www.justice.gov/usao-sdny/pr/jeffrey-epstein-charged",
        "https://www.justice.gov/opa/pr/statement-epstein-matter",
        "https://www.justice.gov/archive/usao/epstein-files",
    ],
)
def test_allow_list_accepts_relevant_paths(url):
    assert is_relevant(url)


def test_allow_list_rejects_unrelated_paths():
    assert not is_relevant("https://www.justice.gov/opa/pr/unrelated-press-release")
    assert not is_relevant("https://www.justice.gov/careers")


def test_sitemap_allow_list_excludes_archive_pattern():
    url = "https://www.justice.gov/archive/usao/epstein-files"
    assert is_relevant(url)
    assert not is_relevant(url, SITEMAP_RELEVANCE_PATTERNS)


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://www.justice.gov/epstein/files/EFTA00000001.pdf", "pdf"),
        ("https://www.justice.gov/epstein/files/EFTA00000001.PDF?download=1", "pdf"),
        ("https://www.justice.gov/epstein/press.html", "html"),
        ("https://www.justice.gov/epstein/doj-disclosures", "html"),
        ("https://www.justice.gov/epstein/media/clip.mp4", "unknown"),
    ],
)
def test_file_type_heuristic(url, expected):
    assert classify_file_type(url) == expected


def test_same_site_ignores_www_and_accepts_subdomains():
    assert is_same_site("https://justice.gov/epstein", "www.justice.gov")
    assert is_same_site("https://www.justice.gov/epstein", "www.justice.gov")
    assert is_same_site("https://search.justice.gov/x", "justice.gov")
    assert not is_same_site("https://justice.gov.example.com/x", "justice.gov")
    assert not is_same_site("/relative", "justice.gov")


@pytest.mark.parametrize(
    ("url", "text", "expected"),
    [
        ("https://www.justice.gov/epstein/files/EFTA00000001.pdf", "Data Set 1", DOCUMENT),
        ("https://www.justice.gov/epstein/doj-disclosures/data-set-1-files?page=2", "3", HUB),
        ("https://www.justice.gov/epstein/doj-disclosures/data-set-2-files", "Data Set 2 Files", HUB),
        ("https://www.justice.gov/epstein/court-records", "View All", HUB),
        ("https://www.justice.gov/epstein/disclosures", "Disclosures", HUB),
        ("https://www.justice.gov/epstein/filings/", "", HUB),
        ("https://www.justice.gov/epstein/press-statement", "Statement of the Attorney General", DOCUMENT),
    ],
)
def test_link_rule_table(url, text, expected):
    assert classify_link(url, text) == expected


def test_content_files_are_checked_first():
    assert LINK_RULES[0].kind == DOCUMENT
    assert [rule.name for rule in LINK_RULES][0] == "content-file"


def test_document_type_inference():
    assert infer_document_type("https://x.gov/epstein/EFTA00000001.pdf", "pdf") == "EFTA Disclosure"
    assert infer_document_type("https://x.gov/epstein/indictment.pdf", "pdf") == "Court Document"
    assert infer_document_type("https://x.gov/epstein/statement", "html") == "Web Page"


def test_title_from_url():
    assert title_from_url("https://x.gov/epstein/files/DataSet%201/EFTA00000007.pdf") == "EFTA00000007"
    assert title_from_url("https://x.gov/", "Untitled Page") == "Untitled Page"
