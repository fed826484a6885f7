import requests
from bs4 import BeautifulSoup

from app.discovery.base import RateLimiter
from app.discovery.hub_crawler import (
    HubCrawler,
    detect_numbering_scheme,
    detect_total_pages,
    infer_numbered_urls,
    page_url,
    seed_hubs,
)
from http_fakes import FakeResponse, FakeSession

BASE = "https://www.justice.gov"
DATA_SET_1 = f"{BASE}/epstein/doj-disclosures/data-set-1-files"
PDF_DIR = f"{BASE}/epstein/files/DataSet%201"


def _listing_page(numbers, *, last_page=None, extra=""):
    items = "\n".join(
        f'<li><a href="/epstein/files/DataSet%201/EFTA{n:08d}.pdf">EFTA{n:08d}.pdf</a></li>' for n in numbers
    )
    pager = ""
    if last_page is not None:
        pager = (
            '<nav class="pager"><ul>'
            '<li class="pager__item"><a href="?page=1">2</a></li>'
            f'<li class="pager__item pager__item--last"><a href="?page={last_page}" title="Go to last page">Last</a></li>'
            "</ul></nav>"
        )
    return f"<html><body><h1>Data Set 1 Files</h1><ul>{items}</ul>{pager}{extra}</body></html>"


def _crawler(session, **kwargs):
    return HubCrawler(session=session, limiter=RateLimiter(0), **kwargs)


def test_seed_hubs_cover_landing_and_all_data_sets():
    seeds = seed_hubs(BASE + "/")
    assert seeds[0] == f"{BASE}/epstein"
    assert seeds[1] == f"{BASE}/epstein/doj-disclosures"
    assert seeds[-1] == f"{BASE}/epstein/doj-disclosures/data-set-12-files"
    assert len(seeds) == 14


def test_blocked_pagination_is_inferred_from_numbered_items():
    session = FakeSession(
        {
            DATA_SET_1: FakeResponse(200, _listing_page(range(1, 51), last_page=3)),
            page_url(DATA_SET_1, 1): FakeResponse(403, "Forbidden"),
        }
    )
    result = _crawler(session, seeds=[DATA_SET_1], max_pages_per_hub=4).run()

    speculative = [d for d in result.documents if d.speculative]
    assert len(speculative) == 150
    assert result.inferred == 150
    assert speculative[0].url == f"{PDF_DIR}/EFTA00000051.pdf"
    assert speculative[-1].url == f"{PDF_DIR}/EFTA00000200.pdf"
    assert speculative[0].title == "EFTA00000051"
    assert all(d.file_type == "pdf" and d.source_id == DATA_SET_1 for d in speculative)

    observed = [d for d in result.documents if not d.speculative]
    assert len(observed) == 50
    assert result.hubs_crawled == 1
    # A blocked page is a signal to stop paging, not an error.
    assert result.errors == 0
    assert session.urls() == [DATA_SET_1, page_url(DATA_SET_1, 1)]


def test_extra_pages_are_fetched_until_blocked():
    session = FakeSession(
        {
            DATA_SET_1: FakeResponse(200, _listing_page(range(1, 51), last_page=3)),
            page_url(DATA_SET_1, 1): FakeResponse(200, _listing_page(range(51, 101))),
            page_url(DATA_SET_1, 2): FakeResponse(429, "Too Many Requests"),
        }
    )
    result = _crawler(session, seeds=[DATA_SET_1], max_pages_per_hub=4).run()

    assert len([d for d in result.documents if not d.speculative]) == 100
    speculative = [d for d in result.documents if d.speculative]
    assert [d.url for d in speculative][:1] == [f"{PDF_DIR}/EFTA00000101.pdf"]
    assert len(speculative) == 100


def test_page_budget_limits_extra_fetches():
    session = FakeSession(
        {
            DATA_SET_1: FakeResponse(200, _listing_page(range(1, 51), last_page=9)),
            page_url(DATA_SET_1, 1): FakeResponse(200, _listing_page(range(51, 101))),
        }
    )
    _crawler(session, seeds=[DATA_SET_1], max_pages_per_hub=2).run()
    assert session.urls() == [DATA_SET_1, page_url(DATA_SET_1, 1)]


def test_breadth_first_crawl_follows_hubs_and_filters_links():
    landing = """
    <html><body>
      <a href="/epstein/doj-disclosures/data-set-1-files">Data Set 1</a>
      <a href="/epstein/press-statement">Statement</a>
      <a href="/epstein/files/indictment.pdf?utm_source=site">Indictment</a>
      <a href="https://www.justice.gov/epstein/files/indictment.pdf">Indictment (again)</a>
      <a href="/careers">Careers</a>
      <a href="https://other.example.com/epstein/files/x.pdf">Mirror</a>
      <a href="#main">Skip</a>
      <a href="mailto:press@justice.gov">Press</a>
    </body></html>
    """
    data_set = '<html><body><a href="/epstein/files/DataSet%201/EFTA00000001.pdf">EFTA00000001.pdf</a></body></html>'
    session = FakeSession(
        {
            f"{BASE}/epstein": FakeResponse(200, landing),
            DATA_SET_1: FakeResponse(200, data_set),
        }
    )
    result = _crawler(session, seeds=[f"{BASE}/epstein"]).run()

    urls = [d.url for d in result.documents]
    assert urls == [
        f"{BASE}/epstein/press-statement",
        f"{BASE}/epstein/files/indictment.pdf?utm_source=site",
        f"{PDF_DIR}/EFTA00000001.pdf",
    ]
    assert result.documents[0].file_type == "html"
    assert result.documents[0].title == "Statement"
    assert result.documents[1].file_type == "pdf"
    assert result.documents[2].source_id == DATA_SET_1
    assert result.hubs_crawled == 2
    assert session.urls() == [f"{BASE}/epstein", DATA_SET_1]


def test_failed_hub_counts_an_error_and_crawl_continues():
    session = FakeSession(
        {
            f"{BASE}/epstein": requests.ConnectionError("reset"),
            DATA_SET_1: FakeResponse(200, _listing_page([1, 2])),
        }
    )
    result = _crawler(session, seeds=[f"{BASE}/epstein", DATA_SET_1]).run()
    assert result.errors == 1
    assert result.hubs_crawled == 2
    assert len(result.documents) == 2


def test_hub_budget_is_respected():
    hubs = [f"{BASE}/epstein/doj-disclosures/data-set-{i}-files" for i in range(1, 6)]
    session = FakeSession({url: FakeResponse(200, "<html><body></body></html>") for url in hubs})
    result = _crawler(session, seeds=hubs, max_hubs=3).run()
    assert result.hubs_crawled == 3
    assert session.urls() == hubs[:3]


def test_detect_total_pages_prefers_last_page_link():
    soup = BeautifulSoup(_listing_page([1, 2], last_page=3), "html.parser")
    assert detect_total_pages(soup) == 4


def test_detect_total_pages_falls_back_to_highest_page_link():
    html = '<a href="?page=1">2</a><a href="?page=6">7</a><a href="?page=2">3</a>'
    assert detect_total_pages(BeautifulSoup(html, "html.parser")) == 7
    assert detect_total_pages(BeautifulSoup("<p>no pager</p>", "html.parser")) == 1


def test_numbering_scheme_needs_two_matching_items():
    assert detect_numbering_scheme([f"{PDF_DIR}/EFTA00000001.pdf"]) is None
    assert detect_numbering_scheme([f"{BASE}/epstein/files/indictment.pdf", f"{BASE}/epstein/files/notes.pdf"]) is None

    scheme = detect_numbering_scheme(
        [f"{PDF_DIR}/EFTA00000003.pdf", f"{PDF_DIR}/EFTA00000001.pdf", f"{BASE}/epstein/files/indictment.pdf"]
    )
    assert scheme is not None
    assert scheme.numbers == [1, 3]
    assert scheme.width == 8
    assert scheme.url_for(12) == f"{PDF_DIR}/EFTA00000012.pdf"


def test_inference_arithmetic():
    scheme = detect_numbering_scheme([f"{PDF_DIR}/EFTA{n:08d}.pdf" for n in range(101, 151)])
    inferred = infer_numbered_urls(scheme, total_pages=3, per_page=50, source_id=DATA_SET_1)
    assert len(inferred) == 100
    assert inferred[0].url.endswith("EFTA00000151.pdf")
    assert inferred[-1].url.endswith("EFTA00000250.pdf")
    assert all(d.speculative for d in inferred)
