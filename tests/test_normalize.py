import pytest
import requests

from app.discovery.normalize import hash_bytes, hash_text, normalize_url, resolve_redirects
from http_fakes import FakeResponse, FakeSession


def test_normalize_is_idempotent():
    raw = "HTTP://WWW.Justice.GOV/epstein/files/?b=2&a=1&utm_source=x#top"
    once = normalize_url(raw)
    assert once == "https://www.justice.gov/epstein/files?a=1&b=2"
    assert normalize_url(once) == once


@pytest.mark.parametrize(
    "variant",
    [
        "http://www.justice.gov/epstein/doc?id=7",
        "https://WWW.JUSTICE.GOV/epstein/doc?id=7",
        "https://www.justice.gov/epstein/doc/?id=7",
        "https://www.justice.gov/epstein/doc?id=7&utm_campaign=spring&fbclid=abc",
        "https://www.justice.gov/epstein/doc?utm_medium=mail&id=7#section-2",
        "https://www.justice.gov:443/epstein/doc?id=7",
    ],
)
def test_cosmetic_variants_share_one_canonical_form(variant):
    assert normalize_url(variant) == "https://www.justice.gov/epstein/doc?id=7"


def test_tracking_values_do_not_matter():
    a = normalize_url("https://example.gov/x?gclid=1&ref=home&q=epstein")
    b = normalize_url("https://example.gov/x?gclid=2&ref=news&q=epstein")
    assert a == b == "https://example.gov/x?q=epstein"


def test_repeated_keys_keep_relative_order():
    assert normalize_url("https://example.gov/x?z=1&a=2&a=1") == "https://example.gov/x?a=2&a=1&z=1"


def test_undecodable_query_bytes_stay_distinct():
    ff = normalize_url("https://www.justice.gov/search?id=%FF")
    fe = normalize_url("https://www.justice.gov/search?id=%FE")
    assert ff == "https://www.justice.gov/search?id=%FF"
    assert fe == "https://www.justice.gov/search?id=%FE"
    assert normalize_url(ff) == ff


def test_root_path_keeps_slash():
    assert normalize_url("https://Example.gov/") == "https://example.gov/"
    assert normalize_url("https://example.gov") == "https://example.gov/"


def test_non_default_port_is_kept():
    assert normalize_url("http://example.gov:8080/a/") == "https://example.gov:8080/a"


@pytest.mark.parametrize("bad", ["", "not a url", "/relative/path", "mailto:someone@example.gov", "https://example.gov:99999/x"])
def test_malformed_input_is_returned_unchanged(bad):
    assert normalize_url(bad) == bad


def test_non_string_input_is_returned_unchanged():
    assert normalize_url(None) is None


def test_hashes_are_sha256_hex():
    assert hash_bytes(b"abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert hash_text("abc") == hash_bytes(b"abc")
    assert hash_text("café") == hash_bytes("café".encode("utf-8"))


def test_resolve_redirects_follows_chain():
    session = FakeSession(
        {
            "https://example.gov/a": FakeResponse(301, headers={"Location": "/b"}),
            "https://example.gov/b": FakeResponse(302, headers={"Location": "https://example.gov/c"}),
            "https://example.gov/c": FakeResponse(200),
        }
    )
    assert resolve_redirects("https://example.gov/a", session) == "https://example.gov/c"
    assert session.urls("HEAD") == ["https://example.gov/a", "https://example.gov/b", "https://example.gov/c"]


def test_resolve_redirects_falls_back_on_error_status():
    session = FakeSession({"https://example.gov/a": FakeResponse(301, headers={"Location": "/gone"})})
    assert resolve_redirects("https://example.gov/a", session) == "https://example.gov/a"


def test_resolve_redirects_falls_back_on_network_error():
    session = FakeSession({"https://example.gov/a": requests.ConnectionError("down")})
    assert resolve_redirects("https://example.gov/a", session) == "https://example.gov/a"


def test_resolve_redirects_gives_up_on_long_chains():
    session = FakeSession({"https://example.gov/loop": FakeResponse(302, headers={"Location": "/loop"})})
    assert resolve_redirects("https://example.gov/loop", session, max_redirects=3) == "https://example.gov/loop"
    assert len(session.urls("HEAD")) == 4
