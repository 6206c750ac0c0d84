import pytest

from dev_browser.allowlist import HostAllowlist, host_matches
from dev_browser.errors import ConfigurationError


def test_exact_entry_matches_only_that_host():
    allowlist = HostAllowlist(["example.com"])
    assert allowlist.is_allowed("https://example.com/path?q=1")
    assert allowlist.is_allowed("http://example.com:8080/")
    assert not allowlist.is_allowed("https://www.example.com/")
    assert not allowlist.is_allowed("https://evilexample.com/")


def test_wildcard_matches_subdomains_but_not_parent():
    allowlist = HostAllowlist(["*.example.com"])
    assert allowlist.is_allowed("https://a.example.com/")
    assert allowlist.is_allowed("https://a.b.example.com/")
    assert not allowlist.is_allowed("https://example.com/")
    assert not allowlist.is_allowed("https://notexample.com/")
    assert not allowlist.is_allowed("https://example.com.evil.net/")


def test_entries_are_normalized():
    allowlist = HostAllowlist(["  Example.COM. ", "", "example.com", "*.Docs.Example.com"])
    assert allowlist.entries == ("example.com", "*.docs.example.com")
    assert allowlist.is_allowed("https://EXAMPLE.com./")
    assert allowlist.is_allowed("https://api.docs.example.com/")


def test_userinfo_does_not_fool_host_check():
    allowlist = HostAllowlist(["example.com"])
    assert not allowlist.is_allowed("https://example.com@evil.net/")
    assert not allowlist.is_allowed("https://user:pw@example.com/")
    assert not allowlist.is_allowed("https://evil.com\\@example.com/")
    assert not allowlist.is_allowed("https://evil.com\\.example.com/")
    assert allowlist.is_allowed("https://example.com/a\\b?next=user@example.com")


def test_scheme_handling():
    allowlist = HostAllowlist(["example.com"])
    assert allowlist.is_allowed("data:text/html,<p>hi</p>")
    assert allowlist.is_allowed("blob:https://example.com/123")
    assert not allowlist.is_allowed("file:///etc/passwd")
    assert not allowlist.is_allowed("ftp://example.com/")
    assert not allowlist.is_allowed("javascript:alert(1)")
    assert not allowlist.is_allowed("not a url")
    assert not allowlist.is_allowed("")
    assert not allowlist.is_allowed("http://[::1/")


def test_empty_allowlist_is_rejected():
    with pytest.raises(ConfigurationError):
        HostAllowlist([])
    with pytest.raises(ConfigurationError):
        HostAllowlist.from_csv(" , ,")
    allowlist = HostAllowlist([], require_entries=False)
    assert not allowlist.is_allowed("https://example.com/")


def test_from_csv_and_describe():
    allowlist = HostAllowlist.from_csv("example.com, *.example.org")
    assert allowlist.describe() == "example.com,*.example.org"


def test_host_matches_rejects_bare_wildcard():
    assert not host_matches("example.com", "*.")
    assert host_matches("a.example.com", "*.example.com")
