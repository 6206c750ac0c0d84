from pathlib import Path

import pytest

from dev_browser.config import ServeOptions, is_loopback_host
from dev_browser.errors import ConfigurationError


@pytest.mark.parametrize(
    "host,expected",
    [
        ("localhost", True),
        ("127.0.0.1", True),
        ("127.1.2.3", True),
        ("::1", True),
        ("[::1]", True),
        ("0.0.0.0", False),
        ("192.168.1.10", False),
        ("example.com", False),
        ("", False),
    ],
)
def test_is_loopback_host(host, expected):
    assert is_loopback_host(host) is expected


def test_from_env_reads_every_variable():
    options = ServeOptions.from_env(
        {
            "DEV_BROWSER_HOST": "::1",
            "DEV_BROWSER_PORT": "9300",
            "DEV_BROWSER_CDP_PORT": "9301",
            "HEADLESS": "true",
            "DEV_BROWSER_ALLOW_REMOTE": "0",
            "DEV_BROWSER_LOCKDOWN": "1",
            "DEV_BROWSER_TOKEN": " abc ",
            "DEV_BROWSER_REQUIRE_AUTH": "yes",
            "DEV_BROWSER_ALLOWED_HOSTS": "example.com, *.example.org",
            "DEV_BROWSER_TMP_DIR": "/tmp/shots",
        }
    )
    assert options.host == "::1"
    assert options.cdp_host == "::1"
    assert options.port == 9300
    assert options.cdp_port == 9301
    assert options.headless is True
    assert options.allow_remote is False
    assert options.lockdown is True
    assert options.auth_token == "abc"
    assert options.require_auth is True
    assert options.allowed_hosts == ("example.com", "*.example.org")
    assert options.tmp_dir == "/tmp/shots"


def test_from_env_defaults():
    options = ServeOptions.from_env({})
    assert options == ServeOptions()
    assert options.mode == "cdp"


def test_from_env_rejects_bad_port():
    with pytest.raises(ConfigurationError):
        ServeOptions.from_env({"DEV_BROWSER_PORT": "http"})


def test_from_dict_supports_nested_block():
    options = ServeOptions.from_dict(
        {
            "dev_browser": {
                "port": "9400",
                "headless": "false",
                "lockdown": True,
                "allowed-hosts": ["example.com"],
                "require_auth": None,
                "unknown": "ignored",
            }
        }
    )
    assert options.port == 9400
    assert options.headless is False
    assert options.lockdown is True
    assert options.allowed_hosts == ("example.com",)
    assert options.require_auth is None


def test_resolved_settles_auth():
    assert ServeOptions().resolved({}).require_auth is False

    with_env_token = ServeOptions().resolved({"DEV_BROWSER_TOKEN": "t0k"})
    assert with_env_token.auth_token == "t0k"
    assert with_env_token.require_auth is True

    lockdown = ServeOptions(lockdown=True, require_auth=False).resolved({})
    assert lockdown.require_auth is True


def test_merged_skips_none():
    options = ServeOptions(port=9500).merged(port=None, headless=True)
    assert options.port == 9500
    assert options.headless is True


@pytest.mark.parametrize(
    "options,message",
    [
        (ServeOptions(port=0), "Invalid port"),
        (ServeOptions(cdp_port=70000), "Invalid cdp_port"),
        (ServeOptions(port=9222, cdp_port=9222), "must be different"),
        (ServeOptions(host="0.0.0.0"), "non-loopback"),
        (ServeOptions(cdp_host="10.0.0.1"), "non-loopback"),
        (ServeOptions(require_auth=True), "auth required"),
        (ServeOptions(lockdown=True, require_auth=True, auth_token="t"), "allowlist"),
        (ServeOptions(page_timeout_ms=0), "timeouts"),
        (ServeOptions(cdp_retries=0), "cdp_retries"),
    ],
)
def test_validate_rejects(options, message):
    with pytest.raises(ConfigurationError, match=message):
        options.validate()


def test_lockdown_without_token_fails_validation():
    options = ServeOptions(lockdown=True, allowed_hosts=("example.com",)).resolved({})
    with pytest.raises(ConfigurationError, match="auth required"):
        options.validate()


def test_validate_accepts_remote_with_opt_in():
    ServeOptions(host="0.0.0.0", cdp_host="0.0.0.0", allow_remote=True).validate()
    ServeOptions(
        lockdown=True,
        require_auth=True,
        auth_token="t",
        allowed_hosts=("example.com",),
    ).validate()


def test_directories(tmp_path):
    options = ServeOptions(profile_dir=str(tmp_path / "profile"), tmp_dir=str(tmp_path / "shots"))
    assert options.user_data_dir() == tmp_path / "profile" / "browser-data"
    assert options.artifact_root() == (tmp_path / "shots").resolve()
    assert ServeOptions().user_data_dir() == Path.cwd() / ".browser-data"
