import socket

from click.testing import CliRunner

from dev_browser import cli
from dev_browser.config import ServeOptions

CLEAN_ENV = {
    name: None
    for name in (
        "DEV_BROWSER_HOST",
        "DEV_BROWSER_PORT",
        "DEV_BROWSER_CDP_PORT",
        "DEV_BROWSER_ALLOW_REMOTE",
        "DEV_BROWSER_LOCKDOWN",
        "DEV_BROWSER_TOKEN",
        "DEV_BROWSER_REQUIRE_AUTH",
        "DEV_BROWSER_ALLOWED_HOSTS",
        "DEV_BROWSER_TMP_DIR",
        "HEADLESS",
    )
}


def test_build_options_precedence(tmp_path):
    config_path = tmp_path / "dev-browser.yaml"
    config_path.write_text(
        "dev_browser:\n"
        "  port: 9400\n"
        "  lockdown: true\n"
        "  allowed_hosts: example.com, *.example.org\n",
        encoding="utf-8",
    )
    environ = {"DEV_BROWSER_PORT": "9300", "DEV_BROWSER_CDP_PORT": "9301", "HEADLESS": "1"}

    from_file = cli.build_options(str(config_path), environ)
    assert from_file.port == 9400
    assert from_file.cdp_port == 9301
    assert from_file.headless is True
    assert from_file.lockdown is True
    assert from_file.allowed_hosts == ("example.com", "*.example.org")
    assert from_file.require_auth is True

    from_cli = cli.build_options(str(config_path), environ, port=9500, headless=False, host=None)
    assert from_cli.port == 9500
    assert from_cli.headless is False


def test_build_options_missing_config_uses_env(tmp_path):
    options = cli.build_options(str(tmp_path / "absent.json"), {"DEV_BROWSER_TOKEN": "tok"})
    assert options.port == 9222
    assert options.auth_token == "tok"
    assert options.require_auth is True


def test_ensure_auth_token_generates_when_required(capsys):
    options = cli.ensure_auth_token(ServeOptions(require_auth=True))
    assert len(options.auth_token) == 64
    int(options.auth_token, 16)
    assert options.auth_token in capsys.readouterr().out

    untouched = ServeOptions(require_auth=False)
    assert cli.ensure_auth_token(untouched) is untouched

    existing = ServeOptions(require_auth=True, auth_token="given")
    assert cli.ensure_auth_token(existing).auth_token == "given"


def test_choose_port_rebinds_when_busy():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
        busy.bind(("127.0.0.1", 0))
        busy.listen(1)
        port = busy.getsockname()[1]
        chosen = cli._choose_port("127.0.0.1", port, "HTTP")
    assert chosen != port

    free = cli._pick_free_tcp_port("127.0.0.1")
    assert cli._choose_port("127.0.0.1", free, "HTTP") == free


def test_run_reports_configuration_errors(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)
    runner = CliRunner()

    result = runner.invoke(cli.run, ["--lockdown", "--no-install"], env=CLEAN_ENV)
    assert result.exit_code == 1
    assert "allowlist" in result.output

    result = runner.invoke(cli.run, ["--host", "0.0.0.0", "--no-install"], env=CLEAN_ENV)
    assert result.exit_code == 1
    assert "non-loopback" in result.output
