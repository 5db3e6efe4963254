# FILE: tests/test_bot.py
"""
Tests for the service entrypoint helpers.
Run with: pytest tests/test_bot.py
"""
import asyncio

import pytest
from aiohttp import test_utils

from bot import build_ssl_context, create_app, main, parse_args
from config import Config, get_config


def test_config_flag_defaults():
    """Test that the config path defaults to ./config.yaml."""
    assert parse_args([]).config == "./config.yaml"


@pytest.mark.parametrize("flag", ["-c", "--config"])
def test_config_flag(flag):
    """Test that both flag spellings set the config path."""
    assert parse_args([flag, "/etc/bot/config.yaml"]).config == "/etc/bot/config.yaml"


def test_no_ssl_context_for_plain_http():
    """Test that no TLS context is built when HTTPS is off."""
    assert build_ssl_context(Config()) is None


def test_ssl_context_requires_loadable_cert(tmp_path, monkeypatch):
    """Test that HTTPS without any usable cert files fails to build a context."""
    monkeypatch.chdir(tmp_path)
    config = Config(USE_HTTPS=True, CERT_FILE="missing.pem", KEY_FILE="missing.key")
    # falls back to cert.pem/key.pem, which do not exist here either
    with pytest.raises(OSError):
        build_ssl_context(config)


def test_health_check():
    """Test that the health endpoint answers ok."""
    async def run():
        async with test_utils.TestClient(test_utils.TestServer(create_app(Config()))) as client:
            resp = await client.get("/healthz")
            return resp.status, await resp.text()

    status, text = asyncio.run(run())
    assert status == 200
    assert text == "ok"


def test_main_exits_when_startup_fails(tmp_path, monkeypatch):
    """Test that a startup failure exits with status 1 after resolving the config."""
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "config.yaml"
    path.write_text("USE_HTTPS: true\nBOT_NAME: tls-bot\n", encoding="utf-8")

    with pytest.raises(SystemExit) as exc_info:
        main(["--config", str(path)])

    assert exc_info.value.code == 1
    # the config was still resolved from the flag's path
    assert get_config().BOT_NAME == "tls-bot"
