"""Tests for the byoc-proxy CLI."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
import yaml

from byoc_proxy.cli.main import main
from byoc_proxy.proxy.registry import CapabilityRegistry
from byoc_proxy.proxy.transformer import CapabilityHeader


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for var in ("GATEWAY_URL", "PROXY_ADDR", "RERANK_CAPABILITY", "CHAT_COMPLETIONS_CAPABILITY"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "byoc-proxy.yaml"
    path.write_text(yaml.dump({
        "backend_url": "http://backend.test:9935",
        "capabilities": {"rerank": "my-rerank"},
    }))
    return path


class TestRoutes:
    def test_prints_table(self, config_file, capsys):
        main(["-c", str(config_file), "routes"])
        out = capsys.readouterr().out
        assert "/v1/chat/completions" in out
        assert "my-rerank" in out
        assert "30/900s" in out


class TestConfigValidate:
    def test_valid(self, config_file, capsys):
        main(["-c", str(config_file), "config", "validate"])
        assert "Config is valid." in capsys.readouterr().out

    def test_invalid_exits_1(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.dump({"backend_url": "nope", "timeouts": {"bogus": 5}}))
        with pytest.raises(SystemExit) as exc:
            main(["-c", str(path), "config", "validate"])
        assert exc.value.code == 1
        out = capsys.readouterr().out
        assert "backend_url" in out
        assert "bogus" in out

    def test_missing_file(self, capsys):
        with pytest.raises(SystemExit):
            main(["-c", "/nonexistent.yaml", "config", "validate"])
        assert "Config error" in capsys.readouterr().err


class TestDecodeHeader:
    def test_decodes(self, capsys):
        value = CapabilityHeader.for_route(CapabilityRegistry().get("/v1/embeddings")).encode()
        main(["decode-header", value])
        data = json.loads(capsys.readouterr().out)
        assert data["capability"] == "openai-text-embeddings"
        assert data["timeout_seconds"] == 30

    def test_garbage_exits_1(self):
        with pytest.raises(SystemExit) as exc:
            main(["decode-header", "%%%"])
        assert exc.value.code == 1


class TestServe:
    def test_runs_uvicorn_with_overrides(self, config_file):
        with patch("uvicorn.run") as mock_run:
            main(["-c", str(config_file), "serve", "--port", "9999", "--backend", "http://other:1/"])
        mock_run.assert_called_once()
        app = mock_run.call_args.args[0]
        kwargs = mock_run.call_args.kwargs
        assert kwargs["port"] == 9999
        assert kwargs["timeout_graceful_shutdown"] == 2
        assert app.state.config.backend_url == "http://other:1"

    def test_no_command_prints_help(self):
        with pytest.raises(SystemExit) as exc:
            main([])
        assert exc.value.code == 1
