"""Tests for backend definitions, settings and error classification."""

import json
import subprocess

import httpx
import pytest

from tool_bridge.config import (
    DEFAULT_READY_MARKERS,
    BackendConfig,
    BridgeSettings,
    TransportKind,
    backends_from_env,
    load_backends,
)
from tool_bridge.errors import (
    PeerClosed,
    RequestTimeout,
    RpcError,
    SpawnError,
    ToolBridgeError,
    classify_error,
)

CONFIG = {
    "backends": {
        "mongodb": {"command": "node", "args": ["mongodb-mcp-server.js"], "env": {"MONGO_URI": "mongodb://db"}},
        "Elasticsearch": {"url": "http://localhost:3002/mcp/", "headers": {"X-Api-Key": "k"}},
    }
}


class TestBackendConfig:
    def test_stdio_constructor(self):
        backend = BackendConfig.stdio("MongoDB ", "node", ["server.js"])

        assert backend.name == "mongodb"
        assert backend.transport is TransportKind.STDIO
        assert backend.endpoint == "node server.js"
        assert backend.ready_markers == DEFAULT_READY_MARKERS

    def test_http_constructor_strips_trailing_slash(self):
        backend = BackendConfig.http("fhir", "http://localhost:3003/mcp/")

        assert backend.transport is TransportKind.HTTP
        assert backend.endpoint == "http://localhost:3003/mcp"

    def test_from_mapping_infers_transport(self):
        assert BackendConfig.from_mapping("a", {"url": "http://x"}).transport is TransportKind.HTTP
        assert BackendConfig.from_mapping("b", {"command": "node"}).transport is TransportKind.STDIO

    def test_from_mapping_splits_command_string(self):
        backend = BackendConfig.from_mapping("es", {"command": "node 'es server.js' --port 9200"})

        assert backend.command == "node"
        assert backend.args == ["es server.js", "--port", "9200"]

    def test_from_mapping_keeps_explicit_options(self):
        backend = BackendConfig.from_mapping(
            "mongodb",
            {"command": "node", "args": ["s.js", 1], "ready_markers": [], "request_timeout": 30, "cwd": "/srv"},
        )

        assert backend.args == ["s.js", "1"]
        assert backend.ready_markers == ()
        assert backend.request_timeout == 30
        assert backend.cwd == "/srv"

    @pytest.mark.parametrize(
        "name, data",
        [
            ("", {"command": "node"}),
            ("mongodb", {"transport": "stdio"}),
            ("fhir", {"transport": "http", "command": "node"}),
        ],
    )
    def test_invalid_definitions(self, name, data):
        with pytest.raises(ValueError):
            BackendConfig.from_mapping(name, data)

    @pytest.mark.parametrize(
        "line, ready",
        [
            ("Fake backend running on stdio", True),
            ("MCP server Listening on stdio", True),
            ("\N{ROCKET} MongoDB MCP Server (Official SDK) started", True),
            ("FHIR EHR MCP Server started", True),
            ("failed to get started", False),
            ("Server failed to get started", False),
            ("Server error: not started", False),
            ("Connecting to server...", False),
        ],
    )
    def test_default_ready_markers(self, line, ready):
        assert BackendConfig.stdio("mongodb", "node").signals_ready(line) is ready

    def test_custom_ready_marker(self):
        backend = BackendConfig.stdio("fhir", "node", ready_markers=(r"^ready$",))

        assert backend.signals_ready("READY")
        assert not backend.signals_ready("not ready yet")

    def test_bad_ready_marker(self):
        with pytest.raises(ValueError, match="ready marker"):
            BackendConfig.stdio("fhir", "node", ready_markers=("(unclosed",))

    def test_entry_must_be_a_mapping(self):
        with pytest.raises(TypeError):
            BackendConfig.from_mapping("mongodb", "node server.js")


class TestLoadBackends:
    def test_from_mapping(self):
        backends = load_backends(CONFIG)

        assert [b.name for b in backends] == ["mongodb", "elasticsearch"]
        assert backends[0].env == {"MONGO_URI": "mongodb://db"}
        assert backends[1].url == "http://localhost:3002/mcp"
        assert backends[1].headers == {"X-Api-Key": "k"}

    def test_bare_mapping_and_json_string(self):
        backends = load_backends(json.dumps(CONFIG["backends"]))
        assert {b.name for b in backends} == {"mongodb", "elasticsearch"}

    def test_from_file(self, tmp_path):
        path = tmp_path / "backends.json"
        path.write_text(json.dumps(CONFIG), encoding="utf-8")

        assert len(load_backends(path)) == 2

    def test_rejects_non_object(self):
        with pytest.raises(TypeError):
            load_backends("[1, 2]")


class TestBackendsFromEnv:
    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        for key in ("TOOL_BRIDGE_CONFIG", "TOOL_BRIDGE_BACKENDS"):
            monkeypatch.delenv(key, raising=False)

    def test_url_and_command_variables(self, monkeypatch):
        monkeypatch.setenv("ELASTICSEARCH_MCP_SERVER_URL", "http://localhost:3002/mcp")
        monkeypatch.setenv("FHIR_MCP_SERVER_COMMAND", "node fhir-server.js --stdio")

        backends = {b.name: b for b in backends_from_env()}

        assert backends["elasticsearch"].transport is TransportKind.HTTP
        assert backends["fhir"].command == "node"
        assert backends["fhir"].args == ["fhir-server.js", "--stdio"]

    def test_inline_json_wins_over_variables(self, monkeypatch):
        monkeypatch.setenv("TOOL_BRIDGE_BACKENDS", json.dumps(CONFIG))
        monkeypatch.setenv("MONGODB_MCP_SERVER_URL", "http://elsewhere/mcp")

        backends = {b.name: b for b in backends_from_env()}

        assert backends["mongodb"].transport is TransportKind.STDIO

    def test_config_file(self, monkeypatch, tmp_path):
        path = tmp_path / "bridge.json"
        path.write_text(json.dumps(CONFIG), encoding="utf-8")
        monkeypatch.setenv("TOOL_BRIDGE_CONFIG", str(path))

        assert {"mongodb", "elasticsearch"} <= {b.name for b in backends_from_env()}


class TestBridgeSettings:
    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)

    def test_defaults(self):
        settings = BridgeSettings()

        assert settings.max_connect_attempts == 3
        assert settings.client_info == {"name": "tool-bridge", "version": "0.1.0"}

    def test_from_env_overrides(self, monkeypatch):
        monkeypatch.setenv("TOOL_BRIDGE_CONNECT_TIMEOUT", "2.5")
        monkeypatch.setenv("TOOL_BRIDGE_MAX_CONNECT_ATTEMPTS", "5")
        monkeypatch.setenv("TOOL_BRIDGE_EAGER_START", "yes")

        settings = BridgeSettings.from_env()

        assert settings.connect_timeout == 2.5
        assert settings.max_connect_attempts == 5
        assert settings.eager_start is True

    def test_from_env_rejects_garbage(self, monkeypatch):
        monkeypatch.setenv("TOOL_BRIDGE_REQUEST_TIMEOUT", "soon")
        with pytest.raises(RuntimeError, match="TOOL_BRIDGE_REQUEST_TIMEOUT"):
            BridgeSettings.from_env()

    def test_attempt_budget_must_be_positive(self):
        with pytest.raises(ValueError):
            BridgeSettings(max_connect_attempts=0)


class TestClassifyError:
    def test_bridge_errors_pass_through(self):
        error = SpawnError("no such file")
        assert classify_error(error, backend="mongodb") is error
        assert error.backend == "mongodb"

    @pytest.mark.parametrize(
        "exc, expected",
        [
            (httpx.ReadTimeout("slow"), RequestTimeout),
            (httpx.ConnectError("refused"), PeerClosed),
            (TimeoutError(), RequestTimeout),
            (BrokenPipeError(), PeerClosed),
            (subprocess.TimeoutExpired("node", 1), RequestTimeout),
        ],
    )
    def test_foreign_exceptions(self, exc, expected):
        error = classify_error(exc, backend="fhir")

        assert isinstance(error, expected)
        assert error.original_exc is exc
        assert error.__cause__ is exc
        assert error.backend == "fhir"

    def test_http_status_error(self):
        request = httpx.Request("GET", "http://x/tools")
        response = httpx.Response(503, request=request)
        exc = httpx.HTTPStatusError("unavailable", request=request, response=response)

        error = classify_error(exc)

        assert isinstance(error, RpcError)
        assert error.code == 503

    def test_unexpected_exception(self, caplog):
        error = classify_error(KeyError("x"))

        assert type(error) is ToolBridgeError
        assert error.message.startswith("KeyError")
        assert "Unexpected KeyError" in caplog.text
