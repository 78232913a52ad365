import socket

import pytest

import media_relay.server as server
from media_relay.config import Settings
from media_relay.errors import StartupFailure


def test_missing_tls_material_is_fatal(tmp_path) -> None:
    settings = Settings(
        _env_file=None,
        ssl_keyfile=str(tmp_path / "missing.key"),
        ssl_certfile=str(tmp_path / "missing.crt"),
    )
    with pytest.raises(StartupFailure, match="SSL certificates"):
        server.check_tls(settings)


def test_tls_check_only_validates(monkeypatch) -> None:
    loaded = []

    class _Context:
        def load_cert_chain(self, certfile, keyfile):
            loaded.append((certfile, keyfile))

    monkeypatch.setattr(server.ssl, "create_default_context", lambda purpose: _Context())
    settings = Settings(_env_file=None, ssl_keyfile="k.pem", ssl_certfile="c.pem")

    assert server.check_tls(settings) is None
    assert loaded == [("c.pem", "k.pem")]


def test_bound_port_is_fatal() -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen(1)
        port = sock.getsockname()[1]

        with pytest.raises(StartupFailure, match="already in use"):
            server.ensure_port_free("127.0.0.1", port)


def test_main_exits_non_zero_without_certificates(monkeypatch, tmp_path) -> None:
    settings = Settings(
        _env_file=None,
        ssl_keyfile=str(tmp_path / "nope.key"),
        ssl_certfile=str(tmp_path / "nope.crt"),
    )
    monkeypatch.setattr(server, "get_settings", lambda: settings)

    def _never(_settings):
        raise AssertionError("servers must not start")

    monkeypatch.setattr(server, "serve", _never)

    assert server.main() == 1
