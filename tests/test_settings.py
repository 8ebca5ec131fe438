"""Configuration settings behaviour tests."""

from __future__ import annotations

import json

import pytest

from app.config import DVRServerSettings, Settings


def _server(**overrides) -> dict[str, object]:
    payload: dict[str, object] = {
        "id": 0,
        "name": "Radarr",
        "hostname": "radarr.local",
        "port": 7878,
        "apiKey": "secret",
    }
    payload.update(overrides)
    return payload


def test_servers_parse_from_json_environment(monkeypatch) -> None:
    """Server lists can be supplied as JSON in the environment."""

    monkeypatch.setenv(
        "RADARR_SERVERS",
        json.dumps([_server(), _server(id=1, is4k=True, baseUrl="radarr4k/")]),
    )
    monkeypatch.delenv("SONARR_SERVERS", raising=False)
    settings = Settings(_env_file=None)

    assert [server.id for server in settings.radarr_servers] == [0, 1]
    assert settings.radarr_servers[1].is_4k is True
    assert settings.radarr_servers[1].base_url == "/radarr4k"
    assert settings.enable_4k_movie is True
    assert settings.enable_4k_show is False


def test_duplicate_server_ids_rejected() -> None:
    with pytest.raises(ValueError, match="duplicate server ids"):
        Settings(_env_file=None, SONARR_SERVERS=[_server(), _server(port=8989)])


def test_blank_proxies_are_ignored() -> None:
    settings = Settings(_env_file=None, HTTP_PROXY=" ", HTTPS_PROXY="http://proxy:3128")

    assert settings.http_proxy is None
    assert settings.proxy_urls == {"https://": "http://proxy:3128"}


def test_log_level_is_normalised() -> None:
    assert Settings(_env_file=None, LOG_LEVEL="debug").log_level == "DEBUG"

    with pytest.raises(ValueError, match="LOG_LEVEL"):
        Settings(_env_file=None, LOG_LEVEL="chatty")


def test_server_builds_urls() -> None:
    server = DVRServerSettings.model_validate(
        _server(useSsl=True, baseUrl="/movies/", port=443)
    )

    assert server.build_url("/api/v3") == "https://radarr.local:443/movies/api/v3"
    assert server.display_name == "Radarr"
    assert server.instance_key() == ("radarr.local", 443, "/movies")


def test_server_display_name_falls_back_to_address() -> None:
    server = DVRServerSettings.model_validate(_server(name=""))

    assert server.display_name == "radarr.local:7878"
