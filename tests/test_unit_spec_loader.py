# FILE: test_unit_spec_loader.py

import json

import httpx
import pytest

from apicopilot.core.exceptions import ApiDescriptionError
from apicopilot.core.spec_loader import (
    api_description_snapshot,
    fetch_api_description,
    load_api_description,
    parse_api_description,
    resolve_api_description_path,
)


YAML_DOC = """
openapi: 3.0.3
info:
  title: Shop API
  version: 1.2.0
servers:
  - url: ${SHOP_API_URL}
paths:
  /orders:
    get:
      operationId: listOrders
"""


def test_parse_yaml_with_env_expansion(monkeypatch):
    monkeypatch.setenv("SHOP_API_URL", "http://shop.test")
    doc = parse_api_description(YAML_DOC)

    assert doc["servers"][0]["url"] == "http://shop.test"
    assert doc["paths"]["/orders"]["get"]["operationId"] == "listOrders"


def test_parse_without_env_expansion(monkeypatch):
    monkeypatch.setenv("SHOP_API_URL", "http://shop.test")
    doc = parse_api_description(YAML_DOC, env_expand=False)
    assert doc["servers"][0]["url"] == "${SHOP_API_URL}"


def test_parse_json_documents(shop_api):
    assert parse_api_description(json.dumps(shop_api)) == shop_api


@pytest.mark.parametrize(
    "raw",
    [
        "- just\n- a list\n",
        "paths: [1, 2]\n",
        "paths: {unclosed\n",
    ],
)
def test_parse_rejects_malformed_documents(raw):
    with pytest.raises(ApiDescriptionError):
        parse_api_description(raw)


def test_load_from_absolute_and_relative_paths(tmp_path, monkeypatch):
    spec_file = tmp_path / "openapi.yaml"
    spec_file.write_text(YAML_DOC, encoding="utf-8")

    assert load_api_description(str(spec_file))["info"]["title"] == "Shop API"

    monkeypatch.chdir(tmp_path)
    assert resolve_api_description_path("openapi.yaml") == spec_file.resolve()


def test_missing_file_lists_tried_locations(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ApiDescriptionError) as exc:
        resolve_api_description_path("nope/openapi.yaml")
    assert "Tried:" in str(exc.value)

    with pytest.raises(ApiDescriptionError):
        resolve_api_description_path("  ")


@pytest.mark.asyncio
async def test_fetch_api_description(shop_api):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api-docs.json"
        return httpx.Response(200, json=shop_api)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    doc = await fetch_api_description("http://shop.test/api-docs.json", client=client)
    assert doc == shop_api

    assert client.is_closed is False
    again = await fetch_api_description("http://shop.test/api-docs.json", client=client)
    assert again == shop_api
    await client.aclose()


@pytest.mark.asyncio
async def test_fetch_failures_raise_api_description_error():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")))
    with pytest.raises(ApiDescriptionError):
        await fetch_api_description("http://shop.test/api-docs.json", client=client)


def test_snapshot(shop_api):
    assert api_description_snapshot(shop_api) == {
        "title": "Shop API",
        "version": "1.2.0",
        "openapi": "3.0.3",
        "path_count": 3,
    }
