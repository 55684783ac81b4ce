"""
Test: HTTP surface of the API.

    pytest tests/test_api.py
"""

import pytest
from fastapi.testclient import TestClient

from bionic_reader.main import app

PAGE = "<html><head></head><body><p>The quick brown fox</p></body></html>"


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "API is running!"}


# ── Preferences ──────────────────────────────────────────────────────────────

def test_preferences_use_camel_case(client):
    body = client.get("/preferences").json()
    assert body["fixationStrength"] == 2
    assert body["saccadesStyle"] == "bold-600"
    assert body["scope"] == "global"


def test_local_preferences_only_affect_their_origin(client):
    response = client.put(
        "/preferences",
        params={"url": "https://example.com/a"},
        json={"scope": "local", "saccadesInterval": 3},
    )
    assert response.status_code == 200
    assert response.json()["scope"] == "local"

    same_origin = client.get("/preferences", params={"url": "https://example.com/b"}).json()
    elsewhere = client.get("/preferences", params={"url": "https://news.example.org/"}).json()
    assert same_origin["saccadesInterval"] == 3
    assert elsewhere["saccadesInterval"] == 0


def test_invalid_preferences_are_rejected(client):
    assert client.put("/preferences", json={"fixationStrength": 9}).status_code == 422
    assert client.put("/preferences", json={"scope": "local"}).status_code == 422


def test_display_mode_toggle(client):
    assert client.get("/config").json()["displayColorMode"] == "light"
    assert client.post("/config/display-mode/toggle").json()["displayColorMode"] == "dark"
    assert client.post("/config/display-mode/toggle").json()["displayColorMode"] == "light"


# ── Reader ───────────────────────────────────────────────────────────────────

def test_classify(client):
    normal = client.post("/classify", json={"url": "https://Example.com:443/x"}).json()
    assert normal["category"] == "normal"
    assert normal["origin"] == "https://example.com"
    assert normal["condition"] is None

    restricted = client.post("/classify", json={"url": "chrome://extensions"}).json()
    assert restricted["category"] == "restricted"
    assert restricted["condition"]["condition"] == "unsupported_page"


def test_transform(client):
    response = client.post(
        "/reader/transform",
        json={"html": "<p>The quick brown fox</p>", "preferences": {"fixationStrength": 3}},
    )
    assert response.status_code == 200
    body = response.json()
    assert "<br-bold>Th</br-bold>" in body["html"]
    assert body["transformed_nodes"] == 1
    assert "Bionic reading mode" in body["css"]


# ── Tabs ─────────────────────────────────────────────────────────────────────

def test_tab_lifecycle(client):
    created = client.post("/tabs", json={"url": "https://example.com/story", "html": PAGE})
    assert created.status_code == 201
    tab = created.json()
    tab_id = tab["tab_id"]
    assert tab["frame_count"] == 1
    assert tab["state"] == "unknown"

    queried = client.get(f"/tabs/{tab_id}/reading-mode").json()
    assert queried["state"] == "off"

    toggled = client.put(f"/tabs/{tab_id}/reading-mode", json={"br_mode": True}).json()
    assert toggled["state"] == "on"
    assert toggled["ok"] is True
    assert toggled["badge"] == "On"
    assert client.get(f"/tabs/{tab_id}/badge").json() == {"text": "On"}

    mutated = client.post(f"/tabs/{tab_id}/mutations", json={"html": "<p>Fresh words arrive</p>"}).json()
    assert mutated["added_nodes"] == 1
    assert mutated["pending"] == 0
    assert "<br-bold>Fr</br-bold>" in mutated["html"]

    missing = client.post(f"/tabs/{tab_id}/mutations", json={"html": "<p>x</p>", "selector": "#nope"})
    assert missing.status_code == 422

    malformed = client.post(f"/tabs/{tab_id}/mutations", json={"html": "<p>x</p>", "selector": "p["})
    assert malformed.status_code == 422
    assert "Invalid selector" in malformed.json()["detail"]

    navigated = client.post(
        f"/tabs/{tab_id}/navigate", json={"url": "https://example.com/next", "html": PAGE}
    ).json()
    assert navigated["state"] == "unknown"
    assert navigated["badge"] == ""
    assert "<br-bold>" not in navigated["html"]

    assert client.delete(f"/tabs/{tab_id}").status_code == 204
    assert client.get(f"/tabs/{tab_id}").status_code == 404


def test_restricted_tab_reports_condition(client):
    tab_id = client.post("/tabs", json={"url": "chrome://settings"}).json()["tab_id"]
    result = client.put(f"/tabs/{tab_id}/reading-mode", json={"br_mode": True}).json()
    assert result["state"] == "restricted"
    assert result["ok"] is False
    assert result["condition"]["condition"] == "unsupported_page"


def test_unknown_tab(client):
    assert client.get("/tabs/999/reading-mode").status_code == 404
