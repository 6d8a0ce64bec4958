import json
from unittest.mock import MagicMock, patch

import main
from main import COLOR_LARGE, INITIAL_CENTER, INITIAL_ZOOM


# -------------------------------
# Page / config
# -------------------------------
def test_healthz(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.get_json() == {"ok": True}


def test_index_renders_legend(client):
    r = client.get("/")
    assert r.status_code == 200
    body = r.get_data(as_text=True)
    assert main.APP_TITLE in body
    assert "Stadtgrößen" in body
    assert "100.000 – 500.000" in body
    assert "1.000.000+" in body
    assert 'id="info"' in body
    assert r.headers["Cache-Control"] == "no-store"


class TestConfig:
    def test_osm_without_token(self, client, monkeypatch):
        monkeypatch.setattr(main, "MAPBOX_ACCESS_TOKEN", "")
        j = client.get("/api/config").get_json()
        assert j["ok"] is True
        assert j["view"] == {"center": list(INITIAL_CENTER), "zoom": INITIAL_ZOOM}
        assert j["max_bounds"] == [[43.97701, -0.46143], [56.96894, 20.63232]]
        assert j["tiles"]["provider"] == "osm"
        assert j["styles"]["highlight"]["radius"] == 10
        assert j["popup_class"] == "popupStyle"

    def test_mapbox_with_token(self, client, monkeypatch):
        monkeypatch.setattr(main, "MAPBOX_ACCESS_TOKEN", "pk.abc")
        j = client.get("/api/config").get_json()
        assert j["tiles"]["provider"] == "mapbox"
        assert "access_token=pk.abc" in j["tiles"]["url"]


# -------------------------------
# Dataset
# -------------------------------
class TestCities:
    def test_features_carry_id_and_style(self, client):
        j = client.get("/api/cities").get_json()
        assert j["type"] == "FeatureCollection"
        assert len(j["features"]) == 5
        koeln = j["features"][0]
        assert koeln["id"] == "city-0"
        assert koeln["properties"]["stadt"] == "Köln"
        assert koeln["properties"]["einwohner"] == 1084831
        assert koeln["properties"]["style"]["fillColor"] == COLOR_LARGE
        assert koeln["properties"]["style"]["radius"] == 5

    def test_missing_file_is_500(self, client, monkeypatch, tmp_path):
        monkeypatch.setattr(main, "CITIES_PATH", str(tmp_path / "missing.geojson"))
        main.load_cities.cache_clear()
        r = client.get("/api/cities")
        assert r.status_code == 500
        assert r.get_json()["ok"] is False

    def test_remote_dataset(self, client, monkeypatch, sample_cities):
        monkeypatch.setattr(main, "CITIES_URL", "https://example.org/cities.geojson")
        main.load_cities.cache_clear()

        resp = MagicMock()
        resp.json.return_value = sample_cities
        with patch("main.requests.get", return_value=resp) as mock_get:
            j = client.get("/api/cities").get_json()

        assert len(j["features"]) == 5
        mock_get.assert_called_once()
        args, kwargs = mock_get.call_args
        assert args[0] == "https://example.org/cities.geojson"
        assert kwargs["timeout"] == main.HTTP_TIMEOUT
        assert kwargs["headers"]["User-Agent"] == main.HTTP_UA
        resp.raise_for_status.assert_called_once()


# -------------------------------
# Interaction endpoints
# -------------------------------
class TestInteraction:
    def test_select_and_back(self, client):
        client.get("/")
        r = client.post("/api/select", json={"id": "city-1"})
        assert r.status_code == 200
        j = r.get_json()
        assert j["remove_marker"] == "city-1"
        assert j["fly_to"] == {"center": [51.3397, 12.3731], "zoom": 12}
        assert j["info"]["active"] is True
        assert "616.093" in j["info"]["html"]

        assert client.get("/api/state").get_json()["state"] == {"mode": "detail", "city_id": "city-1"}

        r = client.post("/api/back")
        assert r.status_code == 200
        j = r.get_json()
        assert j["add_marker"] == "city-1"
        assert j["style"]["radius"] == 5
        assert j["set_view"] == {"center": list(INITIAL_CENTER), "zoom": INITIAL_ZOOM}
        assert j["info"]["active"] is False

        assert client.get("/api/state").get_json()["state"] == {"mode": "overview"}

    def test_single_selection(self, client):
        client.post("/api/select", json={"id": "city-0"})
        r = client.post("/api/select", json={"id": "city-1"})
        assert r.status_code == 409
        assert client.get("/api/state").get_json()["state"]["city_id"] == "city-0"

    def test_back_without_selection(self, client):
        client.get("/")
        assert client.post("/api/back").status_code == 409

    def test_unknown_and_missing_id(self, client):
        assert client.post("/api/select", json={"id": "nope"}).status_code == 404
        assert client.post("/api/select", json={}).status_code == 400

    def test_page_load_resets_to_overview(self, client):
        client.post("/api/select", json={"id": "42"})
        client.get("/")
        assert client.get("/api/state").get_json()["state"] == {"mode": "overview"}

    def test_hover_endpoints(self, client):
        j = client.post("/api/hover", json={"id": "42"}).get_json()
        assert j["style"]["radius"] == 10
        assert j["style"]["fillOpacity"] == 1
        assert j["popup"]["text"] == "Kiel"

        j = client.post("/api/hover_out", json={"id": "42"}).get_json()
        assert j["style"]["radius"] == 5
        assert j["style"]["fillOpacity"] == 0.9
        assert j["popup"] is None

    def test_hover_hidden_marker_is_409(self, client):
        client.post("/api/select", json={"id": "42"})
        assert client.post("/api/hover", json={"id": "42"}).status_code == 409


# -------------------------------
# Session writes / error mapping
# -------------------------------
def _session_cookies(response):
    return [c for c in response.headers.getlist("Set-Cookie") if c.startswith("session=")]


class TestSessionWrites:
    def test_hover_does_not_set_session_cookie(self, client):
        client.get("/")
        assert _session_cookies(client.post("/api/hover", json={"id": "city-1"})) == []
        assert _session_cookies(client.post("/api/hover_out", json={"id": "city-1"})) == []

    def test_select_and_back_set_session_cookie(self, client):
        assert _session_cookies(client.post("/api/select", json={"id": "42"}))
        assert _session_cookies(client.post("/api/back"))

    def test_hover_during_detail_keeps_selection(self, client):
        client.get("/")
        client.post("/api/select", json={"id": "42"})
        client.post("/api/hover", json={"id": "city-1"})
        client.post("/api/hover_out", json={"id": "city-1"})

        assert client.get("/api/state").get_json()["state"] == {"mode": "detail", "city_id": "42"}
        r = client.post("/api/back")
        assert r.status_code == 200
        assert r.get_json()["add_marker"] == "42"


class TestErrorMapping:
    def test_unknown_city_message(self, client):
        r = client.post("/api/hover", json={"id": "nope"})
        assert r.status_code == 404
        assert r.get_json()["error"] == "Unknown city: nope"

    def test_internal_key_error_is_500(self, client):
        client.post("/api/select", json={"id": "42"})
        with patch.object(main.MapView, "back", side_effect=KeyError("internal")):
            r = client.post("/api/back")
        assert r.status_code == 500
        assert r.get_json()["ok"] is False

    def test_select_without_coordinates_is_valid_json(self, client, monkeypatch, tmp_path, sample_cities):
        sample_cities["features"][0]["geometry"] = None
        path = tmp_path / "no_geom.geojson"
        path.write_text(json.dumps(sample_cities), encoding="utf-8")
        monkeypatch.setattr(main, "CITIES_PATH", str(path))
        main.load_cities.cache_clear()

        r = client.post("/api/select", json={"id": "city-0"})
        assert r.status_code == 200
        assert "NaN" not in r.get_data(as_text=True)
        assert r.get_json()["fly_to"] is None
