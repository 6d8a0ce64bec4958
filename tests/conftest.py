import json

import pytest

import main


SAMPLE_CITIES = {
    "type": "FeatureCollection",
    "features": [
        {
            "type": "Feature",
            "properties": {"stadt": "Köln", "bundesland": "Nordrhein-Westfalen", "einwohner": 1084831},
            "geometry": {"type": "Point", "coordinates": [6.9603, 50.9375]},
        },
        {
            "type": "Feature",
            "properties": {"stadt": "Leipzig", "bundesland": "Sachsen", "einwohner": 616093},
            "geometry": {"type": "Point", "coordinates": [12.3731, 51.3397]},
        },
        {
            "type": "Feature",
            "id": 42,
            "properties": {"stadt": "Kiel", "bundesland": "Schleswig-Holstein", "einwohner": 247717},
            "geometry": {"type": "Point", "coordinates": [10.1228, 54.3233]},
        },
        {
            "type": "Feature",
            "properties": {"stadt": "Cottbus", "bundesland": "Brandenburg", "einwohner": 99514},
            "geometry": {"type": "Point", "coordinates": [14.3329, 51.7563]},
        },
        {
            "type": "Feature",
            "properties": {"stadt": "Nirgendwo"},
            "geometry": {"type": "Point", "coordinates": [10.0, 51.0]},
        },
    ],
}


@pytest.fixture
def sample_cities():
    return json.loads(json.dumps(SAMPLE_CITIES))


@pytest.fixture
def cities_file(tmp_path, monkeypatch, sample_cities):
    path = tmp_path / "cities.geojson"
    path.write_text(json.dumps(sample_cities, ensure_ascii=False), encoding="utf-8")
    monkeypatch.setattr(main, "CITIES_PATH", str(path))
    monkeypatch.setattr(main, "CITIES_URL", "")
    main.load_cities.cache_clear()
    yield path
    main.load_cities.cache_clear()


@pytest.fixture
def client(cities_file):
    main.app.config["TESTING"] = True
    with main.app.test_client() as c:
        yield c


@pytest.fixture
def view(sample_cities):
    return main.MapView.from_collection(main._index_features(sample_cities))
