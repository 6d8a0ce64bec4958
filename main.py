#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Städtekarte – Deutsche Großstädte (Leaflet)
UI-Strategie:
- Leaflet: ein Kreismarker je Stadt, Farbe nach Einwohnerzahl (3 Stufen)
- Hover -> Marker hervorheben + Namens-Popup
- Klick -> Marker ausblenden, Flug zur Stadt, Info-Panel; "Zurück zur Übersicht" stellt alles wieder her
- Legende (Stadtgrößen) + metrischer Maßstab

API:
- GET  /api/config          -> Startansicht, Max-Bounds, Tile-Provider, Marker-Styles
- GET  /api/cities          -> GeoJSON FeatureCollection (mit id + properties.style)
- GET  /api/state           -> {mode: overview|detail, city_id?}
- POST /api/hover           -> {id} -> Style-Update + Popup
- POST /api/hover_out       -> {id} -> Style-Update
- POST /api/select          -> {id} -> Detailansicht (remove_marker, fly_to, info)
- POST /api/back            -> Übersicht (add_marker, set_view, info)

Hinweis:
- Mit MAPBOX_ACCESS_TOKEN werden Mapbox-Tiles genutzt, sonst OpenStreetMap.
"""

from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, Union

import requests
from flask import Flask, Response, jsonify, render_template_string, request, session
from jinja2 import Environment
from markupsafe import Markup


# ------------------------------------------------------------
# 0) CONFIG
# ------------------------------------------------------------

APP_TITLE = os.getenv("APP_TITLE", "Städtekarte – Deutsche Großstädte")

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
CITIES_PATH = os.getenv("CITIES_PATH", os.path.join(BASE_DIR, "data", "german_cities.geojson"))
# Optional: Datensatz per HTTP statt lokaler Datei
CITIES_URL = os.getenv("CITIES_URL", "").strip()

MAPBOX_ACCESS_TOKEN = os.getenv("MAPBOX_ACCESS_TOKEN", "").strip()
MAPBOX_STYLE = os.getenv("MAPBOX_STYLE", "mapbox/streets-v11")

HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "14"))
HTTP_UA = os.getenv("HTTP_UA", "staedtekarte/1.0 (+https://data-tales.dev)")

SECRET_KEY = os.getenv("SECRET_KEY", "")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()

INITIAL_CENTER: Tuple[float, float] = (51.31939, 10.08933)
INITIAL_ZOOM = 6
MIN_ZOOM = 6
MAX_ZOOM = 15

# (lat, lon) – Südwest, Nordost
MAX_BOUNDS: Tuple[Tuple[float, float], Tuple[float, float]] = (
    (43.97701, -0.46143),
    (56.96894, 20.63232),
)

OSM_TILE_URL = "https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png"
OSM_ATTRIBUTION = 'Map data &copy; <a href="https://www.openstreetmap.org/copyright">OpenStreetMap</a> contributors'
MAPBOX_ATTRIBUTION = OSM_ATTRIBUTION + ', Imagery © <a href="https://www.mapbox.com/about/maps/">Mapbox</a>'

POPUP_CLASS = "popupStyle"

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
log = logging.getLogger("staedtekarte")


# ------------------------------------------------------------
# 1) STADTGRÖSSEN (Tiers)
# ------------------------------------------------------------

COLOR_LARGE = "#AA2C49"   # > 1.000.000
COLOR_MEDIUM = "#E3962B"  # > 500.000
COLOR_SMALL = "#93C54B"

LEGEND_GRADES = [100_000, 500_000, 1_000_000]


def _to_population(v: Any) -> float:
    """Einwohnerzahl als float; alles Unlesbare wird NaN (keine Validierung)."""
    if v is None or isinstance(v, bool):
        return math.nan
    if isinstance(v, (int, float)):
        return float(v)
    if isinstance(v, str):
        try:
            return float(v.strip())
        except ValueError:
            return math.nan
    return math.nan


def color_for_population(population: Any) -> str:
    p = _to_population(population)
    if p > 1_000_000:
        return COLOR_LARGE
    if p > 500_000:
        return COLOR_MEDIUM
    return COLOR_SMALL


def zoom_for_population(population: Any) -> int:
    # < 100.000 landet bewusst ebenfalls bei 11
    p = _to_population(population)
    if 100_000 <= p < 500_000:
        return 13
    if 500_000 <= p < 1_000_000:
        return 12
    return 11


def format_population(population: Any) -> str:
    """Zahl im de-DE Format (Tausenderpunkt, Dezimalkomma, max. 3 Nachkommastellen)."""
    p = _to_population(population)
    if math.isnan(p):
        return "NaN"
    if math.isinf(p):
        return "-∞" if p < 0 else "∞"
    if p.is_integer():
        s = f"{int(p):,}"
    else:
        s = f"{p:,.3f}".rstrip("0").rstrip(".")
    return s.translate(str.maketrans({",": ".", ".": ","}))


def legend_items(grades: Optional[List[int]] = None) -> List[Dict[str, str]]:
    grades = list(grades if grades is not None else LEGEND_GRADES)
    items: List[Dict[str, str]] = []
    for i, grade in enumerate(grades):
        upper = grades[i + 1] if i + 1 < len(grades) else None
        if upper is not None:
            label = f"{format_population(grade)} – {format_population(upper)}"
        else:
            label = f"{format_population(grade)}+"
        items.append({"color": color_for_population(grade + 1), "label": label})
    return items


# ------------------------------------------------------------
# 2) MARKER-STYLES / TILES
# ------------------------------------------------------------

DEFAULT_STYLE: Dict[str, Any] = {
    "radius": 5,
    "fillOpacity": 0.9,
    "color": "#000",
    "opacity": 1,
    "weight": 1,
}

HIGHLIGHT_STYLE: Dict[str, Any] = {"weight": 2, "radius": 10, "fillOpacity": 1}
RESET_STYLE: Dict[str, Any] = {"weight": 1, "radius": 5, "fillOpacity": 0.9}


def marker_style(feature: Dict[str, Any]) -> Dict[str, Any]:
    props = feature.get("properties") or {}
    style = dict(DEFAULT_STYLE)
    style["fillColor"] = color_for_population(props.get("einwohner"))
    return style


def tile_layer_config(access_token: Optional[str] = None) -> Dict[str, Any]:
    token = (access_token or "").strip()
    if token:
        return {
            "provider": "mapbox",
            "url": f"https://api.mapbox.com/styles/v1/{{id}}/tiles/{{z}}/{{x}}/{{y}}?access_token={token}",
            "options": {
                "attribution": MAPBOX_ATTRIBUTION,
                "minZoom": MIN_ZOOM,
                "maxZoom": MAX_ZOOM,
                "id": MAPBOX_STYLE,
                "tileSize": 512,
                "zoomOffset": -1,
            },
        }
    return {
        "provider": "osm",
        "url": OSM_TILE_URL,
        "options": {
            "attribution": OSM_ATTRIBUTION,
            "minZoom": MIN_ZOOM,
            "maxZoom": MAX_ZOOM,
        },
    }


# ------------------------------------------------------------
# 3) DATENSATZ
# ------------------------------------------------------------

def _http_get(url: str, params: Optional[Dict[str, Any]] = None) -> requests.Response:
    headers = {"User-Agent": HTTP_UA, "Accept": "application/geo+json, application/json"}
    r = requests.get(url, params=params or {}, headers=headers, timeout=HTTP_TIMEOUT)
    r.raise_for_status()
    return r


def _index_features(raw: Dict[str, Any]) -> Dict[str, Any]:
    # Eingabe bleibt unverändert: Features/Properties werden kopiert
    features = []
    used = set()
    for i, f in enumerate(raw.get("features") or []):
        fid = f.get("id")
        base = str(fid) if fid is not None else f"city-{i}"
        # ids sind eindeutig (Duplikate/Kollisionen bekommen ein Suffix)
        cid, n = base, 2
        while cid in used:
            cid = f"{base}-{n}"
            n += 1
        used.add(cid)
        features.append({
            "type": "Feature",
            "id": cid,
            "geometry": f.get("geometry"),
            "properties": dict(f.get("properties") or {}),
        })
    return {"type": "FeatureCollection", "features": features}


@lru_cache(maxsize=1)
def load_cities() -> Dict[str, Any]:
    if CITIES_URL:
        log.info("loading cities from %s", CITIES_URL)
        raw = _http_get(CITIES_URL).json()
    else:
        log.info("loading cities from %s", CITIES_PATH)
        with open(CITIES_PATH, encoding="utf-8") as fh:
            raw = json.load(fh)
    fc = _index_features(raw)
    log.info("loaded %d city features", len(fc["features"]))
    return fc


def cities_with_styles(fc: Dict[str, Any]) -> Dict[str, Any]:
    features = []
    for f in fc["features"]:
        props = dict(f["properties"])
        props["style"] = marker_style(f)
        features.append({**f, "properties": props})
    return {"type": "FeatureCollection", "features": features}


# ------------------------------------------------------------
# 4) HTML-FRAGMENTE (Info-Panel, Legende)
# ------------------------------------------------------------

_fragments = Environment(autoescape=True)

INFO_TEMPLATE = _fragments.from_string("""
<h2>{{ city }}</h2>
<p><strong>Bundesland:</strong> {{ region }}</p>
<p><strong>Einwohner:</strong> {{ population }}</p>
<button class="info-button" style="background-color: {{ color }}">Zurück zur Übersicht</button>
""")

LEGEND_TEMPLATE = _fragments.from_string("""
<div class="legend-heading"><strong>Stadtgrößen</strong></div>
{% for it in items %}
<div class="legend-item"><i style="background: {{ it.color }}" class="legend-item__color"></i>&nbsp;<span class="legend-item__content">{{ it.label }}</span></div>
{% endfor %}
""")


def _text(v: Any) -> str:
    return "" if v is None else str(v)


def render_info_html(feature: Dict[str, Any]) -> str:
    props = feature.get("properties") or {}
    return INFO_TEMPLATE.render(
        city=_text(props.get("stadt")),
        region=_text(props.get("bundesland")),
        population=format_population(props.get("einwohner")),
        color=color_for_population(props.get("einwohner")),
    ).strip()


def render_legend_html() -> str:
    return LEGEND_TEMPLATE.render(items=legend_items()).strip()


# ------------------------------------------------------------
# 5) INTERAKTION (Übersicht / Detail)
# ------------------------------------------------------------

class TransitionError(RuntimeError):
    """Aktion ist im aktuellen Ansichtsmodus nicht erlaubt."""


class UnknownCityError(KeyError):
    def __str__(self) -> str:
        return f"Unknown city: {self.args[0] if self.args else ''}"


class Selectable(Protocol):
    id: str

    def on_hover(self) -> Dict[str, Any]: ...

    def on_hover_out(self) -> Dict[str, Any]: ...

    def on_select(self, view: "MapView") -> Dict[str, Any]: ...


@dataclass(frozen=True)
class Overview:
    mode: str = "overview"


@dataclass(frozen=True)
class Detail:
    city_id: str
    mode: str = "detail"


ViewState = Union[Overview, Detail]


def state_to_dict(state: ViewState) -> Dict[str, Any]:
    if isinstance(state, Detail):
        return {"mode": "detail", "city_id": state.city_id}
    return {"mode": "overview"}


def state_from_dict(d: Optional[Dict[str, Any]]) -> ViewState:
    if isinstance(d, dict) and d.get("mode") == "detail" and d.get("city_id"):
        return Detail(str(d["city_id"]))
    return Overview()


@dataclass
class InfoPanel:
    active: bool = False
    html: str = ""

    def show(self, html: str) -> None:
        self.active = True
        self.html = html

    def hide(self) -> None:
        self.active = False
        self.html = ""

    def as_dict(self) -> Dict[str, Any]:
        return {"active": self.active, "html": self.html}


@dataclass
class CityMarker:
    feature: Dict[str, Any]
    style: Dict[str, Any] = field(default_factory=dict)
    on_map: bool = True
    front: bool = False
    popup: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.style:
            self.style = marker_style(self.feature)

    @property
    def id(self) -> str:
        return self.feature["id"]

    @property
    def properties(self) -> Dict[str, Any]:
        return self.feature.get("properties") or {}

    @property
    def latlng(self) -> Optional[Tuple[float, float]]:
        coords = (self.feature.get("geometry") or {}).get("coordinates")
        if not isinstance(coords, (list, tuple)) or len(coords) < 2:
            return None
        lon, lat = coords[:2]
        if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in (lon, lat)):
            return None
        return (lat, lon)

    def _update(self) -> Dict[str, Any]:
        popup = {"text": self.popup, "className": POPUP_CLASS} if self.popup is not None else None
        return {"id": self.id, "style": dict(self.style), "front": self.front, "popup": popup}

    def on_hover(self) -> Dict[str, Any]:
        if not self.on_map:
            raise TransitionError(f"marker {self.id} is not on the map")
        self.style.update(HIGHLIGHT_STYLE)
        self.front = True
        self.popup = _text(self.properties.get("stadt"))
        return self._update()

    def on_hover_out(self) -> Dict[str, Any]:
        if not self.on_map:
            raise TransitionError(f"marker {self.id} is not on the map")
        self.reset()
        return self._update()

    def on_select(self, view: "MapView") -> Dict[str, Any]:
        return view.select(self.id)

    def reset(self) -> None:
        self.style.update(RESET_STYLE)
        self.front = False
        self.popup = None


@dataclass
class MapView:
    """Anwendungszustand einer Karte: Marker, Ansicht, Info-Panel und Modus."""

    handlers: Dict[str, Selectable] = field(default_factory=dict)
    state: ViewState = field(default_factory=Overview)
    center: Tuple[float, float] = INITIAL_CENTER
    zoom: int = INITIAL_ZOOM
    info: InfoPanel = field(default_factory=InfoPanel)

    @classmethod
    def from_collection(cls, fc: Dict[str, Any], state: Optional[ViewState] = None) -> "MapView":
        view = cls()
        for f in fc["features"]:
            view.register(CityMarker(f))
        if isinstance(state, Detail) and state.city_id in view.handlers:
            view._enter_detail(state.city_id)
        return view

    def register(self, selectable: Selectable) -> None:
        self.handlers[selectable.id] = selectable

    def dispatch(self, event: str, city_id: str) -> Dict[str, Any]:
        if city_id not in self.handlers:
            raise UnknownCityError(city_id)
        target = self.handlers[city_id]
        actions: Dict[str, Callable[[], Dict[str, Any]]] = {
            "mouseover": target.on_hover,
            "mouseout": target.on_hover_out,
            "click": lambda: target.on_select(self),
        }
        if event not in actions:
            raise ValueError(f"Unknown event: {event}")
        return actions[event]()

    def marker(self, city_id: str) -> CityMarker:
        m = self.handlers.get(city_id)
        if not isinstance(m, CityMarker):
            raise UnknownCityError(city_id)
        return m

    def rendered_ids(self) -> List[str]:
        return [cid for cid, m in self.handlers.items() if getattr(m, "on_map", True)]

    def _enter_detail(self, city_id: str) -> CityMarker:
        m = self.marker(city_id)
        m.reset()
        m.on_map = False
        if m.latlng is not None:
            self.center = m.latlng
        self.zoom = zoom_for_population(m.properties.get("einwohner"))
        self.info.show(render_info_html(m.feature))
        self.state = Detail(city_id)
        return m

    def select(self, city_id: str) -> Dict[str, Any]:
        if isinstance(self.state, Detail):
            raise TransitionError(f"city {self.state.city_id} is already selected")
        m = self._enter_detail(city_id)
        log.debug("select %s -> zoom %d", m.id, self.zoom)
        # ohne Koordinaten kein Kameraflug
        fly_to = {"center": list(m.latlng), "zoom": self.zoom} if m.latlng is not None else None
        return {
            "state": state_to_dict(self.state),
            "remove_marker": m.id,
            "fly_to": fly_to,
            "info": self.info.as_dict(),
        }

    def back(self) -> Dict[str, Any]:
        if not isinstance(self.state, Detail):
            raise TransitionError("no city selected")
        m = self.marker(self.state.city_id)
        m.on_map = True
        m.reset()
        self.center = INITIAL_CENTER
        self.zoom = INITIAL_ZOOM
        self.info.hide()
        self.state = Overview()
        log.debug("back to overview from %s", m.id)
        return {
            "state": state_to_dict(self.state),
            "add_marker": m.id,
            "style": dict(m.style),
            "front": m.front,
            "set_view": {"center": list(self.center), "zoom": self.zoom},
            "info": self.info.as_dict(),
        }


# ------------------------------------------------------------
# 6) FLASK APP
# ------------------------------------------------------------

app = Flask(__name__)
app.json.sort_keys = False
app.json.ensure_ascii = False

if SECRET_KEY:
    app.secret_key = SECRET_KEY
else:
    log.warning("SECRET_KEY not set, using a per-process random key")
    app.secret_key = os.urandom(24)


@app.after_request
def _add_headers(resp: Response) -> Response:
    resp.headers["Access-Control-Allow-Origin"] = "*"
    resp.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _current_view() -> MapView:
    return MapView.from_collection(load_cities(), state_from_dict(session.get("view_state")))


def _store(view: MapView) -> None:
    session["view_state"] = state_to_dict(view.state)


def _city_id_from_body() -> str:
    payload = request.get_json(force=True, silent=True) or {}
    return str(payload.get("id") or "").strip()


def _error_response(e: Exception, action: str):
    if isinstance(e, UnknownCityError):
        return jsonify({"ok": False, "error": str(e)}), 404
    if isinstance(e, TransitionError):
        return jsonify({"ok": False, "error": str(e)}), 409
    log.exception("%s failed", action)
    return jsonify({"ok": False, "error": str(e)}), 500


def _handle_event(event: str):
    try:
        cid = _city_id_from_body()
        if not cid:
            return jsonify({"ok": False, "error": "Body must contain a city id"}), 400
        view = _current_view()
        upd = view.dispatch(event, cid)
        # Hover ändert nur Styles; nur der Klick schreibt den Modus in die Session
        if event == "click":
            _store(view)
            log.info("detail view: %s", cid)
        return jsonify({"ok": True, **upd})
    except Exception as e:
        return _error_response(e, event)


@app.get("/api/config")
def api_config():
    return jsonify({
        "ok": True,
        "view": {"center": list(INITIAL_CENTER), "zoom": INITIAL_ZOOM},
        "max_bounds": [list(MAX_BOUNDS[0]), list(MAX_BOUNDS[1])],
        "tiles": tile_layer_config(MAPBOX_ACCESS_TOKEN),
        "styles": {"default": DEFAULT_STYLE, "highlight": HIGHLIGHT_STYLE, "reset": RESET_STYLE},
        "popup_class": POPUP_CLASS,
        "locale": "de-DE",
    })


@app.get("/api/cities")
def api_cities():
    try:
        return jsonify(cities_with_styles(load_cities()))
    except Exception as e:
        log.exception("loading cities failed")
        return jsonify({"ok": False, "error": str(e)}), 500


@app.get("/api/state")
def api_state():
    return jsonify({"ok": True, "state": state_to_dict(state_from_dict(session.get("view_state")))})


@app.post("/api/hover")
def api_hover():
    return _handle_event("mouseover")


@app.post("/api/hover_out")
def api_hover_out():
    return _handle_event("mouseout")


@app.post("/api/select")
def api_select():
    return _handle_event("click")


@app.post("/api/back")
def api_back():
    try:
        view = _current_view()
        upd = view.back()
        _store(view)
        log.info("overview restored")
        return jsonify({"ok": True, **upd})
    except Exception as e:
        return _error_response(e, "back")


@app.get("/healthz")
def healthz():
    return jsonify({"ok": True})


# ------------------------------------------------------------
# 7) WEB UI
# ------------------------------------------------------------

INDEX_HTML = r"""
<!doctype html>
<html lang="de">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>{{app_title}}</title>

  <link rel="stylesheet" href="https://unpkg.com/leaflet@1.9.4/dist/leaflet.css">

  <style>
    :root{
      --bg:#0b1020;
      --line:#1f2a44;
      --text:#e6eaf2;
      --muted:#a6b0c3;
      --radius:16px;
      --shadow: 0 12px 36px rgba(0,0,0,.35);
    }

    *{ box-sizing:border-box; }
    body{
      margin:0;
      font-family: ui-sans-serif, system-ui, -apple-system, Segoe UI, Roboto, Arial;
      background: var(--bg);
      color:var(--text);
    }

    #map{ position:absolute; inset:0; }

    #info{
      position:absolute;
      top:16px; right:16px;
      z-index:1000;
      min-width:240px;
      padding:14px 16px;
      border-radius: var(--radius);
      border:1px solid rgba(31,42,68,.9);
      background: rgba(15,23,42,.9);
      box-shadow: var(--shadow);
      display:none;
    }
    #info.active{ display:block; }
    #info h2{ margin:0 0 8px 0; font-size:18px; }
    #info p{ margin:4px 0; font-size:13px; color:var(--muted); }
    #info strong{ color:var(--text); }

    .info-button{
      margin-top:10px;
      border:0;
      border-radius:12px;
      padding:9px 12px;
      color:#fff;
      font-size:13px;
      cursor:pointer;
    }

    .legend{
      padding:10px 12px;
      border-radius:14px;
      border:1px solid rgba(31,42,68,.9);
      background: rgba(11,18,36,.92);
      color: var(--text);
      box-shadow: var(--shadow);
      font-size:12px;
      line-height:1.6;
    }
    .legend-heading{ margin-bottom:4px; }
    .legend-item__color{
      display:inline-block;
      width:12px; height:12px;
      border-radius:999px;
      border:1px solid #000;
      vertical-align:middle;
    }

    .popupStyle .leaflet-popup-content-wrapper,
    .popupStyle .leaflet-popup-tip{
      background: rgba(11,18,36,.95);
      color: var(--text);
    }
    .popupStyle .leaflet-popup-content{ margin:6px 10px; font-weight:600; }
  </style>
</head>
<body>
  <div id="map"></div>
  <div id="info"></div>
  <template id="legendSource">{{ legend_html|safe }}</template>

  <script src="https://unpkg.com/leaflet@1.9.4/dist/leaflet.js"></script>

  <script>
    const infoContainer = document.getElementById("info");
    const markers = {}; // id -> L.circleMarker
    const hoverSeq = {}; // id -> letzte Hover-Anfrage
    let map = null;

    // Robust JSON fetch helper (verhindert "JSON.parse unexpected character" im UI)
    async function fetchJson(url, opts){
      const r = await fetch(url, opts);
      const t = await r.text();
      try{
        return JSON.parse(t);
      }catch(e){
        const head = t.slice(0, 240);
        throw new Error("Response ist kein JSON (" + r.status + "): " + head);
      }
    }

    function postJson(url, body){
      return fetchJson(url, {
        method:"POST",
        headers:{ "Content-Type":"application/json" },
        body: JSON.stringify(body || {})
      });
    }

    function canReorder(){
      return !L.Browser.ie && !L.Browser.opera && !L.Browser.edge;
    }

    function applyMarkerUpdate(layer, upd){
      layer.setStyle(upd.style);
      if(canReorder()){
        if(upd.front) layer.bringToFront(); else layer.bringToBack();
      }
      if(upd.popup){
        const el = document.createElement("span");
        el.textContent = upd.popup.text;
        layer.bindPopup(el, { className: upd.popup.className });
        layer.openPopup();
      }else{
        layer.closePopup();
      }
    }

    async function hoverEvent(url, e){
      const layer = e.target;
      const id = layer.feature.id;
      const seq = (hoverSeq[id] || 0) + 1;
      hoverSeq[id] = seq;
      const j = await postJson(url, { id: id });
      if(!j.ok || hoverSeq[id] !== seq) return;
      applyMarkerUpdate(layer, j);
    }

    function highlightCity(e){ hoverEvent("/api/hover", e).catch(console.error); }
    function resetHighlightCity(e){ hoverEvent("/api/hover_out", e).catch(console.error); }

    async function showCityDetails(e){
      const j = await postJson("/api/select", { id: e.target.feature.id });
      if(!j.ok){
        console.warn(j.error);
        return;
      }
      const layer = markers[j.remove_marker];
      hoverSeq[j.remove_marker] = (hoverSeq[j.remove_marker] || 0) + 1;
      layer.closePopup();
      map.removeLayer(layer);
      if(j.fly_to) map.flyTo(j.fly_to.center, j.fly_to.zoom);

      infoContainer.classList.add("active");
      infoContainer.innerHTML = j.info.html;

      const infoButton = infoContainer.querySelector(".info-button");
      if(infoButton != null){
        infoButton.addEventListener("click", () => backToOverview().catch(console.error));
      }
    }

    async function backToOverview(){
      const j = await postJson("/api/back");
      if(!j.ok){
        console.warn(j.error);
        return;
      }
      const layer = markers[j.add_marker];
      layer.addTo(map);
      applyMarkerUpdate(layer, j);
      map.setView(j.set_view.center, j.set_view.zoom);
      infoContainer.classList.remove("active");
      infoContainer.innerHTML = j.info.html;
    }

    function onEachFeature(feature, layer){
      markers[feature.id] = layer;
      layer.on({
        click: (e) => showCityDetails(e).catch(console.error),
        mouseover: highlightCity,
        mouseout: resetHighlightCity,
      });
    }

    async function initMap(){
      const cfg = await fetchJson("/api/config");
      map = L.map("map").setView(cfg.view.center, cfg.view.zoom);
      L.tileLayer(cfg.tiles.url, cfg.tiles.options).addTo(map);
      map.setMaxBounds(L.latLngBounds(cfg.max_bounds));

      const legend = L.control({ position: "bottomright" });
      legend.onAdd = function(){
        const div = L.DomUtil.create("div", "legend");
        div.innerHTML = document.getElementById("legendSource").innerHTML;
        return div;
      };
      legend.addTo(map);

      L.control.scale({ metric: true, imperial: false }).addTo(map);
    }

    async function loadCities(){
      const cities = await fetchJson("/api/cities");
      if(cities.ok === false){
        console.error(cities.error);
        return;
      }
      L.geoJSON(cities, {
        pointToLayer: (feature, latlng) => L.circleMarker(latlng, feature.properties.style),
        onEachFeature: onEachFeature,
      }).addTo(map);
    }

    (async function(){
      await initMap();
      await loadCities();
    })().catch(console.error);
  </script>
</body>
</html>
"""


@app.get("/")
def index():
    session["view_state"] = state_to_dict(Overview())
    return render_template_string(
        INDEX_HTML,
        app_title=APP_TITLE,
        legend_html=Markup(render_legend_html()),
    )


# ------------------------------------------------------------
# 8) ENTRYPOINT
# ------------------------------------------------------------

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8080"))
    app.run(host="0.0.0.0", port=port, debug=True)
