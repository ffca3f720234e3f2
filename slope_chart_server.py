from __future__ import annotations

import logging
import os
from html import escape
from pathlib import Path
from typing import List, Optional

from flask import Flask, Response, jsonify, request

from analysis.slope_flow import DESTINATION, ORIGIN, FlowRecord, LayoutIntegrityError, build_index, compute_layout
from chart.config import MIGRATION_CHART, ChartConfigError, SlopeChartConfig
from layout_writer import layout_to_json
from migration_loader import load_records
from slope_chart_svg import build_context, build_highlight, render_svg

logger = logging.getLogger(__name__)

# Resolve paths relative to this file, with optional env overrides
BASE_DIR = Path(__file__).resolve().parent
DATA_PATH = Path(
    os.environ.get("SLOPE_DATA_PATH", (BASE_DIR / "State_to_State_Migrations_Table_2011.csv").as_posix())
)
RESIZE_DEBOUNCE_MS = 250

app = Flask(__name__)

_records: Optional[List[FlowRecord]] = None


def get_records() -> List[FlowRecord]:
    global _records
    if _records is None:
        _records = load_records(DATA_PATH)
    return _records


class InvalidQuery(ValueError):
    pass


def _config_from_args() -> SlopeChartConfig:
    try:
        width = float(request.args.get("width", MIGRATION_CHART.width))
        height = float(request.args.get("height", MIGRATION_CHART.height))
    except ValueError as exc:
        raise InvalidQuery("width and height must be numbers") from exc
    try:
        return MIGRATION_CHART.resized(width, height)
    except ChartConfigError as exc:
        raise InvalidQuery(str(exc)) from exc


@app.errorhandler(InvalidQuery)
def _bad_request(exc: InvalidQuery):
    return jsonify({"error": str(exc)}), 400


@app.errorhandler(LayoutIntegrityError)
def _integrity_error(exc: LayoutIntegrityError):
    logger.error("Layout integrity failure: %s", exc)
    return jsonify({"error": str(exc)}), 500


@app.errorhandler(FileNotFoundError)
def _missing_data(exc: FileNotFoundError):
    logger.error("%s", exc)
    return jsonify({"error": str(exc)}), 503


@app.get("/")
def index() -> str:
    return INDEX_HTML.replace("{RESIZE_DEBOUNCE_MS}", str(RESIZE_DEBOUNCE_MS)).replace(
        "{TITLE}", escape(MIGRATION_CHART.label)
    )


@app.get("/slope-layout")
def slope_layout_endpoint():
    config = _config_from_args()
    layout = compute_layout(get_records())
    context = build_context(layout, config)
    flow_index = build_index(layout)
    frame = context["frame"]

    highlights = {
        ORIGIN: {c.key: build_highlight(flow_index, frame, ORIGIN, c.key) for c in layout.origin_categories},
        DESTINATION: {
            c.key: build_highlight(flow_index, frame, DESTINATION, c.key) for c in layout.destination_categories
        },
    }
    payload = {
        "title": context["title"],
        "width": config.width,
        "height": config.height,
        "barWidth": frame.bar_width,
        "titles": context["titles"],
        "bars": [_bar_payload(bar) for bar in context["bars"]],
        "polygons": context["polygons"],
        "highlights": highlights,
        "layout": layout_to_json(layout),
    }
    return jsonify(payload)


@app.get("/slope-chart.svg")
def slope_chart_svg_endpoint():
    config = _config_from_args()
    layout = compute_layout(get_records())
    svg = render_svg(layout, config, title=request.args.get("title"))
    return Response(svg, mimetype="image/svg+xml")


@app.get("/highlight")
def highlight_endpoint():
    side = request.args.get("side", ORIGIN)
    category = request.args.get("category")
    if side not in (ORIGIN, DESTINATION):
        raise InvalidQuery(f"side must be '{ORIGIN}' or '{DESTINATION}'")
    if category is None:
        raise InvalidQuery("category is required")

    config = _config_from_args()
    layout = compute_layout(get_records())
    if layout.category(side, category) is None:
        return jsonify({"error": f"Unknown {side} category: {category}"}), 404
    context = build_context(layout, config)
    return jsonify(build_highlight(build_index(layout), context["frame"], side, category))


def _bar_payload(bar: dict) -> dict:
    return {
        "id": bar["id"],
        "side": bar["side"],
        "key": bar["key"],
        "total": bar["total"],
        "x": bar["x"],
        "y": bar["y"],
        "width": bar["width"],
        "height": bar["height"],
        "opacity": bar["opacity"],
        "labelRect": bar["label_rect"],
        "textX": bar["text_x"],
        "fontSize": bar["font_size"],
        "hoverFontSize": bar["hover_font_size"],
        "labelVisible": bar["label_visible"],
    }


INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>{TITLE}</title>
  <style>
    body { font-family: system-ui, -apple-system, 'Segoe UI', Roboto, sans-serif; margin:0; padding:0; background:#fafafa; }
    header { padding:16px 24px; }
    h1 { margin:0; font-size:24px; color:#222; }
    #chart-wrap { width:100%; height:calc(100vh - 80px); }
    #chart-svg { width:100%; height:100%; }
    .column-title { font-weight:600; font-size:14px; fill:#333; }
    .state-bar { fill:#4a5568; }
    .label { opacity:0.15; }
    .state-from-text-hover, .state-to-text-hover { display:none; }
    .state-from-group:hover .state-from-text-hover, .state-to-group:hover .state-to-text-hover { display:inline; }
    .stateMigrationLine { fill:#8894a8; opacity:0.35; }
    .filtered .stateMigrationLine { opacity:0.05; }
    .filtered .line-hover-from, .filtered .line-hover-to { opacity:0.8; fill:#2b6cb0; }
    .to-slice, .from-slice { fill:#2b6cb0; pointer-events:none; }
    .error { color:#c53030; padding:0 24px; }
  </style>
</head>
<body>
  <header><h1 id="chart-title">{TITLE}</h1></header>
  <div class="error" id="error-message"></div>
  <div id="chart-wrap"><svg id="chart-svg"></svg></div>
  <script>
    const RESIZE_DEBOUNCE_MS = {RESIZE_DEBOUNCE_MS};
    const NS = 'http://www.w3.org/2000/svg';

    function debounce(fn, delay) {
      let timeoutId;
      return (...args) => {
        clearTimeout(timeoutId);
        timeoutId = setTimeout(() => fn(...args), delay);
      };
    }

    function el(name, attrs, text) {
      const node = document.createElementNS(NS, name);
      Object.entries(attrs || {}).forEach(([k, v]) => node.setAttribute(k, v));
      if (text !== undefined) node.textContent = text;
      return node;
    }

    async function fetchLayout(width, height) {
      const url = new URL('/slope-layout', window.location.origin);
      url.searchParams.set('width', Math.round(width));
      url.searchParams.set('height', Math.round(height));
      const response = await fetch(url.toString());
      if (!response.ok) {
        const body = await response.json().catch(() => ({}));
        throw new Error(body.error || response.statusText);
      }
      return response.json();
    }

    function highlight(svg, chart, info, on) {
      info.chartClasses.forEach((c) => chart.classList.toggle(c, on));
      info.polygons.forEach((id) => {
        const polygon = document.getElementById(id);
        if (!polygon) return;
        polygon.classList.toggle(info.lineClass, on);
        if (on) polygon.parentNode.appendChild(polygon);
      });
      chart.querySelectorAll('rect.to-slice, rect.from-slice').forEach((r) => r.remove());
      if (on) {
        info.slices.forEach((s) => chart.appendChild(el('rect', {
          class: s.class, x: s.x, y: s.y, width: s.width, height: s.height,
        })));
      }
    }

    function draw(payload) {
      const svg = document.getElementById('chart-svg');
      svg.setAttribute('viewBox', `0 0 ${payload.width} ${payload.height}`);
      svg.innerHTML = '';
      const chart = el('g', { class: 'slope-chart' });
      svg.appendChild(chart);
      payload.titles.forEach((t) => chart.appendChild(el('text', { id: t.id, class: 'column-title', x: t.x, y: '1em' }, t.text)));
      payload.bars.forEach((bar) => {
        const suffix = bar.side === 'origin' ? 'from' : 'to';
        const group = el('g', { id: bar.id, class: `state-${suffix}-group` });
        const r = bar.labelRect;
        group.appendChild(el('rect', { class: `label label-${suffix}`, x: r.x, y: r.y, width: r.width, height: r.height, fill: r.fill }));
        if (bar.labelVisible) {
          group.appendChild(el('text', { class: `state-${suffix}-text`, x: bar.textX, y: bar.y, dy: bar.height / 1.5, 'font-size': bar.fontSize }, bar.key));
        }
        group.appendChild(el('text', { class: `state-${suffix}-text-hover`, x: bar.textX, y: bar.y, dy: bar.height / 1.5, 'font-size': bar.hoverFontSize }, bar.key));
        group.appendChild(el('rect', { class: `state-bar state-${suffix}`, x: bar.x, y: bar.y, width: bar.width, height: bar.height, opacity: bar.opacity }));
        const info = payload.highlights[bar.side][bar.key];
        group.addEventListener('mouseover', () => highlight(svg, chart, info, true));
        group.addEventListener('mouseout', () => highlight(svg, chart, info, false));
        chart.appendChild(group);
      });
      payload.polygons.forEach((p) => {
        const polygon = el('polygon', { id: p.id, class: p.classes.join(' '), points: p.points.map((pt) => pt.join(',')).join(' ') });
        polygon.appendChild(el('title', {}, `${p.origin} → ${p.destination}: ${Math.round(p.length).toLocaleString()}`));
        chart.appendChild(polygon);
      });
    }

    async function render() {
      const wrap = document.getElementById('chart-wrap');
      const errorNode = document.getElementById('error-message');
      if (!wrap.isConnected || wrap.clientWidth === 0 || wrap.clientHeight === 0) return;
      errorNode.textContent = '';
      try {
        draw(await fetchLayout(wrap.clientWidth, wrap.clientHeight));
      } catch (err) {
        console.error(err);
        errorNode.textContent = err.message;
      }
    }

    window.addEventListener('resize', debounce(render, RESIZE_DEBOUNCE_MS));
    document.addEventListener('DOMContentLoaded', render);
  </script>
</body>
</html>
"""


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    app.run(host="0.0.0.0", port=8000, debug=True)
