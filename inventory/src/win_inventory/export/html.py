from __future__ import annotations

from html import escape
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ..normalize.schema import COLLECTION_TITLES
from .csv import cell_text

_STYLE = """
body { font-family: Segoe UI, Arial, sans-serif; margin: 24px; color: #222; }
h1 { margin-bottom: 4px; }
.meta { color: #666; margin-bottom: 16px; }
.cards { display: flex; flex-wrap: wrap; gap: 12px; margin-bottom: 16px; }
.card { border: 1px solid #ddd; border-radius: 6px; padding: 10px 14px; min-width: 120px; }
.card .label { font-size: 12px; color: #666; }
.card .value { font-size: 20px; font-weight: 600; }
.tier { display: inline-block; padding: 2px 10px; border-radius: 10px; font-weight: 600; }
.tier-Green { background: #c6efce; color: #006100; }
.tier-Yellow { background: #ffeb9c; color: #9c5700; }
.tier-Red { background: #ffc7ce; color: #9c0006; }
nav a { margin-right: 12px; }
section { margin-top: 28px; }
.controls { margin: 6px 0; }
.controls input, .controls select { margin-right: 8px; padding: 3px 6px; }
table { border-collapse: collapse; width: 100%; font-size: 13px; }
th, td { border: 1px solid #ddd; padding: 4px 6px; text-align: left; vertical-align: top; }
th { background: #f3f3f3; cursor: pointer; user-select: none; white-space: nowrap; }
th.sorted-asc::after { content: " \\25B2"; }
th.sorted-desc::after { content: " \\25BC"; }
tr:nth-child(even) td { background: #fafafa; }
tr.flagged td { background: #fff4e5; }
td.unknown { color: #999; font-style: italic; }
.count { color: #666; font-size: 12px; }
"""

_SCRIPT = """
(function () {
  function cellValue(row, idx) {
    var text = row.cells[idx].getAttribute('data-sort') || row.cells[idx].textContent;
    var num = parseFloat(text);
    return (text !== '' && !isNaN(num) && isFinite(text)) ? num : text.toLowerCase();
  }
  function applyFilters(section) {
    var table = section.querySelector('table');
    var text = (section.querySelector('.filter-text').value || '').toLowerCase();
    var global = (document.getElementById('global-search').value || '').toLowerCase();
    var server = section.querySelector('.filter-server').value;
    var flaggedOnly = section.querySelector('.filter-flagged');
    var serverIdx = parseInt(table.getAttribute('data-server-col'), 10);
    var shown = 0;
    Array.prototype.forEach.call(table.tBodies[0].rows, function (row) {
      var content = row.textContent.toLowerCase();
      var ok = (!text || content.indexOf(text) !== -1) && (!global || content.indexOf(global) !== -1);
      if (ok && server && serverIdx >= 0) { ok = row.cells[serverIdx].textContent === server; }
      if (ok && flaggedOnly && flaggedOnly.checked) { ok = row.classList.contains('flagged'); }
      row.style.display = ok ? '' : 'none';
      if (ok) { shown += 1; }
    });
    section.querySelector('.count').textContent = shown + ' of ' + table.tBodies[0].rows.length + ' rows';
  }
  function sortBy(table, idx, th) {
    var asc = !th.classList.contains('sorted-asc');
    Array.prototype.forEach.call(table.tHead.rows[0].cells, function (c) {
      c.classList.remove('sorted-asc', 'sorted-desc');
    });
    th.classList.add(asc ? 'sorted-asc' : 'sorted-desc');
    var rows = Array.prototype.slice.call(table.tBodies[0].rows);
    rows.sort(function (a, b) {
      var x = cellValue(a, idx), y = cellValue(b, idx);
      if (x < y) { return asc ? -1 : 1; }
      if (x > y) { return asc ? 1 : -1; }
      return 0;
    });
    rows.forEach(function (r) { table.tBodies[0].appendChild(r); });
  }
  document.querySelectorAll('section.collection').forEach(function (section) {
    var table = section.querySelector('table');
    Array.prototype.forEach.call(table.tHead.rows[0].cells, function (th, idx) {
      th.addEventListener('click', function () { sortBy(table, idx, th); });
    });
    section.querySelectorAll('.filter-text, .filter-server, .filter-flagged').forEach(function (el) {
      el.addEventListener('input', function () { applyFilters(section); });
      el.addEventListener('change', function () { applyFilters(section); });
    });
    applyFilters(section);
  });
  document.getElementById('global-search').addEventListener('input', function () {
    document.querySelectorAll('section.collection').forEach(applyFilters);
  });
})();
"""


def _is_flagged(collection: str, row: Mapping[str, Any]) -> bool:
    if collection == "scopes":
        return bool(row.get("riskPoints"))
    if collection == "findings":
        return row.get("triggered") is True
    if collection == "servers":
        return row.get("reachability") == "unreachable"
    return collection == "failures"


def _td(value: Any) -> str:
    text = cell_text(value)
    if value is None or text == "unknown":
        return '<td class="unknown">unknown</td>'
    sort_attr = f' data-sort="{escape(str(value))}"' if isinstance(value, (int, float)) else ""
    return f"<td{sort_attr}>{escape(text)}</td>"


def _render_collection(collection: str, fields: Sequence[str], rows: Sequence[Mapping[str, Any]]) -> List[str]:
    title = COLLECTION_TITLES.get(collection, collection)
    servers = sorted({str(r.get("server")) for r in rows if r.get("server")}, key=str.casefold)
    server_col = list(fields).index("server") if "server" in fields else -1
    out: List[str] = []
    out.append(f'<section class="collection" id="{escape(collection)}">')
    out.append(f"<h2>{escape(title)}</h2>")
    out.append('<div class="controls">')
    out.append(f'<input type="search" class="filter-text" placeholder="Filter {escape(title.lower())}">')
    options = ['<option value="">All servers</option>'] + [
        f'<option value="{escape(s)}">{escape(s)}</option>' for s in servers
    ]
    out.append(f'<select class="filter-server">{"".join(options)}</select>')
    if collection in {"scopes", "findings", "servers"}:
        out.append('<label><input type="checkbox" class="filter-flagged"> Flagged only</label>')
    out.append('<span class="count"></span>')
    out.append("</div>")
    out.append(f'<table data-server-col="{server_col}">')
    out.append("<thead><tr>" + "".join(f"<th>{escape(f)}</th>" for f in fields) + "</tr></thead>")
    out.append("<tbody>")
    for row in rows:
        cls = ' class="flagged"' if _is_flagged(collection, row) else ""
        out.append(f"<tr{cls}>" + "".join(_td(row.get(f)) for f in fields) + "</tr>")
    out.append("</tbody></table>")
    out.append("</section>")
    return out


def render_html_report(
    *,
    title: str,
    generated_at: str,
    collections: Mapping[str, Sequence[Mapping[str, Any]]],
    fields_by_collection: Mapping[str, Sequence[str]],
    summary: Sequence[Tuple[str, Any]],
    tier: Optional[str] = None,
    failure_summary: Optional[Mapping[str, Mapping[str, int]]] = None,
) -> str:
    """
    Render a self-contained HTML page: summary cards, failure breakdown and
    one searchable, sortable, filterable table per collection.
    """
    lines: List[str] = []
    lines.append("<!DOCTYPE html>")
    lines.append('<html lang="en"><head><meta charset="utf-8">')
    lines.append(f"<title>{escape(title)}</title>")
    lines.append(f"<style>{_STYLE}</style></head><body>")
    badge = f' <span class="tier tier-{escape(tier)}">{escape(tier)}</span>' if tier else ""
    lines.append(f"<h1>{escape(title)}{badge}</h1>")
    lines.append(f'<div class="meta">Generated {escape(generated_at)}</div>')

    lines.append('<div class="cards">')
    for label, value in summary:
        if label == "Risk tier" and value:
            rendered = f'<span class="tier tier-{escape(str(value))}">{escape(str(value))}</span>'
        else:
            rendered = escape(cell_text(value))
        lines.append(
            f'<div class="card"><div class="label">{escape(label)}</div><div class="value">{rendered}</div></div>'
        )
    lines.append("</div>")

    if failure_summary and failure_summary.get("by_kind"):
        lines.append("<section><h2>Collection failures</h2>")
        for heading, key in (("By kind", "by_kind"), ("By stage", "by_stage"), ("By node", "by_node")):
            counts: Dict[str, int] = dict(failure_summary.get(key) or {})
            if not counts:
                continue
            items = ", ".join(f"{escape(k)}: {v}" for k, v in counts.items())
            lines.append(f"<p><strong>{heading}:</strong> {items}</p>")
        lines.append("</section>")

    nav = " ".join(
        f'<a href="#{escape(name)}">{escape(COLLECTION_TITLES.get(name, name))} ({len(rows)})</a>'
        for name, rows in collections.items()
    )
    lines.append(f"<nav>{nav}</nav>")
    lines.append('<div class="controls"><input type="search" id="global-search" placeholder="Search all tables"></div>')

    for name, rows in collections.items():
        lines.extend(_render_collection(name, fields_by_collection[name], rows))

    lines.append(f"<script>{_SCRIPT}</script>")
    lines.append("</body></html>")
    return "\n".join(lines) + "\n"


def write_html_report(path: Path, **kwargs: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_html_report(**kwargs), encoding="utf-8")
    return path
