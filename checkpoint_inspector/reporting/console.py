# checkpoint_inspector/reporting/console.py
"""
Console rendering of module trees, metadata and analysis charts.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from rich import box
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from checkpoint_inspector.analysis.base import AnalysisRequest, BarChart, RequestState
from checkpoint_inspector.model_formats.source import shorten_value
from checkpoint_inspector.tree.module_tree import ModuleTree

console = Console()

BAR_WIDTH = 40
_UNITS = ["", "K", "M", "B", "T"]


def format_count(n: int) -> str:
    """Compact element count: ``1234567`` -> ``1.2M``."""
    value = float(n)
    for unit in _UNITS:
        if abs(value) < 1000 or unit == _UNITS[-1]:
            return f"{int(value)}" if not unit else f"{value:.1f}{unit}"
        value /= 1000
    return str(n)


def format_bytes(n: int) -> str:
    value = float(n)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024:
            return f"{int(value)} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TiB"


def render_summary(path: str, fmt: str, tree: ModuleTree, data_start: int) -> None:
    """Render a high-level summary table."""
    t = Table(title="Checkpoint Summary", box=box.SIMPLE_HEAVY)
    t.add_column("Field", style="bold")
    t.add_column("Value")
    t.add_row("Path", path)
    t.add_row("Format", fmt)
    t.add_row("Tensors", str(tree.total_tensors))
    t.add_row("Parameters", f"{tree.total_params} ({format_count(tree.total_params)})")
    t.add_row("Data start", str(data_start))
    console.print(t)


def _node_label(name: str, node: ModuleTree) -> str:
    if node.tensor is not None:
        t = node.tensor
        dims = "x".join(str(d) for d in t.shape) or "scalar"
        return (
            f"[cyan]{name}[/cyan] [yellow]{t.dtype}[/yellow] [green]{dims}[/green] "
            f"[dim]{format_bytes(t.nbytes)}[/dim]"
        )
    return (
        f"[bold]{name}[/bold] [dim]{node.total_tensors} tensors, "
        f"{format_count(node.total_params)} params[/dim]"
    )


def _add_children(branch: Tree, node: ModuleTree, depth: int, max_depth: Optional[int]) -> None:
    if max_depth is not None and depth >= max_depth:
        if node.children:
            branch.add(f"[dim]... {len(node.children)} more[/dim]")
        return
    for key, child in node.display_children():
        sub = branch.add(_node_label(key.text, child))
        _add_children(sub, child, depth + 1, max_depth)


def render_tree(tree: ModuleTree, *, title: str = "modules", max_depth: Optional[int] = None) -> None:
    root = Tree(f"[bold magenta]{title}[/bold magenta] [dim]{format_count(tree.total_params)} params[/dim]")
    _add_children(root, tree, 0, max_depth)
    console.print(root)


def render_metadata(metadata: Dict[str, Any], *, title: str = "Metadata") -> None:
    table = Table(title=title, box=box.ROUNDED, title_style="bold magenta")
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")
    for key in sorted(metadata):
        value = shorten_value(metadata[key])
        text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
        table.add_row(key, text)
    if not metadata:
        table.add_row("[dim](none)[/dim]", "")
    console.print(table)


def render_chart(title: str, chart: BarChart) -> None:
    """Horizontal bar chart, one row per bin."""
    table = Table(title=title, box=box.SIMPLE, title_style="bold magenta")
    table.add_column("From", justify="right", style="white")
    table.add_column("To", justify="right", style="white")
    table.add_column("Count", justify="right", style="yellow")
    table.add_column("", style="green", no_wrap=True)
    edges = chart.bin_edges()
    peak = max(chart.bins) or 1
    last = len(chart.bins) - 1
    for i, count in enumerate(chart.bins):
        lo = f"{edges[i]:.4g}"
        hi = f"{edges[i + 1]:.4g}"
        if i == 0 and chart.continues_past_left:
            lo = "<" + lo
        if i == last and chart.continues_past_right:
            hi = hi + "+"
        table.add_row(lo, hi, str(count), "█" * round(BAR_WIDTH * count / peak))
    console.print(table)


def render_analysis(name: str, request: AnalysisRequest) -> None:
    """Render whatever the request has produced so far."""
    hist = request.histogram
    if hist.result is not None:
        h = hist.result
        console.print(f"[bold]{name}[/bold] min={h.min:.6g} max={h.max:.6g}")
        render_chart(f"{name} histogram", h.chart)
    elif hist.state is RequestState.NOT_REQUESTED:
        console.print(f"[dim]{name}: histogram skipped, use --force[/dim]")

    spectrum = request.spectrum
    if spectrum.result is not None:
        render_chart(f"{name} singular values", spectrum.result.chart)
    elif spectrum.state is RequestState.NOT_REQUESTED and request.tensor.ndim == 2:
        console.print(f"[dim]{name}: spectrum skipped, use --force[/dim]")

    if request.error is not None:
        console.print(f"[red]{name}:[/red] {request.error}")
