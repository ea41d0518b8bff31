# checkpoint_inspector/cli.py
"""
cli.py

Rich console CLI:
- tree:     print the module tree of a .safetensors or .gguf file.
- meta:     print the file's metadata.
- set-meta: rewrite safetensors metadata.
- stats:    histogram and singular value spectrum of selected tensors.
- version:  show the package version.
"""
from __future__ import annotations

import argparse
import json
import os
from typing import Any, Dict, List, Optional

from loguru import logger
from rich.console import Console
from rich.panel import Panel

from checkpoint_inspector import __version__
from checkpoint_inspector.analysis.base import AnalysisRequest, RequestState
from checkpoint_inspector.analysis.worker import start_analysis_worker
from checkpoint_inspector.config import InspectorConfig
from checkpoint_inspector.errors import InspectorError
from checkpoint_inspector.logging import configure_logging
from checkpoint_inspector.model_formats.source import ModuleSource, open_path
from checkpoint_inspector.reporting import console as report
from checkpoint_inspector.reporting.json_reporter import write_json
from checkpoint_inspector.tree.module_tree import ModuleTree, PathSplit

console = Console()


def _add_common(sp: argparse.ArgumentParser) -> None:
    sp.add_argument("path", help="Path to checkpoint file (.safetensors | .gguf)")
    sp.add_argument("--debug", action="store_true", help="Enable debug logging")
    sp.add_argument("--log-file", default=None, help="Also write debug logs to this file")
    sp.add_argument("--json-out", type=str, default=None, help="Write JSON output to this path")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="ckpti",
        description="Checkpoint inspector: module trees, metadata and tensor statistics "
        "for safetensors and GGUF files.",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    sub = p.add_subparsers(dest="cmd", title="Available Commands", metavar="<command>")

    sp_tree = sub.add_parser("tree", help="Show the module tree")
    _add_common(sp_tree)
    sp_tree.add_argument("-d", "--delimiter", default=None, help="Module delimiter (default: '.')")
    sp_tree.add_argument("--no-flatten", action="store_true", help="Keep single-child module chains")
    sp_tree.add_argument("--depth", type=int, default=None, help="Maximum depth to print")

    sp_meta = sub.add_parser("meta", help="Show file metadata")
    _add_common(sp_meta)

    sp_set = sub.add_parser("set-meta", help="Rewrite safetensors metadata")
    _add_common(sp_set)
    sp_set.add_argument(
        "assignments",
        nargs="*",
        metavar="KEY=VALUE",
        help="Metadata entries to set; values are stored as strings",
    )
    sp_set.add_argument("--from-json", default=None, help="Replace metadata with this JSON object file")
    sp_set.add_argument("--delete", nargs="+", default=[], metavar="KEY", help="Metadata keys to remove")

    sp_stats = sub.add_parser("stats", help="Histogram and spectrum of tensors")
    _add_common(sp_stats)
    sp_stats.add_argument("tensors", nargs="*", metavar="TENSOR", help="Tensor names (default: all)")
    sp_stats.add_argument("--bins", type=int, default=None, help="Maximum number of histogram bins")
    sp_stats.add_argument(
        "--force", action="store_true", help="Analyse tensors above the automatic size limits"
    )

    sub.add_parser("version", help="Show the version of checkpoint-inspector")
    return p


def _config(args: argparse.Namespace) -> InspectorConfig:
    cfg = InspectorConfig.from_env()
    return cfg.with_overrides(
        module_delim=getattr(args, "delimiter", None),
        max_bin_count=getattr(args, "bins", None),
        flatten=False if getattr(args, "no_flatten", False) else None,
        debug=True if args.debug else None,
        log_file=args.log_file,
    )


def _tensor_rows(source: ModuleSource) -> List[Dict[str, Any]]:
    return [
        {"name": name, "dtype": t.dtype, "shape": list(t.shape), "nbytes": t.nbytes, "offset": t.offset}
        for name, t in source.tensors()
    ]


def _cmd_tree(args: argparse.Namespace, cfg: InspectorConfig, source: ModuleSource) -> int:
    tree: ModuleTree = source.module(PathSplit(cfg.module_delim))
    if cfg.flatten:
        tree.flatten_single_children()
    report.render_summary(source.display(), source.get_format_name(), tree, source.data_start)
    report.render_tree(tree, title=os.path.basename(args.path), max_depth=args.depth)
    if args.json_out:
        write_json(
            {"path": args.path, "format": source.get_format_name(), "tensors": _tensor_rows(source)},
            args.json_out,
        )
        console.print(f"[dim]Wrote JSON report → {args.json_out}[/dim]")
    return 0


def _cmd_meta(args: argparse.Namespace, cfg: InspectorConfig, source: ModuleSource) -> int:
    metadata = source.metadata()
    report.render_metadata(metadata, title=f"{source.get_format_name()} metadata")
    if args.json_out:
        write_json(metadata, args.json_out)
        console.print(f"[dim]Wrote JSON report → {args.json_out}[/dim]")
    return 0


def _cmd_set_meta(args: argparse.Namespace, cfg: InspectorConfig, source: ModuleSource) -> int:
    if args.from_json:
        with open(args.from_json, "r", encoding="utf-8") as f:
            metadata = json.load(f)
        if not isinstance(metadata, dict):
            console.print(f"[red]Not a JSON object:[/red] {args.from_json}")
            return 2
    else:
        metadata = source.metadata()
    for item in args.assignments:
        key, sep, value = item.partition("=")
        if not sep or not key:
            console.print(f"[red]Expected KEY=VALUE, got:[/red] {item}")
            return 2
        metadata[key] = value
    for key in args.delete:
        metadata.pop(key, None)
    source.write_metadata(metadata)
    console.print(Panel(f"[bold]Metadata written:[/bold] {len(metadata)} entries", style="bold cyan"))
    report.render_metadata(source.metadata())
    if args.json_out:
        write_json(source.metadata(), args.json_out)
    return 0


def _cmd_stats(args: argparse.Namespace, cfg: InspectorConfig, source: ModuleSource) -> int:
    tensors = dict(source.tensors())
    names = args.tensors or list(tensors)
    results: Dict[str, Any] = {}
    rc = 0
    with start_analysis_worker(source) as worker:
        for name in names:
            desc = tensors.get(name)
            if desc is None:
                console.print(f"[red]No such tensor:[/red] {name}")
                rc = 1
                continue
            if args.force:
                request = AnalysisRequest(desc, cfg.max_bin_count)
            else:
                request = AnalysisRequest.for_tensor(desc, cfg)
            worker.submit(request)
            for slot in (request.histogram, request.spectrum):
                if slot.state is not RequestState.NOT_REQUESTED:
                    slot.wait()
            report.render_analysis(name, request)
            results[name] = request.summary()
            if request.error is not None:
                rc = 1
    if args.json_out:
        write_json(results, args.json_out)
        console.print(f"[dim]Wrote JSON report → {args.json_out}[/dim]")
    return rc


_COMMANDS = {
    "tree": _cmd_tree,
    "meta": _cmd_meta,
    "set-meta": _cmd_set_meta,
    "stats": _cmd_stats,
}


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return 0

    if args.cmd == "version":
        console.print(f"Checkpoint Inspector Version {__version__}")
        return 0

    try:
        cfg = _config(args)
    except ValueError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        return 2
    configure_logging(debug=cfg.debug, log_file=cfg.log_file)

    if not os.path.exists(args.path):
        console.print(f"[red]File not found:[/red] {args.path}")
        return 2

    try:
        source = open_path(args.path)
    except InspectorError as e:
        console.print(f"[red]Cannot open {args.path}:[/red] {e}")
        return 2

    try:
        return _COMMANDS[args.cmd](args, cfg, source)
    except (InspectorError, ValueError) as e:
        logger.debug("Command {cmd} failed: {err!r}", cmd=args.cmd, err=e)
        console.print(f"[red]Error:[/red] {e}")
        return 1
    finally:
        source.close()
