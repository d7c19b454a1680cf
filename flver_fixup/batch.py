"""
batch.py
========

Applies the repair passes to one asset file or to every asset under a
directory tree, optionally across worker processes.

An asset is only rewritten when its repairs changed something and the codec
encoded it successfully; any failure leaves the source bytes untouched.
"""

from __future__ import annotations

import json
import logging
import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field, fields as dataclass_fields
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .codec import JsonModelCodec, ModelCodec
from .errors import DecodeError, EncodeError, RepairError
from .repair import RepairOptions, repair_model

BACKUP_SUFFIX = ".bak"


@dataclass
class RepairStats:
    total_found: int = 0
    repaired: int = 0
    unchanged: int = 0
    skipped_unrecognized: int = 0
    skipped_corrupt: int = 0
    failed: int = 0
    warnings: int = 0
    failures: List[Dict] = field(default_factory=list)
    assets: List[Dict] = field(default_factory=list)


def merge_stats(target: RepairStats, source: RepairStats) -> None:
    """Add the outcome counters and failure records of one worker's stats to *target*."""
    for f in dataclass_fields(RepairStats):
        src_val = getattr(source, f.name)
        if isinstance(src_val, int):
            setattr(target, f.name, getattr(target, f.name) + src_val)
        elif isinstance(src_val, list):
            getattr(target, f.name).extend(src_val)


def discover_assets(root: Path) -> List[Path]:
    """Every candidate asset file under *root*, or *root* itself for a file."""
    if root.is_file():
        return [root]
    return sorted(
        path for path in root.rglob("*")
        if path.is_file() and path.suffix.lower() != BACKUP_SUFFIX
    )


def output_path_for(source: Path, input_root: Path, output_root: Path) -> Path:
    if input_root.is_file():
        return output_root
    return output_root / source.relative_to(input_root)


def repair_single_asset(
    source: Path,
    output_path: Path,
    options: RepairOptions,
    codec: ModelCodec,
    dry_run: bool,
    stats: RepairStats,
) -> None:
    """Decode, repair and (when changed) re-encode one asset."""
    stats.total_found += 1

    try:
        data = source.read_bytes()
    except OSError as exc:
        stats.failed += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "read"})
        logging.error("Cannot read %s: %s", source, exc)
        return

    if not codec.sniff(data):
        stats.skipped_unrecognized += 1
        logging.debug("Skipping unrecognized file: %s", source)
        return

    logging.info('Processing "%s"', source)
    try:
        model = codec.decode(data)
    except DecodeError as exc:
        stats.skipped_corrupt += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "decode"})
        logging.warning("Failed to read model from %s: %s", source, exc)
        return

    try:
        result = repair_model(model, options, asset=source.name)
    except RepairError as exc:
        stats.failed += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "repair"})
        logging.error("Failed to process %s: %s", source, exc)
        return
    except Exception as exc:  # noqa: BLE001
        stats.failed += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "unexpected"})
        logging.exception("Unexpected error processing %s", source)
        return

    stats.warnings += result.warning_count
    stats.assets.append({
        "source": str(source),
        "changed": result.changed,
        "passes": result.passes,
        "warnings": result.warning_count,
        "diagnostics": [event.as_dict() for event in result.diagnostics],
    })

    if not result.changed:
        stats.unchanged += 1
        logging.debug("No changes needed for %s", source)
        return

    try:
        encoded = codec.encode(model)
    except EncodeError as exc:
        stats.failed += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "encode"})
        logging.error("Failed to write model for %s: %s", source, exc)
        return

    if dry_run:
        logging.info("[DRY-RUN] Would write changes to %s", output_path)
        stats.repaired += 1
        return

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(encoded)
    except OSError as exc:
        stats.failed += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "write"})
        logging.error('Failed to write changes to path "%s": %s', output_path, exc)
        return

    stats.repaired += 1
    logging.info('Writing changes to path "%s"', output_path)


def _repair_worker(
    source: Path,
    output_path: Path,
    options: RepairOptions,
    codec: ModelCodec,
    dry_run: bool,
) -> RepairStats:
    """Worker function for parallel repairs. Returns local stats."""
    stats = RepairStats()
    try:
        repair_single_asset(source, output_path, options, codec, dry_run, stats)
    except Exception as exc:  # noqa: BLE001
        stats.failed += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "worker"})
        logging.error("Repair worker error for %s: %s", source, exc)
    return stats


def write_report(stats: RepairStats, report_path: Path, options: RepairOptions) -> None:
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report = {
        "options": {
            "fix_face_winding": _selection_payload(options.fix_face_winding),
            "fix_lods": _selection_payload(options.fix_lods),
            "fix_decals": _selection_payload(options.fix_decals),
            "remove_empty_meshes": options.remove_empty_meshes,
            "fix_nodes": options.fix_nodes,
            "winding_vote": options.winding_vote.value,
            "drop_empty_meshes": options.drop_empty_meshes,
        },
        "total_found": stats.total_found,
        "repaired": stats.repaired,
        "unchanged": stats.unchanged,
        "skipped_unrecognized": stats.skipped_unrecognized,
        "skipped_corrupt": stats.skipped_corrupt,
        "failed": stats.failed,
        "warnings": stats.warnings,
        "failures": stats.failures,
        "assets": stats.assets,
    }
    report_path.write_text(json.dumps(report, indent=2))
    logging.info("Report written to %s", report_path)


def _selection_payload(selection) -> Optional[object]:
    if selection is None:
        return None
    return "all" if selection.all_meshes else list(selection.indices)


def repair_all(
    input_path: Path,
    output_path: Optional[Path],
    options: RepairOptions,
    codec: Optional[ModelCodec] = None,
    dry_run: bool = False,
    workers: int = 1,
    report_path: Optional[Path] = None,
) -> RepairStats:
    """Repair every asset under *input_path*, writing to *output_path* (default: in place)."""
    codec = codec or JsonModelCodec()
    output_path = output_path or input_path
    stats = RepairStats()

    sources = discover_assets(input_path)
    jobs: List[Tuple[Path, Path]] = [
        (source, output_path_for(source, input_path, output_path)) for source in sources
    ]
    total = len(jobs)
    logging.info("Found %d candidate files under %s (workers=%d)", total, input_path, workers)

    start_time = time.time()
    if workers <= 1 or total <= 1:
        for source, destination in jobs:
            repair_single_asset(source, destination, options, codec, dry_run, stats)
    else:
        chunksize = max(1, total // (workers * 4))
        with ProcessPoolExecutor(max_workers=workers) as executor:
            results = executor.map(
                _repair_worker,
                [src for src, _ in jobs],
                [dst for _, dst in jobs],
                [options] * total,
                [codec] * total,
                [dry_run] * total,
                chunksize=chunksize,
            )
            for worker_stats in results:
                merge_stats(stats, worker_stats)

    elapsed = time.time() - start_time
    logging.info(
        "Repair complete in %.1fs: %d repaired, %d unchanged, %d skipped (unrecognized=%d, corrupt=%d), %d failed",
        elapsed, stats.repaired, stats.unchanged,
        stats.skipped_unrecognized + stats.skipped_corrupt,
        stats.skipped_unrecognized, stats.skipped_corrupt,
        stats.failed,
    )

    if report_path:
        write_report(stats, report_path, options)

    return stats
