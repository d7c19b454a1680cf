"""
cli.py
======

Command line entry point.

Usage:
    flver-fixup models/ --node --lod --face 0 3 --report reports/fixup.json

Some of these fixes are situational, only apply them if you're sure you need them.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from .batch import repair_all
from .codec import JsonModelCodec
from .geometry import WindingVote
from .repair import MeshSelection, RepairOptions


def _selection(values: Optional[List[int]]) -> Optional[MeshSelection]:
    # None: option absent. []: option given without indices, i.e. every mesh.
    if values is None:
        return None
    return MeshSelection.of(values)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flver-fixup",
        description=(
            "Fixes common structural issues with FLVER model files. "
            "Some of these fixes are situational, only apply them if you're sure you need to."
        ),
    )
    parser.add_argument(
        "input", type=Path,
        help=(
            "Path to the input model or folder. If a folder is provided, all "
            "models in it and its subfolders are processed."
        ),
    )
    parser.add_argument(
        "-o", "--output", type=Path, default=None,
        help="Overrides the output path, which is equal to the input path by default.",
    )
    parser.add_argument(
        "-f", "--face", type=int, nargs="*", default=None, metavar="MESH",
        help=(
            "Fixes face winding to match the vertex normals for meshes with the supplied "
            "indices or all meshes if no indices are given. Use this if shadows appear on "
            "the wrong side of the mesh faces."
        ),
    )
    parser.add_argument(
        "-l", "--lod", type=int, nargs="*", default=None, metavar="MESH",
        help=(
            "Adds LOD and motion blur facesets to meshes with the supplied indices or all "
            "meshes if no indices are given. Use this if meshes disappear when far from the camera."
        ),
    )
    parser.add_argument(
        "-d", "--decal", type=int, nargs="*", default=None, metavar="MESH",
        help=(
            "Removes decal uvs (assumed to be the second uv channel) from meshes with the "
            "supplied indices or all meshes if no indices are given."
        ),
    )
    parser.add_argument(
        "-r", "--remove", action="store_true",
        help="Removes meshes with no vertices or no facesets and deduplicates materials and GX lists.",
    )
    parser.add_argument(
        "-n", "--node", action="store_true",
        help=(
            "Makes sure all nodes are included in the skeleton definitions, that all node "
            "references are valid and sets the node flags appropriately."
        ),
    )
    parser.add_argument(
        "-p", "--permissive", action="store_true",
        help="Relaxes validation when loading files, for output of older tooling.",
    )
    parser.add_argument(
        "--winding-vote", choices=[vote.value for vote in WindingVote], default=WindingVote.NORMAL.value,
        help=(
            "'normal' flips a faceset when most faces point against their vertex normals; "
            "'unconditional' flips every faceset with usable triangles (default: normal)."
        ),
    )
    parser.add_argument(
        "--keep-empty-meshes", action="store_true",
        help="With --remove, only report empty meshes instead of deleting them.",
    )
    parser.add_argument("--dry-run", action="store_true", help="Show what would be done")
    parser.add_argument(
        "--report", type=Path, default=None,
        help="Path for JSON repair report",
    )
    parser.add_argument(
        "--workers", type=int, default=os.cpu_count() or 4,
        help="Number of parallel worker processes (default: number of CPUs).",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    return parser


def options_from_args(args: argparse.Namespace) -> RepairOptions:
    return RepairOptions(
        fix_face_winding=_selection(args.face),
        fix_lods=_selection(args.lod),
        fix_decals=_selection(args.decal),
        remove_empty_meshes=args.remove,
        fix_nodes=args.node,
        winding_vote=WindingVote(args.winding_vote),
        drop_empty_meshes=not args.keep_empty_meshes,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(message)s",
        datefmt="%H:%M:%S",
    )

    options = options_from_args(args)
    if not options.any_enabled():
        parser.error("no repair selected, pass at least one of --face, --lod, --decal, --remove, --node")

    if not args.input.exists():
        logging.error("The provided file path does not exist: %s", args.input)
        return 1

    stats = repair_all(
        input_path=args.input,
        output_path=args.output,
        options=options,
        codec=JsonModelCodec(permissive=args.permissive),
        dry_run=args.dry_run,
        workers=max(1, args.workers),
        report_path=args.report,
    )

    if stats.failed > 0:
        logging.warning("%d files failed repair", stats.failed)

    return 0


if __name__ == "__main__":
    sys.exit(main())
