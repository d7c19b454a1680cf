"""
repair.py
=========

Runs the requested repair passes over one model in their fixed order:

    nodes -> face winding -> LODs -> decals -> mesh compaction

Each pass mutates the model in place and reports whether it changed
anything. The OR of those flags tells the caller whether to re-encode.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .diagnostics import Diagnostic, DiagnosticLog, Severity
from .errors import RepairError
from .geometry import WindingVote, fix_decals, fix_face_winding, fix_lods
from .meshes import compact_meshes
from .model import Model
from .nodes import first_disabled_index, fix_nodes, node_reference_errors


@dataclass(frozen=True)
class MeshSelection:
    """Meshes a per-mesh pass applies to. No indices means every mesh."""

    indices: Tuple[int, ...] = ()

    @classmethod
    def every(cls) -> "MeshSelection":
        return cls()

    @classmethod
    def of(cls, indices: Iterable[int]) -> "MeshSelection":
        return cls(tuple(indices))

    @property
    def all_meshes(self) -> bool:
        return not self.indices

    def resolve(self, mesh_count: int, log: DiagnosticLog, stage: str) -> List[int]:
        if self.all_meshes:
            return list(range(mesh_count))
        selected: List[int] = []
        for index in self.indices:
            if not 0 <= index < mesh_count:
                log.warning(stage, "Index %d is out of range, cannot fix %s.", index, stage.replace("_", " "))
                continue
            if index not in selected:
                selected.append(index)
        return selected


@dataclass
class RepairOptions:
    fix_face_winding: Optional[MeshSelection] = None
    fix_lods: Optional[MeshSelection] = None
    fix_decals: Optional[MeshSelection] = None
    remove_empty_meshes: bool = False
    fix_nodes: bool = False
    winding_vote: WindingVote = WindingVote.NORMAL
    drop_empty_meshes: bool = True

    def any_enabled(self) -> bool:
        return (
            self.fix_nodes
            or self.remove_empty_meshes
            or self.fix_face_winding is not None
            or self.fix_lods is not None
            or self.fix_decals is not None
        )


@dataclass
class RepairResult:
    changed: bool = False
    passes: Dict[str, bool] = field(default_factory=dict)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def warning_count(self) -> int:
        return sum(1 for event in self.diagnostics if event.severity == Severity.WARNING)


def _per_mesh(
    model: Model,
    selection: MeshSelection,
    log: DiagnosticLog,
    stage: str,
    repair: Callable[[Model, int, DiagnosticLog], bool],
) -> bool:
    changed = False
    for mesh_index in selection.resolve(len(model.meshes), log, stage):
        changed |= repair(model, mesh_index, log)
    return changed


def _verify_nodes(model: Model) -> None:
    errors = node_reference_errors(model)
    if errors:
        raise RepairError("Node references still invalid after repair: " + "; ".join(errors[:5]))
    split = first_disabled_index(model.nodes)
    if split is not None and any(not node.disabled for node in model.nodes[split:]):
        raise RepairError(f"Enabled node found after first disabled node {split}")


def repair_model(model: Model, options: RepairOptions, asset: str = "") -> RepairResult:
    """Apply every pass enabled in *options* to *model*.

    Raises RepairError when the node passes leave the model inconsistent;
    the caller should then abandon this asset.
    """
    log = DiagnosticLog(asset)
    passes: Dict[str, bool] = {}

    if options.fix_nodes:
        passes["nodes"] = fix_nodes(model, log)
        _verify_nodes(model)

    if options.fix_face_winding is not None:
        passes["face_winding"] = _per_mesh(
            model, options.fix_face_winding, log, "face_winding",
            partial(fix_face_winding, vote=options.winding_vote),
        )
    if options.fix_lods is not None:
        passes["lods"] = _per_mesh(model, options.fix_lods, log, "lods", fix_lods)
    if options.fix_decals is not None:
        passes["decals"] = _per_mesh(model, options.fix_decals, log, "decals", fix_decals)

    if options.remove_empty_meshes:
        passes["meshes"] = compact_meshes(model, log, drop_empty=options.drop_empty_meshes)

    return RepairResult(
        changed=any(passes.values()),
        passes=passes,
        diagnostics=list(log.events),
    )
