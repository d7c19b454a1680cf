"""
meshes.py
=========

Mesh collection compaction: optional removal of empty meshes and
value-deduplication of the materials and GX lists the remaining meshes use.
"""

from __future__ import annotations

from dataclasses import replace
from typing import List, TypeVar

from .diagnostics import DiagnosticLog
from .errors import RepairError
from .model import NO_INDEX, GXList, Material, Mesh, Model

STAGE = "meshes"

T = TypeVar("T")


def is_empty_mesh(mesh: Mesh) -> bool:
    return not mesh.vertices or not mesh.face_sets or not mesh.face_sets[0].indices


def find_empty_meshes(model: Model) -> List[int]:
    return [index for index, mesh in enumerate(model.meshes) if is_empty_mesh(mesh)]


def _dedup_index(entries: List[T], entry: T) -> int:
    try:
        return entries.index(entry)
    except ValueError:
        entries.append(entry)
        return len(entries) - 1


def compact_meshes(model: Model, log: DiagnosticLog, drop_empty: bool = True) -> bool:
    """Rebuild materials and GX lists from the meshes that use them.

    With *drop_empty* the empty meshes are removed first, otherwise they are
    only reported and keep their (deduplicated) material.
    """
    for mesh_index, mesh in enumerate(model.meshes):
        if not 0 <= mesh.material_index < len(model.materials):
            raise RepairError(
                f"Mesh {mesh_index} references material {mesh.material_index} "
                f"but the model has {len(model.materials)} materials"
            )

    changed = False
    meshes: List[Mesh] = []
    for mesh_index, mesh in enumerate(model.meshes):
        if is_empty_mesh(mesh):
            if drop_empty:
                log.info(STAGE, "Removing empty %s", model.describe_mesh(mesh_index))
                changed = True
                continue
            log.info(STAGE, "Keeping empty %s", model.describe_mesh(mesh_index))
        meshes.append(mesh)

    old_materials = model.materials
    old_gx_lists = model.gx_lists
    materials: List[Material] = []
    gx_lists: List[GXList] = []
    for mesh in meshes:
        material = old_materials[mesh.material_index]
        gx_index = NO_INDEX
        if material.gx_index != NO_INDEX:
            if 0 <= material.gx_index < len(old_gx_lists):
                gx_index = _dedup_index(gx_lists, old_gx_lists[material.gx_index])
            else:
                log.warning(
                    STAGE, "Invalid GX list index %d in material %s, setting to -1.",
                    material.gx_index, material.name,
                )

        material_index = _dedup_index(materials, replace(material, gx_index=gx_index))
        if mesh.material_index != material_index:
            mesh.material_index = material_index
            changed = True

    if materials != old_materials or gx_lists != old_gx_lists:
        changed = True
    if len(materials) < len(old_materials):
        log.info(STAGE, "Compacted %d materials into %d", len(old_materials), len(materials))
    if len(gx_lists) < len(old_gx_lists):
        log.info(STAGE, "Compacted %d GX lists into %d", len(old_gx_lists), len(gx_lists))

    model.meshes = meshes
    model.materials = materials
    model.gx_lists = gx_lists
    return changed
