"""
geometry.py
===========

Per-mesh geometry repairs: faceset winding orientation, canonical LOD /
motion blur faceset slots and decal UV removal.
"""

from __future__ import annotations

import enum
from typing import List, Tuple

import numpy as np

from .diagnostics import DiagnosticLog
from .model import ZERO_VEC3, FaceSet, FaceSetFlags, Mesh, Model

# A faceset is reversed when at least this share of its triangles disagree
# with their vertex normals.
FLIP_VOTE_THRESHOLD = 0.75

DECAL_UV_CHANNEL = 1

CANONICAL_FACESET_FLAGS: Tuple[FaceSetFlags, ...] = (
    FaceSetFlags.NONE,
    FaceSetFlags.LOD_LEVEL_1,
    FaceSetFlags.LOD_LEVEL_2,
    FaceSetFlags.MOTION_BLUR,
    FaceSetFlags.MOTION_BLUR | FaceSetFlags.LOD_LEVEL_1,
    FaceSetFlags.MOTION_BLUR | FaceSetFlags.LOD_LEVEL_2,
)


class WindingVote(str, enum.Enum):
    """How a triangle votes for reversing its faceset.

    NORMAL votes only when the face normal points away from the averaged
    vertex normal. UNCONDITIONAL votes for every triangle, so any faceset with
    a single usable triangle is reversed on every run.
    """

    NORMAL = "normal"
    UNCONDITIONAL = "unconditional"


# ---------------------------------------------------------------------------
# Face winding
# ---------------------------------------------------------------------------

def triangle_list(indices: List[int]) -> np.ndarray:
    """Return the (n, 3) triangles that precede the first degenerate marker."""
    usable = len(indices) - len(indices) % 3
    triangles = np.asarray(indices[:usable], dtype=np.int64).reshape(-1, 3)
    # A triangle whose first two corners match marks the end of the data.
    markers = np.flatnonzero(triangles[:, 0] == triangles[:, 1])
    if markers.size:
        triangles = triangles[:markers[0]]
    return triangles


def count_flip_votes(mesh: Mesh, triangles: np.ndarray, vote: WindingVote = WindingVote.NORMAL) -> int:
    if vote is WindingVote.UNCONDITIONAL:
        return len(triangles)
    positions = np.asarray([vertex.position for vertex in mesh.vertices], dtype=np.float64)
    normals = np.asarray([vertex.normal for vertex in mesh.vertices], dtype=np.float64)

    corners = positions[triangles]
    # Front faces wind clockwise when seen from the side their normals face.
    face_normals = np.cross(corners[:, 2] - corners[:, 0], corners[:, 1] - corners[:, 0])
    lengths = np.linalg.norm(face_normals, axis=1, keepdims=True)
    face_normals = np.divide(face_normals, lengths, out=np.zeros_like(face_normals), where=lengths > 0)
    vertex_normals = normals[triangles].mean(axis=1)
    dots = np.einsum("ij,ij->i", face_normals, vertex_normals)

    return int(np.count_nonzero(dots < 0))


def reverse_winding(face_set: FaceSet) -> None:
    """Swap the second and third corner of every triangle in place."""
    indices = face_set.indices
    end = len(indices) - len(indices) % 3
    indices[1:end:3], indices[2:end:3] = indices[2:end:3], indices[1:end:3]


def fix_face_winding(
    model: Model,
    mesh_index: int,
    log: DiagnosticLog,
    vote: WindingVote = WindingVote.NORMAL,
) -> bool:
    """Reverse whole facesets whose triangles face against their normals.

    The decision is made once per faceset, never per triangle.
    """
    mesh = model.meshes[mesh_index]
    changed = False
    for face_set_index, face_set in enumerate(mesh.face_sets):
        if face_set.triangle_strip:
            log.warning(
                "face_winding", "Could not fix face winding for triangle strip faceset %d in %s.",
                face_set_index, model.describe_mesh(mesh_index),
            )
            continue

        triangles = triangle_list(face_set.indices)
        if not len(triangles):
            continue
        if triangles.min() < 0 or triangles.max() >= len(mesh.vertices):
            log.warning(
                "face_winding", "Faceset %d in %s references missing vertices, skipping.",
                face_set_index, model.describe_mesh(mesh_index),
            )
            continue

        votes = count_flip_votes(mesh, triangles, vote)
        if votes / len(triangles) < FLIP_VOTE_THRESHOLD:
            continue

        reverse_winding(face_set)
        changed = True
        log.info("face_winding", "Flipped faceset %d in %s", face_set_index, model.describe_mesh(mesh_index))
    return changed


# ---------------------------------------------------------------------------
# LOD facesets
# ---------------------------------------------------------------------------

def fix_lods(model: Model, mesh_index: int, log: DiagnosticLog) -> bool:
    """Fill the missing canonical faceset slots with copies of the first faceset."""
    mesh = model.meshes[mesh_index]
    count = len(mesh.face_sets)
    if count >= len(CANONICAL_FACESET_FLAGS):
        return False
    if count == 0:
        log.warning("lods", "Cannot add facesets to %s, it has none to copy.", model.describe_mesh(mesh_index))
        return False

    log.info("lods", "Adding missing facesets to %s", model.describe_mesh(mesh_index))
    first = mesh.face_sets[0]
    for flags in CANONICAL_FACESET_FLAGS[count:]:
        mesh.face_sets.append(FaceSet(
            flags=flags,
            triangle_strip=first.triangle_strip,
            cull_backfaces=first.cull_backfaces,
            indices=list(first.indices),
        ))
    return True


# ---------------------------------------------------------------------------
# Decals
# ---------------------------------------------------------------------------

def fix_decals(model: Model, mesh_index: int, log: DiagnosticLog) -> bool:
    """Zero the decal UV channel of every vertex in the mesh.

    The channel count of the first vertex stands for the whole mesh.
    """
    mesh = model.meshes[mesh_index]
    if not mesh.vertices or len(mesh.vertices[0].uvs) <= DECAL_UV_CHANNEL:
        return False

    changed = False
    for vertex in mesh.vertices:
        if len(vertex.uvs) <= DECAL_UV_CHANNEL:
            continue
        if tuple(vertex.uvs[DECAL_UV_CHANNEL]) != ZERO_VEC3:
            changed = True
        vertex.uvs[DECAL_UV_CHANNEL] = ZERO_VEC3

    if changed:
        log.info("decals", "Removed decal uvs from %s", model.describe_mesh(mesh_index))
    return changed
