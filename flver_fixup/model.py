"""
model.py
========

In-memory scene graph of a FLVER model asset.

Every cross reference is an integer index into one of the flat collections of
:class:`Model` (nodes, meshes, materials, GX lists). ``-1`` means "no
reference". Skeleton bones are the exception: their hierarchy links index the
skeleton's own bone list, only ``Bone.node_index`` points into ``Model.nodes``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterator, List, Tuple

Vec3 = Tuple[float, float, float]

ZERO_VEC3: Vec3 = (0.0, 0.0, 0.0)
NO_INDEX = -1
BONE_SLOTS = 4


class NodeFlags(enum.IntFlag):
    NONE = 0
    DISABLED = 0x1
    DUMMY_OWNER = 0x2
    BONE = 0x4
    MESH = 0x8


class FaceSetFlags(enum.IntFlag):
    NONE = 0
    LOD_LEVEL_1 = 0x01000000
    LOD_LEVEL_2 = 0x02000000
    MOTION_BLUR = 0x80000000


@dataclass
class Node:
    name: str = ""
    flags: NodeFlags = NodeFlags.NONE
    parent_index: int = NO_INDEX
    first_child_index: int = NO_INDEX
    previous_sibling_index: int = NO_INDEX
    next_sibling_index: int = NO_INDEX
    translation: Vec3 = ZERO_VEC3
    rotation: Vec3 = ZERO_VEC3
    scale: Vec3 = (1.0, 1.0, 1.0)

    @property
    def disabled(self) -> bool:
        return NodeFlags.DISABLED in self.flags

    @property
    def unlinked(self) -> bool:
        return (
            self.parent_index == NO_INDEX
            and self.first_child_index == NO_INDEX
            and self.previous_sibling_index == NO_INDEX
            and self.next_sibling_index == NO_INDEX
        )

    def set_flag(self, flag: NodeFlags) -> bool:
        """Add a role flag, returning False when it was already present.

        DISABLED replaces every other role; any other role clears DISABLED.
        """
        if flag in self.flags:
            return False
        if flag == NodeFlags.DISABLED:
            self.flags = NodeFlags.DISABLED
        else:
            self.flags = (self.flags | flag) & ~NodeFlags.DISABLED
        return True


@dataclass
class Vertex:
    position: Vec3 = ZERO_VEC3
    normal: Vec3 = ZERO_VEC3
    # Single bone reference used by meshes that are not skinned.
    normal_w: int = NO_INDEX
    bone_indices: List[int] = field(default_factory=lambda: [0] * BONE_SLOTS)
    bone_weights: List[float] = field(default_factory=lambda: [0.0] * BONE_SLOTS)
    uvs: List[Vec3] = field(default_factory=list)


@dataclass
class FaceSet:
    flags: FaceSetFlags = FaceSetFlags.NONE
    triangle_strip: bool = False
    cull_backfaces: bool = True
    indices: List[int] = field(default_factory=list)


@dataclass
class Mesh:
    material_index: int = 0
    node_index: int = NO_INDEX
    use_bone_weights: bool = False
    vertices: List[Vertex] = field(default_factory=list)
    face_sets: List[FaceSet] = field(default_factory=list)


@dataclass
class Dummy:
    reference_id: int = 0
    position: Vec3 = ZERO_VEC3
    attach_bone_index: int = NO_INDEX
    parent_bone_index: int = NO_INDEX


@dataclass
class Bone:
    node_index: int = NO_INDEX
    parent_index: int = NO_INDEX
    first_child_index: int = NO_INDEX
    previous_sibling_index: int = NO_INDEX
    next_sibling_index: int = NO_INDEX


@dataclass
class Skeletons:
    base_skeleton: List[Bone] = field(default_factory=list)
    all_skeletons: List[Bone] = field(default_factory=list)

    def named(self) -> Iterator[Tuple[str, List[Bone]]]:
        yield "base", self.base_skeleton
        yield "all", self.all_skeletons


@dataclass
class Material:
    name: str = ""
    mtd: str = ""
    gx_index: int = NO_INDEX


@dataclass
class GXList:
    data: bytes = b""


@dataclass
class Model:
    nodes: List[Node] = field(default_factory=list)
    meshes: List[Mesh] = field(default_factory=list)
    dummies: List[Dummy] = field(default_factory=list)
    materials: List[Material] = field(default_factory=list)
    gx_lists: List[GXList] = field(default_factory=list)
    skeletons: Skeletons = field(default_factory=Skeletons)

    def describe_mesh(self, mesh_index: int) -> str:
        """Human readable mesh label used in diagnostics."""
        mesh = self.meshes[mesh_index]
        if 0 <= mesh.material_index < len(self.materials):
            material = self.materials[mesh.material_index].name
        else:
            material = f"<invalid material {mesh.material_index}>"
        return f"mesh at index {mesh_index} with material {material}"
