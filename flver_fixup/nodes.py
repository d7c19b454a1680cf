"""
nodes.py
========

Node integrity passes: role classification, enabled-first reordering with a
full rewrite of every node reference, root sibling chain repair and skeleton
completion.

Run in that order through :func:`fix_nodes`; each later pass relies on the
node order produced by the remap.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from .diagnostics import DiagnosticLog
from .model import NO_INDEX, Bone, Model, Node, NodeFlags

STAGE = "nodes"

_NODE_LINKS = (
    "parent_index",
    "first_child_index",
    "previous_sibling_index",
    "next_sibling_index",
)


# ---------------------------------------------------------------------------
# Node references
# ---------------------------------------------------------------------------

class RefKind(enum.Enum):
    VERTEX_BONE = "vertex bone index"
    VERTEX_NORMAL_W = "vertex normal_w"
    MESH_NODE = "mesh node index"
    DUMMY_ATTACH = "dummy attach bone index"
    DUMMY_PARENT = "dummy parent bone index"
    NODE_PARENT = "node parent index"
    NODE_FIRST_CHILD = "node first child index"
    NODE_PREVIOUS_SIBLING = "node previous sibling index"
    NODE_NEXT_SIBLING = "node next sibling index"
    SKELETON_NODE = "skeleton bone node index"


_REF_ATTRS: Dict[RefKind, str] = {
    RefKind.VERTEX_NORMAL_W: "normal_w",
    RefKind.MESH_NODE: "node_index",
    RefKind.DUMMY_ATTACH: "attach_bone_index",
    RefKind.DUMMY_PARENT: "parent_bone_index",
    RefKind.NODE_PARENT: "parent_index",
    RefKind.NODE_FIRST_CHILD: "first_child_index",
    RefKind.NODE_PREVIOUS_SIBLING: "previous_sibling_index",
    RefKind.NODE_NEXT_SIBLING: "next_sibling_index",
    RefKind.SKELETON_NODE: "node_index",
}

_NODE_LINK_KINDS = (
    RefKind.NODE_PARENT,
    RefKind.NODE_FIRST_CHILD,
    RefKind.NODE_PREVIOUS_SIBLING,
    RefKind.NODE_NEXT_SIBLING,
)


@dataclass(eq=False)
class NodeRef:
    """One stored node index together with where it lives.

    ``index`` is the value seen during classification, before any reordering.
    ``slot`` selects the bone slot for ``VERTEX_BONE`` references.
    """

    kind: RefKind
    owner: object
    index: int
    slot: int = 0

    def write(self, value: int) -> None:
        if self.kind is RefKind.VERTEX_BONE:
            self.owner.bone_indices[self.slot] = value
        else:
            setattr(self.owner, _REF_ATTRS[self.kind], value)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def _mark(node: Node, flag: NodeFlags, log: DiagnosticLog) -> bool:
    if not node.set_flag(flag):
        return False
    log.info(STAGE, 'Setting %s flag on node "%s"', flag.name, node.name)
    return True


def _in_range(index: int, count: int) -> bool:
    return 0 <= index < count


def classify_nodes(model: Model, log: DiagnosticLog) -> Tuple[bool, List[NodeRef]]:
    """Derive node role flags from every reference to each node.

    Returns the changed flag and the references the remapper must rewrite.
    Out-of-range references from meshes and dummies are reset to -1, and so
    are hierarchy links that are out of range or point at their own node.
    """
    changed = False
    refs: List[NodeRef] = []
    count = len(model.nodes)

    for mesh_index, mesh in enumerate(model.meshes):
        invalid = 0
        for vertex in mesh.vertices:
            if mesh.use_bone_weights:
                for slot, (bone_index, weight) in enumerate(zip(vertex.bone_indices, vertex.bone_weights)):
                    if bone_index == NO_INDEX:
                        continue
                    if not _in_range(bone_index, count):
                        vertex.bone_indices[slot] = NO_INDEX
                        invalid += 1
                        continue
                    if weight == 0:
                        continue
                    changed |= _mark(model.nodes[bone_index], NodeFlags.BONE, log)
                    refs.append(NodeRef(RefKind.VERTEX_BONE, vertex, bone_index, slot))
            elif vertex.normal_w != NO_INDEX:
                if not _in_range(vertex.normal_w, count):
                    vertex.normal_w = NO_INDEX
                    invalid += 1
                    continue
                changed |= _mark(model.nodes[vertex.normal_w], NodeFlags.BONE, log)
                refs.append(NodeRef(RefKind.VERTEX_NORMAL_W, vertex, vertex.normal_w))

        if invalid:
            changed = True
            log.warning(
                STAGE, "Reset %d invalid vertex bone references in %s to -1.",
                invalid, model.describe_mesh(mesh_index),
            )

        if mesh.node_index == NO_INDEX:
            continue
        if not _in_range(mesh.node_index, count):
            log.warning(
                STAGE, "Invalid node index %d in %s, setting to -1.",
                mesh.node_index, model.describe_mesh(mesh_index),
            )
            mesh.node_index = NO_INDEX
            changed = True
            continue
        changed |= _mark(model.nodes[mesh.node_index], NodeFlags.MESH, log)
        refs.append(NodeRef(RefKind.MESH_NODE, mesh, mesh.node_index))

    for dummy_index, dummy in enumerate(model.dummies):
        for kind, label in ((RefKind.DUMMY_ATTACH, "attached"), (RefKind.DUMMY_PARENT, "parent")):
            attr = _REF_ATTRS[kind]
            index = getattr(dummy, attr)
            if index == NO_INDEX:
                continue
            if not _in_range(index, count):
                log.warning(
                    STAGE,
                    "Invalid %s node index %d in dummy poly at index %d with refId %d, setting to -1.",
                    label, index, dummy_index, dummy.reference_id,
                )
                setattr(dummy, attr, NO_INDEX)
                changed = True
                continue
            changed |= _mark(model.nodes[index], NodeFlags.DUMMY_OWNER, log)
            refs.append(NodeRef(kind, dummy, index))

    for node_index, node in enumerate(model.nodes):
        for attr in _NODE_LINKS:
            link = getattr(node, attr)
            if link == NO_INDEX or (_in_range(link, count) and link != node_index):
                continue
            log.warning(STAGE, 'Invalid %s %d on node "%s", setting to -1.', attr.replace("_", " "), link, node.name)
            setattr(node, attr, NO_INDEX)
            changed = True
        for kind in _NODE_LINK_KINDS:
            refs.append(NodeRef(kind, node, getattr(node, _REF_ATTRS[kind])))
        if node.flags == NodeFlags.NONE and node.unlinked:
            changed |= _mark(node, NodeFlags.DISABLED, log)

    for _name, bones in model.skeletons.named():
        refs.extend(NodeRef(RefKind.SKELETON_NODE, bone, bone.node_index) for bone in bones)

    return changed, refs


# ---------------------------------------------------------------------------
# Reordering
# ---------------------------------------------------------------------------

def partition_nodes(nodes: List[Node]) -> List[Node]:
    """Enabled nodes first, then disabled ones, each group in original order."""
    return [node for node in nodes if not node.disabled] + [node for node in nodes if node.disabled]


def remap_node_indices(model: Model, refs: List[NodeRef], log: DiagnosticLog) -> bool:
    """Move disabled nodes to the end and rewrite every collected reference."""
    old_nodes = model.nodes
    new_nodes = partition_nodes(old_nodes)
    position = {id(node): index for index, node in enumerate(new_nodes)}
    mapping = [position[id(node)] for node in old_nodes]

    changed = False
    reported: Set[int] = set()
    for ref in refs:
        if ref.index == NO_INDEX:
            continue
        if not _in_range(ref.index, len(old_nodes)):
            log.warning(STAGE, "Invalid node index %d found in %s, mapping to -1.", ref.index, ref.kind.value)
            ref.write(NO_INDEX)
            changed = True
            continue

        new_index = mapping[ref.index]
        if new_index == ref.index:
            continue
        ref.write(new_index)
        changed = True
        if ref.index not in reported and not old_nodes[ref.index].disabled:
            reported.add(ref.index)
            log.info(STAGE, "Remapping node index %d to index %d.", ref.index, new_index)

    model.nodes = new_nodes
    return changed


# ---------------------------------------------------------------------------
# Root sibling chain
# ---------------------------------------------------------------------------

def _is_root_head(node: Node) -> bool:
    return (
        not node.disabled
        and node.parent_index == NO_INDEX
        and node.previous_sibling_index == NO_INDEX
    )


def _chain_end(nodes: List[Node], start: int, visited: Set[int], log: DiagnosticLog) -> Tuple[int, bool]:
    """Follow next-sibling links from *start*, marking every node seen.

    Previous-sibling links along the way are pointed back at the node that
    leads to them, and a link back into an already visited node is cut.
    Returns the last node of the chain and whether any link was rewritten.
    """
    changed = False
    current = start
    visited.add(current)
    while True:
        following = nodes[current].next_sibling_index
        if not _in_range(following, len(nodes)):
            return current, changed
        if following in visited:
            log.warning(
                STAGE, 'Cutting sibling cycle from node "%s" back to node "%s"',
                nodes[current].name, nodes[following].name,
            )
            nodes[current].next_sibling_index = NO_INDEX
            return current, True
        if nodes[following].previous_sibling_index != current:
            nodes[following].previous_sibling_index = current
            changed = True
        visited.add(following)
        current = following


def root_chain_heads(nodes: List[Node]) -> List[int]:
    return [index for index, node in enumerate(nodes) if _is_root_head(node)]


def repair_root_chain(model: Model, log: DiagnosticLog) -> bool:
    """Link every enabled parentless node into one chain of next-sibling links.

    The chain starts at the first root head. Other root chains follow in index
    order, then any root still unreachable, such as one inside a sibling
    cycle or one whose previous sibling does not link back to it.
    """
    nodes = model.nodes
    roots = [index for index, node in enumerate(nodes) if not node.disabled and node.parent_index == NO_INDEX]
    if not roots:
        return False

    changed = False
    heads = root_chain_heads(nodes)
    if not heads:
        head = nodes[roots[0]]
        log.warning(STAGE, 'No root chain head found, starting the chain at node "%s"', head.name)
        head.previous_sibling_index = NO_INDEX
        heads = [roots[0]]
        changed = True

    visited: Set[int] = set()
    tail, relinked = _chain_end(nodes, heads[0], visited, log)
    changed |= relinked
    for start in heads[1:] + [index for index in roots if index not in heads]:
        if start in visited:
            continue
        node = nodes[start]
        tail_node = nodes[tail]
        log.info(STAGE, 'Connecting node "%s" as next sibling of "%s"', node.name, tail_node.name)
        tail_node.next_sibling_index = start
        node.previous_sibling_index = tail
        tail, _relinked = _chain_end(nodes, start, visited, log)
        changed = True
    return changed


# ---------------------------------------------------------------------------
# Skeletons
# ---------------------------------------------------------------------------

def complete_skeleton(model: Model, bones: List[Bone], log: DiagnosticLog, name: str = "") -> bool:
    """Append a bone for every node the skeleton does not reference yet.

    Links of the new bones are translated into skeleton positions using the
    bones present at the time each one is added. Existing bones keep their
    positions, including bones without a node and repeated nodes, since other
    bones link to them by position; only a previous sibling's next link is
    updated.
    """
    if not bones:
        return False

    position: Dict[int, int] = {}
    for bone_index, bone in enumerate(bones):
        position.setdefault(bone.node_index, bone_index)

    def lookup(node_index: int) -> int:
        if node_index == NO_INDEX:
            return NO_INDEX
        return position.get(node_index, NO_INDEX)

    changed = False
    for node_index, node in enumerate(model.nodes):
        if node_index in position:
            continue
        changed = True
        log.info(STAGE, "Adding missing node %s to %s skeleton definition.", node.name, name or "the")
        bone = Bone(
            node_index=node_index,
            parent_index=lookup(node.parent_index),
            first_child_index=lookup(node.first_child_index),
            previous_sibling_index=lookup(node.previous_sibling_index),
            next_sibling_index=lookup(node.next_sibling_index),
        )
        if bone.previous_sibling_index != NO_INDEX:
            bones[bone.previous_sibling_index].next_sibling_index = len(bones)
        position[node_index] = len(bones)
        bones.append(bone)
    return changed


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------

def node_reference_errors(model: Model) -> List[str]:
    """List every node reference that is neither -1 nor a valid node index."""
    count = len(model.nodes)
    errors: List[str] = []

    def check(index: int, where: str) -> None:
        if index != NO_INDEX and not _in_range(index, count):
            errors.append(f"{where} references node {index}")

    for mesh_index, mesh in enumerate(model.meshes):
        check(mesh.node_index, f"mesh {mesh_index}")
        for vertex_index, vertex in enumerate(mesh.vertices):
            where = f"mesh {mesh_index} vertex {vertex_index}"
            if mesh.use_bone_weights:
                for bone_index, weight in zip(vertex.bone_indices, vertex.bone_weights):
                    if weight != 0:
                        check(bone_index, where)
            else:
                check(vertex.normal_w, where)
    for dummy_index, dummy in enumerate(model.dummies):
        check(dummy.attach_bone_index, f"dummy {dummy_index}")
        check(dummy.parent_bone_index, f"dummy {dummy_index}")
    for node_index, node in enumerate(model.nodes):
        for attr in _NODE_LINKS:
            check(getattr(node, attr), f"node {node_index} {attr}")
    for name, bones in model.skeletons.named():
        for bone_index, bone in enumerate(bones):
            check(bone.node_index, f"{name} skeleton bone {bone_index}")
    return errors


def first_disabled_index(nodes: List[Node]) -> Optional[int]:
    for index, node in enumerate(nodes):
        if node.disabled:
            return index
    return None


def _fix_nodes_round(model: Model, log: DiagnosticLog) -> bool:
    changed, refs = classify_nodes(model, log)
    changed |= remap_node_indices(model, refs, log)
    changed |= repair_root_chain(model, log)
    for name, bones in model.skeletons.named():
        changed |= complete_skeleton(model, bones, log, name)
    return changed


def fix_nodes(model: Model, log: DiagnosticLog) -> bool:
    """Classify, reorder and relink nodes, then complete both skeletons.

    Relinking the root chain can take the last link away from a node with no
    role, which only the next classification disables, so rounds repeat
    until one changes nothing. Every extra round disables another node.
    """
    changed = False
    for _round in range(len(model.nodes) + 2):
        if not _fix_nodes_round(model, log):
            break
        changed = True
    return changed
