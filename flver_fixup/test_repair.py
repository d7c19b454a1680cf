#!/usr/bin/env python3
import copy
import unittest

from flver_fixup.errors import RepairError
from flver_fixup.geometry import CANONICAL_FACESET_FLAGS, WindingVote
from flver_fixup.model import (
    Bone,
    Dummy,
    FaceSet,
    GXList,
    Material,
    Mesh,
    Model,
    Node,
    NodeFlags,
    Vertex,
)
from flver_fixup.repair import MeshSelection, RepairOptions, repair_model


def _triangle_mesh(material_index: int, node_index: int = -1, uv_channels: int = 2) -> Mesh:
    positions = [(0.0, 0.0, 0.0), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0)]
    vertices = [
        Vertex(
            position=p,
            normal=(0.0, 0.0, 1.0),
            normal_w=0,
            uvs=[(0.1, 0.2, 0.0), (0.3, 0.4, 0.0)][:uv_channels],
        )
        for p in positions
    ]
    # Winds against the +z normals, so the normal vote flips it.
    return Mesh(
        material_index=material_index,
        node_index=node_index,
        vertices=vertices,
        face_sets=[FaceSet(indices=[0, 1, 2, 0, 1, 2])],
    )


def _build_test_model() -> Model:
    return Model(
        nodes=[
            Node(name="root", first_child_index=2),
            Node(name="unused"),
            Node(name="spine", parent_index=0),
            Node(name="weapon"),
        ],
        meshes=[
            _triangle_mesh(0, node_index=2),
            Mesh(material_index=1),
            _triangle_mesh(2, uv_channels=1),
        ],
        dummies=[Dummy(reference_id=100, attach_bone_index=3, parent_bone_index=0)],
        materials=[
            Material(name="body", gx_index=0),
            Material(name="empty", gx_index=0),
            Material(name="body", gx_index=1),
        ],
        gx_lists=[GXList(b"gx"), GXList(b"gx")],
    )


def _all_options(**overrides) -> RepairOptions:
    options = RepairOptions(
        fix_face_winding=MeshSelection.every(),
        fix_lods=MeshSelection.every(),
        fix_decals=MeshSelection.every(),
        remove_empty_meshes=True,
        fix_nodes=True,
    )
    for key, value in overrides.items():
        setattr(options, key, value)
    return options


class RepairModelTests(unittest.TestCase):
    def test_nothing_requested(self) -> None:
        model = _build_test_model()
        result = repair_model(model, RepairOptions())
        self.assertFalse(result.changed)
        self.assertEqual(result.passes, {})
        self.assertEqual(model, _build_test_model())

    def test_full_pipeline(self) -> None:
        model = _build_test_model()
        model.skeletons.base_skeleton = [Bone(node_index=0, first_child_index=1), Bone(node_index=2, parent_index=0)]
        result = repair_model(model, _all_options())

        self.assertTrue(result.changed)
        self.assertEqual(
            result.passes,
            {"nodes": True, "face_winding": True, "lods": True, "decals": True, "meshes": True},
        )
        self.assertEqual([node.name for node in model.nodes], ["root", "spine", "weapon", "unused"])
        self.assertEqual(model.nodes[3].flags, NodeFlags.DISABLED)
        self.assertEqual(model.nodes[0].first_child_index, 1)
        self.assertEqual(model.nodes[0].next_sibling_index, 2)
        self.assertEqual(model.nodes[2].previous_sibling_index, 0)
        self.assertEqual(model.dummies[0].attach_bone_index, 2)
        self.assertEqual(len(model.skeletons.base_skeleton), 4)

        self.assertEqual(len(model.meshes), 2)
        self.assertEqual(model.meshes[0].node_index, 1)
        for mesh in model.meshes:
            self.assertEqual([fs.flags for fs in mesh.face_sets], list(CANONICAL_FACESET_FLAGS))
            self.assertEqual(mesh.face_sets[0].indices, [0, 2, 1, 0, 2, 1])
        self.assertEqual(model.meshes[0].vertices[0].uvs[1], (0.0, 0.0, 0.0))
        self.assertEqual(model.meshes[1].vertices[0].uvs, [(0.1, 0.2, 0.0)])
        self.assertEqual(model.materials, [Material(name="body", gx_index=0)])
        self.assertEqual(model.gx_lists, [GXList(b"gx")])

    def test_full_pipeline_is_idempotent(self) -> None:
        model = _build_test_model()
        repair_model(model, _all_options())
        snapshot = copy.deepcopy(model)

        result = repair_model(model, _all_options())
        self.assertFalse(result.changed)
        self.assertEqual(model, snapshot)

    def test_each_pass_is_idempotent(self) -> None:
        single_pass_options = [
            RepairOptions(fix_nodes=True),
            RepairOptions(fix_face_winding=MeshSelection.every()),
            RepairOptions(fix_lods=MeshSelection.every()),
            RepairOptions(fix_decals=MeshSelection.every()),
            RepairOptions(remove_empty_meshes=True),
        ]
        for options in single_pass_options:
            with self.subTest(options=options):
                model = _build_test_model()
                repair_model(model, options)
                snapshot = copy.deepcopy(model)
                self.assertFalse(repair_model(model, options).changed)
                self.assertEqual(model, snapshot)

    def test_unconditional_vote_is_not_idempotent(self) -> None:
        options = RepairOptions(fix_face_winding=MeshSelection.every(), winding_vote=WindingVote.UNCONDITIONAL)
        model = _build_test_model()
        self.assertTrue(repair_model(model, options).changed)
        self.assertTrue(repair_model(model, options).changed)

    def test_selection_limits_meshes(self) -> None:
        model = _build_test_model()
        result = repair_model(model, RepairOptions(fix_lods=MeshSelection.of([2, 7])))

        self.assertTrue(result.changed)
        self.assertEqual(len(model.meshes[0].face_sets), 1)
        self.assertEqual(len(model.meshes[2].face_sets), 6)
        self.assertEqual(result.warning_count, 1)
        self.assertIn("Index 7 is out of range, cannot fix lods.", [d.message for d in result.diagnostics])

    def test_keep_empty_meshes_option(self) -> None:
        model = _build_test_model()
        repair_model(model, RepairOptions(remove_empty_meshes=True, drop_empty_meshes=False))
        self.assertEqual(len(model.meshes), 3)
        self.assertEqual([mesh.material_index for mesh in model.meshes], [0, 1, 0])

    def test_invalid_material_aborts(self) -> None:
        model = _build_test_model()
        model.meshes[1].material_index = 9
        with self.assertRaises(RepairError):
            repair_model(model, RepairOptions(remove_empty_meshes=True))

    def test_diagnostics_carry_stage(self) -> None:
        model = _build_test_model()
        result = repair_model(model, RepairOptions(fix_nodes=True), asset="c1000.flver")
        stages = {event.stage for event in result.diagnostics}
        self.assertEqual(stages, {"nodes"})

    def test_any_enabled(self) -> None:
        self.assertFalse(RepairOptions().any_enabled())
        self.assertTrue(RepairOptions(fix_decals=MeshSelection.every()).any_enabled())
        self.assertTrue(RepairOptions(fix_nodes=True).any_enabled())


if __name__ == "__main__":
    unittest.main()
