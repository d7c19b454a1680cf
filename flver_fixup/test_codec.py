#!/usr/bin/env python3
import json
import unittest

from flver_fixup.codec import JSON_FORMAT, JsonModelCodec, to_payload
from flver_fixup.errors import DecodeError
from flver_fixup.model import (
    Bone,
    Dummy,
    FaceSet,
    FaceSetFlags,
    GXList,
    Material,
    Mesh,
    Model,
    Node,
    NodeFlags,
    Vertex,
)


def _build_test_model() -> Model:
    model = Model(
        nodes=[
            Node(name="root", flags=NodeFlags.BONE | NodeFlags.MESH, first_child_index=1),
            Node(name="child", parent_index=0, translation=(0.0, 1.5, 0.0)),
        ],
        meshes=[
            Mesh(
                material_index=0,
                node_index=0,
                use_bone_weights=True,
                vertices=[
                    Vertex(
                        position=(1.0, 2.0, 3.0),
                        normal=(0.0, 1.0, 0.0),
                        bone_indices=[1, 0, 0, 0],
                        bone_weights=[1.0, 0.0, 0.0, 0.0],
                        uvs=[(0.5, 0.25, 0.0)],
                    )
                ],
                face_sets=[FaceSet(flags=FaceSetFlags.MOTION_BLUR | FaceSetFlags.LOD_LEVEL_2, indices=[0, 0, 0])],
            )
        ],
        dummies=[Dummy(reference_id=200, attach_bone_index=1)],
        materials=[Material(name="body", mtd="p[arsn].mtd", gx_index=0)],
        gx_lists=[GXList(b"\x00GX\xff")],
    )
    model.skeletons.all_skeletons = [Bone(node_index=0, first_child_index=1), Bone(node_index=1, parent_index=0)]
    return model


class JsonCodecTests(unittest.TestCase):
    def test_encoded_document_decodes_to_equal_model(self) -> None:
        codec = JsonModelCodec()
        model = _build_test_model()
        decoded = codec.decode(codec.encode(model))

        self.assertEqual(decoded, model)
        self.assertIsInstance(decoded.nodes[0].flags, NodeFlags)
        self.assertIsInstance(decoded.meshes[0].face_sets[0].flags, FaceSetFlags)
        self.assertEqual(decoded.meshes[0].vertices[0].uvs, [(0.5, 0.25, 0.0)])

    def test_payload_is_plain_json(self) -> None:
        payload = to_payload(_build_test_model())
        self.assertEqual(payload["gx_lists"], [{"data": "AEdY/w=="}])
        self.assertEqual(payload["meshes"][0]["face_sets"][0]["flags"], 0x82000000)
        self.assertEqual(payload["nodes"][0]["flags"], 0xC)
        json.dumps(payload)

    def test_sniff(self) -> None:
        codec = JsonModelCodec()
        self.assertTrue(codec.sniff(codec.encode(Model())))
        self.assertFalse(codec.sniff(b"FLVER\x00L\x00"))
        self.assertFalse(codec.sniff(b'{"format": "something-else"}'))

    def test_malformed_input_raises_decode_error(self) -> None:
        codec = JsonModelCodec()
        for data in (b"{not json", b"\xff\xfe", b"[]", b'{"format": "other"}'):
            with self.subTest(data=data):
                with self.assertRaises(DecodeError):
                    codec.decode(data)

    def test_strict_mode_rejects_unknown_and_missing_keys(self) -> None:
        codec = JsonModelCodec()
        document = json.loads(codec.encode(_build_test_model()))
        document["nodes"][0]["bounding_box"] = [0, 0, 0]
        with self.assertRaises(DecodeError):
            codec.decode(json.dumps(document).encode())

        document = json.loads(codec.encode(_build_test_model()))
        del document["dummies"][0]["position"]
        with self.assertRaises(DecodeError):
            codec.decode(json.dumps(document).encode())

    def test_permissive_mode_defaults_missing_keys(self) -> None:
        document = {
            "format": JSON_FORMAT,
            "version": 0,
            "nodes": [{"name": "root", "unk_flags": 3}],
            "meshes": [{"vertices": [{"position": [1, 2, 3]}]}],
        }
        model = JsonModelCodec(permissive=True).decode(json.dumps(document).encode())

        self.assertEqual(model.nodes, [Node(name="root")])
        self.assertEqual(model.meshes[0].vertices[0].position, (1.0, 2.0, 3.0))
        self.assertEqual(model.meshes[0].vertices[0].bone_indices, [0, 0, 0, 0])
        self.assertEqual(model.materials, [])

    def test_bad_vector_raises_decode_error(self) -> None:
        document = {"format": JSON_FORMAT, "version": 1, "dummies": [{"position": [1, 2]}]}
        with self.assertRaises(DecodeError):
            JsonModelCodec(permissive=True).decode(json.dumps(document).encode())

    def test_bad_base64_raises_decode_error(self) -> None:
        document = {"format": JSON_FORMAT, "version": 1, "gx_lists": [{"data": "***"}]}
        with self.assertRaises(DecodeError):
            JsonModelCodec(permissive=True).decode(json.dumps(document).encode())

    def test_scalar_fields_are_type_checked(self) -> None:
        bad_documents = [
            {"nodes": [{"name": "root", "parent_index": "x"}]},
            {"nodes": [{"name": 7}]},
            {"meshes": [{"use_bone_weights": 1}]},
            {"meshes": [{"material_index": True}]},
            {"meshes": [{"vertices": [{"bone_indices": [0, 1.7, 0, 0]}]}]},
            {"meshes": [{"vertices": [{"position": [0, "1", 0]}]}]},
            {"meshes": [{"face_sets": [{"flags": 2.5}]}]},
        ]
        codec = JsonModelCodec(permissive=True)
        for body in bad_documents:
            document = dict(body, format=JSON_FORMAT, version=1)
            with self.subTest(body=body):
                with self.assertRaises(DecodeError):
                    codec.decode(json.dumps(document).encode())

    def test_strict_mode_rejects_string_index(self) -> None:
        document = json.loads(JsonModelCodec().encode(Model(nodes=[Node(name="root")])))
        document["nodes"][0]["parent_index"] = "x"
        with self.assertRaisesRegex(DecodeError, "parent_index"):
            JsonModelCodec().decode(json.dumps(document).encode())


if __name__ == "__main__":
    unittest.main()
