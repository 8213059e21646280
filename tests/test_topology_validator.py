"""
Tests for topology_validator module
"""

import json

from comfyui_videoflow import topology_validator


def _node(class_type, **inputs):
    return {"class_type": class_type, "inputs": inputs}


class TestReferences:
    """Reference checks"""

    def test_valid_chain(self):
        workflow = {
            "4": _node("CheckpointLoaderSimple", ckpt_name="m"),
            "15": _node("LoadImage", image="a.png"),
            "8": _node("VAEEncode", pixels=["15", 0], vae=["4", 2]),
        }
        assert topology_validator.validate_references(workflow) == []

    def test_forward_reference(self):
        workflow = {
            "8": _node("VAEDecode", samples=["10", 0]),
            "10": _node("SwarmKSampler"),
        }
        (error,) = topology_validator.validate_references(workflow)
        assert "before it is created" in error

    def test_dangling_reference(self):
        workflow = {"8": _node("VAEDecode", samples=["99", 0])}
        (error,) = topology_validator.validate_references(workflow)
        assert "non-existent node 99" in error

    def test_slot_out_of_range(self):
        workflow = {
            "4": _node("CheckpointLoaderSimple", ckpt_name="m"),
            "8": _node("VAEDecode", vae=["4", 3]),
        }
        (error,) = topology_validator.validate_references(workflow)
        assert "slot 3" in error

    def test_unknown_type_slots_unchecked(self):
        workflow = {
            "1": _node("SomeCustomNode"),
            "2": _node("VAEDecode", samples=["1", 7]),
        }
        assert topology_validator.validate_references(workflow) == []

    def test_missing_class_type(self):
        (error,) = topology_validator.validate_references({"1": {"inputs": {}}})
        assert "missing class_type" in error


class TestValidateTopology:
    """Report shape"""

    def test_json_string_input(self):
        workflow = {"9": _node("SwarmSaveImageWS", images="x")}
        result = topology_validator.validate_topology(json.dumps(workflow))
        assert result["valid"]
        assert result["output_nodes"] == ["9"]
        assert result["node_count"] == 1

    def test_invalid_json(self):
        result = topology_validator.validate_topology("{nope")
        assert not result["valid"]
        assert result["errors"][0].startswith("Invalid JSON")

    def test_non_object(self):
        result = topology_validator.validate_topology([1, 2])
        assert not result["valid"]

    def test_warns_without_save(self):
        result = topology_validator.validate_topology({"15": _node("LoadImage", image="a")})
        assert result["valid"]
        assert any("no save node" in w for w in result["warnings"])

    def test_warns_on_unknown_types(self):
        result = topology_validator.validate_topology({"1": _node("Mystery"), "9": _node("SwarmSaveImageWS")})
        assert any("Mystery" in w for w in result["warnings"])

    def test_generated_workflows_use_known_types(self, generator, upscale_params):
        workflow = generator.generate(upscale_params)["workflow"]
        result = topology_validator.validate_topology(workflow)
        assert result["valid"]
        assert result["warnings"] == []
