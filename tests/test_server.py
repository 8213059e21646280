"""
Tests for the MCP tool functions
"""

import json

from comfyui_videoflow import server

from conftest import LTXV2_UPSCALE_PARAMS


class TestBuildTool:
    """build_video_workflow"""

    def test_two_stage(self):
        result = server.build_video_workflow(dict(LTXV2_UPSCALE_PARAMS))
        assert result["two_stage"] is True
        assert result["validation"]["valid"]

    def test_sections(self):
        params = {"model": "sdxl", "refiner_method": "PostApply", "refiner_control": 0.5}
        result = server.build_video_workflow(params, sections={"refiner": {"steps": 6}})
        assert result["workflow"]["23"]["inputs"]["steps"] == 6

    def test_params_must_be_object(self):
        result = server.build_video_workflow("nope")
        assert result["isError"] is True
        assert result["code"] == "VALIDATION_ERROR"

    def test_user_config_error(self):
        result = server.build_video_workflow({"prompt": "a <extend:33> b", "video_model": "ltx2", "init_image": "a.png"})
        assert result["isError"] is True
        assert result["code"] == "USER_CONFIG_ERROR"
        assert result["suggestion"]


class TestInspectionTools:
    """validate, explain and discovery tools"""

    def test_validate_valid(self):
        workflow = server.build_video_workflow({"model": "sdxl"})["workflow"]
        assert server.validate_workflow(workflow)["valid"] is True

    def test_validate_invalid_json(self):
        result = server.validate_workflow("{bad")
        assert result["valid"] is False

    def test_explain(self):
        workflow = server.build_video_workflow({"model": "sdxl"})["workflow"]
        assert "## Node Chain" in server.explain_workflow(workflow)["explanation"]

    def test_explain_empty(self):
        result = server.explain_workflow({})
        assert result["isError"] is True

    def test_list_pipeline_stages(self):
        result = server.list_pipeline_stages()
        assert result["extensions"] == {"ltxv2-latent-upscale": True}
        assert result["stages"][4]["stage"] == "SkipRefinerStage(refiner)"

    def test_list_models(self):
        names = {m["name"] for m in server.list_models()["models"]}
        assert "ltx-2-19b-dev.safetensors" in names


class TestResources:
    """JSON resources"""

    def test_families(self):
        families = json.loads(server.resource_families())
        assert families["lightricks-ltx-video-2"]["latent_upscaler"] == "ltxv2"

    def test_schemas(self):
        assert "refiner_upscale_method" in json.loads(server.resource_build_params_schema())["properties"]
        assert json.loads(server.resource_workflow_schema())["type"] == "object"
