"""
Tests for the workflow generator (composition root)
"""

import pytest

from comfyui_videoflow.errors import UserConfigError
from comfyui_videoflow.generator import VideoWorkflowGenerator

from conftest import ids_of_type

PARAM_SETS = {
    "text_to_image": {"model": "sdxl", "prompt": "a fox"},
    "image_refine": {"model": "sdxl", "prompt": "a fox", "refiner_method": "PostApply", "refiner_control": 0.3},
    "ltxv2_single_pass": {"video_model": "ltx2", "init_image": "a.png", "init_image_creativity": 0},
    "wan_from_sdxl": {"model": "sdxl", "video_model": "wan", "prompt": "a fox"},
    "hunyuan_image_res": {
        "video_model": "hunyuan",
        "init_image": "a.png",
        "video_resolution": "Image Aspect, Model Res",
        "width": 1600,
        "height": 900,
    },
    "ltxv2_two_stage_v2v": {
        "video_model": "ltx2",
        "model": "ltx2",
        "video2video_creativity": 0.5,
        "refiner_upscale": 2,
        "refiner_upscale_method": "latentmodel-x2.safetensors",
        "refiner_control": 0.6,
    },
}


class TestGenerate:
    """End-to-end builds"""

    @pytest.mark.parametrize("name", sorted(PARAM_SETS))
    def test_builds_valid_workflow(self, generator, name):
        result = generator.generate(PARAM_SETS[name])
        assert result["validation"]["valid"], result["validation"]["errors"]
        assert result["node_count"] == len(result["workflow"])
        assert result["validation"]["output_nodes"]

    def test_text_to_image(self, generator):
        workflow = generator.generate(PARAM_SETS["text_to_image"])["workflow"]
        assert list(workflow)[:6] == ["4", "6", "7", "5", "10", "8"]
        assert workflow["9"]["class_type"] == "SwarmSaveImageWS"
        assert workflow["9"]["inputs"]["images"] == ["8", 0]

    def test_init_image_creativity(self, generator):
        workflow = generator.generate({"model": "sdxl", "init_image": "a.png", "init_image_creativity": 0.25})["workflow"]
        assert workflow["10"]["inputs"]["start_at_step"] == 15
        encode = workflow[workflow["10"]["inputs"]["latent_image"][0]]
        assert encode["class_type"] == "VAEEncode"
        assert encode["inputs"]["pixels"] == ["15", 0]

    def test_video_after_image_model(self, generator):
        workflow = generator.generate(PARAM_SETS["wan_from_sdxl"])["workflow"]
        (i2v,) = ids_of_type(workflow, "WanImageToVideo")
        assert workflow[i2v]["inputs"]["start_image"] == ["8", 0]
        assert (workflow[i2v]["inputs"]["width"], workflow[i2v]["inputs"]["height"]) == (832, 480)
        assert "30" not in workflow

    def test_hunyuan_precision(self, generator):
        workflow = generator.generate(PARAM_SETS["hunyuan_image_res"])["workflow"]
        (i2v,) = ids_of_type(workflow, "HunyuanImageToVideo")
        width, height = workflow[i2v]["inputs"]["width"], workflow[i2v]["inputs"]["height"]
        assert width % 16 == 0 and height % 16 == 0

    def test_image_policy_scales_without_ltxv2_upscaler(self, generator):
        params = {
            "video_model": "hunyuan15",
            "init_image": "a.png",
            "init_image_creativity": 0,
            "video_resolution": "Image",
            "width": 1280,
            "height": 704,
            "refiner_upscale": 1.5,
            "refiner_upscale_method": "latentmodel-foo",
            "refiner_control": 0.4,
        }
        workflow = generator.generate(params)["workflow"]
        (i2v,) = ids_of_type(workflow, "HunyuanVideo15ImageToVideo")
        assert (workflow[i2v]["inputs"]["width"], workflow[i2v]["inputs"]["height"]) == (1920, 1056)

    def test_image_policy_leaves_scale_to_ltxv2_upscaler(self, generator):
        params = dict(PARAM_SETS["ltxv2_single_pass"], video_resolution="Image", width=1280, height=704,
                      refiner_upscale=1.5, refiner_upscale_method="latentmodel-foo", refiner_control=0)
        workflow = generator.generate(params)["workflow"]
        (i2v,) = ids_of_type(workflow, "LTXVImgToVideo")
        assert (workflow[i2v]["inputs"]["width"], workflow[i2v]["inputs"]["height"]) == (1280, 704)

    def test_video_cfg_and_steps(self, generator):
        params = dict(PARAM_SETS["ltxv2_single_pass"], video_cfg=4.5, video_steps=12)
        workflow = generator.generate(params)["workflow"]
        (sampler,) = ids_of_type(workflow, "SwarmKSampler")
        assert workflow[sampler]["inputs"]["cfg"] == 4.5
        assert workflow[sampler]["inputs"]["steps"] == 12

    def test_video_section_overrides(self, generator):
        sections = {"video": {"cfg_scale": 2.0, "steps": 6, "sampler": "res_multistep"}}
        workflow = generator.generate(PARAM_SETS["ltxv2_single_pass"], sections)["workflow"]
        (sampler,) = ids_of_type(workflow, "SwarmKSampler")
        assert workflow[sampler]["inputs"]["cfg"] == 2.0
        assert workflow[sampler]["inputs"]["steps"] == 6
        assert workflow[sampler]["inputs"]["sampler_name"] == "res_multistep"

    def test_video_swap_model(self, generator):
        params = dict(PARAM_SETS["ltxv2_single_pass"], video_swap_model="ltx2-distilled", video_swap_percent=0.25)
        workflow = generator.generate(params)["workflow"]
        first, second = ids_of_type(workflow, "SwarmKSampler")
        assert workflow[first]["inputs"]["end_at_step"] == 5
        assert workflow[first]["inputs"]["return_with_leftover_noise"] == "enable"
        assert workflow[second]["inputs"]["start_at_step"] == 5
        assert workflow[second]["inputs"]["latent_image"] == [first, 0]
        assert workflow[second]["inputs"]["add_noise"] == "disable"

    def test_no_model(self, generator):
        with pytest.raises(UserConfigError, match="No model selected"):
            generator.generate({"prompt": "x"})

    def test_without_validation(self, generator):
        result = generator.generate(PARAM_SETS["text_to_image"], validate=False)
        assert "validation" not in result

    def test_reports_stages(self, generator):
        stages = generator.generate(PARAM_SETS["text_to_image"])["stages"]
        assert [s["priority"] for s in stages] == [-10, -9, -8, -5, -4, 0, 10, 11, 12]


class TestPatchIsolation:
    """Requests off the two-stage path never see its nodes"""

    UPSCALE_TYPES = {"LTXVCropGuides", "LTXVLatentUpsampler", "LTXVImgToVideoInplace", "LatentUpscaleModelLoader"}

    @pytest.mark.parametrize("name", ["text_to_image", "image_refine", "ltxv2_single_pass", "wan_from_sdxl"])
    def test_no_upscale_nodes(self, generator, name):
        result = generator.generate(PARAM_SETS[name])
        assert result["two_stage"] is False
        assert not self.UPSCALE_TYPES & {n["class_type"] for n in result["workflow"].values()}

    @pytest.mark.parametrize("name", sorted(set(PARAM_SETS) - {"ltxv2_two_stage_v2v"}))
    def test_patched_matches_plain_off_path(self, generator, plain_generator, name):
        assert generator.generate(PARAM_SETS[name])["workflow"] == plain_generator.generate(PARAM_SETS[name])["workflow"]

    def test_two_stage_video_to_video(self, generator):
        result = generator.generate(PARAM_SETS["ltxv2_two_stage_v2v"])
        assert result["two_stage"] is True
        workflow = result["workflow"]
        assert len(ids_of_type(workflow, "LTXVLatentUpsampler")) == 1
        base, video_base, refine = (workflow[i]["inputs"] for i in ids_of_type(workflow, "SwarmKSampler"))
        assert video_base["start_at_step"] == 10
        assert refine["start_at_step"] == 8
        assert "30" not in workflow

    def test_generators_are_independent(self, models):
        patched = VideoWorkflowGenerator(models=models)
        plain = VideoWorkflowGenerator(models=models, activate_extensions=False)
        assert patched.extension.activated
        assert not plain.extension.activated
        assert plain.registry.get(11).name == "image_to_video"
