"""
Tests for trimming, interpolation, boomerang and extend chaining
"""

import pytest

from comfyui_videoflow.errors import UserConfigError
from comfyui_videoflow.graph import is_reference

from conftest import ids_of_type

EXTEND_PROMPT = "a cat <extend:33> walks <extend:41> runs"


@pytest.fixture
def video_params():
    return {
        "prompt": "a cat",
        "video_model": "wan",
        "init_image": "cat.png",
        "init_image_creativity": 0,
    }


@pytest.fixture
def extend_params():
    return {
        "prompt": EXTEND_PROMPT,
        "seed": 0,
        "video_model": "ltx2",
        "video_extend_model": "ltx2",
        "init_image": "cat.png",
        "init_image_creativity": 0,
    }


def _windows(workflow):
    return [i for i in ids_of_type(workflow, "ImageFromBatch") if is_reference(workflow[i]["inputs"]["batch_index"])]


def _cuts(workflow):
    return [i for i in ids_of_type(workflow, "ImageFromBatch") if not is_reference(workflow[i]["inputs"]["batch_index"])]


class TestSinglePassFinish:
    """Post-processing after one image-to-video pass"""

    def test_plain_save(self, generator, video_params):
        workflow = generator.generate(video_params)["workflow"]
        save = workflow["9"]
        assert save["class_type"] == "SwarmSaveAnimationWS"
        assert save["inputs"]["fps"] == 16
        assert save["inputs"]["format"] == "h264-mp4"

    def test_trim(self, generator, video_params):
        video_params["trim_video_end_frames"] = 4
        workflow = generator.generate(video_params)["workflow"]
        (trim,) = ids_of_type(workflow, "SwarmTrimFrames")
        assert workflow[trim]["inputs"]["trim_start"] == 0
        assert workflow[trim]["inputs"]["trim_end"] == 4
        assert workflow["9"]["inputs"]["images"] == [trim, 0]

    def test_no_trim_by_default(self, generator, video_params):
        workflow = generator.generate(video_params)["workflow"]
        assert not ids_of_type(workflow, "SwarmTrimFrames")

    def test_interpolation_multiplies_fps(self, generator, video_params):
        video_params.update({"video_frame_interpolation_method": "FILM", "video_frame_interpolation_multiplier": 2})
        workflow = generator.generate(video_params)["workflow"]
        (film,) = ids_of_type(workflow, "FILM VFI")
        assert workflow[film]["inputs"]["multiplier"] == 2
        assert workflow["9"]["inputs"]["fps"] == 32

    def test_multiplier_one_is_noop(self, generator, video_params):
        video_params.update({"video_frame_interpolation_method": "RIFE", "video_frame_interpolation_multiplier": 1})
        workflow = generator.generate(video_params)["workflow"]
        assert not ids_of_type(workflow, "RIFE VFI")

    def test_interpolation_intermediate_save(self, generator, video_params):
        video_params.update(
            {
                "video_frame_interpolation_method": "RIFE",
                "video_frame_interpolation_multiplier": 2,
                "output_intermediate_images": True,
            }
        )
        workflow = generator.generate(video_params)["workflow"]
        saves = ids_of_type(workflow, "SwarmSaveAnimationWS")
        assert len(saves) == 2
        assert workflow[saves[0]]["inputs"]["fps"] == 16

    def test_boomerang_after_interpolation(self, generator, video_params):
        video_params.update(
            {"video_boomerang": True, "video_frame_interpolation_method": "RIFE", "video_frame_interpolation_multiplier": 2}
        )
        workflow = generator.generate(video_params)["workflow"]
        (rife,) = ids_of_type(workflow, "RIFE VFI")
        (boomerang,) = ids_of_type(workflow, "SwarmVideoBoomerang")
        assert workflow[boomerang]["inputs"]["images"] == [rife, 0]
        assert workflow["9"]["inputs"]["images"] == [boomerang, 0]


class TestExtend:
    """<extend:FRAMES> chaining"""

    def test_segment_structure(self, plain_generator, extend_params):
        result = plain_generator.generate(extend_params)
        workflow = result["workflow"]
        assert result["validation"]["valid"], result["validation"]["errors"]
        assert len(ids_of_type(workflow, "SwarmKSampler")) == 3
        assert len(_windows(workflow)) == 2
        assert len(ids_of_type(workflow, "ImageBatch")) == 2

    def test_window_takes_trailing_overlap(self, plain_generator, extend_params):
        workflow = plain_generator.generate(extend_params)["workflow"]
        for window in _windows(workflow):
            inputs = workflow[window]["inputs"]
            assert inputs["length"] == 9
            offset = workflow[inputs["batch_index"][0]]
            assert offset["class_type"] == "SwarmIntAdd"
            assert offset["inputs"]["b"] == -9
            assert workflow[offset["inputs"]["a"][0]]["class_type"] == "SwarmCountFrames"

    def test_appended_frames(self, plain_generator, extend_params):
        workflow = plain_generator.generate(extend_params)["workflow"]
        cuts = _cuts(workflow)
        assert [workflow[c]["inputs"]["length"] for c in cuts] == [33 - 9, 41 - 9]
        assert all(workflow[c]["inputs"]["batch_index"] == 9 for c in cuts)
        first, second = ids_of_type(workflow, "ImageBatch")
        assert workflow[first]["inputs"]["image2"] == [cuts[0], 0]
        assert workflow[second]["inputs"]["image1"] == [first, 0]
        assert workflow["9"]["inputs"]["images"] == [second, 0]

    def test_segment_seeds(self, plain_generator, extend_params):
        workflow = plain_generator.generate(extend_params)["workflow"]
        seeds = [workflow[i]["inputs"]["noise_seed"] for i in ids_of_type(workflow, "SwarmKSampler")]
        assert seeds == [42, 601, 602]

    def test_main_output_saved_to_dynamic_id(self, plain_generator, extend_params):
        workflow = plain_generator.generate(extend_params)["workflow"]
        saves = ids_of_type(workflow, "SwarmSaveAnimationWS")
        assert len(saves) == 2
        assert saves[-1] == "9"
        assert int(saves[0]) >= 50000

    def test_segment_prompts(self, plain_generator, extend_params):
        workflow = plain_generator.generate(extend_params)["workflow"]
        texts = [workflow[i]["inputs"]["text"] for i in ids_of_type(workflow, "CLIPTextEncode")]
        assert "walks" in texts
        assert "runs" in texts
        assert workflow["6"]["inputs"]["text"] == "a cat"

    def test_interpolation_only_on_assembled_video(self, plain_generator, extend_params):
        extend_params.update({"video_frame_interpolation_method": "RIFE", "video_frame_interpolation_multiplier": 2})
        workflow = plain_generator.generate(extend_params)["workflow"]
        (rife,) = ids_of_type(workflow, "RIFE VFI")
        assert workflow["9"]["inputs"]["images"] == [rife, 0]
        assert workflow["9"]["inputs"]["fps"] == 48
        assert workflow["9"]["inputs"]["format"] == "mp4"

    def test_missing_extend_model(self, plain_generator, extend_params):
        del extend_params["video_extend_model"]
        with pytest.raises(UserConfigError) as exc:
            plain_generator.generate(extend_params)
        assert "Video Extend Model" in exc.value.message

    def test_segment_not_longer_than_overlap(self, plain_generator, extend_params):
        extend_params["prompt"] = "a cat <extend:9> sits"
        with pytest.raises(UserConfigError) as exc:
            plain_generator.generate(extend_params)
        assert exc.value.details == {"frames": 9, "overlap": 9}

    def test_two_stage_segments(self, generator, extend_params, upscale_params):
        upscale_params.update({k: v for k, v in extend_params.items() if k != "seed"})
        result = generator.generate(upscale_params)
        workflow = result["workflow"]
        assert result["validation"]["valid"], result["validation"]["errors"]
        assert len(ids_of_type(workflow, "SwarmKSampler")) == 6
        assert len(ids_of_type(workflow, "LTXVLatentUpsampler")) == 3
        shrinks = ids_of_type(workflow, "ImageScaleBy")
        assert len(shrinks) == 2
        assert workflow[shrinks[0]]["inputs"]["scale_by"] == pytest.approx(1 / 1.5)

    def test_zero_segment_cfg_is_kept(self, plain_generator, extend_params):
        workflow = plain_generator.generate(extend_params, {"extend-0": {"cfg_scale": 0}})["workflow"]
        _, first, second = ids_of_type(workflow, "SwarmKSampler")
        assert workflow[first]["inputs"]["cfg"] == 0
        assert workflow[second]["inputs"]["cfg"] != 0

    def test_non_ltxv2_segments_skip_two_stage(self, generator, extend_params, upscale_params):
        upscale_params.update({k: v for k, v in extend_params.items() if k != "seed"})
        upscale_params["video_extend_model"] = "wan"
        result = generator.generate(upscale_params)
        workflow = result["workflow"]
        assert result["validation"]["valid"], result["validation"]["errors"]
        assert len(ids_of_type(workflow, "LTXVLatentUpsampler")) == 1
        assert len(ids_of_type(workflow, "LTXVCropGuides")) == 1
        assert not ids_of_type(workflow, "ImageScaleBy")
        assert len(ids_of_type(workflow, "WanImageToVideo")) == 2
        assert len(ids_of_type(workflow, "SwarmKSampler")) == 4

    def test_two_stage_segment_guided_by_full_resolution_window(self, generator, extend_params, upscale_params):
        upscale_params.update({k: v for k, v in extend_params.items() if k != "seed"})
        workflow = generator.generate(upscale_params)["workflow"]
        window = _windows(workflow)[0]
        shrink = ids_of_type(workflow, "ImageScaleBy")[0]
        assert workflow[shrink]["inputs"]["image"] == [window, 0]
        guides = [
            workflow[i]["inputs"]["image"]
            for i in ids_of_type(workflow, "LTXVPreprocess")
            if workflow[i]["inputs"]["image"] == [window, 0]
        ]
        assert guides
