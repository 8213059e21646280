"""
Pytest fixtures and utilities for workflow construction tests
"""

import json
import logging
import sys
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from comfyui_videoflow.context import GenerationContext  # noqa: E402
from comfyui_videoflow.generator import VideoWorkflowGenerator  # noqa: E402
from comfyui_videoflow.mcp_utils import JSONFormatter, clear_correlation_id, set_correlation_id  # noqa: E402
from comfyui_videoflow.model_registry import ModelRegistry  # noqa: E402
from comfyui_videoflow.params import ParameterSet  # noqa: E402


# Image-to-video on LTXV2 through the two-stage latent upscale path
LTXV2_UPSCALE_PARAMS = {
    "prompt": "a lighthouse in a storm",
    "negative_prompt": "blurry",
    "seed": 100,
    "video_model": "ltx2",
    "init_image": "start.png",
    "init_image_creativity": 0,
    "width": 1280,
    "height": 704,
    "video_steps": 20,
    "refiner_upscale": 1.5,
    "refiner_upscale_method": "latentmodel-foo",
    "refiner_control": 0.4,
}


@pytest.fixture
def models():
    """Model registry with the built-in models only"""
    return ModelRegistry(registry_file="")


@pytest.fixture
def generator(models):
    """Generator with the latent upscale extension active"""
    return VideoWorkflowGenerator(models=models)


@pytest.fixture
def plain_generator(models):
    """Generator running the unpatched default pipeline"""
    return VideoWorkflowGenerator(models=models, activate_extensions=False)


@pytest.fixture
def make_ctx(models):
    """Factory for a fresh GenerationContext"""

    def _make(values=None, sections=None):
        return GenerationContext(ParameterSet(values or {}, sections), models)

    return _make


@pytest.fixture
def upscale_params():
    """Copy of the two-stage LTXV2 request"""
    return dict(LTXV2_UPSCALE_PARAMS)


# =============================================================================
# Structured Logging Fixtures
# =============================================================================


class CapturingLogHandler(logging.Handler):
    """Handler that captures log records for testing."""

    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)

    def get_json_logs(self):
        """Return list of parsed JSON log entries."""
        formatter = JSONFormatter()
        return [json.loads(formatter.format(record)) for record in self.records]

    def messages(self, level=None):
        return [r.getMessage() for r in self.records if level is None or r.levelno == level]

    def clear(self):
        self.records = []


@pytest.fixture
def capturing_logger():
    """Fixture providing a capturing log handler."""
    logger = logging.getLogger("comfyui-videoflow")

    handler = CapturingLogHandler()
    handler.setLevel(logging.DEBUG)
    logger.addHandler(handler)

    original_level = logger.level
    logger.setLevel(logging.DEBUG)

    yield handler

    logger.removeHandler(handler)
    logger.setLevel(original_level)
    handler.clear()


@pytest.fixture
def correlation_context():
    """Fixture providing correlation ID context management."""

    def _set_cid(cid):
        set_correlation_id(cid)
        return cid

    yield _set_cid

    clear_correlation_id()


# =============================================================================
# Graph helpers
# =============================================================================


def ids_of_type(workflow, class_type):
    """Node ids of one class, in construction order."""
    return [node_id for node_id, node in workflow.items() if node["class_type"] == class_type]


def position(workflow, node_id):
    return list(workflow).index(node_id)


def between(workflow, class_type, start_id, end_id):
    """Ids of class_type created strictly after start_id and before end_id."""
    start, end = position(workflow, start_id), position(workflow, end_id)
    return [node_id for node_id in ids_of_type(workflow, class_type) if start < position(workflow, node_id) < end]
