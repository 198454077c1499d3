from __future__ import annotations

import io

import httpx
import numpy as np
import pytest
import torch
from PIL import Image

from conftest import WordTokenizer, fixed_output_model, label_config
from task_pipelines.errors import ConfigurationError, InputShapeError, UnsupportedOutputError
from task_pipelines.hub import FileCache
from task_pipelines.pipelines.background_removal import BackgroundRemovalPipeline
from task_pipelines.pipelines.depth_estimation import DepthEstimationPipeline
from task_pipelines.pipelines.image_feature_extraction import ImageFeatureExtractionPipeline
from task_pipelines.pipelines.image_segmentation import ImageSegmentationPipeline
from task_pipelines.pipelines.image_to_image import ImageToImagePipeline
from task_pipelines.pipelines.object_detection import ObjectDetectionPipeline
from task_pipelines.pipelines.zero_shot_image_classification import ZeroShotImageClassificationPipeline


class PixelProcessor:
    def __init__(self) -> None:
        self.received = []

    def __call__(self, images, return_tensors="pt"):
        self.received.append(images)
        return {"pixel_values": torch.zeros(len(images), 3, 4, 4)}


def _image(width: int = 20, height: int = 10) -> Image.Image:
    return Image.new("RGB", (width, height), color=(10, 20, 30))


def _detector():
    return fixed_output_model(
        label_config("cat", "dog"),
        logits=torch.tensor([[[8.0, 0.0, 0.0], [0.0, 0.0, 8.0]]]),
        pred_boxes=torch.tensor([[[0.5, 0.5, 0.2, 0.2], [0.5, 0.5, 1.0, 1.0]]]),
    )


def test_object_detection_pixel_boxes() -> None:
    detect = ObjectDetectionPipeline(_detector(), processor=PixelProcessor())
    (detection,) = detect(_image())
    assert detection["label"] == "cat"
    assert detection["score"] > 0.9
    assert detection["box"] == {"xmin": 8, "ymin": 4, "xmax": 12, "ymax": 6}


def test_object_detection_percentage_boxes() -> None:
    detect = ObjectDetectionPipeline(_detector(), processor=PixelProcessor())
    (detection,) = detect(_image(), percentage=True)
    assert detection["box"]["xmin"] == pytest.approx(0.4)
    assert detection["box"]["ymax"] == pytest.approx(0.6)


def test_object_detection_batch_ceiling() -> None:
    model = _detector()
    detect = ObjectDetectionPipeline(model, processor=PixelProcessor())
    with pytest.raises(InputShapeError):
        detect([_image(), _image()])
    assert model.received == []
    assert len(detect([_image()])) == 1


def test_zero_shot_sorts_softmax_scores() -> None:
    model = fixed_output_model(None, logits_per_image=torch.tensor([[1.0, 3.0]]))
    classify = ZeroShotImageClassificationPipeline(model, WordTokenizer(), PixelProcessor())
    ranked = classify(_image(), ["paris", "nice"], hypothesis_template="{}")
    assert [entry["label"] for entry in ranked] == ["nice", "paris"]
    assert sum(entry["score"] for entry in ranked) == pytest.approx(1.0)
    assert "input_ids" in model.received[0] and "pixel_values" in model.received[0]


def test_zero_shot_siglip_uses_sigmoid() -> None:
    from types import SimpleNamespace

    model = fixed_output_model(
        SimpleNamespace(model_type="siglip"), logits_per_image=torch.tensor([[1.0, 3.0]])
    )
    classify = ZeroShotImageClassificationPipeline(model, WordTokenizer(), PixelProcessor())
    ranked = classify([_image()], ["paris", "nice"], hypothesis_template="{}")
    scores = [entry["score"] for entry in ranked[0]]
    assert scores[0] == pytest.approx(torch.sigmoid(torch.tensor(3.0)).item())
    assert sum(scores) > 1.0


def test_segmentation_emits_one_mask_per_label() -> None:
    logits = torch.zeros(1, 2, 2, 2)
    logits[0, 1, :, 1] = 5.0
    model = fixed_output_model(label_config("sky", "tree"), logits=logits)
    segment = ImageSegmentationPipeline(model, processor=PixelProcessor())
    segments = segment(_image(8, 6))
    assert [entry["label"] for entry in segments] == ["sky", "tree"]
    for entry in segments:
        assert entry["score"] is None
        assert entry["mask"].mode == "L"
        assert entry["mask"].size == (8, 6)
    sky = np.asarray(segments[0]["mask"])
    assert sky[:, 0].min() == 255 and sky[:, -1].max() == 0


def test_segmentation_rejects_other_subtasks() -> None:
    segment = ImageSegmentationPipeline(fixed_output_model(None), processor=PixelProcessor())
    with pytest.raises(ConfigurationError):
        segment(_image(), subtask="panoptic")


def test_background_removal_adds_alpha() -> None:
    alphas = torch.zeros(1, 1, 2, 2)
    alphas[..., 0] = 1.0
    model = fixed_output_model(None, alphas=alphas)
    cutout = BackgroundRemovalPipeline(model, processor=PixelProcessor())(_image(4, 4))
    assert cutout.mode == "RGBA"
    assert cutout.size == (4, 4)
    alpha = np.asarray(cutout.getchannel("A"))
    assert alpha[0, 0] == 255 and alpha[0, -1] == 0


def test_depth_estimation_resizes_to_input() -> None:
    depth = torch.tensor([[[0.0, 1.0], [2.0, 3.0]]])
    model = fixed_output_model(None, predicted_depth=depth)
    (result,) = DepthEstimationPipeline(model, processor=PixelProcessor())([_image(20, 10)])
    assert result["predicted_depth"].shape == (10, 20)
    assert result["depth"].size == (20, 10)
    formatted = np.asarray(result["depth"])
    assert formatted.min() == 0 and formatted.max() == 255


def test_image_to_image_returns_pil_images() -> None:
    model = fixed_output_model(None, reconstruction=torch.full((1, 3, 8, 8), 0.5))
    upscaled = ImageToImagePipeline(model, processor=PixelProcessor())(_image())
    assert upscaled.size == (8, 8)
    assert upscaled.getpixel((0, 0)) == (128, 128, 128)


def test_image_feature_extraction_pooling() -> None:
    hidden = torch.ones(1, 5, 4)
    extract = ImageFeatureExtractionPipeline(
        fixed_output_model(None, last_hidden_state=hidden), processor=PixelProcessor()
    )
    assert extract(_image()).shape == (1, 5, 4)
    with pytest.raises(UnsupportedOutputError) as excinfo:
        extract(_image(), pool=True)
    assert excinfo.value.head == "pooler_output"

    pooled = ImageFeatureExtractionPipeline(
        fixed_output_model(None, last_hidden_state=hidden, pooler_output=torch.ones(1, 4)),
        processor=PixelProcessor(),
    )
    assert pooled(_image(), pool=True).shape == (1, 4)


def test_images_load_from_arrays_and_files(tmp_path) -> None:
    path = tmp_path / "pixel.png"
    _image(3, 2).save(path)
    processor = PixelProcessor()
    model = fixed_output_model(None, reconstruction=torch.zeros(2, 3, 2, 2))
    ImageToImagePipeline(model, processor=processor)([str(path), np.zeros((2, 3, 3), dtype=np.uint8)])
    loaded = processor.received[0]
    assert [image.size for image in loaded] == [(3, 2), (3, 2)]


def test_remote_image_download_reports_progress(tmp_path, monkeypatch) -> None:
    buffer = io.BytesIO()
    _image(6, 4).save(buffer, format="PNG")
    payload = buffer.getvalue()
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(str(request.url))
        return httpx.Response(200, content=payload)

    real_client = httpx.Client
    monkeypatch.setattr(
        httpx, "Client", lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs)
    )
    reports = []
    processor = PixelProcessor()
    detect = ObjectDetectionPipeline(
        _detector(),
        processor=processor,
        cache=FileCache(tmp_path),
        progress_callback=reports.append,
    )
    detect("https://example.com/images/cat.png")
    detect("https://example.com/images/cat.png")

    assert requests == ["https://example.com/images/cat.png"]
    assert reports[-1]["bytes_loaded"] == len(payload)
    assert reports[-1]["bytes_total"] == len(payload)
    assert reports[-1]["progress_percent"] == pytest.approx(100.0)
    assert [image.size for image in processor.received[0]] == [(6, 4)]
