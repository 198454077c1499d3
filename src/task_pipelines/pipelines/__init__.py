"""Task handlers and the closed dispatch table used by :func:`build_pipeline`."""

from __future__ import annotations

import importlib
import logging
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple, Type

from ..config import RuntimeConfig
from ..errors import ConfigurationError
from .base import Pipeline

LOGGER = logging.getLogger(__name__)


class TaskKind(str, Enum):
    TEXT_CLASSIFICATION = "text-classification"
    FILL_MASK = "fill-mask"
    QUESTION_ANSWERING = "question-answering"
    FEATURE_EXTRACTION = "feature-extraction"
    IMAGE_FEATURE_EXTRACTION = "image-feature-extraction"
    TEXT_GENERATION = "text-generation"
    TEXT_TO_AUDIO = "text-to-audio"
    AUDIO_CLASSIFICATION = "audio-classification"
    ZERO_SHOT_IMAGE_CLASSIFICATION = "zero-shot-image-classification"
    OBJECT_DETECTION = "object-detection"
    IMAGE_SEGMENTATION = "image-segmentation"
    BACKGROUND_REMOVAL = "background-removal"
    DEPTH_ESTIMATION = "depth-estimation"
    IMAGE_TO_IMAGE = "image-to-image"
    DOCUMENT_QUESTION_ANSWERING = "document-question-answering"


TASK_ALIASES: Dict[str, TaskKind] = {
    "sentiment-analysis": TaskKind.TEXT_CLASSIFICATION,
    "embeddings": TaskKind.FEATURE_EXTRACTION,
    "text-to-speech": TaskKind.TEXT_TO_AUDIO,
}

SUPPORTED_TASKS: Dict[TaskKind, Tuple[str, str]] = {
    TaskKind.TEXT_CLASSIFICATION: ("text_classification", "TextClassificationPipeline"),
    TaskKind.FILL_MASK: ("fill_mask", "FillMaskPipeline"),
    TaskKind.QUESTION_ANSWERING: ("question_answering", "QuestionAnsweringPipeline"),
    TaskKind.FEATURE_EXTRACTION: ("feature_extraction", "FeatureExtractionPipeline"),
    TaskKind.IMAGE_FEATURE_EXTRACTION: ("image_feature_extraction", "ImageFeatureExtractionPipeline"),
    TaskKind.TEXT_GENERATION: ("text_generation", "TextGenerationPipeline"),
    TaskKind.TEXT_TO_AUDIO: ("text_to_audio", "TextToAudioPipeline"),
    TaskKind.AUDIO_CLASSIFICATION: ("audio_classification", "AudioClassificationPipeline"),
    TaskKind.ZERO_SHOT_IMAGE_CLASSIFICATION: (
        "zero_shot_image_classification",
        "ZeroShotImageClassificationPipeline",
    ),
    TaskKind.OBJECT_DETECTION: ("object_detection", "ObjectDetectionPipeline"),
    TaskKind.IMAGE_SEGMENTATION: ("image_segmentation", "ImageSegmentationPipeline"),
    TaskKind.BACKGROUND_REMOVAL: ("background_removal", "BackgroundRemovalPipeline"),
    TaskKind.DEPTH_ESTIMATION: ("depth_estimation", "DepthEstimationPipeline"),
    TaskKind.IMAGE_TO_IMAGE: ("image_to_image", "ImageToImagePipeline"),
    TaskKind.DOCUMENT_QUESTION_ANSWERING: (
        "document_question_answering",
        "DocumentQuestionAnsweringPipeline",
    ),
}

_GENERATIVE = {TaskKind.TEXT_GENERATION, TaskKind.DOCUMENT_QUESTION_ANSWERING}


def resolve_task(task: Any) -> TaskKind:
    if isinstance(task, TaskKind):
        return task
    name = str(task).strip().lower()
    if name in TASK_ALIASES:
        return TASK_ALIASES[name]
    try:
        return TaskKind(name)
    except ValueError:
        supported = ", ".join(sorted(kind.value for kind in TaskKind))
        raise ConfigurationError(f"Unsupported task {task!r}; expected one of: {supported}.") from None


def pipeline_class(task: Any) -> Type[Pipeline]:
    module_name, class_name = SUPPORTED_TASKS[resolve_task(task)]
    module = importlib.import_module(f"{__name__}.{module_name}")
    return getattr(module, class_name)


def build_pipeline(
    task: Any,
    model: Any,
    tokenizer: Any = None,
    processor: Any = None,
    *,
    config: Optional[RuntimeConfig] = None,
    **kwargs: Any,
) -> Pipeline:
    """Instantiate the handler for ``task`` around already-loaded components.

    ``config`` supplies the default generation and denoising settings and the
    artifact cache; explicit ``kwargs`` win over it.
    """

    kind = resolve_task(task)
    runtime = config or RuntimeConfig()
    options: Dict[str, Any] = {"cache": runtime.file_cache()}
    if kind in _GENERATIVE:
        options["generation_config"] = runtime.generation
    elif kind is TaskKind.TEXT_TO_AUDIO:
        options["denoise_config"] = runtime.denoise
    options.update(kwargs)
    handler = pipeline_class(kind)
    LOGGER.info("pipeline_built | task=%s | model=%s", kind.value, type(model).__name__)
    return handler(model, tokenizer, processor, **options)


def __dir__() -> Iterable[str]:
    return sorted(__all__)


__all__ = [
    "Pipeline",
    "SUPPORTED_TASKS",
    "TASK_ALIASES",
    "TaskKind",
    "build_pipeline",
    "pipeline_class",
    "resolve_task",
]
