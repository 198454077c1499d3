from __future__ import annotations

import pytest
import torch

from conftest import label_config
from task_pipelines import build_pipeline
from task_pipelines.config import RuntimeConfig
from task_pipelines.errors import ConfigurationError
from task_pipelines.pipelines import SUPPORTED_TASKS, TaskKind, pipeline_class, resolve_task
from task_pipelines.pipelines.base import Pipeline
from task_pipelines.pipelines.text_classification import TextClassificationPipeline
from task_pipelines.pipelines.text_generation import TextGenerationPipeline
from task_pipelines.pipelines.text_to_audio import TextToAudioPipeline


def test_every_task_kind_resolves_to_a_pipeline() -> None:
    assert set(SUPPORTED_TASKS) == set(TaskKind)
    for kind in TaskKind:
        handler = pipeline_class(kind)
        assert issubclass(handler, Pipeline)
        assert handler.task == kind.value


def test_aliases_and_unknown_tasks() -> None:
    assert resolve_task("sentiment-analysis") is TaskKind.TEXT_CLASSIFICATION
    assert resolve_task("Object-Detection") is TaskKind.OBJECT_DETECTION
    with pytest.raises(ConfigurationError, match="translation"):
        resolve_task("translation")


def test_build_pipeline_applies_runtime_defaults(tmp_path, counting_lm, tokenizer) -> None:
    runtime = RuntimeConfig(cache_dir=tmp_path, generation={"max_new_tokens": 1})
    generator = build_pipeline("text-generation", counting_lm, tokenizer, config=runtime)
    assert isinstance(generator, TextGenerationPipeline)
    assert generator.cache.root == tmp_path
    assert generator("a") == [{"generated_text": "a b"}]

    speaker = build_pipeline("text-to-speech", counting_lm, tokenizer, config=runtime)
    assert isinstance(speaker, TextToAudioPipeline)
    assert speaker.denoise_config is runtime.denoise


def test_build_pipeline_keyword_overrides(tmp_path, tokenizer) -> None:
    class Classifier:
        config = label_config("NEGATIVE", "POSITIVE")

        def __call__(self, input_ids, attention_mask):
            return {"logits": torch.zeros(input_ids.size(0), 2)}

    classify = build_pipeline(
        "sentiment-analysis", Classifier(), tokenizer, config=RuntimeConfig(cache_dir=None), cache=None
    )
    assert isinstance(classify, TextClassificationPipeline)
    assert classify.cache is None
    assert classify("hello")[0]["label"] == "NEGATIVE"
