from __future__ import annotations

import pytest
import torch
import torch.nn.functional as F

from conftest import WordTokenizer, label_config
from task_pipelines.errors import ConfigurationError, InputShapeError, MissingTokenError
from task_pipelines.pipelines.feature_extraction import FeatureExtractionPipeline
from task_pipelines.pipelines.fill_mask import FillMaskPipeline
from task_pipelines.pipelines.question_answering import QuestionAnsweringPipeline
from task_pipelines.pipelines.text_classification import TextClassificationPipeline
from task_pipelines.pipelines.text_generation import TextGenerationPipeline

VOCAB = len(WordTokenizer().vocab)


class FirstWordClassifier:
    """Scores two labels from the first word after ``[CLS]``: ``nice`` is positive."""

    def __init__(self, problem_type=None) -> None:
        self.config = label_config("NEGATIVE", "POSITIVE", problem_type=problem_type)
        self.nice = WordTokenizer().ids["nice"]

    def __call__(self, input_ids, attention_mask):
        positive = (input_ids[:, 1] == self.nice).float()
        return {"logits": torch.stack([2.0 * (1 - positive), 2.0 * positive], dim=-1)}


class MaskFiller:
    def __init__(self, favourite: int, runner_up: int) -> None:
        self.favourite = favourite
        self.runner_up = runner_up

    def __call__(self, input_ids, attention_mask):
        logits = torch.zeros(*input_ids.shape, VOCAB)
        logits[..., self.favourite] = 5.0
        logits[..., self.runner_up] = 3.0
        return {"logits": logits}


class SpanFinder:
    """Puts start and end mass on every occurrence of one token id."""

    def __init__(self, target: int) -> None:
        self.target = target

    def __call__(self, input_ids, attention_mask, **kwargs):
        hits = (input_ids == self.target).float() * 10.0
        return {"start_logits": hits, "end_logits": hits.clone()}


class OneHotEncoder:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self, input_ids, attention_mask):
        self.calls += 1
        return {"last_hidden_state": F.one_hot(input_ids, 16).float() * 2.0 - 1.0}


# --------------------------------------------------------------------- #
# text-classification
# --------------------------------------------------------------------- #


def test_classification_top1_flattens_batches(tokenizer) -> None:
    classify = TextClassificationPipeline(FirstWordClassifier(), tokenizer)
    results = classify(["nice world", "hello world"])
    assert [result["label"] for result in results] == ["POSITIVE", "NEGATIVE"]
    assert all(isinstance(result, dict) for result in results)


def test_classification_top1_single_input_is_a_list(tokenizer) -> None:
    classify = TextClassificationPipeline(FirstWordClassifier(), tokenizer)
    result = classify("nice world")
    assert isinstance(result, list) and len(result) == 1
    assert result[0]["label"] == "POSITIVE"


def test_classification_top_k_rankings(tokenizer) -> None:
    classify = TextClassificationPipeline(FirstWordClassifier(), tokenizer)
    single = classify("nice world", top_k=None)
    assert [entry["label"] for entry in single] == ["POSITIVE", "NEGATIVE"]
    assert sum(entry["score"] for entry in single) == pytest.approx(1.0)

    batched = classify(["nice", "hello"], top_k=2)
    assert len(batched) == 2 and all(len(ranking) == 2 for ranking in batched)


def test_multi_label_uses_sigmoid(tokenizer) -> None:
    classify = TextClassificationPipeline(
        FirstWordClassifier(problem_type="multi_label_classification"), tokenizer
    )
    ranking = classify("nice", top_k=None)
    assert ranking[0]["score"] == pytest.approx(torch.sigmoid(torch.tensor(2.0)).item())
    assert ranking[1]["score"] == pytest.approx(0.5)


def test_classification_requires_tokenizer() -> None:
    with pytest.raises(ConfigurationError, match="tokenizer"):
        TextClassificationPipeline(FirstWordClassifier())("nice")


# --------------------------------------------------------------------- #
# fill-mask
# --------------------------------------------------------------------- #


def test_fill_mask_ranks_candidates(tokenizer) -> None:
    fill = FillMaskPipeline(MaskFiller(tokenizer.ids["nice"], tokenizer.ids["the"]), tokenizer)
    candidates = fill("paris is [MASK]", top_k=2)
    assert [candidate["token_str"] for candidate in candidates] == ["nice", "the"]
    assert candidates[0]["sequence"] == "paris is nice"
    assert candidates[0]["token"] == tokenizer.ids["nice"]
    assert candidates[0]["score"] > candidates[1]["score"]

    batched = fill(["paris is [MASK]"], top_k=1)
    assert len(batched) == 1 and len(batched[0]) == 1


def test_fill_mask_without_mask_token_raises(tokenizer) -> None:
    fill = FillMaskPipeline(MaskFiller(5, 6), tokenizer)
    with pytest.raises(MissingTokenError) as excinfo:
        fill("paris is nice")
    assert excinfo.value.token == "[MASK]"


# --------------------------------------------------------------------- #
# question-answering
# --------------------------------------------------------------------- #


def test_question_answering_single_pair(tokenizer) -> None:
    qa = QuestionAnsweringPipeline(SpanFinder(tokenizer.ids["nice"]), tokenizer)
    answer = qa("where is paris", "paris is nice")
    assert answer["answer"] == "nice"
    assert 0.0 < answer["score"] <= 1.0


def test_question_answering_ignores_question_tokens(tokenizer) -> None:
    qa = QuestionAnsweringPipeline(SpanFinder(tokenizer.ids["paris"]), tokenizer)
    answer = qa("where is paris", "the world")
    assert "paris" not in answer["answer"]


def test_question_answering_batched_top_k_nests(tokenizer) -> None:
    qa = QuestionAnsweringPipeline(SpanFinder(tokenizer.ids["nice"]), tokenizer)
    results = qa(["where is paris", "where is the world"], "paris is nice", top_k=2)
    assert len(results) == 2
    assert all(isinstance(candidates, list) and len(candidates) == 2 for candidates in results)
    assert results[0][0]["answer"] == "nice"

    flat = qa(["where is paris", "where is the world"], "paris is nice")
    assert [answer["answer"] for answer in flat] == ["nice", "nice"]


def test_question_answering_requires_separator(tokenizer) -> None:
    tokenizer.sep_token_id = 99
    qa = QuestionAnsweringPipeline(SpanFinder(tokenizer.ids["nice"]), tokenizer)
    with pytest.raises(MissingTokenError):
        qa("where is paris", "paris is nice")


def test_question_answering_length_mismatch(tokenizer) -> None:
    qa = QuestionAnsweringPipeline(SpanFinder(5), tokenizer)
    with pytest.raises(InputShapeError):
        qa(["where", "is", "paris"], ["nice", "world"])


# --------------------------------------------------------------------- #
# feature-extraction
# --------------------------------------------------------------------- #


def test_feature_extraction_keeps_batch_axis(tokenizer) -> None:
    extract = FeatureExtractionPipeline(OneHotEncoder(), tokenizer)
    hidden = extract("hello world")
    assert hidden.shape == (1, 4, 16)
    pooled = extract(["hello world", "paris"], pooling="mean", normalize=True)
    assert pooled.shape == (2, 16)
    assert torch.allclose(pooled.norm(dim=-1), torch.ones(2))


def test_feature_extraction_quantizes_after_pooling(tokenizer) -> None:
    extract = FeatureExtractionPipeline(OneHotEncoder(), tokenizer)
    packed = extract("hello", pooling="cls", quantize=True, precision="ubinary")
    assert packed.dtype == torch.uint8
    # [CLS] is id 1, so only the second dimension is positive.
    assert packed.tolist() == [[0b01000000, 0]]


def test_feature_extraction_rejects_unknown_options_before_invoking(tokenizer) -> None:
    model = OneHotEncoder()
    extract = FeatureExtractionPipeline(model, tokenizer)
    with pytest.raises(ConfigurationError):
        extract("hello", pooling="max")
    with pytest.raises(ConfigurationError):
        extract("hello", quantize=True, precision="int4")
    assert model.calls == 0


# --------------------------------------------------------------------- #
# text-generation
# --------------------------------------------------------------------- #


def test_generation_returns_full_text_by_default(counting_lm, tokenizer) -> None:
    generate = TextGenerationPipeline(counting_lm, tokenizer)
    assert generate("where") == [{"generated_text": "where the"}]


def test_generation_left_pads_and_trims_prompts(counting_lm, tokenizer) -> None:
    generate = TextGenerationPipeline(counting_lm, tokenizer)
    results = generate(["the", "is nice"], return_full_text=False)
    assert [result[0]["generated_text"].strip() for result in results] == ["", "where the"]
    assert tokenizer.calls[-1]["padding_side"] == "left"
    assert tokenizer.padding_side == "right"


def test_generation_applies_call_overrides(counting_lm, tokenizer) -> None:
    generate = TextGenerationPipeline(counting_lm, tokenizer)
    assert generate("a", max_new_tokens=2) == [{"generated_text": "a b c"}]
    with pytest.raises(ConfigurationError):
        generate("a", max_length=2)


def test_generation_appends_assistant_turn_to_chats(counting_lm, tokenizer) -> None:
    generate = TextGenerationPipeline(counting_lm, tokenizer)
    chat = [{"role": "user", "content": "is nice"}]
    (result,) = generate(chat)
    conversation = result["generated_text"]
    assert conversation[0] == chat[0]
    assert conversation[1]["role"] == "assistant"
    assert conversation[1]["content"].strip() == "where the"
    assert tokenizer.calls[-1]["add_special_tokens"] is False


def test_generation_without_eos_rejected_before_invocation(counting_lm, tokenizer) -> None:
    tokenizer.eos_token_id = None
    generate = TextGenerationPipeline(counting_lm, tokenizer)
    with pytest.raises(ConfigurationError):
        generate("a", max_new_tokens=5)
    assert counting_lm.calls == 0
