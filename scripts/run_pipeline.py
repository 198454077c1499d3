# ruff: noqa: E402
"""Run one task pipeline over command-line inputs and print JSON results."""

from __future__ import annotations

# Ensure local src/ is on sys.path when running from the repo without installation
import os as _os
import sys as _sys

_REPO_ROOT = _os.path.abspath(_os.path.join(_os.path.dirname(__file__), ".."))
_SRC_PATH = _os.path.join(_REPO_ROOT, "src")
if _SRC_PATH not in _sys.path and _os.path.isdir(_SRC_PATH):
    _sys.path.insert(0, _SRC_PATH)

import argparse
import json
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np
import torch
import yaml
from PIL import Image

from task_pipelines.config import load_runtime_config
from task_pipelines.hub import tqdm_progress
from task_pipelines.media import RawAudio
from task_pipelines.pipelines import TaskKind, build_pipeline, resolve_task
from task_pipelines.utils import configure_logging, seed_everything

TOKENIZER_TASKS = {
    TaskKind.TEXT_CLASSIFICATION,
    TaskKind.FILL_MASK,
    TaskKind.QUESTION_ANSWERING,
    TaskKind.FEATURE_EXTRACTION,
    TaskKind.TEXT_GENERATION,
    TaskKind.TEXT_TO_AUDIO,
    TaskKind.ZERO_SHOT_IMAGE_CLASSIFICATION,
    TaskKind.DOCUMENT_QUESTION_ANSWERING,
}
PROCESSOR_TASKS = set(TaskKind) - {
    TaskKind.TEXT_CLASSIFICATION,
    TaskKind.FILL_MASK,
    TaskKind.QUESTION_ANSWERING,
    TaskKind.FEATURE_EXTRACTION,
    TaskKind.TEXT_GENERATION,
}


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a task pipeline on a Hugging Face checkpoint.")
    parser.add_argument("task", help="Task name, e.g. text-classification or object-detection")
    parser.add_argument("model", help="Model id or local checkpoint directory")
    parser.add_argument("inputs", nargs="+", help="Inputs: texts, image/audio paths, or URLs")
    parser.add_argument("--config", type=Path, default=None, help="Runtime YAML configuration")
    parser.add_argument("--seed", type=int, default=None, help="Seed for python, numpy and torch")
    parser.add_argument("--log-level", default=None, help="Overrides the configured log level")
    parser.add_argument(
        "--option",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Extra call argument; VALUE is parsed as YAML (repeatable)",
    )
    parser.add_argument("--batch", action="store_true", help="Pass a single input as a one-item list")
    parser.add_argument("--output", type=Path, default=None, help="Write JSON here instead of stdout")
    return parser.parse_args(argv)


def _parse_options(pairs: Sequence[str]) -> Dict[str, Any]:
    options: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Options must look like KEY=VALUE, received {pair!r}.")
        options[key.strip().replace("-", "_")] = yaml.safe_load(value)
    return options


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, torch.Tensor):
        return value.detach().cpu().tolist()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, RawAudio):
        return {"sampling_rate": value.sampling_rate, "duration": round(value.duration, 4)}
    if isinstance(value, Image.Image):
        return {"mode": value.mode, "size": list(value.size)}
    if isinstance(value, dict):
        return {str(key): _to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(item) for item in value]
    return value


def load_components(model_id: str, kind: TaskKind) -> Tuple[Any, Any, Any]:
    """Load model, tokenizer and processor with ``transformers`` (the ``hf`` extra)."""

    import transformers

    hf_config = transformers.AutoConfig.from_pretrained(model_id)
    architectures = getattr(hf_config, "architectures", None) or []
    if not architectures or not hasattr(transformers, architectures[0]):
        raise SystemExit(f"Cannot resolve a model class for {model_id!r} (architectures={architectures}).")
    model = getattr(transformers, architectures[0]).from_pretrained(model_id)
    model.eval()
    tokenizer = transformers.AutoTokenizer.from_pretrained(model_id) if kind in TOKENIZER_TASKS else None
    processor = transformers.AutoProcessor.from_pretrained(model_id) if kind in PROCESSOR_TASKS else None
    return model, tokenizer, processor


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    runtime = load_runtime_config(args.config)
    logger = configure_logging(args.log_level or runtime.log_level)
    seed_everything(args.seed)
    if args.seed is not None:
        logger.info("seed_configured | seed=%d", args.seed)

    kind = resolve_task(args.task)
    options = _parse_options(args.option)
    model, tokenizer, processor = load_components(args.model, kind)
    pipeline = build_pipeline(
        kind,
        model,
        tokenizer,
        processor,
        config=runtime,
        progress_callback=tqdm_progress("download"),
    )
    inputs: Any = args.inputs if (args.batch or len(args.inputs) > 1) else args.inputs[0]
    try:
        result = pipeline(inputs, **options)
    finally:
        pipeline.dispose()

    payload = json.dumps(_to_jsonable(result), indent=2)
    if args.output is not None:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(payload + "\n", encoding="utf-8")
        logger.info("results_written | path=%s", args.output)
    else:
        print(payload)


if __name__ == "__main__":
    main()
