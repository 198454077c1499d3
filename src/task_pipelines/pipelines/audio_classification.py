"""Audio classification over raw waveforms, files, or URLs."""

from __future__ import annotations

from typing import Any, Dict, List

from ..media import prepare_audios
from ..postprocess import softmax, top_k as rank_top_k
from .base import Pipeline


class AudioClassificationPipeline(Pipeline):
    task = "audio-classification"

    def _call(self, audio: Any, top_k: int = 5) -> Any:
        batch = self._normalize(audio)
        sampling_rate = self._processor_sampling_rate()
        waveforms = prepare_audios(batch.items, sampling_rate, **self._fetch_options())

        results: List[List[Dict[str, Any]]] = []
        for waveform in waveforms:
            inputs = self._process(waveform, sampling_rate=sampling_rate)
            logits = self._invoke(inputs)["logits"][0]
            results.append(
                [
                    {"label": self._label(index), "score": score}
                    for score, index in rank_top_k(softmax(logits), top_k)
                ]
            )
        return batch.unwrap(results)
