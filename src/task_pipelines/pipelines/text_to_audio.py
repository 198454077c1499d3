"""Speech synthesis over three model families.

* Latent speech models expose ``sessions`` (text encoder, latent denoiser,
  voice decoder) and run through :class:`LatentSpeechSynthesizer`.
* Spectrogram models are paired with a processor and expose
  ``generate_speech``; a vocoder turns their spectrograms into audio.
* Waveform models return ``waveform`` directly from a forward pass.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

import numpy as np
import torch

from ..errors import ConfigurationError, InputShapeError
from ..inference.config import DenoiseConfig
from ..inference.denoising import LatentSpeechSynthesizer
from ..interfaces import ModelInvocation, Processor, Tokenizer
from ..media import RawAudio, load_speaker_embeddings
from ..utils.random import make_generator
from .base import Pipeline

logger = logging.getLogger(__name__)


class TextToAudioPipeline(Pipeline):
    task = "text-to-audio"

    def __init__(
        self,
        model: ModelInvocation,
        tokenizer: Optional[Tokenizer] = None,
        processor: Optional[Processor] = None,
        *,
        vocoder: Any = None,
        vocoder_loader: Optional[Callable[[], Any]] = None,
        denoise_config: Optional[DenoiseConfig] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(model, tokenizer, processor, **kwargs)
        self.vocoder = vocoder
        self.vocoder_loader = vocoder_loader
        self.denoise_config = denoise_config or DenoiseConfig()

    @property
    def is_latent_model(self) -> bool:
        return getattr(self.model, "sessions", None) is not None

    def _ensure_vocoder(self) -> Any:
        """Load the vocoder on first use; later calls return the same object."""

        if self.vocoder is None:
            if self.vocoder_loader is None:
                raise ConfigurationError(
                    "Spectrogram speech models need a vocoder or a vocoder_loader."
                )
            logger.info("vocoder_loading | model=%s", type(self.model).__name__)
            self.vocoder = self.vocoder_loader()
        return self.vocoder

    def _call(
        self,
        texts: Any,
        speaker_embeddings: Any = None,
        *,
        generator: Optional[torch.Generator] = None,
        **denoise_kwargs: Any,
    ) -> Any:
        batch = self._normalize(texts)
        if self.is_latent_model:
            results = self._call_latent(batch.items, speaker_embeddings, generator, denoise_kwargs)
        elif self.processor is not None:
            results = self._call_spectrogram(batch.items, speaker_embeddings)
        else:
            results = self._call_waveform(batch.items)
        return batch.unwrap(results)

    # --------------------------------------------------------------------- #
    # Model families
    # --------------------------------------------------------------------- #

    def _call_latent(
        self,
        texts: List[str],
        speaker_embeddings: Any,
        generator: Optional[torch.Generator],
        denoise_kwargs: dict,
    ) -> List[RawAudio]:
        if speaker_embeddings is None:
            raise InputShapeError("Latent speech models require speaker embeddings as the voice style.")
        config = self.denoise_config.with_overrides(denoise_kwargs)
        synthesizer = LatentSpeechSynthesizer.from_model(self.model)
        inputs = self._tokenize(texts)
        style = load_speaker_embeddings(speaker_embeddings, **self._fetch_options()).to(self.device)
        batch_size = inputs["input_ids"].size(0)
        if style.size(0) == 1 and batch_size > 1:
            style = style.expand(batch_size, *style.shape[1:])
        elif style.size(0) != batch_size:
            raise InputShapeError(
                f"Got {style.size(0)} speaker embeddings for {batch_size} texts."
            )
        if generator is None:
            generator = make_generator(config.seed)

        outputs = synthesizer.generate_speech(
            inputs["input_ids"],
            inputs["attention_mask"],
            style,
            config=config,
            generator=generator,
        )
        sampling_rate = synthesizer.sampling_rate
        waveforms = outputs["waveform"].detach().cpu().float()
        durations = outputs["durations"].detach().cpu().float().reshape(-1)
        results: List[RawAudio] = []
        for waveform, duration in zip(waveforms, durations):
            length = int(round(float(duration) * sampling_rate))
            samples = waveform.reshape(-1)[:length].numpy()
            results.append(RawAudio(audio=samples, sampling_rate=sampling_rate))
        return results

    def _call_spectrogram(self, texts: List[str], speaker_embeddings: Any) -> List[RawAudio]:
        if speaker_embeddings is None:
            raise InputShapeError("Spectrogram speech models require speaker embeddings.")
        vocoder = self._ensure_vocoder()
        embeddings = load_speaker_embeddings(speaker_embeddings, **self._fetch_options()).to(self.device)
        sampling_rate = self._processor_sampling_rate()
        results: List[RawAudio] = []
        for text in texts:
            inputs = self._process_text(text)
            with torch.inference_mode():
                waveform = self.model.generate_speech(
                    inputs["input_ids"], embeddings, vocoder=vocoder
                )
            samples = waveform.detach().cpu().float().reshape(-1).numpy()
            results.append(RawAudio(audio=samples, sampling_rate=sampling_rate))
        return results

    def _call_waveform(self, texts: List[str]) -> List[RawAudio]:
        sampling_rate = getattr(self.config, "sampling_rate", None)
        if not sampling_rate:
            raise ConfigurationError("Waveform speech models must declare config.sampling_rate.")
        inputs = self._tokenize(texts)
        waveforms = self._invoke(inputs)["waveform"].detach().cpu().float()
        if waveforms.dim() == 1:
            waveforms = waveforms.unsqueeze(0)
        return [
            RawAudio(audio=np.ascontiguousarray(row.reshape(-1).numpy()), sampling_rate=int(sampling_rate))
            for row in waveforms
        ]

    def _process_text(self, text: str) -> dict:
        processor = self._require("processor")
        encoded = processor(text=text, return_tensors="pt")
        return {key: value.to(self.device) for key, value in encoded.items() if isinstance(value, torch.Tensor)}
