"""
CREPE pitch estimation (Convolutional Representation for Pitch Estimation).

CREPE is a 6-layer CNN trained on millions of audio samples. It takes raw
audio (not spectrograms) and outputs a probability distribution over 360
pitch bins spanning C1 to B7. Each bin = 20 cents.

We use the 'tiny' model variant for speed (fewer parameters). The network
was trained on 16kHz audio, so blocks are resampled with librosa first.
"""

import logging

import librosa
import numpy as np
import torch
import torchcrepe

from tuner.config import (
    CREPE_HOP_SIZE,
    CREPE_MIN_CONFIDENCE,
    CREPE_MODEL,
    CREPE_SAMPLE_RATE,
    FMAX,
    FMIN,
)
from tuner.pitch import NO_PITCH, PitchEstimate

logger = logging.getLogger(__name__)


class CrepeEstimator:
    def __init__(self, model_capacity=CREPE_MODEL, min_confidence=CREPE_MIN_CONFIDENCE,
                 fmin=FMIN, fmax=FMAX, hop_size=CREPE_HOP_SIZE):
        self.device = torch.device("cuda" if torch.cuda.is_available() else "cpu")
        self.model_capacity = model_capacity
        self.min_confidence = min_confidence
        self.fmin = fmin
        self.fmax = fmax
        self.hop_size = hop_size
        logger.info("CREPE '%s' model on %s", model_capacity, self.device)

    def estimate(self, block, spectrum=None):
        audio = block.samples.astype(np.float32)
        if block.sample_rate != CREPE_SAMPLE_RATE:
            audio = librosa.resample(
                audio, orig_sr=block.sample_rate, target_sr=CREPE_SAMPLE_RATE
            )
        audio_tensor = torch.from_numpy(audio).unsqueeze(0).to(self.device)

        # torchcrepe returns pitch (Hz) and periodicity (confidence 0-1)
        frequency, confidence = torchcrepe.predict(
            audio_tensor,
            CREPE_SAMPLE_RATE,
            hop_length=self.hop_size,
            fmin=self.fmin,
            fmax=self.fmax,
            model=self.model_capacity,
            batch_size=1,
            device=self.device,
            return_periodicity=True,
        )

        # Filter out low-confidence frames and take the median
        freq_np = np.atleast_1d(frequency.squeeze().cpu().numpy())
        conf_np = np.atleast_1d(confidence.squeeze().cpu().numpy())
        mask = conf_np > self.min_confidence
        if not mask.any():
            return NO_PITCH

        freq = float(np.median(freq_np[mask]))
        conf = float(np.mean(conf_np[mask]))
        return PitchEstimate.detected(freq, conf)
