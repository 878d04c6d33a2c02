"""Rule-based sound classification from a device's audio-feature summary.

The label comes from an ordered rule table: rules are evaluated top to bottom
and the first match wins, so a reading that fits several patterns (say a loud
bursty low-frequency one) always resolves the same way.  ``classify_features``
additionally scores the reading against a handful of labelled reference
patterns so consumers get a confidence alongside the label.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

import numpy as np

SILENCE = "silence"
TYPING = "typing"
VEHICLE = "vehicle"
MUSIC = "music"
SPEECH = "speech"
UNKNOWN = "unknown"

LABELS: tuple[str, ...] = (SPEECH, MUSIC, VEHICLE, TYPING, SILENCE)

DEFAULT_LOW_FREQ = 0.2
DEFAULT_MID_FREQ = 0.2
DEFAULT_HIGH_FREQ = 0.2
DEFAULT_VOLATILITY = 0.3

_logger = logging.getLogger("noisemonitor.classifier")


@dataclass(frozen=True, slots=True)
class FeatureVector:
    noise_level: float
    low_freq_energy: float = DEFAULT_LOW_FREQ
    mid_freq_energy: float = DEFAULT_MID_FREQ
    high_freq_energy: float = DEFAULT_HIGH_FREQ
    volatility: float = DEFAULT_VOLATILITY

    @classmethod
    def with_defaults(
        cls,
        noise_level: float,
        low_freq_energy: float | None = None,
        mid_freq_energy: float | None = None,
        high_freq_energy: float | None = None,
        volatility: float | None = None,
    ) -> FeatureVector:
        return cls(
            noise_level=float(noise_level),
            low_freq_energy=DEFAULT_LOW_FREQ if low_freq_energy is None else float(low_freq_energy),
            mid_freq_energy=DEFAULT_MID_FREQ if mid_freq_energy is None else float(mid_freq_energy),
            high_freq_energy=DEFAULT_HIGH_FREQ if high_freq_energy is None else float(high_freq_energy),
            volatility=DEFAULT_VOLATILITY if volatility is None else float(volatility),
        )

    def as_array(self) -> np.ndarray:
        # Noise is in dB-ish producer units (0..120); scale it onto the same 0..1 range as the energies.
        return np.array(
            [
                self.noise_level / 120.0,
                self.low_freq_energy,
                self.mid_freq_energy,
                self.high_freq_energy,
                self.volatility,
            ],
            dtype=np.float32,
        )


@dataclass(frozen=True, slots=True)
class Rule:
    label: str
    matches: Callable[[FeatureVector], bool]


# Order matters: first match wins.
RULES: tuple[Rule, ...] = (
    Rule(SILENCE, lambda f: f.noise_level < 45),
    Rule(TYPING, lambda f: f.volatility > 0.55 and f.high_freq_energy > 0.5),
    Rule(VEHICLE, lambda f: f.low_freq_energy > 0.45 and f.noise_level > 72),
    Rule(MUSIC, lambda f: abs(f.low_freq_energy - f.high_freq_energy) < 0.15 and 0.35 < f.volatility < 0.65),
    Rule(SPEECH, lambda f: f.mid_freq_energy > 0.5 and f.volatility < 0.55 and 45 < f.noise_level < 80),
)
FALLBACK_LABEL = SPEECH

# Labelled reference readings: [noiseLevel, low, mid, high, volatility].
_REFERENCE_PATTERNS: dict[str, tuple[tuple[float, float, float, float, float], ...]] = {
    SPEECH: ((65, 0.2, 0.6, 0.2, 0.4), (70, 0.15, 0.7, 0.15, 0.35), (60, 0.25, 0.5, 0.25, 0.45)),
    MUSIC: ((75, 0.3, 0.4, 0.3, 0.5), (80, 0.35, 0.3, 0.35, 0.55), (68, 0.28, 0.44, 0.28, 0.48)),
    VEHICLE: ((85, 0.5, 0.3, 0.2, 0.15), (80, 0.55, 0.25, 0.2, 0.1), (75, 0.48, 0.32, 0.2, 0.12)),
    TYPING: ((55, 0.1, 0.3, 0.6, 0.65), (60, 0.12, 0.28, 0.6, 0.7), (50, 0.15, 0.25, 0.6, 0.68)),
    SILENCE: ((35, 0.2, 0.2, 0.2, 0.05), (40, 0.25, 0.25, 0.25, 0.08), (30, 0.2, 0.2, 0.2, 0.03)),
}


def _centroids() -> np.ndarray:
    rows = []
    for label in LABELS:
        pats = np.asarray(_REFERENCE_PATTERNS[label], dtype=np.float32)
        pats[:, 0] /= 120.0
        rows.append(pats.mean(axis=0))
    return np.stack(rows)


_CENTROIDS = _centroids()
_SCORE_SHARPNESS = 8.0


@dataclass(frozen=True, slots=True)
class Classification:
    sound_type: str
    confidence: float
    scores: dict[str, float] = field(default_factory=dict)


def match_rule(features: FeatureVector) -> Rule | None:
    for rule in RULES:
        if rule.matches(features):
            return rule
    return None


def classify(
    noise_level: float,
    low_freq_energy: float | None = None,
    mid_freq_energy: float | None = None,
    high_freq_energy: float | None = None,
    volatility: float | None = None,
) -> str:
    """Return the sound-category label for one reading."""
    features = FeatureVector.with_defaults(noise_level, low_freq_energy, mid_freq_energy, high_freq_energy, volatility)
    rule = match_rule(features)
    return rule.label if rule is not None else FALLBACK_LABEL


def pattern_scores(features: FeatureVector) -> dict[str, float]:
    """Softmax over negative distance to each label's reference centroid."""
    x = features.as_array()
    dist = np.sqrt(np.sum((_CENTROIDS - x) ** 2, axis=1))
    logits = -_SCORE_SHARPNESS * dist
    logits -= np.max(logits)
    weights = np.exp(logits)
    probs = weights / float(np.sum(weights))
    return {label: float(p) for label, p in zip(LABELS, probs)}


def classify_features(
    noise_level: float,
    low_freq_energy: float | None = None,
    mid_freq_energy: float | None = None,
    high_freq_energy: float | None = None,
    volatility: float | None = None,
) -> Classification:
    """Like ``classify`` but with scores; never raises, degrades to ``unknown``."""
    try:
        features = FeatureVector.with_defaults(
            noise_level, low_freq_energy, mid_freq_energy, high_freq_energy, volatility
        )
        rule = match_rule(features)
        label = rule.label if rule is not None else FALLBACK_LABEL
        scores = pattern_scores(features)
    except Exception:
        _logger.exception("Classification failed noiseLevel=%r", noise_level)
        return Classification(sound_type=UNKNOWN, confidence=0.0)
    if not all(np.isfinite(v) for v in scores.values()):
        scores = {}
    return Classification(sound_type=label, confidence=float(scores.get(label, 0.0)), scores=scores)
