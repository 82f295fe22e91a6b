"""Brief stage."""

from .synthesizer import BriefSynthesizer, truncate

__all__ = ["BriefSynthesizer", "truncate"]
