from analysis.advice import generate_advice
from analysis.cascade import FallbackCascade
from analysis.fallback_models import DEFAULT_FALLBACK_MODELS, load_fallback_models
from analysis.report import analyze_sessions

__all__ = ["DEFAULT_FALLBACK_MODELS", "FallbackCascade", "analyze_sessions", "generate_advice", "load_fallback_models"]
