"""Signals, receptor fields and the agents that emit and perceive them."""

from biosphere.signal.agent import FunctionAgent, LLMAgent, OrganicAgent
from biosphere.signal.distance import SemanticSignature, semantic_distance
from biosphere.signal.intent_analyzer import SignalIntentAnalyzer
from biosphere.signal.meta_observer import MetaObserver
from biosphere.signal.signal import (
    ENVIRONMENT,
    EXTERNAL,
    SYSTEM,
    ReceptorField,
    Signal,
    create_signal,
    resonates,
)
from biosphere.signal.similarity import cosine_similarity, similarity_score

__all__ = [
    "ENVIRONMENT",
    "EXTERNAL",
    "SYSTEM",
    "FunctionAgent",
    "LLMAgent",
    "MetaObserver",
    "OrganicAgent",
    "ReceptorField",
    "SemanticSignature",
    "Signal",
    "SignalIntentAnalyzer",
    "cosine_similarity",
    "create_signal",
    "resonates",
    "semantic_distance",
    "similarity_score",
]
