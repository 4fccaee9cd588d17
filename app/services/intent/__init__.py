# Intent classification: contract, heuristic keyword classifier, OpenAI classifier
# Re-export so "from app.services.intent import ..." works.

from app.services.intent.classifier import (
    Classification,
    IntentClassifier,
    build_intent_classifier,
)
from app.services.intent.heuristic_classifier import HeuristicIntentClassifier

__all__ = [
    "Classification",
    "HeuristicIntentClassifier",
    "IntentClassifier",
    "build_intent_classifier",
]
