"""
Classification Strategies

Closed family of line classifiers, tried in order by the strategy chain:
    - GeometricStrategy: Line position (last line total, second-to-last tax/tip)
    - PatternHeuristicStrategy: Keywords and regexes (EN/FR/ES)
    - PriceRelationshipStrategy: Arithmetic against declared subtotal/total
    - LLMClassificationStrategy: Language model fallback (async, time-bounded)
    - ManualClassificationStrategy: User corrections only
"""
from splitsmart.domain.classification.strategies.base import ClassificationStrategy
from splitsmart.domain.classification.strategies.geometric import GeometricStrategy
from splitsmart.domain.classification.strategies.llm import (
    BatchLLMCollaborator,
    LLMCallBudget,
    LLMClassification,
    LLMClassificationError,
    LLMClassificationStrategy,
    LLMCollaborator,
    coerce_category,
)
from splitsmart.domain.classification.strategies.manual import ManualClassificationStrategy
from splitsmart.domain.classification.strategies.pattern_heuristic import PatternHeuristicStrategy
from splitsmart.domain.classification.strategies.price_relationship import PriceRelationshipStrategy

__all__ = [
    "BatchLLMCollaborator",
    "ClassificationStrategy",
    "GeometricStrategy",
    "PatternHeuristicStrategy",
    "PriceRelationshipStrategy",
    "LLMCallBudget",
    "LLMClassification",
    "LLMClassificationError",
    "LLMClassificationStrategy",
    "LLMCollaborator",
    "ManualClassificationStrategy",
    "coerce_category",
]
