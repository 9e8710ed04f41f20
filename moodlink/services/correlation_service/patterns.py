"""Narrative templates for correlation patterns and insights.

Patterns and insights are looked up by PatternType so adding a pattern
means adding a table row, not another branch in the engine.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence

from moodlink.shared.models import Insight, Pattern, PatternType


@dataclass(frozen=True)
class PatternTemplate:
    """Fixed narrative for one pattern type.

    ``description`` may reference ``{first}`` and ``{second}`` subjects.
    """
    description: str
    implication: str


PATTERN_TEMPLATES: Dict[PatternType, PatternTemplate] = {
    PatternType.POSITIVE_CORRELATION: PatternTemplate(
        description="{first} and {second} show synchronized sentiment patterns",
        implication="Users experience similar sentiment states across both apps",
    ),
    PatternType.NEGATIVE_CORRELATION: PatternTemplate(
        description="{first} and {second} show inverse sentiment patterns",
        implication=(
            "Negative sentiment in one app often corresponds to positive "
            "sentiment in the other"
        ),
    ),
    PatternType.PERSISTENCE: PatternTemplate(
        description="Sentiment in {first} shows strong day-to-day persistence",
        implication="Current sentiment state strongly predicts next-day sentiment",
    ),
    PatternType.WEEKLY: PatternTemplate(
        description="Sentiment in {first} shows weekly cyclical patterns",
        implication="Sentiment follows weekly cycles, possibly related to routine",
    ),
    PatternType.POSITIVE_ENGAGEMENT: PatternTemplate(
        description="Higher engagement with {first} correlates with more positive sentiment",
        implication="Users who engage more with the app tend to have better sentiment",
    ),
    PatternType.DISTRESS_ENGAGEMENT: PatternTemplate(
        description="Higher engagement with {first} correlates with more negative sentiment",
        implication="Users may engage more when experiencing distress",
    ),
    PatternType.RECOVERY: PatternTemplate(
        description="Strong natural recovery patterns observed in {first}",
        implication="Users show resilience and recovery after sentiment drops",
    ),
}


INSIGHT_TEMPLATES: Dict[PatternType, Insight] = {
    PatternType.POSITIVE_CORRELATION: Insight(
        insight_type="synchronized_experience",
        message=(
            "Users show synchronized sentiment patterns across multiple apps, "
            "suggesting holistic emotional states"
        ),
        recommendation="Consider coordinated interventions across app ecosystem",
    ),
    PatternType.NEGATIVE_CORRELATION: Insight(
        insight_type="compensatory_behavior",
        message=(
            "Some apps show inverse sentiment patterns, indicating potential "
            "compensatory app usage"
        ),
        recommendation="Analyze if users turn to specific apps during distress",
    ),
    PatternType.PERSISTENCE: Insight(
        insight_type="emotional_persistence",
        message=(
            "Strong day-to-day sentiment persistence indicates emotional "
            "state stability"
        ),
        recommendation="Consider momentum-based intervention strategies",
    ),
    PatternType.WEEKLY: Insight(
        insight_type="routine_influence",
        message=(
            "Weekly sentiment patterns suggest routine and schedule influence "
            "on emotional state"
        ),
        recommendation="Time interventions based on weekly cycles",
    ),
    PatternType.POSITIVE_ENGAGEMENT: Insight(
        insight_type="engagement_benefits",
        message="Higher app engagement correlates with better sentiment outcomes",
        recommendation="Encourage regular app engagement through positive reinforcement",
    ),
    PatternType.DISTRESS_ENGAGEMENT: Insight(
        insight_type="crisis_engagement",
        message="Users engage more during distress periods",
        recommendation="Optimize crisis support features for high-engagement periods",
    ),
    PatternType.RECOVERY: Insight(
        insight_type="natural_resilience",
        message="Users demonstrate natural recovery patterns after sentiment drops",
        recommendation="Support natural resilience mechanisms rather than over-intervening",
    ),
}


def render_pattern(
    pattern_type: PatternType,
    subjects: Sequence[str],
    strength: float,
) -> Pattern:
    """Build a Pattern from its fixed template."""
    template = PATTERN_TEMPLATES[pattern_type]
    first = subjects[0] if subjects else ""
    second = subjects[1] if len(subjects) > 1 else ""

    return Pattern(
        pattern_type=pattern_type,
        subjects=tuple(subjects),
        description=template.description.format(first=first, second=second),
        strength=abs(strength),
        implication=template.implication,
    )


def insights_for(patterns: Iterable[Pattern]) -> List[Insight]:
    """One insight per distinct pattern type, in order of first appearance."""
    seen = []
    for pattern in patterns:
        if pattern.pattern_type not in seen:
            seen.append(pattern.pattern_type)
    return [INSIGHT_TEMPLATES[t] for t in seen]
