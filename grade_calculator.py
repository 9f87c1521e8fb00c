import math
from typing import Any, Dict, Iterable, List, Optional

WEIGHT_TOLERANCE = 0.01


def as_number(value: Any) -> Optional[float]:
    """Coerce a score/weight value to float; None for missing, non-numeric or non-finite input."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def categories_of(assessments: Iterable[Dict[str, Any]]) -> List[str]:
    """Distinct categories in order of first occurrence."""
    categories = []
    for assessment in assessments:
        category = assessment.get('category') or ''
        if category not in categories:
            categories.append(category)
    return categories


def total_weight(assessments: Iterable[Dict[str, Any]]) -> float:
    return sum(as_number(a.get('weight')) or 0.0 for a in assessments)


def assessment_contribution(assessment: Dict[str, Any], score: Optional[Dict[str, Any]]) -> Optional[float]:
    """
    Weighted points earned on a single assessment.

    Returns None when the assessment is not completed: no score entry, no
    usable earned value, or an effective max that is not positive. The
    earned value is clamped to [0, effective max].
    """
    if not isinstance(score, dict):
        score = {}
    override = score.get('max')
    effective_max = as_number(override if override is not None else assessment.get('max'))
    earned = as_number(score.get('earned'))

    if earned is None or effective_max is None or effective_max <= 0:
        return None

    clamped = min(max(earned, 0.0), effective_max)
    weight = as_number(assessment.get('weight')) or 0.0
    return clamped / effective_max * weight


def compute_grade_summary(assessments: List[Dict[str, Any]],
                          scores: Optional[Dict[str, Dict[str, Any]]],
                          categories: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Aggregate entered scores into grade figures for display.

    Args:
        assessments: The course's assessments (id, name, category, max, weight)
        scores: Sparse map of assessment id -> {'earned', 'max'}
        categories: Categories to report on; derived from the assessments when omitted

    Returns:
        Dictionary with overall_grade (weight points, ungraded work counted as
        zero), standing (fraction of completed weight earned, 0 when nothing is
        graded), per-category contributions and weights, per-assessment
        contributions, progress counts and the total-weight warning flag.
        Values are not rounded.
    """
    scores = scores or {}
    if categories is None:
        categories = categories_of(assessments)

    total_weighted_score = 0.0
    total_weight_of_completed = 0.0
    completed_count = 0
    contributions = {category: 0.0 for category in categories}
    category_weights = {category: 0.0 for category in categories}
    assessment_contributions = {}

    for assessment in assessments:
        category = assessment.get('category') or ''
        weight = as_number(assessment.get('weight')) or 0.0
        category_weights[category] = category_weights.get(category, 0.0) + weight

        contribution = assessment_contribution(assessment, scores.get(assessment.get('id')))
        assessment_contributions[assessment.get('id')] = contribution or 0.0
        if contribution is None:
            continue

        total_weighted_score += contribution
        total_weight_of_completed += weight
        contributions[category] = contributions.get(category, 0.0) + contribution
        completed_count += 1

    standing = total_weighted_score / total_weight_of_completed if total_weight_of_completed > 0 else 0.0
    weight_sum = total_weight(assessments)

    return {
        'overall_grade': total_weighted_score,
        'standing': standing,
        'contributions': contributions,
        'category_weights': category_weights,
        'assessment_contributions': assessment_contributions,
        'completed_count': completed_count,
        'assessment_count': len(assessments),
        'total_weight': weight_sum,
        'weight_warning': abs(weight_sum - 100) > WEIGHT_TOLERANCE,
    }
