import json
import logging
import math
import re
from typing import Any, Dict, List, Optional

from document_processor import TEXT_SOURCE_KINDS, UnsupportedSourceKind
from grade_calculator import as_number
from openai_helper import (
    UNPARSABLE,
    CompletionResult,
    UnparsableCompletionResponse,
    request_completion,
    truncate_to_token_budget,
)

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "Assignments"
DEFAULT_MAX = 100.0
DEFAULT_WEIGHT = 0.0

FINAL_EXAM_WEIGHT = 40
OTHER_EXAM_WEIGHT = 30
# Each of N numbered items gets 100 / (N + 2)
FAMILY_HEADROOM = 2
# Family numbers above this are ignored
MAX_FAMILY_SIZE = 50

EXTRACTION_INSTRUCTION = """You are an expert at parsing course outlines and extracting assessment information.

Extract all assessments (quizzes, assignments, exams, projects, etc.) from the course outline text.

For each assessment, provide:
- name: A clear, descriptive name
- category: Group similar assessments (e.g., "Quizzes", "Assignments", "Exams", "Projects")
- max: Maximum points possible (default to 100 if not specified)
- weight: Percentage weight of the assessment (must be a number)

IMPORTANT WEIGHT GUIDELINES:
- Quizzes: Typically 1-5% each (if many quizzes, use 1-2% each)
- Assignments: Typically 5-15% each
- Midterm Exam: Typically 20-30%
- Final Exam: Typically 30-50%
- Projects: Typically 10-25% each
- Labs: Typically 2-10% each

Ensure the total weight adds up to 100%. If you see many quizzes (8+), use smaller weights per quiz (1-2%).

Return ONLY a valid JSON array of assessment objects. Do not include any markdown formatting, code blocks, or explanations. Just return the raw JSON array.

Example format:
[
  {"name": "Quiz 1", "category": "Quizzes", "max": 100, "weight": 2},
  {"name": "Midterm Exam", "category": "Exams", "max": 100, "weight": 30},
  {"name": "Final Exam", "category": "Exams", "max": 100, "weight": 50},
  {"name": "Assignment 1", "category": "Assignments", "max": 100, "weight": 7}
]"""

# (pattern, display name, category) for numbered assessment families
NUMBERED_FAMILIES = [
    (re.compile(r'quiz\s*(\d+)', re.IGNORECASE), 'Quiz', 'Quizzes'),
    (re.compile(r'assignment\s*(\d+)|homework\s*(\d+)|hw\s*(\d+)', re.IGNORECASE), 'Assignment', 'Assignments'),
    (re.compile(r'project\s*(\d+)', re.IGNORECASE), 'Project', 'Projects'),
    (re.compile(r'lab\s*(\d+)', re.IGNORECASE), 'Lab', 'Labs'),
]
EXAM_PATTERN = re.compile(r'(midterm|final|exam)\s*(?:exam)?', re.IGNORECASE)

CODE_FENCE_START = re.compile(r'^```(?:json)?\s*', re.IGNORECASE)
CODE_FENCE_END = re.compile(r'\s*```$')

DEFAULT_CURRICULUM = [
    {'name': 'Quiz 1', 'category': 'Quizzes', 'max': 100, 'weight': 10},
    {'name': 'Quiz 2', 'category': 'Quizzes', 'max': 100, 'weight': 10},
    {'name': 'Quiz 3', 'category': 'Quizzes', 'max': 100, 'weight': 10},
    {'name': 'Midterm Exam', 'category': 'Exams', 'max': 100, 'weight': 30},
    {'name': 'Final Exam', 'category': 'Exams', 'max': 100, 'weight': 40},
]


def round_half_up(value: float, places: int = 2) -> float:
    """Round like the browser's Math.round: halves go up, not to even."""
    factor = 10 ** places
    return math.floor(value * factor + 0.5) / factor


def build_extraction_prompt(raw_text: str) -> str:
    outline = truncate_to_token_budget(raw_text)
    return f"{EXTRACTION_INSTRUCTION}\n\nCourse outline text:\n{outline}"


def strip_code_fences(text: str) -> str:
    """Remove a leading ``` / ```json fence and a trailing ``` fence."""
    cleaned = (text or "").strip()
    if cleaned.startswith('```'):
        cleaned = CODE_FENCE_START.sub('', cleaned, count=1)
        cleaned = CODE_FENCE_END.sub('', cleaned)
    return cleaned.strip()


def _parse_assessment_array(text: str) -> List[Dict[str, Any]]:
    try:
        parsed = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise UnparsableCompletionResponse(f"Completion is not valid JSON: {e}")

    if not isinstance(parsed, list):
        raise UnparsableCompletionResponse(f"Completion is a {type(parsed).__name__}, not an array")

    items = [item for item in parsed if isinstance(item, dict)]
    if not items:
        raise UnparsableCompletionResponse("Completion array contains no assessment objects")
    return items


def decode_assessment_array(text: str) -> CompletionResult:
    """Turn completion text into a list of raw assessment dicts, or an unparsable failure."""
    try:
        return CompletionResult.success(_parse_assessment_array(text))
    except UnparsableCompletionResponse as e:
        logger.error(f"Unusable completion response: {e}. Raw response: {(text or '')[:100]}")
        return CompletionResult.failed(UNPARSABLE, str(e))


def normalize_assessments(items: List[Any]) -> List[Dict[str, Any]]:
    """
    Give every assessment an id and well-typed fields.

    Ids are assessment-1, assessment-2, ... in list order. Missing names,
    categories, maxima and weights get defaults; maxima that are not positive
    fall back to 100 and negative weights become 0.
    """
    normalized = []
    for index, item in enumerate([item for item in items if isinstance(item, dict)]):
        position = index + 1

        name = item.get('name')
        name = str(name).strip() if name is not None else ''
        category = item.get('category')
        category = str(category).strip() if category is not None else ''

        max_points = as_number(item.get('max'))
        if max_points is None or max_points <= 0:
            max_points = DEFAULT_MAX

        weight = as_number(item.get('weight'))
        if weight is None or weight < 0:
            weight = DEFAULT_WEIGHT

        normalized.append({
            'id': f'assessment-{position}',
            'name': name or f'Assessment {position}',
            'category': category or DEFAULT_CATEGORY,
            'max': max_points,
            'weight': weight,
        })
    return normalized


def renormalize_weights(assessments: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Rescale weights to sum to 100 (2 decimals); all-zero weights are left alone."""
    total = sum(a.get('weight') or 0 for a in assessments)
    if total <= 0:
        return [dict(a) for a in assessments]

    return [
        dict(a, weight=round_half_up((a.get('weight') or 0) / total * 100, 2))
        for a in assessments
    ]


def _highest_index(match: re.Match) -> int:
    for group in match.groups():
        if group is not None:
            return int(group)
    return 0


def fallback_assessments(raw_text: str, source_kind: str = 'text') -> List[Dict[str, Any]]:
    """
    Detect assessments by pattern matching, without the completion service.

    Quiz/assignment/project/lab families are expanded up to the highest
    number seen (numbers above MAX_FAMILY_SIZE are ignored); midterm/final/exam
    keywords become single exams. Returns the default curriculum when nothing
    is recognised.
    """
    if source_kind not in TEXT_SOURCE_KINDS or not (raw_text or '').strip():
        logger.info(f"No text to match for source kind '{source_kind}', using default assessments")
        return renormalize_weights(normalize_assessments(DEFAULT_CURRICULUM))

    found = []
    seen_names = set()

    def add(name, category, weight):
        if name not in seen_names:
            seen_names.add(name)
            found.append({'name': name, 'category': category, 'max': 100, 'weight': weight})

    def add_family(pattern, label, category):
        indexes = [_highest_index(m) for m in pattern.finditer(raw_text)]
        ignored = [i for i in indexes if i > MAX_FAMILY_SIZE]
        if ignored:
            logger.warning(f"Ignoring {label} numbers above {MAX_FAMILY_SIZE}: {ignored[:5]}")
        indexes = [i for i in indexes if i <= MAX_FAMILY_SIZE]
        if not indexes:
            return
        count = max(indexes)
        for i in range(1, count + 1):
            add(f'{label} {i}', category, round_half_up(100 / (count + FAMILY_HEADROOM), 2))

    quiz_family, *other_families = NUMBERED_FAMILIES
    add_family(*quiz_family)

    exam_types = []
    for match in EXAM_PATTERN.finditer(raw_text):
        exam_type = ' '.join(match.group(0).lower().split())
        if exam_type not in exam_types:
            exam_types.append(exam_type)
    for exam_type in exam_types:
        weight = FINAL_EXAM_WEIGHT if 'final' in exam_type else OTHER_EXAM_WEIGHT
        add(exam_type[0].upper() + exam_type[1:], 'Exams', weight)

    for family in other_families:
        add_family(*family)

    if not found:
        logger.info("Pattern matching found no assessments, using default assessments")
        found = DEFAULT_CURRICULUM

    logger.info(f"Pattern matching produced {len(found)} assessments")
    return renormalize_weights(normalize_assessments(found))


def extract_assessments(raw_text: str, source_kind: str, completion_client=None) -> List[Dict[str, Any]]:
    """
    Turn outline text into a normalized, 100%-weighted assessment list.

    The completion client (anything with complete(prompt) -> str) is asked
    first; when it is missing, fails, or returns something unusable, the
    pattern-matching fallback is used instead. Always returns a non-empty list.

    Raises:
        UnsupportedSourceKind: the source kind carries no text and none was supplied
    """
    raw_text = raw_text or ''
    if source_kind not in TEXT_SOURCE_KINDS and not raw_text.strip():
        raise UnsupportedSourceKind(source_kind)

    if completion_client is None or not raw_text.strip():
        logger.info("Completion service not used, extracting assessments by pattern matching")
        return fallback_assessments(raw_text, source_kind)

    logger.info(f"Requesting assessment extraction for outline of {len(raw_text)} chars")
    result = request_completion(completion_client, build_extraction_prompt(raw_text))
    if result.ok:
        result = decode_assessment_array(result.value)

    if not result.ok:
        logger.warning(f"Falling back to pattern matching ({result.failure}: {result.message})")
        return fallback_assessments(raw_text, source_kind)

    assessments = renormalize_weights(normalize_assessments(result.value))
    logger.info(f"Extracted {len(assessments)} assessments from completion response")
    return assessments
