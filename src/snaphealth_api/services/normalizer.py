"""
Result normalizer.

Turns untrusted adapter output (prose around JSON, fenced blocks, trailing
commas, partial objects, wrong types) into a canonical AnalysisResult.

Both public entry points are total:
- parse_payload() returns a tagged ParseSuccess / ParseFailure
- normalize_analysis() always returns an AnalysisResult whose description
  and nutrient list are non-empty, with the four core nutrients first
"""

import json
import logging
import math
import re
from typing import Any

from pydantic import BaseModel

from snaphealth_api.models.analysis import (
    CORE_NUTRIENTS,
    AnalysisResult,
    DetailedIngredient,
    GoalScore,
    ModelInfo,
    Nutrient,
    ParseFailure,
    ParseResult,
    ParseSuccess,
)

logger = logging.getLogger(__name__)


DEFAULT_DESCRIPTION = "Meal analysis"
DEFAULT_FEEDBACK = "No specific feedback is available for this meal."
DEFAULT_SUGGESTION = "Try to include a variety of colorful fruits and vegetables in your meals."
DEFAULT_INGREDIENT_CONFIDENCE = 5.0
DEFAULT_GOAL_SCORE = 5.0

# Nutrients reported in milligrams unless the source says otherwise
MG_NUTRIENTS = frozenset({
    "sodium",
    "calcium",
    "potassium",
    "cholesterol",
    "iron",
    "magnesium",
    "zinc",
    "phosphorus",
})

NUTRIENT_ALIASES = {
    "calorie": "calories",
    "kcal": "calories",
    "energy": "calories",
    "total calories": "calories",
    "proteins": "protein",
    "carb": "carbs",
    "carbohydrate": "carbs",
    "carbohydrates": "carbs",
    "total carbohydrate": "carbs",
    "total carbohydrates": "carbs",
    "fats": "fat",
    "total fat": "fat",
    "fibre": "fiber",
    "dietary fiber": "fiber",
    "sugars": "sugar",
    "total sugars": "sugar",
}

KNOWN_UNITS = frozenset({"g", "mg", "mcg", "µg", "kcal", "cal", "kj", "iu", "%"})

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_LINE_COMMENT_RE = re.compile(r"(?<![:\"])//[^\n]*")
_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_UNIT_SUFFIX_RE = re.compile(r"^\s*-?[\d.,]+\s*([a-zA-Zµ%]+)\s*$")
_LIST_SPLIT_RE = re.compile(r"[,\n;]")


# =============================================================================
# Payload parsing
# =============================================================================


def parse_payload(raw: Any) -> ParseResult:
    """
    Parse an adapter payload into a JSON object.

    Strings are tried in order: direct parse, fenced ```json block,
    broadest {...} substring, then an aggressive clean-up of the first
    balanced object. Every candidate is retried once with trailing commas
    removed. The first candidate that yields an object wins.

    Args:
        raw: Anything an adapter produced

    Returns:
        ParseSuccess with the object and winning strategy, or ParseFailure
    """
    if raw is None:
        return ParseFailure(reason="empty payload")

    if isinstance(raw, BaseModel):
        return ParseSuccess(data=raw.model_dump(by_alias=True), strategy="model")

    if isinstance(raw, dict):
        return ParseSuccess(data=dict(raw), strategy="object")

    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode("utf-8", errors="replace")

    if not isinstance(raw, str):
        return ParseFailure(reason=f"unsupported payload type: {type(raw).__name__}")

    text = raw.strip()
    if not text:
        return ParseFailure(reason="empty string")

    for strategy, candidate in _candidates(text):
        data = _loads_object(candidate)
        if data is not None:
            if strategy != "direct":
                logger.debug(f"Payload parsed with '{strategy}' strategy")
            return ParseSuccess(data=data, strategy=strategy)

    return ParseFailure(reason=f"no JSON object found in {len(text)} characters of text")


def _candidates(text: str):
    """Yield (strategy, candidate) pairs in decreasing order of trust."""
    yield "direct", text

    for match in _FENCE_RE.finditer(text):
        yield "fenced", match.group(1).strip()

    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        yield "braces", text[start:end + 1]

    balanced = _first_balanced_object(text)
    if balanced:
        yield "aggressive", _aggressive_clean(balanced)
    if start != -1 and end > start:
        yield "aggressive", _aggressive_clean(text[start:end + 1])


def _loads_object(candidate: str) -> dict[str, Any] | None:
    """Parse a candidate, retrying with trailing commas removed."""
    for attempt in (candidate, _TRAILING_COMMA_RE.sub(r"\1", candidate)):
        try:
            parsed = json.loads(attempt)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _first_balanced_object(text: str) -> str | None:
    """Extract the first brace-balanced object, ignoring braces inside strings."""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


def _aggressive_clean(candidate: str) -> str:
    """Strip comments, smart quotes and control characters."""
    cleaned = (
        candidate.replace("“", '"')
        .replace("”", '"')
        .replace("‘", "'")
        .replace("’", "'")
    )
    cleaned = _BLOCK_COMMENT_RE.sub("", cleaned)
    cleaned = _LINE_COMMENT_RE.sub("", cleaned)
    cleaned = _CONTROL_RE.sub("", cleaned)
    return _TRAILING_COMMA_RE.sub(r"\1", cleaned)


# =============================================================================
# Normalization
# =============================================================================


def normalize_analysis(
    raw: Any,
    *,
    source: str | None = None,
    model: str | None = None,
) -> AnalysisResult:
    """
    Normalize any adapter payload into a canonical AnalysisResult.

    Never raises. Missing or malformed fields are replaced with documented
    defaults; a payload that cannot be parsed at all yields a result made
    entirely of defaults with the parse error recorded in `_meta`.

    Args:
        raw: Adapter payload (string, dict, model, or None)
        source: Provenance tag; overrides any tag in the payload
        model: Model identifier; overrides modelInfo.model in the payload

    Returns:
        AnalysisResult satisfying the persistence invariant
    """
    parsed = parse_payload(raw)

    if isinstance(parsed, ParseFailure):
        logger.warning(f"Normalizing unparsable payload: {parsed.reason}")
        return _build({"_meta": {"parseError": parsed.reason}}, source=source, model=model)

    try:
        return _build(parsed.data, source=source, model=model)
    except Exception as e:
        logger.exception("Unexpected error normalizing payload")
        return _build({"_meta": {"parseError": f"normalization failed: {e}"}}, source=source, model=model)


def _build(data: dict[str, Any], *, source: str | None, model: str | None) -> AnalysisResult:
    meta = data.get("_meta") if isinstance(data.get("_meta"), dict) else None

    return AnalysisResult(
        description=_first_text(data, "description", "mealDescription", "summary") or DEFAULT_DESCRIPTION,
        nutrients=normalize_nutrients(_nutrient_source(data)),
        feedback=_string_list(data.get("feedback")) or [DEFAULT_FEEDBACK],
        suggestions=_string_list(data.get("suggestions")) or [DEFAULT_SUGGESTION],
        detailed_ingredients=normalize_ingredients(_ingredient_source(data)),
        goal_score=_goal_score(data),
        model_info=_model_info(data.get("modelInfo", data.get("model_info")), model),
        low_confidence=_to_bool(data.get("lowConfidence", data.get("low_confidence"))),
        fallback=_to_bool(data.get("fallback")),
        source=source or _clean_text(data.get("source")) or "unknown",
        confidence=_clamp_optional(_to_number(data.get("confidence"))),
        image_challenges=_string_list(data.get("imageChallenges", data.get("image_challenges"))),
        meta=meta,
    )


# -----------------------------------------------------------------------------
# Nutrients
# -----------------------------------------------------------------------------


def canonical_nutrient_name(name: str) -> str:
    """Lowercase, collapse separators and map known aliases."""
    cleaned = " ".join(name.replace("_", " ").strip().lower().split())
    if cleaned.startswith("nf "):
        cleaned = cleaned[3:]
    return NUTRIENT_ALIASES.get(cleaned, cleaned)


def infer_unit(name: str) -> str:
    """Default display unit for a canonical nutrient name."""
    if name == "calories":
        return "kcal"
    if name in MG_NUTRIENTS:
        return "mg"
    return "g"


def format_amount(amount: float) -> str:
    """Display form of a numeric amount: one decimal, no trailing .0."""
    rounded = round(amount, 1)
    if rounded == int(rounded):
        return str(int(rounded))
    return str(rounded)


def normalize_nutrients(raw: Any) -> list[Nutrient]:
    """
    Normalize nutrients given as an array of objects or a flat mapping.

    Both shapes produce the same canonical list: core nutrients first
    (zero-filled when absent), then the rest in input order.
    """
    entries: list[dict[str, Any]] = []

    if isinstance(raw, dict):
        for key, value in raw.items():
            if isinstance(value, dict):
                entries.append({**value, "name": key})
            else:
                entries.append({"name": key, "value": value})
    elif isinstance(raw, list):
        for item in raw:
            if isinstance(item, BaseModel):
                item = item.model_dump(by_alias=True)
            if isinstance(item, dict):
                entries.append(item)

    by_name: dict[str, Nutrient] = {}
    for entry in entries:
        nutrient = _nutrient_from_entry(entry)
        if nutrient is not None and nutrient.name not in by_name:
            by_name[nutrient.name] = nutrient

    ordered = [
        by_name.pop(name, None) or _zero_nutrient(name)
        for name in CORE_NUTRIENTS
    ]
    return ordered + list(by_name.values())


def _nutrient_from_entry(entry: dict[str, Any]) -> Nutrient | None:
    raw_name = entry.get("name", entry.get("nutrient", entry.get("label")))
    if not isinstance(raw_name, str) or not raw_name.strip():
        return None
    name = canonical_nutrient_name(raw_name)

    raw_value = entry.get("value")
    amount = _to_number(entry.get("amount"))
    if amount is None:
        amount = _to_number(raw_value)

    if amount is not None:
        amount = round(max(amount, 0.0), 1)
        value = format_amount(amount)
    else:
        value = (_clean_text(raw_value) if isinstance(raw_value, str) else "") or "0"

    unit = _clean_text(entry.get("unit"))
    if not unit and isinstance(raw_value, str):
        suffix = _UNIT_SUFFIX_RE.match(raw_value)
        if suffix and suffix.group(1).lower() in KNOWN_UNITS:
            unit = suffix.group(1).lower()

    highlight = entry.get("isHighlight", entry.get("is_highlight"))
    percent = entry.get("percentOfDailyValue", entry.get("percent_of_daily_value"))

    return Nutrient(
        name=name,
        value=value,
        unit=unit or infer_unit(name),
        is_highlight=_to_bool(highlight) if highlight is not None else name in CORE_NUTRIENTS,
        percent_of_daily_value=_to_number(percent),
        amount=amount,
    )


def _zero_nutrient(name: str) -> Nutrient:
    return Nutrient(name=name, value="0", unit=infer_unit(name), is_highlight=True, amount=0.0)


def _nutrient_source(data: dict[str, Any]) -> Any:
    for key in ("nutrients", "basicNutrition", "nutrition"):
        value = data.get(key)
        if value:
            return value
    return None


# -----------------------------------------------------------------------------
# Ingredients
# -----------------------------------------------------------------------------


def confidence_badge(confidence: float) -> str:
    """Traffic-light badge for a 0-10 confidence."""
    if confidence >= 8:
        return "🟢"
    if confidence >= 5:
        return "🟡"
    return "🔴"


def normalize_ingredients(raw: Any) -> list[DetailedIngredient]:
    """Normalize ingredient objects or plain names; nameless entries are dropped."""
    if not isinstance(raw, list):
        return []

    ingredients = []
    for item in raw:
        if isinstance(item, BaseModel):
            item = item.model_dump(by_alias=True)
        if isinstance(item, str):
            item = {"name": item}
        if not isinstance(item, dict):
            continue

        name = _clean_text(item.get("name", item.get("ingredient", item.get("label"))))
        if not name:
            continue

        confidence = _to_number(item.get("confidence"))
        confidence = DEFAULT_INGREDIENT_CONFIDENCE if confidence is None else _clamp(confidence)

        ingredients.append(
            DetailedIngredient(
                name=name,
                category=_clean_text(item.get("category")) or "unknown",
                confidence=confidence,
                confidence_emoji=_clean_text(item.get("confidenceEmoji", item.get("confidence_emoji")))
                or confidence_badge(confidence),
            )
        )
    return ingredients


def _ingredient_source(data: dict[str, Any]) -> Any:
    for key in ("detailedIngredients", "detailed_ingredients", "ingredients", "ingredientList"):
        value = data.get(key)
        if isinstance(value, list) and value:
            return value
        if isinstance(value, str) and value.strip():
            return [name for name in _LIST_SPLIT_RE.split(value) if name.strip()]
    return []


# -----------------------------------------------------------------------------
# Goal score and model info
# -----------------------------------------------------------------------------


def _goal_score(data: dict[str, Any]) -> GoalScore:
    raw = data.get("goalScore", data.get("goal_score"))
    overall: float | None = None
    specific: dict[str, float] = {}

    if isinstance(raw, dict):
        overall = _to_number(raw.get("overall"))
        if overall is None:
            overall = _to_number(raw.get("score"))
        raw_specific = raw.get("specific")
        if isinstance(raw_specific, dict):
            for goal, score in raw_specific.items():
                number = _to_number(score)
                if number is not None:
                    specific[str(goal)] = _clamp(number)
    else:
        overall = _to_number(raw)

    if overall is None:
        overall = _to_number(data.get("goalImpactScore"))

    goal_name = _clean_text(data.get("goalName"))
    if not specific and goal_name and overall is not None:
        specific[goal_name] = _clamp(overall)

    return GoalScore(
        overall=_clamp(overall) if overall is not None else DEFAULT_GOAL_SCORE,
        specific=specific,
    )


def _model_info(raw: Any, model: str | None) -> ModelInfo:
    info = raw if isinstance(raw, dict) else {}
    return ModelInfo(
        model=model or _clean_text(info.get("model")) or "unknown",
        used_fallback=_to_bool(info.get("usedFallback", info.get("used_fallback"))),
        ocr_extracted=_to_bool(info.get("ocrExtracted", info.get("ocr_extracted"))),
    )


# -----------------------------------------------------------------------------
# Coercion helpers
# -----------------------------------------------------------------------------


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            match = _NUMBER_RE.search(value.replace(",", ""))
            if not match:
                return None
            number = float(match.group())
        else:
            return None
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    if isinstance(value, (int, float)):
        return bool(value)
    return False


def _clamp(value: float, low: float = 0.0, high: float = 10.0) -> float:
    return max(low, min(high, value))


def _clamp_optional(value: float | None) -> float | None:
    return None if value is None else _clamp(value)


def _clean_text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _first_text(data: dict[str, Any], *keys: str) -> str:
    for key in keys:
        text = _clean_text(data.get(key))
        if text:
            return text
    return ""


def _string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [text for text in (_clean_text(item) for item in value) if text]
