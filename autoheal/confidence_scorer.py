"""
Confidence Scorer

Aggregates the per-fix confidences of a healing run into a single score and
maps it onto a letter grade.

Input: applied_fixes (list of fix dicts)
Output: float score in [0.0, 1.0]; grade str (A, B, C, D, F)

Scoring formula:
  mean(fix["confidence"] for fix in applied_fixes)
  0.0 when no fix was applied

Deterministic. No network calls.
"""


def aggregate_confidence(applied_fixes):
    """Mean confidence of the applied fixes, or 0.0 when there are none."""
    if not applied_fixes:
        return 0.0
    total = sum(float(f.get("confidence", 0.0)) for f in applied_fixes)
    score = total / len(applied_fixes)
    return min(max(score, 0.0), 1.0)


def confidence_grade(score):
    """Letter grade for a confidence score."""
    if score >= 0.90:
        return "A"
    elif score >= 0.80:
        return "B"
    elif score >= 0.70:
        return "C"
    elif score >= 0.50:
        return "D"
    return "F"


def summarize_confidence(applied_fixes):
    """Score, grade and a short explanation for a list of applied fixes.

    Returns:
        dict with:
            - score: float (0.0 to 1.0)
            - grade: str (A, B, C, D, F)
            - fix_count: int
            - lowest: float or None, weakest single fix
            - explanation: str
    """
    score = aggregate_confidence(applied_fixes)
    grade = confidence_grade(score)
    lowest = min((f.get("confidence", 0.0) for f in applied_fixes), default=None)

    if not applied_fixes:
        explanation = "No fixes were applied."
    else:
        explanation = (
            f"{len(applied_fixes)} fix(es) applied, mean confidence {score:.4f}, "
            f"weakest {lowest}."
        )

    return {
        "score": score,
        "grade": grade,
        "fix_count": len(applied_fixes),
        "lowest": lowest,
        "explanation": explanation,
    }
