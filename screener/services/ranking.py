"""
Candidate ranking algorithm.

Composite score (0-100):
- Skill match: 60%
- Experience: 20%
- Strengths alignment: 10%
- Overall skill coverage: 10%

Pure and deterministic: no I/O, no clock, no randomness.
"""
import math
from typing import Any, Iterable, List, Mapping, Sequence, Tuple, Union

from screener.core.config import settings
from screener.schemas.screening import CandidateAnalysis, JobRequirements, RankedCandidate

SKILL_WEIGHT = 0.6
EXPERIENCE_WEIGHT = 0.2
STRENGTHS_WEIGHT = 0.1
OVERALL_WEIGHT = 0.1

NICE_TO_HAVE_MAX_BONUS = 20
MISSING_SKILL_MAX_PENALTY = 40
NEUTRAL_STRENGTHS_SCORE = 50

STRONG_MATCH_THRESHOLD = settings.screening.strong_match_threshold
MODERATE_MATCH_THRESHOLD = settings.screening.moderate_match_threshold


def _norm(value: str) -> str:
    return value.strip().lower()


def terms_match(a: str, b: str) -> bool:
    """Case-insensitive, substring-tolerant comparison ("node" ~ "Node.js")."""
    left, right = _norm(a), _norm(b)
    if not left or not right:
        return False
    return left in right or right in left


def _covered(targets: Sequence[str], pool: Iterable[str]) -> int:
    """How many of `targets` are matched by at least one entry of `pool`."""
    pool = list(pool)
    return sum(1 for t in targets if any(terms_match(t, p) for p in pool))


def _dedupe(items: Iterable[str]) -> List[str]:
    seen = set()
    ordered = []
    for item in items:
        key = _norm(item)
        if key and key not in seen:
            seen.add(key)
            ordered.append(item.strip())
    return ordered


def clamp_score(value: float) -> int:
    # Half-up rounding; Python's round() is banker's rounding
    return max(0, min(100, int(math.floor(value + 0.5))))


class RankingEngine:
    def __init__(
        self,
        strong_threshold: int = STRONG_MATCH_THRESHOLD,
        moderate_threshold: int = MODERATE_MATCH_THRESHOLD,
    ):
        if not 0 <= moderate_threshold <= strong_threshold <= 100:
            raise ValueError("Thresholds must satisfy 0 <= moderate <= strong <= 100")
        self.strong_threshold = strong_threshold
        self.moderate_threshold = moderate_threshold

    def match_skills(
        self,
        candidate_skills: Sequence[str],
        required: Sequence[str],
        nice_to_have: Sequence[str] = (),
    ) -> Tuple[List[str], List[str]]:
        """Returns (matched, missing): candidate skills hitting any job skill, required skills nobody hit."""
        job_skills = list(required) + list(nice_to_have)
        matched = [s for s in candidate_skills if any(terms_match(s, js) for js in job_skills)]
        missing = [r for r in required if not any(terms_match(r, s) for s in candidate_skills)]
        return _dedupe(matched), _dedupe(missing)

    def calculate_skill_match_score(
        self,
        matched: Sequence[str],
        missing: Sequence[str],
        required: Sequence[str],
        nice_to_have: Sequence[str] = (),
    ) -> float:
        """
        Required coverage (0-100) plus a nice-to-have bonus (max 20)
        minus a missing-skill penalty (max 40).
        """
        if required:
            required_coverage = _covered(required, matched) / len(required) * 100
            missing_penalty = min(MISSING_SKILL_MAX_PENALTY, len(missing) / len(required) * MISSING_SKILL_MAX_PENALTY)
        else:
            required_coverage = 100.0
            missing_penalty = 0.0

        nice_bonus = 0.0
        if nice_to_have:
            nice_bonus = min(
                NICE_TO_HAVE_MAX_BONUS,
                _covered(nice_to_have, matched) / len(nice_to_have) * NICE_TO_HAVE_MAX_BONUS,
            )

        return max(0.0, min(100.0, required_coverage + nice_bonus - missing_penalty))

    def calculate_experience_score(self, candidate_years: float, required_years: float) -> float:
        if required_years <= 0 or candidate_years >= required_years:
            return 100.0
        return max(0.0, candidate_years / required_years * 100)

    def calculate_strengths_score(self, actual: Sequence[str], expected: Sequence[str]) -> float:
        """Share of expected strengths found in the candidate's strengths; neutral when nothing is expected."""
        if not expected:
            return float(NEUTRAL_STRENGTHS_SCORE)
        return _covered(expected, actual) / len(expected) * 100

    def calculate_overall_match(
        self,
        matched: Sequence[str],
        required: Sequence[str],
        nice_to_have: Sequence[str] = (),
    ) -> float:
        """Plain coverage of required skills with a nice-to-have top-up, capped at 100; 0 when nothing is required."""
        if not required:
            return 0.0
        coverage = _covered(required, matched) / len(required) * 100
        bonus = 0.0
        if nice_to_have:
            bonus = _covered(nice_to_have, matched) / len(nice_to_have) * NICE_TO_HAVE_MAX_BONUS
        return min(100.0, coverage + bonus)

    def calculate_screening_score(self, analysis: CandidateAnalysis, requirements: JobRequirements) -> int:
        skill_score = self.calculate_skill_match_score(
            analysis.skills_matched,
            analysis.skills_missing,
            requirements.skills_required,
            requirements.nice_to_have_skills,
        )
        experience_score = self.calculate_experience_score(
            analysis.experience_years, requirements.experience_required_years
        )
        strengths_score = self.calculate_strengths_score(analysis.strengths, requirements.strengths_expected)
        overall = max(0.0, min(100.0, analysis.overall_match))

        total = (
            skill_score * SKILL_WEIGHT
            + experience_score * EXPERIENCE_WEIGHT
            + strengths_score * STRENGTHS_WEIGHT
            + overall * OVERALL_WEIGHT
        )
        return clamp_score(total)

    def categorize_by_match(self, score: float) -> str:
        if score >= self.strong_threshold:
            return "strong"
        if score >= self.moderate_threshold:
            return "moderate"
        return "weak"

    def rank_candidates(self, candidates: Sequence[Union[Mapping[str, Any], Any]]) -> List[RankedCandidate]:
        """Descending by score; sorted() is stable so ties keep input order."""
        def _get(candidate, field):
            if isinstance(candidate, Mapping):
                return candidate[field]
            return getattr(candidate, field)

        ordered = sorted(candidates, key=lambda c: -float(_get(c, "score")))
        return [
            RankedCandidate(
                rank=index + 1,
                id=str(_get(candidate, "id")),
                score=float(_get(candidate, "score")),
                match_category=self.categorize_by_match(float(_get(candidate, "score"))),
            )
            for index, candidate in enumerate(ordered)
        ]
