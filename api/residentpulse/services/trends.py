from __future__ import annotations

import re
from collections import Counter
from typing import Any, Iterable

from ..config import WORD_CLOUD_MAX_WORDS

STOP_WORDS = frozenset(
    """
    the a an and or but in on at to for of with by from is are was were be been being have has had
    do does did will would could should may might can shall not no nor so if than that this these
    those it its i me my we us our you your he she they them their what which who whom when where
    why how all each every both few more most other some such very just also about up out into over
    after before between under again then here there once during while too only own same as any well
    really much still even back get got go going went come came make made take took know think thing
    things said say like don doesn didn won wouldn couldn shouldn isn aren wasn weren hasn haven hadn
    let one two lot something anything everything nothing someone anyone everyone yeah yes okay sure
    right good great bad need want time way because since through down around
    management board property community association hoa condo company manager member members
    resident residents building score nps survey interview feedback
    """.split()
)

_NON_WORD = re.compile(r"[^a-z\s'-]")
MIN_ROUNDS_FOR_TRENDS = 2


def word_frequencies(texts: Iterable[str | None], max_words: int = WORD_CLOUD_MAX_WORDS) -> list[dict[str, Any]]:
    counts: Counter[str] = Counter()
    for text in texts:
        if not text:
            continue
        for word in _NON_WORD.sub(" ", text.lower()).split():
            word = word.strip("'-")
            if len(word) > 2 and word not in STOP_WORDS:
                counts[word] += 1
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:max_words]
    return [{"word": word, "count": count} for word, count in ranked]


def _as_counts(frequencies: Any) -> dict[str, int]:
    if not frequencies:
        return {}
    if isinstance(frequencies, dict):
        return {str(k): int(v) for k, v in frequencies.items()}
    out: dict[str, int] = {}
    for item in frequencies:
        if isinstance(item, dict) and item.get("word"):
            out[str(item["word"])] = int(item.get("count") or 0)
    return out


def word_deltas(previous: Any, current: Any) -> dict[str, list[dict[str, Any]]]:
    """Classify words between two consecutive rounds; equal counts are ignored."""
    before = _as_counts(previous)
    after = _as_counts(current)
    rising: list[dict[str, Any]] = []
    declining: list[dict[str, Any]] = []
    new: list[dict[str, Any]] = []
    gone: list[dict[str, Any]] = []

    for word, count in after.items():
        if word not in before:
            new.append({"word": word, "count": count})
        elif count > before[word]:
            rising.append({"word": word, "previous": before[word], "current": count, "change": count - before[word]})
        elif count < before[word]:
            declining.append({"word": word, "previous": before[word], "current": count, "change": count - before[word]})
    for word, count in before.items():
        if word not in after:
            gone.append({"word": word, "count": count})

    rising.sort(key=lambda r: (-r["change"], r["word"]))
    declining.sort(key=lambda r: (r["change"], r["word"]))
    new.sort(key=lambda r: (-r["count"], r["word"]))
    gone.sort(key=lambda r: (-r["count"], r["word"]))
    return {"rising": rising, "declining": declining, "new": new, "gone": gone}


def build_trends(snapshots: list[dict[str, Any]]) -> dict[str, Any]:
    """Round-over-round series from concluded-round snapshots ordered by round_number."""
    ordered = sorted(snapshots, key=lambda s: int(s["round_number"]))
    if len(ordered) < MIN_ROUNDS_FOR_TRENDS:
        return {
            "status": "insufficient_data",
            "concluded_rounds": len(ordered),
            "required_rounds": MIN_ROUNDS_FOR_TRENDS,
        }

    pairs = []
    for prev, cur in zip(ordered, ordered[1:]):
        pairs.append(
            {
                "from_round": prev["round_number"],
                "to_round": cur["round_number"],
                **word_deltas(prev.get("word_frequencies"), cur.get("word_frequencies")),
            }
        )

    return {
        "status": "ok",
        "concluded_rounds": len(ordered),
        "nps_over_time": [{"round_number": s["round_number"], "nps_score": s.get("nps_score")} for s in ordered],
        "response_rate_over_time": [
            {
                "round_number": s["round_number"],
                "response_rate": s.get("response_rate"),
                "response_count": s.get("response_count"),
                "invited_count": s.get("invited_count"),
            }
            for s in ordered
        ],
        "cohort_mix_over_time": [
            {"round_number": s["round_number"], **(s.get("community_cohorts") or {})} for s in ordered
        ],
        "word_deltas": pairs,
    }
