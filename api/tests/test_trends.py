from residentpulse.services.trends import build_trends, word_deltas, word_frequencies


def test_word_frequencies_skip_stop_words_and_short_tokens():
    freqs = word_frequencies(["The pool is dirty and the pool gate is broken!", None, "Pool hours are short."])
    assert freqs[0] == {"word": "pool", "count": 3}
    words = {f["word"] for f in freqs}
    assert "the" not in words
    assert "is" not in words
    assert {"dirty", "gate", "broken", "hours", "short"} <= words


def test_word_frequencies_respect_cap():
    assert len(word_frequencies(["alpha beta gamma delta"], max_words=2)) == 2


def test_identical_rounds_have_no_deltas():
    words = [{"word": "parking", "count": 4}, {"word": "landscaping", "count": 2}]
    assert word_deltas(words, list(words)) == {"rising": [], "declining": [], "new": [], "gone": []}


def test_deltas_classify_changes():
    deltas = word_deltas({"parking": 2, "pool": 5, "noise": 1}, {"parking": 6, "pool": 3, "elevator": 2})
    assert deltas["rising"] == [{"word": "parking", "previous": 2, "current": 6, "change": 4}]
    assert deltas["declining"] == [{"word": "pool", "previous": 5, "current": 3, "change": -2}]
    assert deltas["new"] == [{"word": "elevator", "count": 2}]
    assert deltas["gone"] == [{"word": "noise", "count": 1}]


def test_trends_need_two_concluded_rounds():
    result = build_trends([{"round_number": 1, "nps_score": 10}])
    assert result == {"status": "insufficient_data", "concluded_rounds": 1, "required_rounds": 2}


def test_trends_are_ordered_by_round_number():
    snapshots = [
        {"round_number": 2, "nps_score": -10, "response_rate": 50, "word_frequencies": {"pool": 3}},
        {"round_number": 1, "nps_score": -40, "response_rate": 40, "word_frequencies": {"pool": 1}},
        {"round_number": 3, "nps_score": 20, "response_rate": 60, "word_frequencies": {"pool": 3}},
    ]
    result = build_trends(snapshots)
    assert result["status"] == "ok"
    assert [p["nps_score"] for p in result["nps_over_time"]] == [-40, -10, 20]
    assert [(p["from_round"], p["to_round"]) for p in result["word_deltas"]] == [(1, 2), (2, 3)]
    assert result["word_deltas"][0]["rising"][0]["word"] == "pool"
    assert result["word_deltas"][1]["rising"] == []
