from residentpulse.services.alerts import detect_alerts, severity_for


def _types(alerts):
    return [a.alert_type for a in alerts]


def test_keyword_match_produces_critical_alert_with_snippet():
    alerts = detect_alerts(content="Honestly we are ready to terminate the contract after this winter.")
    assert _types(alerts) == ["contract_termination"]
    assert alerts[0].severity == "critical"
    assert "terminate the contract" in alerts[0].description


def test_keywords_match_whole_words_only():
    assert detect_alerts(content="The main issue is parking.") == []
    assert _types(detect_alerts(content="We may sue the board.")) == ["legal_threat"]


def test_one_alert_per_type_in_fixed_order():
    content = "There is mold in the hallway. Our lawyer says this is negligence. Also a lawsuit is coming."
    alerts = detect_alerts(content=content)
    assert _types(alerts) == ["legal_threat", "safety_concern"]


def test_intake_flags_win_over_content():
    alerts = detect_alerts(
        content="Our attorney is involved.",
        flags={"legal_threat": "member mentioned counsel", "noise complaints": True, "ignored": False},
    )
    assert _types(alerts) == ["legal_threat", "other"]
    assert alerts[0].description.endswith("member mentioned counsel")
    assert alerts[1].severity == "warning"
    assert "noise complaints" in alerts[1].description


def test_flag_list_and_custom_keywords():
    alerts = detect_alerts(flags=["safety_concern"], content="broken gate", keywords={"contract_termination": ["broken gate"]})
    assert _types(alerts) == ["contract_termination", "safety_concern"]


def test_empty_input_detects_nothing():
    assert detect_alerts() == []
    assert detect_alerts(content="   ", flags=[]) == []
    assert severity_for("other") == "warning"
