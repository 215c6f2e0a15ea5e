from automation.shared.reservation_contracts import ConflictSeverity, ConflictType, Weekday
from reservations.conflicts import ConflictDetector, normalize_facility_url
from tests.helpers import DummyLogger, make_config

OTHER_FACILITY = "https://reservation.frontdesksuite.ca/rcfs/cardelrec"


def _detector():
    return ConflictDetector(logger=DummyLogger())


def test_same_facility_same_sport_overlap_is_critical():
    existing = make_config("Saturday Volleyball", slots={Weekday.SATURDAY: ["18:00"]})
    candidate = make_config("Saturday Late", slots={Weekday.SATURDAY: ["18:30"]})

    conflicts = _detector().validate(candidate, [existing])

    assert len(conflicts) == 1
    assert conflicts[0].severity is ConflictSeverity.CRITICAL
    assert conflicts[0].conflict_type is ConflictType.SAME_FACILITY_OVERLAP
    assert conflicts[0].details == ("Saturday: 6:30 PM and 6:00 PM",)
    assert ConflictDetector.has_blocking_conflicts(conflicts)


def test_slots_an_hour_apart_do_not_overlap():
    existing = make_config("Early", slots={Weekday.SATURDAY: ["17:00"]})
    candidate = make_config("Late", slots={Weekday.SATURDAY: ["18:00"]})

    assert _detector().validate(candidate, [existing]) == []


def test_different_facility_same_time_is_warning():
    existing = make_config("Kanata", slots={Weekday.SATURDAY: ["18:00"]})
    candidate = make_config("Cardel", facility_url=OTHER_FACILITY, slots={Weekday.SATURDAY: ["18:00"]})

    conflicts = _detector().validate(candidate, [existing])

    assert [conflict.severity for conflict in conflicts] == [ConflictSeverity.WARNING]
    assert conflicts[0].details == ("Saturday at 6:00 PM",)
    assert not ConflictDetector.has_blocking_conflicts(conflicts)


def test_same_facility_different_sport_is_informational():
    existing = make_config("Volleyball", slots={Weekday.SUNDAY: ["10:00"]})
    candidate = make_config("Badminton", sport="Badminton", slots={Weekday.SUNDAY: ["10:15"]})

    conflicts = _detector().validate(candidate, [existing])

    assert [conflict.conflict_type for conflict in conflicts] == [ConflictType.SAME_FACILITY_DIFFERENT_SPORT]
    assert conflicts[0].severity is ConflictSeverity.INFO


def test_url_normalisation_treats_trailing_slash_and_case_alike():
    assert normalize_facility_url("https://Reservation.FrontDeskSuite.ca/rcfs/Kanata/") == normalize_facility_url(
        "https://reservation.frontdesksuite.ca/rcfs/kanata?lang=en"
    )


def test_disabled_and_same_config_are_ignored():
    candidate = make_config("Volleyball")
    disabled = make_config("Old Volleyball", enabled=False)

    assert _detector().validate(candidate, [candidate, disabled]) == []


def test_results_are_sorted_most_severe_first_and_summarised():
    candidate = make_config("Candidate", slots={Weekday.SATURDAY: ["18:00"]})
    others = [
        make_config("Elsewhere", facility_url=OTHER_FACILITY, slots={Weekday.SATURDAY: ["18:00"]}),
        make_config("Badminton", sport="Badminton", slots={Weekday.SATURDAY: ["18:00"]}),
        make_config("Clash", slots={Weekday.SATURDAY: ["18:00"]}),
    ]

    conflicts = _detector().validate(candidate, others)

    assert [conflict.severity for conflict in conflicts] == [
        ConflictSeverity.CRITICAL,
        ConflictSeverity.WARNING,
        ConflictSeverity.INFO,
    ]
    assert ConflictDetector.summary(conflicts) == (
        "Conflict Summary:\n• 1 critical conflicts\n• 1 warnings\n• 1 informational conflicts"
    )


def test_summary_without_conflicts():
    assert ConflictDetector.summary([]) == "No conflicts detected"


def test_detect_all_compares_each_pair_once():
    configs = [
        make_config("A", slots={Weekday.MONDAY: ["19:00"]}),
        make_config("B", slots={Weekday.MONDAY: ["19:30"]}),
        make_config("C", slots={Weekday.TUESDAY: ["19:00"]}),
    ]

    conflicts = _detector().detect_all(configs)

    assert len(conflicts) == 1
    assert conflicts[0].config_ids == ("a", "b")
