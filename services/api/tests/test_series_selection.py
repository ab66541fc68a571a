from datetime import date

from ficrec_api.services.series import SeriesMember, is_follow_up, merge_series, select_primary


def test_empty_input_yields_empty_output():
    assert select_primary([]) == []


def test_earliest_non_sequel_work_is_primary():
    members = [
        SeriesMember("1", date(2019, 1, 1), ["Angst"]),
        SeriesMember("2", date(2019, 6, 1), []),
        SeriesMember("3", date(2018, 1, 1), ["Sequel to Part 2"]),
        SeriesMember("4", date(2020, 1, 1), []),
    ]

    assert select_primary(members) == [True, False, False, False]


def test_all_follow_ups_fall_back_to_whole_list():
    members = [
        SeriesMember("1", date(2021, 1, 1), ["sequel"]),
        SeriesMember("2", date(2020, 1, 1), ["PREQUEL"]),
    ]

    assert select_primary(members) == [False, True]


def test_missing_dates_sort_last_and_ties_keep_input_order():
    members = [
        SeriesMember("1", None, []),
        SeriesMember("2", date(2020, 5, 5), []),
        SeriesMember("3", date(2020, 5, 5), []),
    ]

    assert select_primary(members) == [False, True, False]
    assert select_primary([SeriesMember("a"), SeriesMember("b")]) == [True, False]


def test_exactly_one_primary_for_varied_inputs():
    samples = [
        [SeriesMember(str(i), date(2020, 1, 1 + (i * 7) % 28), ["sequel"] if i % 3 == 0 else []) for i in range(n)]
        for n in range(1, 9)
    ]

    for members in samples:
        assert sum(select_primary(members)) == 1


def test_follow_up_detection_is_substring_and_case_insensitive():
    assert is_follow_up(["Direct SEQUEL"])
    assert is_follow_up(["prequels"])
    assert not is_follow_up(["Sequential Art", "Fluff"])


def test_merge_series_creates_then_updates(db, policy_cache):
    incoming = {"name": "Series", "work_ids": ["1", "2"], "authors": ["alpha"], "primary_work_id": "1"}
    first = merge_series(
        db,
        series_id="9",
        url="https://archiveofourown.org/series/9",
        incoming=incoming,
        actor_tier="member",
        policy_cache=policy_cache,
    )
    assert first.created

    second = merge_series(
        db,
        series_id="9",
        url="https://archiveofourown.org/series/9",
        incoming={**incoming, "work_ids": ["1", "2", "3"], "primary_work_id": None},
        actor_tier="member",
        policy_cache=policy_cache,
    )
    assert not second.created
    assert second.record.work_ids == ["1", "2", "3"]
    assert second.record.primary_work_id == "1"
