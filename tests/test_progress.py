"""
Tests for the progress record: marks, streak, quiz history, persistence.
"""

import json
from datetime import date, timedelta

import pytest

import genki_core as core


def stored(path):
    return json.loads(path.read_text(encoding="utf-8"))[core.PROGRESS_KEY]


def test_item_keys_distinct_within_and_across_categories(chapters):
    ch = chapters[0]
    keys = [core.item_key(ch["id"], "vocabulary", it) for it in ch["vocabulary"]]
    assert len(set(keys)) == len(keys)
    assert keys[0] == "1-vocabulary-語0"

    same_text = {"japanese": "語0", "character": "語0"}
    assert core.item_key(1, "phrases", same_text) != core.item_key(1, "vocabulary", same_text)
    assert core.item_key(2, "vocabulary", same_text) != core.item_key(1, "vocabulary", same_text)
    assert core.item_key(1, "kanji", {"character": "一", "japanese": "x"}) == "1-kanji-一"


@pytest.mark.parametrize("ops", [
    ["known", "practice"],
    ["practice", "known"],
    ["known", "known", "practice", "known"],
    ["practice", "practice", "known", "practice"],
])
def test_marks_are_mutually_exclusive(ops):
    progress = core.default_progress()
    key = "1-vocabulary-がくせい"
    for op in ops:
        if op == "known":
            core.mark_known(progress, key)
        else:
            core.mark_needs_practice(progress, key)
        assert not (key in progress["known"] and key in progress["needsPractice"])

    expected = "known" if ops[-1] == "known" else "practice"
    assert core.item_status(progress, key) == expected


def test_streak_starts_at_one():
    progress = core.default_progress()
    today = date(2026, 10, 17)
    assert core.record_streak(progress, today) == 1
    assert progress["lastStudyDate"] == "2026-10-17"


def test_streak_same_day_is_idempotent():
    progress = core.default_progress()
    today = date(2026, 10, 17)
    core.record_streak(progress, today - timedelta(days=1))
    core.record_streak(progress, today)
    assert progress["streak"] == 2

    core.record_streak(progress, today)
    core.record_streak(progress, today)
    assert progress["streak"] == 2
    assert progress["lastStudyDate"] == "2026-10-17"


def test_streak_continues_from_yesterday_and_resets_after_gap():
    today = date(2026, 10, 17)

    progress = core.default_progress()
    progress.update(streak=4, lastStudyDate="2026-10-16")
    assert core.record_streak(progress, today) == 5

    progress.update(streak=4, lastStudyDate="2026-10-15")
    assert core.record_streak(progress, today) == 1

    progress.update(streak=9, lastStudyDate="2025-01-01")
    assert core.record_streak(progress, today) == 1


def test_streak_across_month_boundary():
    progress = core.default_progress()
    progress.update(streak=2, lastStudyDate="2026-09-30")
    assert core.record_streak(progress, date(2026, 10, 1)) == 3


def test_load_progress_defaults(progress_file):
    assert core.load_progress() == core.default_progress()

    progress_file.write_text("{ broken", encoding="utf-8")
    assert core.load_progress() == core.default_progress()

    progress_file.write_text(json.dumps([1, 2, 3]), encoding="utf-8")
    assert core.load_progress() == core.default_progress()

    progress_file.write_text(json.dumps({"otherKey": {}}), encoding="utf-8")
    assert core.load_progress() == core.default_progress()


def test_migrate_progress_repairs_fields():
    raw = {
        "known": {"a": True, "b": True, "c": False},
        "needsPractice": {"b": True},
        "quizScores": [
            {"chapter": 1, "category": "kanji", "score": 80, "date": "2026-10-01T10:00:00Z"},
            {"chapter": "x", "score": 50},
            "junk",
            {"chapter": "2", "category": "vocabulary", "score": "66.6"},
        ],
        "streak": "3",
        "lastStudyDate": "Fri Oct 16 2026",
    }
    p = core.migrate_progress(raw)

    assert p["known"] == {"a": True}
    assert p["needsPractice"] == {"b": True}
    assert p["quizScores"] == [
        {"chapter": 1, "category": "kanji", "score": 80, "date": "2026-10-01T10:00:00Z"},
        {"chapter": 2, "category": "vocabulary", "score": 67, "date": ""},
    ]
    assert p["streak"] == 3
    assert p["lastStudyDate"] == "2026-10-16"


def test_migrate_progress_bad_shapes():
    assert core.migrate_progress(None) == core.default_progress()
    p = core.migrate_progress({"known": [], "quizScores": {}, "streak": "many", "lastStudyDate": "soon"})
    assert p == core.default_progress()


def test_load_progress_survives_non_finite_numbers(progress_file):
    progress_file.write_text(
        '{"genkiProgress": {"streak": Infinity, "lastStudyDate": "2026-10-16"}}', encoding="utf-8"
    )
    p = core.load_progress()
    assert p["streak"] == 0
    assert p["lastStudyDate"] == "2026-10-16"

    progress_file.write_text(
        '{"genkiProgress": {"quizScores": ['
        '{"chapter": 1, "category": "kanji", "score": 1e400},'
        '{"chapter": 1e400, "category": "kanji", "score": 50},'
        '{"chapter": 1, "category": "kanji", "score": NaN},'
        '{"chapter": 2, "category": "phrases", "score": 90}]}}',
        encoding="utf-8",
    )
    p = core.load_progress()
    assert [q["chapter"] for q in p["quizScores"]] == [2]

    assert core.find_chapter([{"id": 1}], float("inf")) is None


def test_store_persists_every_mutation(progress_file):
    store = core.ProgressStore()

    store.mark_known("1-vocabulary-a")
    assert stored(progress_file)["known"] == {"1-vocabulary-a": True}

    store.mark_needs_practice("1-vocabulary-a")
    data = stored(progress_file)
    assert data["known"] == {}
    assert data["needsPractice"] == {"1-vocabulary-a": True}

    store.record_streak(date(2026, 10, 17))
    assert stored(progress_file)["lastStudyDate"] == "2026-10-17"

    entry = store.record_quiz_score(1, "vocabulary", 70)
    assert stored(progress_file)["quizScores"] == [entry]

    reloaded = core.ProgressStore()
    assert reloaded.record == store.record


def test_reset_all(progress_file):
    store = core.ProgressStore()
    store.mark_known("k")
    store.record_streak()
    store.record_quiz_score(1, "kanji", 100)

    store.reset_all()

    assert store.record == core.default_progress()
    assert stored(progress_file) == core.default_progress()


def test_session_backend_writes_nothing(progress_file, monkeypatch):
    monkeypatch.setattr(core, "PERSISTENCE_BACKEND", "session")
    store = core.ProgressStore()
    store.mark_known("k")
    store.record_streak()
    assert not progress_file.exists()
    assert store.status("k") == "known"
    assert str(core.write_backup(store.record)).startswith("(session-only")


def test_set_persistence_backend(monkeypatch):
    monkeypatch.setattr(core, "PERSISTENCE_BACKEND", "disk")
    core.set_persistence_backend(" Session ")
    assert core.PERSISTENCE_BACKEND == "session"
    core.set_persistence_backend("cloud")
    assert core.PERSISTENCE_BACKEND == "disk"


def test_write_backup(tmp_path):
    progress = core.default_progress()
    core.mark_known(progress, "1-kanji-一")
    out = core.write_backup(progress)
    data = json.loads(out.read_text(encoding="utf-8"))
    assert out.parent == tmp_path / "backups"
    assert data[core.PROGRESS_KEY]["known"] == {"1-kanji-一": True}


def test_chapter_completion(chapters):
    progress = core.default_progress()
    ch = chapters[0]
    assert core.chapter_completion(progress, ch) == 0

    for it in ch["vocabulary"][:3]:
        core.mark_known(progress, core.item_key(1, "vocabulary", it))
    # practice marks do not count
    core.mark_needs_practice(progress, core.item_key(1, "kanji", ch["kanji"][0]))
    assert core.chapter_completion(progress, ch) == 30

    # 1 of 8 rounds half up
    small = {"id": 9, "vocabulary": [{"japanese": str(i)} for i in range(8)], "kanji": [], "phrases": []}
    core.mark_known(progress, core.item_key(9, "vocabulary", small["vocabulary"][0]))
    assert core.chapter_completion(progress, small) == 13

    empty = {"id": 10, "vocabulary": [], "kanji": [], "phrases": []}
    assert core.chapter_completion(progress, empty) == 0


def test_progress_summary(chapters):
    progress = core.default_progress()
    core.mark_known(progress, core.item_key(1, "vocabulary", chapters[0]["vocabulary"][0]))
    core.mark_needs_practice(progress, core.item_key(2, "phrases", chapters[1]["phrases"][0]))
    core.record_quiz_score(progress, 1, "vocabulary", 70)
    core.record_quiz_score(progress, 2, "phrases", 85)
    progress["streak"] = 4

    summary = core.progress_summary(progress, chapters)

    assert summary["streak"] == 4
    assert summary["known"] == 1
    assert summary["needs_practice"] == 1
    assert summary["quizzes"] == 2
    assert summary["avg_score"] == 78
    assert summary["chapters"][0] == {"id": 1, "title": "New Friends", "items": 10, "percent": 10}
    assert summary["chapters"][1]["percent"] == 0


def test_progress_summary_without_quizzes(chapters):
    summary = core.progress_summary(core.default_progress(), chapters)
    assert summary["avg_score"] == 0
    assert summary["quizzes"] == 0
