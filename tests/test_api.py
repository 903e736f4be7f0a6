from __future__ import annotations

import csv
import importlib
import io
import json
import sys
import threading

from fastapi.testclient import TestClient

from quiz_core.errors import AttemptAlreadyInProgress, InvalidAttemptState
from quiz_core.scoring import grade
from tests.conftest import begin, build_quiz, mc


_DEF_MODULES = [
    "quiz_core.config",
    "api.storage",
    "api.app",
]


def _reload_app(tmp_path, monkeypatch) -> tuple[object, object]:
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    for name in _DEF_MODULES:
        if name in sys.modules:
            importlib.reload(sys.modules[name])
        else:
            __import__(name)
    storage = sys.modules["api.storage"]
    app_module = sys.modules["api.app"]
    return storage, app_module


def _client(tmp_path, monkeypatch, **quiz_kwargs):
    storage, app_module = _reload_app(tmp_path, monkeypatch)
    storage.save_quiz(build_quiz(**quiz_kwargs))
    return storage, TestClient(app_module.app)


def _start(client, student_id: str = "s1"):
    resp = client.post("/quizzes/quiz-1/attempts", json={"student_id": student_id})
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_full_attempt_flow(tmp_path, monkeypatch):
    storage, client = _client(tmp_path, monkeypatch, time_limit=30)

    assert client.get("/health").json()["status"] == "ok"
    started = _start(client)
    assert started["max_score"] == 6
    assert started["deadline"] is not None
    aid = started["attempt_id"]

    questions = client.get(f"/attempts/{aid}/questions").json()["questions"]
    assert [q["id"] for q in questions] == ["q1", "q2", "q3"]
    assert all("correct_answer" not in q for q in questions)

    resp = client.post(
        f"/attempts/{aid}/submit",
        json={"answers": {"q1": "4", "q2": "true", "q3": " paris "}, "time_spent_seconds": 90},
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["score"] == 5
    assert body["percentage"] == 83
    assert body["passed"] is True
    assert body["per_question_breakdown"]["q2"]["correct_answer"] == "false"

    attempt = client.get(f"/attempts/{aid}").json()
    assert attempt["status"] == "COMPLETED"
    assert attempt["time_spent"] == 90
    assert attempt["expired"] is False

    assert client.get(f"/attempts/{aid}/result").json()["score"] == 5
    assert (tmp_path / "results" / f"{aid}.json").exists()


def test_double_submit_is_rejected(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch)
    aid = _start(client)["attempt_id"]

    first = client.post(f"/attempts/{aid}/submit", json={"answers": {"q1": "4"}})
    assert first.status_code == 200
    second = client.post(f"/attempts/{aid}/submit", json={"answers": {"q1": "4", "q3": "Paris"}})
    assert second.status_code == 409
    assert second.json()["detail"]["code"] == "InvalidAttemptState"
    assert client.get(f"/attempts/{aid}/result").json()["score"] == 2


def test_abandon_then_submit_conflicts(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch)
    aid = _start(client)["attempt_id"]

    resp = client.post(f"/attempts/{aid}/abandon", json={"reason": "navigated away"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "ABANDONED"
    assert resp.json()["abandon_reason"] == "navigated away"

    assert client.post(f"/attempts/{aid}/submit", json={"answers": {}}).status_code == 409
    assert client.post(f"/attempts/{aid}/abandon").status_code == 409
    assert client.get(f"/attempts/{aid}/result").status_code == 404


def test_start_rules_map_to_status_codes(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch, max_attempts=1, allow_retry=False)
    aid = _start(client)["attempt_id"]

    busy = client.post("/quizzes/quiz-1/attempts", json={"student_id": "s1"})
    assert busy.status_code == 409
    assert busy.json()["detail"]["code"] == "AttemptAlreadyInProgress"

    client.post(f"/attempts/{aid}/submit", json={"answers": {}})
    retry = client.post("/quizzes/quiz-1/attempts", json={"student_id": "s1"})
    assert retry.status_code == 403
    assert retry.json()["detail"]["code"] == "RetryNotAllowed"

    elig = client.get("/quizzes/quiz-1/eligibility", params={"student_id": "s1"}).json()
    assert elig["can_start"] is False
    assert elig["attempts_remaining"] == 0

    # other students are unaffected
    assert _start(client, "s2")["attempt_number"] == 1


def test_abandoned_attempt_frees_the_slot(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch, max_attempts=1)
    aid = _start(client)["attempt_id"]
    client.post(f"/attempts/{aid}/abandon", json={"reason": "timeout"})
    assert _start(client)["attempt_number"] == 2


def test_malformed_and_foreign_answers(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch)
    aid = _start(client)["attempt_id"]

    bad = client.post(f"/attempts/{aid}/submit", json={"answers": {"q2": "perhaps"}})
    assert bad.status_code == 422
    assert bad.json()["detail"]["code"] == "InvalidSubmission"
    assert client.get(f"/attempts/{aid}").json()["status"] == "IN_PROGRESS"

    ok = client.post(f"/attempts/{aid}/submit", json={"answers": {"q1": "4", "elsewhere": "x"}})
    assert ok.status_code == 200
    assert ok.json()["ignored_question_ids"] == ["elsewhere"]


def test_question_stats_accumulate_once_per_attempt(tmp_path, monkeypatch):
    storage, client = _client(tmp_path, monkeypatch)
    for student, answer in (("s1", "4"), ("s2", "3")):
        aid = _start(client, student)["attempt_id"]
        client.post(f"/attempts/{aid}/submit", json={"answers": {"q1": answer}, "time_spent_seconds": 60})

    stats = client.get("/quizzes/quiz-1/questions/q1/stats").json()
    assert stats["times_asked"] == 2
    assert stats["times_correct"] == 1
    assert stats["success_rate"] == 0.5
    assert stats["average_time_spent"] == 20.0

    result = storage.load_result(aid)
    assert result is not None
    quiz = storage.load_quiz("quiz-1")
    assert quiz.question_map()["q1"].stats.times_asked == 2

    assert client.get("/quizzes/quiz-1/questions/nope/stats").status_code == 404


def test_breakdown_exports(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch)
    aid = _start(client)["attempt_id"]
    client.post(f"/attempts/{aid}/submit", json={"answers": {"q1": "4"}})

    body = client.get(f"/attempts/{aid}/breakdown.json").json()
    assert body["attempt_id"] == aid
    assert len(body["rows"]) == 3

    resp = client.get(f"/attempts/{aid}/breakdown.csv")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    rows = list(csv.DictReader(io.StringIO(resp.text)))
    assert rows[0]["question_id"] == "q1"
    assert rows[0]["awarded_points"] == "2"


def test_breakdown_disabled(tmp_path, monkeypatch):
    _storage, app_module = _reload_app(tmp_path, monkeypatch)
    monkeypatch.setattr(app_module, "BREAKDOWN_EXPORT_ENABLED", False)
    client = TestClient(app_module.app)
    assert client.get("/attempts/whatever/breakdown.json").status_code == 404
    assert client.get("/attempts/whatever/breakdown.csv").status_code == 404


def test_unknown_resources_are_404(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch)
    assert client.post("/quizzes/missing/attempts", json={"student_id": "s1"}).status_code == 404
    assert client.get("/attempts/missing").status_code == 404
    assert client.post("/attempts/missing/submit", json={"answers": {}}).status_code == 404


def _adaptive_quiz_questions():
    return [
        mc(f"i{n}", correct="A", order_index=n, irt_difficulty=b, irt_discrimination=1.2, irt_guessing=0.2)
        for n, b in enumerate((-1.5, -0.5, 0.0, 0.5, 1.5))
    ]


def test_adaptive_attempt_walks_to_completion(tmp_path, monkeypatch):
    storage, client = _client(tmp_path, monkeypatch, questions=_adaptive_quiz_questions(), max_attempts=1)

    started = client.post("/quizzes/quiz-1/adaptive/attempts", json={"student_id": "s1"})
    assert started.status_code == 200, started.text
    step = started.json()
    aid = step["attempt_id"]
    assert step["attempt_number"] == 1
    assert step["completed"] is False
    assert step["next_question"]["id"] == "i2"
    assert client.get(f"/attempts/{aid}/adaptive/next").json()["next_question"]["id"] == "i2"

    seen = []
    while not step["completed"]:
        qid = step["next_question"]["id"]
        seen.append(qid)
        resp = client.post(
            f"/attempts/{aid}/adaptive/answer",
            json={"question_id": qid, "answer": "A", "time_spent_seconds": 10},
        )
        assert resp.status_code == 200, resp.text
        step = resp.json()
        assert len(seen) <= 5

    assert sorted(seen) == ["i0", "i1", "i2", "i3", "i4"]
    assert step["next_question"] is None
    assert step["questions_answered"] == 5
    results = step["results"]
    assert results["termination_reason"] == "NO_MORE_QUESTIONS"
    assert results["passed"] is True
    assert results["proficiency"] == "EXPERT"

    attempt = client.get(f"/attempts/{aid}").json()
    assert attempt["status"] == "COMPLETED"
    assert attempt["mode"] == "adaptive"
    assert attempt["percentage"] == results["score"]
    assert attempt["passed"] is True
    assert attempt["termination_reason"] == "NO_MORE_QUESTIONS"
    assert attempt["time_spent"] == 50

    stored = client.get(f"/attempts/{aid}/result").json()
    assert stored["max_score"] == 100
    assert stored["adaptive"]["termination_reason"] == "NO_MORE_QUESTIONS"
    assert client.get("/quizzes/quiz-1/questions/i2/stats").json()["times_asked"] == 1

    # a completed adaptive attempt takes no more answers and counts against max_attempts
    late = client.post(f"/attempts/{aid}/adaptive/answer", json={"question_id": "i0", "answer": "A"})
    assert late.status_code == 409
    again = client.post("/quizzes/quiz-1/adaptive/attempts", json={"student_id": "s1"})
    assert again.status_code == 403
    assert again.json()["detail"]["code"] == "AttemptLimitExceeded"
    assert client.post("/quizzes/quiz-1/attempts", json={"student_id": "s1"}).status_code == 403


def test_adaptive_attempt_respects_retry_rule(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch, questions=_adaptive_quiz_questions(), allow_retry=False)
    aid = _start(client)["attempt_id"]

    busy = client.post("/quizzes/quiz-1/adaptive/attempts", json={"student_id": "s1"})
    assert busy.status_code == 409
    assert busy.json()["detail"]["code"] == "AttemptAlreadyInProgress"

    client.post(f"/attempts/{aid}/submit", json={"answers": {}})
    retry = client.post("/quizzes/quiz-1/adaptive/attempts", json={"student_id": "s1"})
    assert retry.status_code == 403
    assert retry.json()["detail"]["code"] == "RetryNotAllowed"


def test_adaptive_and_fixed_endpoints_do_not_mix(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch, questions=_adaptive_quiz_questions())
    fixed = _start(client, "s1")["attempt_id"]
    adaptive_id = client.post("/quizzes/quiz-1/adaptive/attempts", json={"student_id": "s2"}).json()["attempt_id"]

    wrong_way = client.post(f"/attempts/{adaptive_id}/submit", json={"answers": {"i0": "A"}})
    assert wrong_way.status_code == 409
    assert wrong_way.json()["detail"]["code"] == "InvalidAttemptState"
    assert client.get(f"/attempts/{adaptive_id}").json()["status"] == "IN_PROGRESS"

    assert client.post(f"/attempts/{fixed}/adaptive/answer", json={"question_id": "i0", "answer": "A"}).status_code == 409
    assert client.get(f"/attempts/{fixed}/adaptive/next").status_code == 409

    foreign = client.post(f"/attempts/{adaptive_id}/adaptive/answer", json={"question_id": "zz", "answer": "A"})
    assert foreign.status_code == 422
    assert foreign.json()["detail"]["code"] == "QuizMismatch"
    assert client.post("/attempts/missing/adaptive/answer", json={"question_id": "i0"}).status_code == 404


def test_non_finite_time_spent_is_rejected(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch, time_limit=30)
    aid = _start(client)["attempt_id"]

    for raw in ("NaN", "Infinity", "-Infinity"):
        resp = client.post(
            f"/attempts/{aid}/submit",
            content='{"answers": {"q1": "4"}, "time_spent_seconds": %s}' % raw,
            headers={"content-type": "application/json"},
        )
        assert resp.status_code == 422, raw
    assert client.get(f"/attempts/{aid}").json()["status"] == "IN_PROGRESS"

    ok = client.post(f"/attempts/{aid}/submit", json={"answers": {"q1": "4"}, "time_spent_seconds": 1e308})
    assert ok.status_code == 200
    assert ok.json()["time_spent"] == 1800


def test_applied_attempts_are_keyed_by_attempt_id(tmp_path, monkeypatch):
    storage, client = _client(tmp_path, monkeypatch)
    aid = _start(client)["attempt_id"]
    client.post(f"/attempts/{aid}/submit", json={"answers": {"q1": "4"}})

    data = json.loads((tmp_path / "stats.json").read_text(encoding="utf-8"))
    assert data["applied_attempts"] == {aid: 3}

    quiz = storage.load_quiz("quiz-1")
    result = grade(quiz, begin(quiz, "s9", attempt_id="replayed"), {"q1": "4"}, 0)
    with storage._LOCK:
        assert storage._apply_result_stats(result) is True
        assert storage._apply_result_stats(result) is False
    assert storage.question_stats("q1").times_asked == 2


def test_legacy_applied_attempts_list_is_read(tmp_path, monkeypatch):
    storage, _ = _client(tmp_path, monkeypatch)
    (tmp_path / "stats.json").write_text(
        json.dumps({"questions": {}, "applied_attempts": ["old-1", "old-2"]}), encoding="utf-8"
    )
    data = storage._load_stats()
    assert set(data["applied_attempts"]) == {"old-1", "old-2"}
    assert "old-1" in data["applied_attempts"]


def test_concurrent_starts_create_one_attempt(tmp_path, monkeypatch):
    storage, _app_module = _reload_app(tmp_path, monkeypatch)
    quiz = build_quiz()
    storage.save_quiz(quiz)
    workers = 8
    barrier = threading.Barrier(workers)
    created, refused, unexpected = [], [], []

    def race():
        barrier.wait()
        try:
            created.append(storage.create_attempt(quiz, "s1"))
        except AttemptAlreadyInProgress:
            refused.append(1)
        except Exception as exc:
            unexpected.append(exc)

    threads = [threading.Thread(target=race) for _ in range(workers)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()

    assert unexpected == []
    assert len(created) == 1
    assert len(refused) == workers - 1
    stored = storage.attempts_for("quiz-1", "s1")
    assert [a.id for a in stored] == [created[0].id]


def test_complete_and_abandon_race_has_one_winner(tmp_path, monkeypatch):
    storage, _app_module = _reload_app(tmp_path, monkeypatch)
    quiz = build_quiz()
    storage.save_quiz(quiz)

    for round_no in range(5):
        attempt = storage.create_attempt(quiz, f"s{round_no}")
        barrier = threading.Barrier(2)
        won, lost = [], []

        def run(name, fn):
            barrier.wait()
            try:
                fn()
                won.append(name)
            except InvalidAttemptState:
                lost.append(name)

        threads = [
            threading.Thread(target=run, args=("complete", lambda: storage.complete_attempt(quiz, attempt.id, {"q1": "4"}, 5))),
            threading.Thread(target=run, args=("abandon", lambda: storage.abandon_attempt(quiz, attempt.id, "timeout"))),
        ]
        for th in threads:
            th.start()
        for th in threads:
            th.join()

        assert len(won) == 1 and len(lost) == 1
        final = storage.get_attempt(attempt.id)
        if won == ["complete"]:
            assert final.status == "COMPLETED"
            assert storage.load_result(attempt.id) is not None
        else:
            assert final.status == "ABANDONED"
            assert storage.load_result(attempt.id) is None
