from __future__ import annotations
import json, logging, os, sys, time
from quiz_core.attempts import start_attempt
from quiz_core.errors import InvalidSubmission
from quiz_core.quiz_bank import load_quiz
from quiz_core.scoring import grade, result_view
from quiz_core.validators import ensure_valid_quiz, normalize_answer
def ask(prompt: str, options=None) -> str:
    if options:
        print(prompt)
        for i,opt in enumerate(options): print(f"  [{i}] {opt}")
        while True:
            v = input("Your choice (index, blank to skip): ").strip()
            if not v: return ""
            if v.isdigit() and int(v) < len(options): return options[int(v)]
            print("Enter a number index.")
    else:
        return input(prompt + " ").strip()
def ask_structured(q, text: str):
    """Re-prompt until the JSON parses and fits the question type; blank skips."""
    while True:
        raw = ask(text + " (JSON)")
        if not raw: return ""
        try: value = json.loads(raw)
        except json.JSONDecodeError: print("  not valid JSON, try again"); continue
        try: normalize_answer(q, value)
        except InvalidSubmission as exc: print(f"  {exc.message}"); continue
        return value
def main(argv=None):
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print("usage: python -m app_cli.run_quiz <quiz.json> [student_id]"); return 1
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "WARNING"))
    quiz = ensure_valid_quiz(load_quiz(args[0]))
    student = args[1] if len(args) > 1 else os.getenv("USER", "student")
    attempt = start_attempt(quiz, student, [])
    print(f"{quiz.title}  ({len(attempt.question_order)} questions, max {attempt.max_score} pts)")
    if quiz.time_limit: print(f"Time limit: {quiz.time_limit} min")
    by_id = quiz.question_map(); answers = {}
    t0 = time.perf_counter()
    for n, qid in enumerate(attempt.question_order, 1):
        q = by_id[qid]
        text = f"Q{n}. {q.question}  [{q.points} pt]"
        if q.type == "TRUE_FALSE": answers[qid] = ask(text, q.options or ["true", "false"])
        elif q.type == "MULTIPLE_CHOICE": answers[qid] = ask(text, q.options)
        elif q.type in ("MATCHING", "DRAG_DROP", "HOTSPOT"):
            answers[qid] = ask_structured(q, text)
        else: answers[qid] = ask(text)
    res = grade(quiz, attempt, answers, time.perf_counter() - t0)
    print(json.dumps(result_view(quiz, res), indent=2, default=str))
    return 0
if __name__ == "__main__": raise SystemExit(main())
