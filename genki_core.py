from __future__ import annotations

"""
genki_core.py — Genki Study Trainer core

- Content catalog: chapters of vocabulary / kanji / phrases loaded from JSON.
- Progress store: known / needs-practice marks, quiz history and the daily
  study streak, kept in one JSON record.
- Quiz engine: question pools, distractor options, grading, score bands.
- Study controller: the view state machine the Streamlit app drives.

This file intentionally does NOT import Streamlit.
"""

import json
import logging
import math
import os
import random
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from json import JSONDecodeError
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

log = logging.getLogger(__name__)


# ============================================================
# Paths
# ============================================================
BASE_DIR = Path(__file__).resolve().parent
CONTENT_DIR = Path(os.environ.get("GENKI_CONTENT_DIR", BASE_DIR / "content"))
CHAPTERS_DIR = CONTENT_DIR / "chapters"

PROGRESS_FILE = Path(os.environ.get("GENKI_PROGRESS_FILE", "genki_progress.json"))
PROGRESS_KEY = "genkiProgress"

BACKUP_DIR = Path("backups")


# ============================================================
# Persistence backend
# ============================================================
# "disk"   -> read/write PROGRESS_FILE
# "session"-> no disk reads/writes (the record lives in memory only)
PERSISTENCE_BACKEND = "disk"


def set_persistence_backend(mode: str) -> None:
    global PERSISTENCE_BACKEND
    m = str(mode or "").strip().lower()
    if m not in ("disk", "session"):
        m = "disk"
    PERSISTENCE_BACKEND = m


set_persistence_backend(os.environ.get("GENKI_PERSISTENCE", "disk"))


# ============================================================
# Constants / Defaults
# ============================================================
CATEGORIES = ("vocabulary", "kanji", "phrases")
IDENTITY_FIELDS = {
    "vocabulary": "japanese",
    "kanji": "character",
    "phrases": "japanese",
}

VIEWS = ("home", "chapter", "browse", "flashcard", "quiz", "quiz-complete", "progress")
REVIEW_MODES = ("browse", "flashcard")
QUIZ_TYPES = ("jp-en", "en-jp")

QUIZ_MAX_QUESTIONS = 10
QUIZ_OPTION_COUNT = 4
CELEBRATE_PERCENT = 80

# 0 = japanese / character, 1 = reading (or notes), 2 = english / meaning
FLASHCARD_FACES = 3

SPEECH_LANG = "ja-JP"
SPEECH_RATE = 0.85

SCORE_BANDS = (
    (100, "perfect"),
    (80, "excellent"),
    (60, "good"),
    (0, "keep practicing"),
)
SCORE_MESSAGES = {
    "perfect": "Perfect score! You're a Japanese master!",
    "excellent": "Excellent work! Keep it up!",
    "good": "Good effort! A little more practice will help.",
    "keep practicing": "Keep studying! You'll get there!",
}

SEARCH_FIELDS = ("japanese", "reading", "english", "character", "meaning", "onyomi", "kunyomi", "notes")


# ============================================================
# Helpers
# ============================================================
def today_ymd() -> str:
    return date.today().isoformat()


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def safe_load_json(path: Path) -> Any:
    try:
        txt = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ValueError(f"Failed reading {path}: {e}") from e
    try:
        return json.loads(txt)
    except JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path} (line {e.lineno}, col {e.colno}): {e.msg}") from e


def atomic_write_json(path: Path, data: Any, indent: int = 2) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=indent, ensure_ascii=False), encoding="utf-8")
    tmp.replace(path)


def _text(v: Any) -> str:
    return str(v if v is not None else "").strip()


def capitalize_first(s: str) -> str:
    return s[:1].upper() + s[1:]


# ============================================================
# Content loaders
# ============================================================
def _unwrap_chapter_container(data: Any) -> Any:
    # Allow:
    # 1) { "id": 1, "title": ..., "vocabulary": [...] }   (one chapter per file)
    # 2) [ {...}, {...} ]
    # 3) { "chapters": [ ... ] }
    if isinstance(data, dict):
        if isinstance(data.get("chapters"), list):
            return data["chapters"]
        return [data]
    return data


def _normalize_item(raw: Dict[str, Any], category: str, where: str) -> Dict[str, Any]:
    ident = IDENTITY_FIELDS[category]
    if not _text(raw.get(ident)):
        raise ValueError(f"Bad {category} entry in {where}. Need '{ident}'. Got keys={sorted(raw.keys())}")

    if category == "kanji":
        examples = raw.get("examples", [])
        if isinstance(examples, str):
            examples = [examples]
        if not isinstance(examples, list):
            examples = []
        return {
            "character": _text(raw["character"]),
            "onyomi": _text(raw.get("onyomi")),
            "kunyomi": _text(raw.get("kunyomi")),
            "meaning": _text(raw.get("meaning")),
            "examples": [_text(x) for x in examples if _text(x)],
        }

    if category == "phrases":
        return {
            "japanese": _text(raw["japanese"]),
            "english": _text(raw.get("english")),
            "notes": _text(raw.get("notes")),
        }

    return {
        "japanese": _text(raw["japanese"]),
        "reading": _text(raw.get("reading")),
        "english": _text(raw.get("english")),
        "type": _text(raw.get("type")),
    }


def _normalize_chapter(raw: Dict[str, Any], where: str) -> Dict[str, Any]:
    if "id" not in raw:
        raise ValueError(f"Bad chapter entry in {where}. Need 'id'.")
    try:
        chapter_id = int(raw["id"])
    except (TypeError, ValueError):
        raise ValueError(f"Chapter id in {where} must be an integer, got {raw['id']!r}.")

    chapter: Dict[str, Any] = {
        "id": chapter_id,
        "title": _text(raw.get("title")) or f"Chapter {chapter_id}",
        "titleJp": _text(raw.get("titleJp")),
    }
    for cat in CATEGORIES:
        items = raw.get(cat) or []
        if not isinstance(items, list):
            raise ValueError(f"Chapter {chapter_id} in {where}: '{cat}' must be a list.")
        chapter[cat] = [
            _normalize_item(it, cat, f"{where} (chapter {chapter_id})")
            for it in items
            if isinstance(it, dict)
        ]
    return chapter


def load_chapters(chapters_dir: Optional[Path] = None) -> List[Dict[str, Any]]:
    """
    Loads every content/chapters/*.json file. A file may hold one chapter
    object, a list of chapters, or {"chapters": [...]}. Chapters come back
    sorted by id.
    """
    cdir = chapters_dir or CHAPTERS_DIR
    if not cdir.exists():
        raise ValueError(f"Missing chapters directory: {cdir}")

    chapters: List[Dict[str, Any]] = []
    for f in sorted(cdir.glob("*.json")):
        data = _unwrap_chapter_container(safe_load_json(f))
        if not isinstance(data, list) or not data:
            continue
        for raw in data:
            if not isinstance(raw, dict):
                continue
            chapters.append(_normalize_chapter(raw, f.name))

    chapters.sort(key=lambda c: c["id"])
    log.info("Loaded %d chapters from %s", len(chapters), cdir)
    return chapters


def find_chapter(chapters: List[Dict[str, Any]], chapter_id: Any) -> Optional[Dict[str, Any]]:
    try:
        cid = int(chapter_id)
    except (TypeError, ValueError, OverflowError):
        return None
    for c in chapters:
        if c.get("id") == cid:
            return c
    return None


def category_items(chapter: Optional[Dict[str, Any]], category: str) -> List[Dict[str, Any]]:
    if not chapter or category not in CATEGORIES:
        return []
    return chapter.get(category) or []


def chapter_item_count(chapter: Dict[str, Any]) -> int:
    return sum(len(chapter.get(cat) or []) for cat in CATEGORIES)


# ============================================================
# Keys
# ============================================================
def item_identity(item: Dict[str, Any], category: Optional[str] = None) -> str:
    fld = IDENTITY_FIELDS.get(category or "")
    if fld:
        return _text(item.get(fld))
    return _text(item.get("japanese") or item.get("character"))


def item_key(chapter_id: Any, category: str, item: Dict[str, Any]) -> str:
    return f"{chapter_id}-{category}-{item_identity(item, category)}"


# ============================================================
# Validation / health report
# ============================================================
def validate_content(chapters: List[Dict[str, Any]]) -> List[str]:
    issues: List[str] = []
    seen_ids: Dict[int, str] = {}

    for ch in chapters:
        cid = ch.get("id")
        if cid in seen_ids:
            issues.append(f"Duplicate chapter id {cid}: '{seen_ids[cid]}' and '{ch.get('title')}'")
        seen_ids[cid] = str(ch.get("title", ""))

        for cat in CATEGORIES:
            items = ch.get(cat) or []
            seen_keys: Dict[str, int] = {}
            for it in items:
                k = item_key(cid, cat, it)
                seen_keys[k] = seen_keys.get(k, 0) + 1
            for k, n in seen_keys.items():
                if n > 1:
                    issues.append(f"Duplicate {cat} identity in chapter {cid}: {k} (x{n})")

            distinct = len(seen_keys)
            if 0 < distinct < QUIZ_OPTION_COUNT:
                issues.append(
                    f"Chapter {cid} {cat}: only {distinct} item(s), quizzes will show fewer than "
                    f"{QUIZ_OPTION_COUNT} options."
                )

            if cat == "vocabulary":
                for it in items:
                    if not it.get("english"):
                        issues.append(f"Chapter {cid} vocabulary '{it.get('japanese')}' has no english.")
            elif cat == "kanji":
                for it in items:
                    if not it.get("meaning"):
                        issues.append(f"Chapter {cid} kanji '{it.get('character')}' has no meaning.")

    return issues


def content_health_report(chapters: List[Dict[str, Any]]) -> str:
    issues = validate_content(chapters)
    totals = {cat: sum(len(c.get(cat) or []) for c in chapters) for cat in CATEGORIES}

    lines: List[str] = []
    lines.append(f"Content health report — {today_ymd()}")
    lines.append(f"Chapters: {len(chapters)}")
    lines.append(
        f"Vocabulary: {totals['vocabulary']} | Kanji: {totals['kanji']} | Phrases: {totals['phrases']}"
    )

    lines.append("")
    if issues:
        lines.append("Warnings:")
        for s in issues[:40]:
            lines.append(f"- {s}")
        if len(issues) > 40:
            lines.append(f"... and {len(issues)-40} more")
    else:
        lines.append("No validation issues detected.")
    return "\n".join(lines)


# ============================================================
# Progress model
# ============================================================
def default_progress() -> Dict[str, Any]:
    return {
        "known": {},
        "needsPractice": {},
        "quizScores": [],
        "streak": 0,
        "lastStudyDate": None,
    }


def _coerce_study_date(v: Any) -> Optional[str]:
    s = _text(v)
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10]).isoformat()
    except ValueError:
        pass
    # records written by the old browser app used Date.toDateString()
    try:
        return datetime.strptime(s, "%a %b %d %Y").date().isoformat()
    except ValueError:
        return None


def _coerce_flag_map(v: Any) -> Dict[str, bool]:
    if not isinstance(v, dict):
        return {}
    return {str(k): True for k, flag in v.items() if flag}


def _coerce_quiz_score(v: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(v, dict):
        return None
    try:
        score = round_half_up(float(v.get("score", 0)))
    except (TypeError, ValueError, OverflowError):
        return None
    chapter = v.get("chapter")
    try:
        chapter = int(chapter)
    except (TypeError, ValueError, OverflowError):
        return None
    return {
        "chapter": chapter,
        "category": _text(v.get("category")),
        "score": max(0, min(100, score)),
        "date": _text(v.get("date")),
    }


def migrate_progress(raw: Any) -> Dict[str, Any]:
    """
    Repairs a stored record field by field. Anything that is not a dict comes
    back as the default record.
    """
    base = default_progress()
    if not isinstance(raw, dict):
        return base

    base["known"] = _coerce_flag_map(raw.get("known"))
    base["needsPractice"] = _coerce_flag_map(raw.get("needsPractice"))

    # a key marked both ways is kept for practice
    for k in list(base["known"]):
        if k in base["needsPractice"]:
            del base["known"][k]

    scores = raw.get("quizScores")
    if isinstance(scores, list):
        base["quizScores"] = [s for s in (_coerce_quiz_score(x) for x in scores) if s is not None]

    try:
        base["streak"] = max(0, int(raw.get("streak", 0) or 0))
    except (TypeError, ValueError, OverflowError):
        base["streak"] = 0

    base["lastStudyDate"] = _coerce_study_date(raw.get("lastStudyDate"))
    if base["lastStudyDate"] is None:
        base["streak"] = 0

    return base


def load_progress(path: Optional[Path] = None) -> Dict[str, Any]:
    if PERSISTENCE_BACKEND != "disk":
        return default_progress()

    p = path or PROGRESS_FILE
    if not p.exists():
        return default_progress()
    try:
        doc = safe_load_json(p)
    except ValueError as e:
        log.warning("Progress record unreadable, starting fresh: %s", e)
        return default_progress()

    if not isinstance(doc, dict) or not isinstance(doc.get(PROGRESS_KEY), dict):
        log.warning("Progress file %s has no '%s' record, starting fresh", p, PROGRESS_KEY)
        return default_progress()
    return migrate_progress(doc[PROGRESS_KEY])


def save_progress(progress: Dict[str, Any], path: Optional[Path] = None) -> None:
    if PERSISTENCE_BACKEND != "disk":
        return
    p = path or PROGRESS_FILE
    atomic_write_json(p, {PROGRESS_KEY: progress}, indent=2)
    log.debug("Saved progress to %s", p)


def write_backup(progress: Dict[str, Any]) -> Path:
    if PERSISTENCE_BACKEND != "disk":
        return Path("(session-only: no backup written)")

    BACKUP_DIR.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    out = BACKUP_DIR / f"backup_{stamp}.json"
    payload = {
        "day": today_ymd(),
        PROGRESS_KEY: progress,
    }
    atomic_write_json(out, payload, indent=2)
    return out


# ============================================================
# Progress operations
# ============================================================
def mark_known(progress: Dict[str, Any], key: str) -> None:
    progress.setdefault("known", {})[key] = True
    progress.setdefault("needsPractice", {}).pop(key, None)


def mark_needs_practice(progress: Dict[str, Any], key: str) -> None:
    progress.setdefault("needsPractice", {})[key] = True
    progress.setdefault("known", {}).pop(key, None)


def item_status(progress: Dict[str, Any], key: str) -> str:
    if key in progress.get("known", {}):
        return "known"
    if key in progress.get("needsPractice", {}):
        return "practice"
    return ""


def record_streak(progress: Dict[str, Any], today: Optional[date] = None) -> int:
    """
    One tick per chapter entry. Same day leaves the streak alone, the day
    after the last study day extends it, any gap restarts it at 1.
    """
    td = today or date.today()
    last = progress.get("lastStudyDate")
    yesterday = (td - timedelta(days=1)).isoformat()

    if not last:
        progress["streak"] = 1
    elif last == td.isoformat():
        pass
    elif last == yesterday:
        progress["streak"] = int(progress.get("streak", 0)) + 1
    else:
        progress["streak"] = 1

    progress["lastStudyDate"] = td.isoformat()
    return int(progress["streak"])


def record_quiz_score(
    progress: Dict[str, Any],
    chapter_id: int,
    category: str,
    score: int,
    when: Optional[str] = None,
) -> Dict[str, Any]:
    entry = {
        "chapter": chapter_id,
        "category": category,
        "score": int(score),
        "date": when or now_iso(),
    }
    progress.setdefault("quizScores", []).append(entry)
    return entry


def chapter_completion(progress: Dict[str, Any], chapter: Dict[str, Any]) -> int:
    known = progress.get("known", {})
    total = 0
    known_count = 0
    for cat in CATEGORIES:
        for it in chapter.get(cat) or []:
            total += 1
            if item_key(chapter["id"], cat, it) in known:
                known_count += 1
    if total == 0:
        return 0
    return round_half_up(known_count / total * 100)


def progress_summary(progress: Dict[str, Any], chapters: List[Dict[str, Any]]) -> Dict[str, Any]:
    scores = progress.get("quizScores", [])
    quiz_count = len(scores)
    avg = round_half_up(sum(int(s.get("score", 0)) for s in scores) / quiz_count) if quiz_count else 0

    return {
        "streak": int(progress.get("streak", 0)),
        "known": len(progress.get("known", {})),
        "needs_practice": len(progress.get("needsPractice", {})),
        "quizzes": quiz_count,
        "avg_score": avg,
        "chapters": [
            {
                "id": ch["id"],
                "title": ch.get("title", ""),
                "items": chapter_item_count(ch),
                "percent": chapter_completion(progress, ch),
            }
            for ch in chapters
        ],
    }


class ProgressStore:
    """Owns the learner's record; every mutation is persisted before returning."""

    def __init__(self, record: Optional[Dict[str, Any]] = None, path: Optional[Path] = None):
        self.path = path
        self.record = migrate_progress(record) if record is not None else load_progress(path)

    def save(self) -> None:
        save_progress(self.record, self.path)

    def mark_known(self, key: str) -> None:
        mark_known(self.record, key)
        self.save()

    def mark_needs_practice(self, key: str) -> None:
        mark_needs_practice(self.record, key)
        self.save()

    def status(self, key: str) -> str:
        return item_status(self.record, key)

    def record_streak(self, today: Optional[date] = None) -> int:
        streak = record_streak(self.record, today)
        self.save()
        return streak

    def record_quiz_score(self, chapter_id: int, category: str, score: int) -> Dict[str, Any]:
        entry = record_quiz_score(self.record, chapter_id, category, score)
        self.save()
        return entry

    def reset_all(self) -> None:
        self.record = default_progress()
        self.save()
        log.info("Progress reset")


# ============================================================
# Quiz engine
# ============================================================
def shuffled(items: List[Any], rng: Optional[random.Random] = None) -> List[Any]:
    out = list(items)
    (rng or random).shuffle(out)
    return out


def build_quiz_pool(
    items: List[Dict[str, Any]],
    limit: int = QUIZ_MAX_QUESTIONS,
    rng: Optional[random.Random] = None,
) -> List[Dict[str, Any]]:
    return shuffled(items, rng)[:max(0, limit)]


def distinct_identity_count(items: List[Dict[str, Any]], category: str) -> int:
    return len({item_identity(it, category) for it in items})


def generate_options(
    correct: Dict[str, Any],
    items: List[Dict[str, Any]],
    category: str,
    rng: Optional[random.Random] = None,
    k: int = QUIZ_OPTION_COUNT,
) -> List[Dict[str, Any]]:
    """
    Up to k-1 distractors from the whole category (not just the quiz pool),
    plus the correct item, shuffled. With fewer than k distinct items the
    list is simply shorter; it never repeats an identity.
    """
    correct_id = item_identity(correct, category)
    others: Dict[str, Dict[str, Any]] = {}
    for it in items:
        ident = item_identity(it, category)
        if ident == correct_id or ident in others:
            continue
        others[ident] = it

    distractors = shuffled(list(others.values()), rng)[:max(0, k - 1)]
    return shuffled(distractors + [correct], rng)


def check_answer(selected: Optional[Dict[str, Any]], correct: Dict[str, Any], category: str) -> bool:
    if not selected:
        return False
    return item_identity(selected, category) == item_identity(correct, category)


def normalize_quiz_type(quiz_type: Optional[str]) -> str:
    t = str(quiz_type or "").strip().lower()
    return t if t in QUIZ_TYPES else "jp-en"


def quiz_prompt(item: Dict[str, Any], category: str, quiz_type: str) -> str:
    if normalize_quiz_type(quiz_type) == "jp-en":
        return item.get("character", "") if category == "kanji" else item.get("japanese", "")
    return item.get("meaning", "") if category == "kanji" else item.get("english", "")


def kanji_readings(item: Dict[str, Any]) -> str:
    return f"{item.get('onyomi', '')} / {item.get('kunyomi', '')}"


def option_label(item: Dict[str, Any], category: str, quiz_type: str) -> Tuple[str, str]:
    """(main line, secondary line) for one answer button."""
    if normalize_quiz_type(quiz_type) == "jp-en":
        if category == "kanji":
            return item.get("meaning", ""), kanji_readings(item)
        return item.get("english", ""), ""

    if category == "kanji":
        return item.get("character", ""), kanji_readings(item)
    if category == "phrases":
        return item.get("japanese", ""), ""
    return item.get("japanese", ""), item.get("reading", "")


def answer_text(item: Dict[str, Any]) -> str:
    return item.get("english") or item.get("meaning") or ""


def score_percent(score: int, total: int) -> int:
    if total <= 0:
        return 0
    return round_half_up(score / total * 100)


def score_band(percent: int) -> str:
    for floor, band in SCORE_BANDS:
        if percent >= floor:
            return band
    return SCORE_BANDS[-1][1]


def score_message(percent: int) -> str:
    return SCORE_MESSAGES[score_band(percent)]


def should_celebrate(percent: int) -> bool:
    return percent >= CELEBRATE_PERCENT


# ============================================================
# Flashcards / browse / speech
# ============================================================
def flashcard_face(item: Dict[str, Any], category: str, face: int) -> Tuple[str, str]:
    """(label, text) for one of the three card faces. Face 0 has no label."""
    face = int(face) % FLASHCARD_FACES

    if category == "kanji":
        if face == 0:
            return "", item.get("character", "")
        if face == 1:
            return "Reading", kanji_readings(item)
        return "Meaning", item.get("meaning", "")

    if category == "phrases":
        if face == 0:
            return "", item.get("japanese", "")
        if face == 1 and item.get("notes"):
            return "Notes", item["notes"]
        return "English", item.get("english", "")

    if face == 0:
        return "", item.get("japanese", "")
    if face == 1:
        return "Reading", item.get("reading", "")
    return "English", item.get("english", "")


def filter_items(items: List[Dict[str, Any]], query: str) -> List[Dict[str, Any]]:
    q = (query or "").lower()
    if not q:
        return list(items)
    out: List[Dict[str, Any]] = []
    for it in items:
        searchable = " ".join(str(it[f]) for f in SEARCH_FIELDS if it.get(f)).lower()
        if q in searchable:
            out.append(it)
    return out


def speech_text(item: Dict[str, Any], category: str) -> str:
    if category == "kanji":
        return item.get("character", "")
    return item.get("japanese", "")


# ============================================================
# Session state + controller
# ============================================================
@dataclass
class SessionState:
    chapter: Optional[Dict[str, Any]] = None
    category: str = "vocabulary"
    view: str = "home"

    # flashcards
    flashcard_items: List[Dict[str, Any]] = field(default_factory=list)
    flashcard_index: int = 0
    flashcard_face: int = 0

    # quiz
    quiz_type: Optional[str] = None
    quiz_items: List[Dict[str, Any]] = field(default_factory=list)
    quiz_index: int = 0
    quiz_score: int = 0
    quiz_options: List[Dict[str, Any]] = field(default_factory=list)
    quiz_short_options: bool = False
    answered: bool = False
    selected_identity: str = ""
    last_was_correct: Optional[bool] = None
    last_result: Optional[Dict[str, Any]] = None

    # browse
    search_query: str = ""
    translations_hidden: bool = False


Listener = Callable[[str, Dict[str, Any]], None]


class StudyController:
    """
    Performs every user-triggered transition on one SessionState and one
    ProgressStore. Listeners run in registration order after each transition
    and receive (event, payload); events are "view", "answer", "speak" and
    "celebrate".
    """

    def __init__(
        self,
        chapters: List[Dict[str, Any]],
        store: ProgressStore,
        rng: Optional[random.Random] = None,
    ):
        self.chapters = chapters
        self.store = store
        self.rng = rng
        self.state = SessionState()
        self._listeners: List[Listener] = []

    # ---------------- listeners ----------------
    def add_listener(self, fn: Listener) -> None:
        self._listeners.append(fn)

    def remove_listener(self, fn: Listener) -> None:
        if fn in self._listeners:
            self._listeners.remove(fn)

    def _emit(self, event: str, **payload: Any) -> None:
        for fn in list(self._listeners):
            fn(event, payload)

    # ---------------- lookups ----------------
    @property
    def progress(self) -> Dict[str, Any]:
        return self.store.record

    def items(self) -> List[Dict[str, Any]]:
        return category_items(self.state.chapter, self.state.category)

    def key_for(self, item: Dict[str, Any]) -> str:
        chapter_id = self.state.chapter["id"] if self.state.chapter else ""
        return item_key(chapter_id, self.state.category, item)

    # ---------------- navigation ----------------
    def _show(self, view: str) -> None:
        self.state.view = view
        self._emit("view", view=view)

    def _clear_quiz(self) -> None:
        s = self.state
        s.quiz_items = []
        s.quiz_index = 0
        s.quiz_score = 0
        s.quiz_options = []
        s.quiz_short_options = False
        s.answered = False
        s.selected_identity = ""
        s.last_was_correct = None

    def navigate(self, view: str) -> bool:
        if view == "chapter" and self.state.chapter is None:
            log.info("No chapter selected, staying on %s", self.state.view)
            return False
        if view not in ("home", "progress", "chapter"):
            log.info("Cannot navigate directly to view %r", view)
            return False
        if self.state.view in ("quiz", "quiz-complete"):
            # abandoned quizzes record nothing
            self._clear_quiz()
        self._show(view)
        return True

    def select_chapter(self, chapter_id: Any) -> bool:
        ch = find_chapter(self.chapters, chapter_id)
        if ch is None:
            log.info("Chapter %r not found", chapter_id)
            return False

        self.state.chapter = ch
        self.select_category("vocabulary")
        self._clear_quiz()
        self._show("chapter")
        self.store.record_streak()
        return True

    def select_category(self, category: str) -> None:
        if category not in CATEGORIES:
            log.warning("Unknown category %r, item list will be empty", category)
        self.state.category = category
        self.state.search_query = ""

    # ---------------- review ----------------
    def start_review(self, mode: str) -> bool:
        if mode == "browse":
            return self.start_browse()
        if mode == "flashcard":
            return self.start_flashcards()
        log.info("Unknown review mode %r", mode)
        return False

    def start_browse(self) -> bool:
        if self.state.chapter is None:
            return False
        self.state.search_query = ""
        self._show("browse")
        return True

    def set_search_query(self, query: str) -> None:
        self.state.search_query = query or ""

    def visible_items(self) -> List[Dict[str, Any]]:
        return filter_items(self.items(), self.state.search_query)

    def toggle_translations(self) -> bool:
        self.state.translations_hidden = not self.state.translations_hidden
        return self.state.translations_hidden

    # ---------------- flashcards ----------------
    def start_flashcards(self) -> bool:
        if self.state.chapter is None:
            return False
        s = self.state
        s.flashcard_items = list(self.items())
        s.flashcard_index = 0
        s.flashcard_face = 0
        self._show("flashcard")
        return True

    def current_flashcard(self) -> Optional[Dict[str, Any]]:
        s = self.state
        if 0 <= s.flashcard_index < len(s.flashcard_items):
            return s.flashcard_items[s.flashcard_index]
        return None

    def current_face(self) -> Tuple[str, str]:
        item = self.current_flashcard()
        if item is None:
            return "", ""
        return flashcard_face(item, self.state.category, self.state.flashcard_face)

    def flip_card(self) -> int:
        if self.current_flashcard() is not None:
            self.state.flashcard_face = (self.state.flashcard_face + 1) % FLASHCARD_FACES
        return self.state.flashcard_face

    def next_card(self) -> bool:
        s = self.state
        if s.flashcard_index < len(s.flashcard_items) - 1:
            s.flashcard_index += 1
            s.flashcard_face = 0
            return True
        return False

    def prev_card(self) -> bool:
        s = self.state
        if s.flashcard_index > 0:
            s.flashcard_index -= 1
            s.flashcard_face = 0
            return True
        return False

    def shuffle_flashcards(self) -> None:
        s = self.state
        s.flashcard_items = shuffled(s.flashcard_items, self.rng)
        s.flashcard_index = 0
        s.flashcard_face = 0

    def rate_card(self, rating: str) -> Optional[str]:
        item = self.current_flashcard()
        if item is None:
            return None
        key = self.key_for(item)
        if rating == "known":
            self.store.mark_known(key)
        else:
            self.store.mark_needs_practice(key)
        self.next_card()
        return key

    # ---------------- quiz ----------------
    def start_quiz(self, quiz_type: Optional[str] = None) -> bool:
        if self.state.chapter is None:
            return False
        items = self.items()
        if not items:
            log.info(
                "No %s items in chapter %s, quiz not started",
                self.state.category, self.state.chapter["id"],
            )
            return False

        self._clear_quiz()
        s = self.state
        s.quiz_type = normalize_quiz_type(quiz_type or s.quiz_type)
        s.quiz_items = build_quiz_pool(items, rng=self.rng)
        s.last_result = None

        distinct = distinct_identity_count(items, s.category)
        s.quiz_short_options = distinct < QUIZ_OPTION_COUNT
        if s.quiz_short_options:
            log.warning(
                "Chapter %s %s has %d distinct item(s); quiz questions get %d options",
                s.chapter["id"], s.category, distinct, distinct,
            )

        self._open_question()
        self._show("quiz")
        return True

    def _open_question(self) -> None:
        s = self.state
        s.answered = False
        s.selected_identity = ""
        s.last_was_correct = None
        item = self.current_question()
        s.quiz_options = generate_options(item, self.items(), s.category, self.rng) if item else []

    def current_question(self) -> Optional[Dict[str, Any]]:
        s = self.state
        if 0 <= s.quiz_index < len(s.quiz_items):
            return s.quiz_items[s.quiz_index]
        return None

    def is_last_question(self) -> bool:
        return self.state.quiz_index == len(self.state.quiz_items) - 1

    def check_answer(self, selected: Dict[str, Any]) -> Optional[bool]:
        """Grades the first answer to the open question; later answers are ignored."""
        s = self.state
        correct = self.current_question()
        if s.view != "quiz" or correct is None or s.answered:
            return None

        ok = check_answer(selected, correct, s.category)
        s.answered = True
        s.selected_identity = item_identity(selected, s.category) if selected else ""
        s.last_was_correct = ok
        if ok:
            s.quiz_score += 1
        self._emit("answer", correct=ok, item=correct)
        return ok

    def next_question(self) -> bool:
        s = self.state
        if s.view != "quiz" or not s.answered:
            return False
        s.quiz_index += 1
        if s.quiz_index >= len(s.quiz_items):
            self._finish_quiz()
        else:
            self._open_question()
        return True

    def _finish_quiz(self) -> Dict[str, Any]:
        s = self.state
        total = len(s.quiz_items)
        percent = score_percent(s.quiz_score, total)
        self.store.record_quiz_score(s.chapter["id"], s.category, percent)

        result = {
            "score": s.quiz_score,
            "total": total,
            "percent": percent,
            "band": score_band(percent),
            "message": score_message(percent),
            "celebrate": should_celebrate(percent),
        }
        s.last_result = result
        log.info(
            "Quiz finished: chapter %s %s %s -> %d/%d (%d%%)",
            s.chapter["id"], s.category, s.quiz_type, s.quiz_score, total, percent,
        )

        self._show("quiz-complete")
        if result["celebrate"]:
            self._emit("celebrate", percent=percent)
        return result

    def restart_quiz(self) -> bool:
        return self.start_quiz(self.state.quiz_type)

    def end_quiz(self) -> bool:
        return self.navigate("chapter")

    # ---------------- progress ----------------
    def reset_all(self) -> None:
        self.store.reset_all()

    def summary(self) -> Dict[str, Any]:
        return progress_summary(self.store.record, self.chapters)

    def completion(self, chapter: Dict[str, Any]) -> int:
        return chapter_completion(self.store.record, chapter)

    # ---------------- speech ----------------
    def speak(self, text: str) -> None:
        if text:
            self._emit("speak", text=text, lang=SPEECH_LANG, rate=SPEECH_RATE)

    def speak_current(self) -> Optional[str]:
        s = self.state
        item: Optional[Dict[str, Any]] = None
        if s.view == "flashcard":
            item = self.current_flashcard()
        elif s.view == "quiz" and normalize_quiz_type(s.quiz_type) == "jp-en":
            item = self.current_question()
        if item is None:
            return None
        text = speech_text(item, s.category)
        self.speak(text)
        return text or None
