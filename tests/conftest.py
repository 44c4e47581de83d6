import random
from typing import Any, Dict, List

import pytest

import genki_core as core


@pytest.fixture(autouse=True)
def progress_file(tmp_path, monkeypatch):
    # Keep every test's progress record in its own temporary file
    path = tmp_path / "genki_progress.json"
    monkeypatch.setattr(core, "PROGRESS_FILE", path)
    monkeypatch.setattr(core, "BACKUP_DIR", tmp_path / "backups")
    monkeypatch.setattr(core, "PERSISTENCE_BACKEND", "disk")
    return path


def make_vocab(n: int, prefix: str = "語") -> List[Dict[str, Any]]:
    return [
        {"japanese": f"{prefix}{i}", "reading": f"go{i}", "english": f"word {i}", "type": "noun"}
        for i in range(n)
    ]


def make_kanji(n: int) -> List[Dict[str, Any]]:
    chars = "一二三四五六七八九十"
    return [
        {"character": chars[i], "onyomi": f"on{i}", "kunyomi": f"kun{i}", "meaning": f"number {i + 1}", "examples": []}
        for i in range(n)
    ]


def make_phrases(n: int) -> List[Dict[str, Any]]:
    return [{"japanese": f"フレーズ{i}", "english": f"phrase {i}", "notes": ""} for i in range(n)]


@pytest.fixture
def vocab_factory():
    return make_vocab


@pytest.fixture
def chapters() -> List[Dict[str, Any]]:
    return [
        {
            "id": 1,
            "title": "New Friends",
            "titleJp": "あたらしいともだち",
            "vocabulary": make_vocab(5),
            "kanji": make_kanji(3),
            "phrases": make_phrases(2),
        },
        {
            "id": 2,
            "title": "Shopping",
            "titleJp": "かいもの",
            "vocabulary": make_vocab(12, prefix="買"),
            "kanji": [],
            "phrases": make_phrases(4),
        },
    ]


@pytest.fixture
def store() -> core.ProgressStore:
    return core.ProgressStore()


@pytest.fixture
def controller(chapters, store) -> core.StudyController:
    return core.StudyController(chapters, store, rng=random.Random(7))
