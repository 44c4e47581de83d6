from __future__ import annotations

import html
import json
import logging
from typing import Any, Dict, List

import streamlit as st
import streamlit.components.v1 as components

import genki_core as core

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")


CATEGORY_LABELS = {
    "vocabulary": "📚 Vocabulary",
    "kanji": "漢 Kanji",
    "phrases": "💬 Phrases",
}
QUIZ_TYPE_LABELS = {
    "jp-en": "Japanese → English",
    "en-jp": "English → Japanese",
}


# ============================================================
# Loading (cached content; progress not cached)
# ============================================================
@st.cache_data(show_spinner=False)
def load_content_cached():
    chapters = core.load_chapters()
    issues = core.validate_content(chapters)
    return chapters, issues


# ============================================================
# State
# ============================================================
def queue_effect(event: str, payload: Dict[str, Any]) -> None:
    if event in ("speak", "celebrate"):
        st.session_state.effects.append((event, payload))


def ensure_state():
    if st.session_state.get("initialized"):
        return

    chapters, issues = load_content_cached()
    store = core.ProgressStore()

    ctl = core.StudyController(chapters, store)
    ctl.add_listener(queue_effect)

    st.session_state.initialized = True
    st.session_state.controller = ctl
    st.session_state.issues = issues
    st.session_state.effects = []  # type: List[tuple]
    st.session_state.feedback_banner = ""


def ctl() -> core.StudyController:
    return st.session_state.controller


def go(view: str):
    ctl().navigate(view)
    st.rerun()


# ============================================================
# Collaborator effects (speech + celebration)
# ============================================================
def play_effects():
    effects = st.session_state.effects
    st.session_state.effects = []

    for event, payload in effects:
        if event == "celebrate":
            st.balloons()
        elif event == "speak":
            text = json.dumps(payload.get("text", ""), ensure_ascii=False)
            lang = json.dumps(payload.get("lang", core.SPEECH_LANG))
            rate = float(payload.get("rate", core.SPEECH_RATE))
            components.html(
                f"""
                <script>
                const synth = window.parent.speechSynthesis || window.speechSynthesis;
                if (synth) {{
                  synth.cancel();
                  const u = new SpeechSynthesisUtterance({text});
                  u.lang = {lang};
                  u.rate = {rate};
                  const v = synth.getVoices().find(x => x.lang.startsWith("ja"));
                  if (v) u.voice = v;
                  synth.speak(u);
                }}
                </script>
                """,
                height=0,
            )


# ============================================================
# Views
# ============================================================
def render_home():
    st.header("Chapters")
    chapters = ctl().chapters
    if not chapters:
        st.warning("No chapters found. Add JSON files to content/chapters.")
        return

    cols = st.columns(3)
    for i, ch in enumerate(chapters):
        with cols[i % 3]:
            with st.container(border=True):
                st.markdown(f"### {ch['id']}. {ch['title']}")
                st.caption(ch.get("titleJp", ""))
                st.write(
                    f"📚 {len(ch['vocabulary'])} words · "
                    f"漢 {len(ch['kanji'])} kanji · "
                    f"💬 {len(ch['phrases'])} phrases"
                )
                st.progress(ctl().completion(ch) / 100.0)
                if st.button("Study", key=f"open_ch_{ch['id']}"):
                    ctl().select_chapter(ch["id"])
                    st.rerun()


def render_chapter():
    c = ctl()
    ch = c.state.chapter
    st.header(f"Chapter {ch['id']}: {ch['title']}")
    st.caption(ch.get("titleJp", ""))

    cats = list(core.CATEGORIES)
    picked = st.radio(
        "Category",
        cats,
        index=cats.index(c.state.category) if c.state.category in cats else 0,
        format_func=lambda x: CATEGORY_LABELS.get(x, x),
        horizontal=True,
    )
    if picked != c.state.category:
        c.select_category(picked)
        st.rerun()

    items = c.items()
    st.write(f"{len(items)} item(s) in {c.state.category}.")

    st.subheader("Review")
    r1, r2 = st.columns(2)
    with r1:
        if st.button("📖 Browse list", disabled=not items):
            c.start_review("browse")
            st.rerun()
    with r2:
        if st.button("🃏 Flashcards", key="start_flashcards", disabled=not items):
            c.start_review("flashcard")
            st.rerun()

    st.subheader("Quiz")
    distinct = core.distinct_identity_count(items, c.state.category)
    if items and distinct < core.QUIZ_OPTION_COUNT:
        st.caption(f"Only {distinct} item(s) here, so questions will have fewer than {core.QUIZ_OPTION_COUNT} options.")
    q1, q2 = st.columns(2)
    with q1:
        if st.button(QUIZ_TYPE_LABELS["jp-en"], key="start_quiz::jp-en", disabled=not items):
            c.start_quiz("jp-en")
            st.rerun()
    with q2:
        if st.button(QUIZ_TYPE_LABELS["en-jp"], key="start_quiz::en-jp", disabled=not items):
            c.start_quiz("en-jp")
            st.rerun()

    st.divider()
    if st.button("← All chapters"):
        go("home")


def big_text_html(text: str, size: str) -> str:
    return f"<div style='font-size:{size};text-align:center'>{html.escape(text)}</div>"


def status_badge(key: str) -> str:
    status = ctl().store.status(key)
    if status == "known":
        return "✅"
    if status == "practice":
        return "🔁"
    return ""


def render_browse():
    c = ctl()
    ch = c.state.chapter
    cat = c.state.category
    st.header(f"{ch['title']} - {core.capitalize_first(cat)}")

    s1, s2 = st.columns([3, 1], vertical_alignment="bottom")
    with s1:
        query = st.text_input("Search", value=c.state.search_query, key=f"browse_search::{ch['id']}::{cat}")
        if query != c.state.search_query:
            c.set_search_query(query)
    with s2:
        label = "👁 Show English" if c.state.translations_hidden else "👁 Hide English"
        if st.button(label):
            c.toggle_translations()
            st.rerun()

    hidden = c.state.translations_hidden
    items = c.visible_items()
    if not items:
        st.info("No matching items.")

    for i, it in enumerate(items):
        with st.container(border=True):
            a, b, d = st.columns([2, 4, 1], vertical_alignment="center")
            badge = status_badge(c.key_for(it))
            if cat == "kanji":
                with a:
                    st.markdown(f"## {it['character']} {badge}")
                with b:
                    st.write(f"音: {it['onyomi']} | 訓: {it['kunyomi']}")
                    if not hidden:
                        st.write(it["meaning"])
                        if it.get("examples"):
                            st.caption(", ".join(it["examples"]))
            elif cat == "phrases":
                with a:
                    st.markdown(f"**{it['japanese']}** {badge}")
                with b:
                    if not hidden:
                        st.write(it["english"])
                        if it.get("notes"):
                            st.caption(it["notes"])
            else:
                with a:
                    st.markdown(f"**{it['japanese']}** {badge}")
                    st.caption(it.get("reading", ""))
                with b:
                    if not hidden:
                        st.write(it["english"])
                    if it.get("type"):
                        st.caption(it["type"])
            with d:
                if st.button("🔊", key=f"speak_browse::{i}"):
                    c.speak(core.speech_text(it, cat))
                    st.rerun()

    st.divider()
    if st.button("← Back to chapter"):
        go("chapter")


def render_flashcard():
    c = ctl()
    s = c.state
    item = c.current_flashcard()
    total = len(s.flashcard_items)

    st.header("Flashcards")
    if item is None:
        st.info("No cards in this category.")
        if st.button("← Back to chapter"):
            go("chapter")
        return

    st.caption(f"Card {s.flashcard_index + 1} / {total}")
    label, text = c.current_face()
    with st.container(border=True):
        if label:
            st.caption(label)
        st.markdown(big_text_html(text, "2.4rem"), unsafe_allow_html=True)
        st.caption(" ".join("●" if i == s.flashcard_face else "○" for i in range(core.FLASHCARD_FACES)))

    b1, b2, b3, b4, b5 = st.columns(5)
    with b1:
        if st.button("← Prev", disabled=s.flashcard_index == 0):
            c.prev_card()
            st.rerun()
    with b2:
        if st.button("Flip", type="primary"):
            c.flip_card()
            st.rerun()
    with b3:
        if st.button("Next →", disabled=s.flashcard_index >= total - 1):
            c.next_card()
            st.rerun()
    with b4:
        if st.button("Shuffle"):
            c.shuffle_flashcards()
            st.rerun()
    with b5:
        if st.button("🔊"):
            c.speak_current()
            st.rerun()

    r1, r2 = st.columns(2)
    with r1:
        if st.button("✅ I know this"):
            c.rate_card("known")
            st.rerun()
    with r2:
        if st.button("🔁 Needs practice"):
            c.rate_card("practice")
            st.rerun()

    status = status_badge(c.key_for(item))
    if status:
        st.caption(f"Status: {status}")

    st.divider()
    if st.button("← Back to chapter"):
        go("chapter")


def render_quiz():
    c = ctl()
    s = c.state
    item = c.current_question()
    if item is None:
        go("chapter")
        return

    total = len(s.quiz_items)
    st.header(f"Quiz ({QUIZ_TYPE_LABELS.get(s.quiz_type, s.quiz_type)})")
    st.progress(s.quiz_index / total if total else 0.0)
    st.caption(f"Question {s.quiz_index + 1} / {total} · Score {s.quiz_score}")

    prompt = core.quiz_prompt(item, s.category, s.quiz_type)
    st.markdown(big_text_html(prompt, "2.2rem"), unsafe_allow_html=True)
    if s.quiz_type == "jp-en":
        if st.button("🔊 Listen"):
            c.speak_current()
            st.rerun()

    if s.quiz_short_options:
        st.caption("This category has few items, so there are fewer choices.")

    correct_id = core.item_identity(item, s.category)
    for i, opt in enumerate(s.quiz_options):
        main_line, sub_line = core.option_label(opt, s.category, s.quiz_type)
        text = f"{main_line} · {sub_line}" if sub_line else main_line
        opt_id = core.item_identity(opt, s.category)
        if s.answered:
            if opt_id == correct_id:
                text = f"✅ {text}"
            elif opt_id == s.selected_identity:
                text = f"❌ {text}"
        if st.button(text, key=f"quiz_opt::{s.quiz_index}::{i}", disabled=s.answered):
            c.check_answer(opt)
            st.rerun()

    if s.answered:
        if s.last_was_correct:
            st.success("Correct! Great job!")
        else:
            st.error(f"Incorrect. The answer was: {core.answer_text(item)}")

        label = "See Results" if c.is_last_question() else "Next Question →"
        if st.button(label, key="quiz_next", type="primary"):
            c.next_question()
            st.rerun()

    st.divider()
    if st.button("End quiz", key="quiz_end"):
        c.end_quiz()
        st.rerun()


def render_quiz_complete():
    c = ctl()
    res = c.state.last_result or {}
    st.header("Quiz complete")
    st.metric("Final score", f"{res.get('percent', 0)}%", help=f"{res.get('score', 0)} / {res.get('total', 0)}")
    st.write(res.get("message", ""))

    b1, b2 = st.columns(2)
    with b1:
        if st.button("Try again", key="quiz_restart", type="primary"):
            c.restart_quiz()
            st.rerun()
    with b2:
        if st.button("← Back to chapter"):
            go("chapter")


def render_progress():
    c = ctl()
    summary = c.summary()

    st.header("Progress")
    m1, m2, m3, m4, m5 = st.columns(5)
    m1.metric("🔥 Streak", summary["streak"])
    m2.metric("Known", summary["known"])
    m3.metric("Needs practice", summary["needs_practice"])
    m4.metric("Quizzes taken", summary["quizzes"])
    m5.metric("Average score", f"{summary['avg_score']}%")

    st.subheader("Chapters")
    for row in summary["chapters"]:
        st.progress(row["percent"] / 100.0, text=f"Ch. {row['id']}: {row['title']} ({row['percent']}%)")

    scores: List[Dict[str, Any]] = c.progress.get("quizScores", [])
    if scores:
        with st.expander("Quiz history", expanded=False):
            for q in reversed(scores[-20:]):
                st.write(f"{q['date'][:16]} · Ch. {q['chapter']} {q['category']} · {q['score']}%")

    st.divider()
    st.subheader("Data")
    d1, d2 = st.columns(2)
    with d1:
        if st.button("Backup"):
            path = core.write_backup(c.progress)
            st.session_state.feedback_banner = f"✅ Backup written: {path}"
            st.rerun()
    with d2:
        confirm = st.checkbox("I understand this cannot be undone", key="confirm_reset")
        if st.button("Reset all progress", key="reset_all", disabled=not confirm):
            c.reset_all()
            st.session_state.pop("confirm_reset", None)
            st.session_state.feedback_banner = "🔄 Progress reset."
            st.rerun()


VIEW_RENDERERS = {
    "home": render_home,
    "chapter": render_chapter,
    "browse": render_browse,
    "flashcard": render_flashcard,
    "quiz": render_quiz,
    "quiz-complete": render_quiz_complete,
    "progress": render_progress,
}


# ============================================================
# Main
# ============================================================
def main():
    st.set_page_config(page_title="Genki Study Trainer", layout="wide")
    ensure_state()

    st.title("Genki Study Trainer")

    if st.session_state.issues:
        with st.expander("⚠️ Content validation warnings", expanded=False):
            for s in st.session_state.issues[:30]:
                st.write("-", s)
            if len(st.session_state.issues) > 30:
                st.write(f"... and {len(st.session_state.issues)-30} more")

    # Sidebar navigation
    with st.sidebar:
        st.header("Navigate")
        if st.button("🏠 Home", key="nav_home"):
            go("home")
        if st.button("📈 Progress", key="nav_progress"):
            go("progress")
        st.divider()
        st.metric("🔥 Streak", ctl().progress.get("streak", 0))

    if st.session_state.feedback_banner:
        st.success(st.session_state.feedback_banner)
        st.session_state.feedback_banner = ""

    view = ctl().state.view
    VIEW_RENDERERS.get(view, render_home)()

    play_effects()


if __name__ == "__main__":
    main()
