from illusongs.models import Song, Verse, VerseArtifact
from illusongs.services.prompts import (
    ADDITIONAL_DIRECTION_HEADER,
    ART_STYLE_BLOCK,
    build_continuity_context,
    build_verse_prompt,
    flatten_continuity,
    is_first_verse,
    previous_verses,
)


def _song():
    verses = [
        Verse(id="v3", sequence_number=3, lyric_text="Tredje vers"),
        Verse(id="v1", sequence_number=1, lyric_text="  Første vers  "),
        Verse(id="v2", sequence_number=2, lyric_text="Andet vers"),
    ]
    return Song(id="s1", title="Min Sang", slug="min-sang", verses=verses)


def _verse(song, verse_id):
    return next(v for v in song.verses if v.id == verse_id)


def test_first_verse_prompt_carries_whole_song_and_style():
    song = _song()
    prompt = build_verse_prompt(song, _verse(song, "v1"))

    assert prompt.full == prompt.base
    assert prompt.base.startswith("Her er en sang:\n\nMin Sang\n\nFørste vers\n\nAndet vers\n\nTredje vers")
    assert ART_STYLE_BLOCK in prompt.base
    assert prompt.base.endswith("Lav en illustration af første vers:\n\nFørste vers")


def test_later_verse_prompt_is_short():
    song = _song()
    prompt = build_verse_prompt(song, _verse(song, "v2"))
    assert prompt.base == "Illustrer næste vers i samme stil og dimensioner:\n\nAndet vers"
    assert ART_STYLE_BLOCK not in prompt.base


def test_additional_direction_is_appended_to_full_prompt_only():
    song = _song()
    prompt = build_verse_prompt(song, _verse(song, "v2"), "  Tegn en rød hund  ")
    assert prompt.full == f"{prompt.base}\n\n{ADDITIONAL_DIRECTION_HEADER}\n\nTegn en rød hund"


def test_blank_direction_is_ignored():
    song = _song()
    prompt = build_verse_prompt(song, _verse(song, "v2"), "   ")
    assert prompt.full == prompt.base


def test_first_verse_is_lowest_sequence_number():
    song = _song()
    assert is_first_verse(song, _verse(song, "v1"))
    assert not is_first_verse(song, _verse(song, "v3"))
    assert [v.id for v in previous_verses(song, _verse(song, "v3"))] == ["v1", "v2"]


def test_continuity_context_lists_prior_verses_and_artifacts():
    song = _song()
    artifacts = {
        "v1": VerseArtifact(verse_id="v1", image_summary="En kat i sneen", thumbnail_path="s1/v1/thumb.webp"),
        "v2": VerseArtifact(verse_id="v2", image_summary=None, thumbnail_path=None),
    }
    turns = build_continuity_context(
        song, _verse(song, "v3"), artifacts, lambda p: f"/static/{p}" if p else None
    )

    assert [t.role for t in turns] == ["system", "user", "assistant", "user", "assistant"]
    assert ART_STYLE_BLOCK in turns[0].text
    assert turns[1].text == "Verse 1:\nFørste vers"
    assert turns[2].text == "En kat i sneen"
    assert turns[2].image_url == "/static/s1/v1/thumb.webp"
    assert turns[4].text.startswith("Illustration already exists for verse 2.")
    assert turns[4].image_url is None


def test_continuity_for_first_verse_is_only_style():
    song = _song()
    turns = build_continuity_context(song, _verse(song, "v1"), {})
    assert len(turns) == 1 and turns[0].role == "system"


def test_flatten_continuity_for_single_shot_providers():
    song = _song()
    artifacts = {"v1": VerseArtifact(verse_id="v1", image_summary="En kat i sneen")}
    turns = build_continuity_context(song, _verse(song, "v2"), artifacts)
    text = flatten_continuity(turns, "PROMPT")

    assert "Previous verse 1:\nFørste vers" in text
    assert "Illustration summary: En kat i sneen" in text
    assert text.endswith("Illustration prompt: PROMPT")
