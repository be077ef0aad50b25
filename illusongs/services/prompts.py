# services/prompts.py
"""Illustration prompts and the continuity context sent along with them.

The first verse carries the whole song plus the art style so the provider can
anchor the look; later verses only carry their own text and lean on the
continuity turns (earlier lyrics, image summaries, low-detail thumbnails).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Literal, Mapping, Optional, Sequence

from illusongs.models import Song, Verse, VerseArtifact

ART_STYLE_BLOCK = "\n".join(
    [
        "Illustrerer med følgende stil: Vintage børnebogsillustration fra 1960’erne/70’erne,",
        "malet i gouache/akvarel med synlige penselstrøg og mat papirtekstur.",
        "Surrealistiske og humoristiske scener med overdrevne figurer, ekspressive,",
        "som udgangspunkt smilende ansigter (med mindre andet er passende i historien)",
        "og kaotisk energi.",
        "Dæmpede jordfarver kombineret med stærke kontraster.",
        "Tableau-komposition fyldt med små detaljer og flere handlingsspor.",
        "Stemning: barnlig og grotesk på samme tid, satirisk, absurd og anarkistisk.",
        "Ingen tekst på illustrationen.",
        "Karakterer refereres til i flere vers skal være konsistente.",
        "Dimensions must be 1024 x 1536, tall, 2:3 aspect ratio.",
    ]
)

ADDITIONAL_DIRECTION_HEADER = "Yderligere instruktion for dette vers:"

Role = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class VersePrompt:
    base: str
    full: str


@dataclass(frozen=True)
class ContinuityTurn:
    role: Role
    text: str
    image_url: Optional[str] = None  # low-detail reference only


def _join_verses(verses: Sequence[Verse]) -> str:
    return "\n\n".join(v.lyric_text.strip() for v in verses)


def _ordered(verses: Sequence[Verse]) -> list[Verse]:
    return sorted(verses, key=lambda v: v.sequence_number)


def create_initial_song_prompt(song: Song) -> str:
    verses = _ordered(song.verses)
    if not verses:
        raise ValueError("Song requires at least one verse to build prompt.")
    return "\n".join(
        [
            "Her er en sang:",
            "",
            song.title,
            "",
            _join_verses(verses),
            "",
            ART_STYLE_BLOCK,
            "",
            "Lav en illustration af første vers:",
            "",
            verses[0].lyric_text.strip(),
        ]
    )


def create_next_verse_prompt(verse: Verse) -> str:
    return "\n".join(
        [
            "Illustrer næste vers i samme stil og dimensioner:",
            "",
            verse.lyric_text.strip(),
        ]
    )


def is_first_verse(song: Song, verse: Verse) -> bool:
    return all(verse.sequence_number <= other.sequence_number for other in song.verses)


def build_verse_prompt(song: Song, verse: Verse, additional_direction: Optional[str] = None) -> VersePrompt:
    base = create_initial_song_prompt(song) if is_first_verse(song, verse) else create_next_verse_prompt(verse)
    direction = (additional_direction or "").strip()
    if not direction:
        return VersePrompt(base=base, full=base)
    full = "\n".join([base, "", ADDITIONAL_DIRECTION_HEADER, "", direction])
    return VersePrompt(base=base, full=full)


def previous_verses(song: Song, verse: Verse) -> list[Verse]:
    return [v for v in _ordered(song.verses) if v.sequence_number < verse.sequence_number]


def artifact_summary(artifact: VerseArtifact, sequence_number: int) -> str:
    summary = (artifact.image_summary or "").strip()
    if summary:
        return summary
    return (
        f"Illustration already exists for verse {sequence_number}. "
        "Maintain visual continuity with this scene."
    )


def style_instruction() -> str:
    return "\n".join(
        [
            "Maintain the following illustration style consistently across all verses:",
            "",
            ART_STYLE_BLOCK,
            "",
            "Preserve character continuity, mood, and palette across every verse.",
        ]
    )


def build_continuity_context(
    song: Song,
    verse: Verse,
    artifacts_by_verse_id: Mapping[str, VerseArtifact],
    thumbnail_url: Optional[Callable[[Optional[str]], Optional[str]]] = None,
) -> list[ContinuityTurn]:
    turns = [ContinuityTurn(role="system", text=style_instruction())]
    for prior in previous_verses(song, verse):
        turns.append(
            ContinuityTurn(role="user", text=f"Verse {prior.sequence_number}:\n{prior.lyric_text.strip()}")
        )
        artifact = artifacts_by_verse_id.get(prior.id)
        if artifact is None:
            continue
        image_url = thumbnail_url(artifact.thumbnail_path) if thumbnail_url else None
        turns.append(
            ContinuityTurn(
                role="assistant",
                text=artifact_summary(artifact, prior.sequence_number),
                image_url=image_url,
            )
        )
    return turns


def flatten_continuity(turns: Sequence[ContinuityTurn], prompt: str) -> str:
    """Render continuity turns and the prompt as one text, for single-shot providers."""
    segments = [
        "\n".join(
            [
                "Create a single illustration for the next verse in an illustrated song.",
                "Maintain this established art style and emotional tone across every frame:",
                "",
                ART_STYLE_BLOCK,
            ]
        ),
        "Preserve character continuity, staging, and palette choices across the full song.",
    ]
    for turn in turns:
        if turn.role == "user":
            segments.append(f"Previous {turn.text[0].lower()}{turn.text[1:]}")
        elif turn.role == "assistant":
            segments.append(f"Illustration summary: {turn.text}")
    segments.append(f"Illustration prompt: {prompt}")
    return "\n\n".join(segments)
