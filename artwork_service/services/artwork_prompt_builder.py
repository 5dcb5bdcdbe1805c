"""
Composition of image prompts from a listener's song titles.

The builder is intentionally simple: it looks for a handful of evocative
keywords in each title and turns them into visual elements.  Titles
without a known keyword are still named in the prompt so every song is
represented.
"""

import dataclasses
import re

MAXIMUM_SONGS_IN_PROMPT = 5

FALLBACK_PROMPT = "Abstract digital artwork inspired by music"

_PARENTHESISED_SUFFIX = re.compile(r"\s*\([^)]*\)")

# Keyword found in a lower-cased title → visual element it suggests.
_KEYWORD_IMAGERY = {
    "heaven": "a celestial stairway ascending through clouds",
    "hell": "flames and shadows in a dark underworld",
    "fire": "dancing flames and embers",
    "water": "waves and flowing water",
    "ocean": "waves and flowing water",
    "sea": "waves and flowing water",
    "rain": "rain falling on city lights",
    "moon": "a glowing moon in the night sky",
    "sun": "radiant sunlight and golden rays",
    "star": "a field of bright stars",
    "night": "a quiet midnight skyline",
    "love": "two silhouettes wrapped in warm light",
    "heart": "a luminous heart made of light",
    "blue": "deep blue washes of colour",
    "road": "an open road vanishing into the horizon",
    "dream": "surreal floating dreamscapes",
}

_DARK_KEYWORDS = frozenset({"hell", "night", "rain", "moon"})
_BRIGHT_KEYWORDS = frozenset({"heaven", "sun", "star", "love", "heart"})


@dataclasses.dataclass(frozen=True)
class ArtworkPrompt:
    """Prompt text for the image provider plus details shown to the listener."""

    prompt: str
    details: dict[str, str]


def parse_song_titles(raw_song_list: str) -> list[str]:
    """
    Split a comma-separated song list into trimmed, non-empty titles.

    >>> parse_song_titles(" Clair de Lune,, Teardrop ,")
    ['Clair de Lune', 'Teardrop']
    """
    return [title.strip() for title in raw_song_list.split(",") if title.strip()]


def _clean_title(song_title: str) -> str:
    return _PARENTHESISED_SUFFIX.sub("", song_title).strip() or song_title.strip()


def _matched_keywords(song_title: str) -> list[str]:
    title_words = re.findall(r"[a-z]+", song_title.lower())
    return [keyword for keyword in _KEYWORD_IMAGERY if any(word.startswith(keyword) for word in title_words)]


def build_artwork_prompt(song_titles: list[str]) -> ArtworkPrompt:
    """Compose the generation prompt and descriptive details for ``song_titles``."""
    if not song_titles:
        return ArtworkPrompt(
            prompt=FALLBACK_PROMPT,
            details={
                "art_style": "abstract digital art",
                "color_palette": "vibrant colors",
                "visual_elements": "musical inspiration",
            },
        )

    song_descriptions = []
    all_keywords: list[str] = []
    all_imagery: list[str] = []

    for song_title in song_titles[:MAXIMUM_SONGS_IN_PROMPT]:
        clean_title = _clean_title(song_title)
        keywords = _matched_keywords(clean_title)
        imagery = list(dict.fromkeys(_KEYWORD_IMAGERY[keyword] for keyword in keywords))

        all_keywords.extend(keywords)
        all_imagery.extend(imagery)
        song_descriptions.append((clean_title, imagery))

    unique_imagery = list(dict.fromkeys(all_imagery))

    prompt = "Create a unified digital artwork that visually represents these songs: "
    prompt += ", ".join(
        f'"{title}" ({imagery[0] if imagery else "musical essence"})' for title, imagery in song_descriptions
    )
    prompt += ". "
    if unique_imagery:
        prompt += f"Incorporate these visual elements: {', '.join(unique_imagery)}. "
    prompt += (
        "Blend every song into a single cohesive composition. "
        "Focus on pure visual art with no text, words or letters."
    )

    if any(keyword in _BRIGHT_KEYWORDS for keyword in all_keywords):
        color_palette = "bright and uplifting tones"
    elif any(keyword in _DARK_KEYWORDS for keyword in all_keywords):
        color_palette = "dark and moody tones"
    else:
        color_palette = "harmonious blend"

    return ArtworkPrompt(
        prompt=prompt,
        details={
            "art_style": "unified digital composition",
            "color_palette": color_palette,
            "visual_elements": (
                ", ".join(unique_imagery[:6]) if unique_imagery else "musical essence and artistic interpretation"
            ),
            "song_breakdown": "\n".join(
                f'"{title}": {", ".join(imagery) if imagery else "musical essence"}'
                for title, imagery in song_descriptions
            ),
        },
    )
