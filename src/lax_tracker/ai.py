"""
Coaching assistant backed by the OpenAI chat completions API.

Provides game summaries, player performance analysis and roster
extraction from pasted website text.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from openai import OpenAI

from .config import AI_FALLBACK_ANALYSIS, AI_FALLBACK_SUMMARY, get_settings
from .errors import RosterImportError
from .models import Game, StatType

logger = logging.getLogger(__name__)

EMPTY_ROSTER_TEXT = "Pasted text cannot be empty."
ROSTER_FAILED = "Could not generate roster from the provided text. The AI failed to process the request."
ROSTER_BAD_FORMAT = "The AI returned an invalid format. Please try again or adjust the pasted text."


@dataclass(slots=True)
class PlayerRecord:
    name: str
    jersey_number: str
    position: str = ""


@dataclass(slots=True)
class PlayerAnalysis:
    name: str
    position: str
    total_games: int
    stats: dict[str, int] = field(default_factory=dict)


def format_game_for_prompt(game: Game) -> str:
    lines = [
        'Analyze the following lacrosse game data and provide a concise, exciting game summary. '
        'Also, name a "Player of the Game" with a brief justification.',
        "",
        f"Final Score: {game.home_team.name} - {game.score.home}, {game.away_team.name} - {game.score.away}",
        "",
        "Key Events:",
    ]
    for stat in game.stats:
        player = game.find_player(stat.player_id)
        team = game.team_by_id(stat.team_id) or game.team_for_player(stat.player_id)
        if player is None or team is None:
            continue
        event = f"- {team.name}: #{player.jersey_number} {player.name} ({player.position or 'N/A'}) - {stat.type.value}"
        if stat.type == StatType.GOAL and stat.assisting_player_id:
            assister = game.find_player(stat.assisting_player_id)
            if assister is not None:
                event += f" (Assist: #{assister.jersey_number} {assister.name})"
        lines.append(event)
    return "\n".join(lines) + "\n"


def format_player_analysis_prompt(data: PlayerAnalysis) -> str:
    stats = "\n".join(f"- {name}: {value}" for name, value in data.stats.items())
    if not stats.strip():
        stats = "No stats recorded for this player."
    return (
        "You are an expert lacrosse coach and performance analyst. Analyze the following player's "
        f"performance based on their aggregated stats from {data.total_games} games.\n\n"
        f"Player Name: {data.name}\n"
        f"Position: {data.position}\n\n"
        f"Stats:\n{stats}\n\n"
        "Provide a concise analysis of this player's strengths and weaknesses. Offer 2-3 specific, "
        "actionable suggestions for improvement. Structure your response in well-formatted markdown. "
        "Be encouraging but realistic in your feedback.\n"
    )


def format_roster_prompt(text: str) -> str:
    return (
        "Analyze the following text from a lacrosse team's website roster and extract the player "
        "information. Identify each player's name, jersey number, and position. The position might be "
        "abbreviated (e.g., A, M, D, G, LSM, FOGO). Do your best to standardize the position.\n\n"
        f'Pasted Text:\n"""\n{text}\n"""\n\n'
        'Return a JSON object of the form {"players": [{"name": str, "jerseyNumber": str, '
        '"position": str}]}.\n'
    )


def parse_roster_payload(content: str) -> list[PlayerRecord]:
    """Parse the model's JSON into player records.

    Accepts either a bare array or an object wrapping it under ``players``.
    Raises ``json.JSONDecodeError`` or ``ValueError`` on malformed content.
    """
    payload: Any = json.loads(content)
    if isinstance(payload, Mapping):
        payload = payload.get("players", payload.get("roster"))
    if not isinstance(payload, list):
        raise ValueError("roster payload is not a list")

    records: list[PlayerRecord] = []
    for item in payload:
        if not isinstance(item, Mapping):
            continue
        name = str(item.get("name", "")).strip()
        if not name:
            continue
        jersey = item.get("jerseyNumber", item.get("jersey_number", ""))
        records.append(
            PlayerRecord(
                name=name,
                jersey_number=str(jersey if jersey is not None else "").strip(),
                position=str(item.get("position", "") or "").strip(),
            )
        )
    return records


class CoachAssistant:
    """Thin wrapper over an OpenAI-compatible chat client."""

    def __init__(
        self,
        client: Any | None = None,
        summary_model: str = "gpt-4o-mini",
        analysis_model: str = "gpt-4o",
    ) -> None:
        self.client = client
        self.summary_model = summary_model
        self.analysis_model = analysis_model

    def _complete(self, model: str, prompt: str, *, json_mode: bool = False) -> str:
        if self.client is None:
            raise RuntimeError("AI client not configured")
        kwargs: dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = self.client.chat.completions.create(
            model=model,
            messages=[{"role": "user", "content": prompt}],
            **kwargs,
        )
        content = response.choices[0].message.content
        if not content:
            raise ValueError("AI returned empty response")
        return content

    def summarize(self, game: Game) -> str:
        try:
            return self._complete(self.summary_model, format_game_for_prompt(game))
        except Exception as exc:
            logger.error("Error generating game summary: %s", exc)
            return AI_FALLBACK_SUMMARY

    def analyze_performance(self, data: PlayerAnalysis) -> str:
        try:
            return self._complete(self.analysis_model, format_player_analysis_prompt(data))
        except Exception as exc:
            logger.error("Error analyzing player performance: %s", exc)
            return AI_FALLBACK_ANALYSIS

    def extract_roster(self, text: str) -> list[PlayerRecord]:
        if not text.strip():
            raise RosterImportError(EMPTY_ROSTER_TEXT)
        try:
            content = self._complete(self.summary_model, format_roster_prompt(text), json_mode=True)
        except Exception as exc:
            logger.error("Error generating roster: %s", exc)
            raise RosterImportError(ROSTER_FAILED) from exc
        try:
            return parse_roster_payload(content.strip())
        except ValueError as exc:
            # json.JSONDecodeError is a ValueError.
            logger.warning("Malformed roster content (first 100 chars): %r", content[:100])
            raise RosterImportError(ROSTER_BAD_FORMAT) from exc


def get_coach_assistant() -> CoachAssistant | None:
    """Build an assistant when an API key is configured, otherwise None."""
    settings = get_settings()
    if not settings.openai_api_key:
        logger.warning("OpenAI API key not configured - AI features disabled")
        return None
    try:
        client = OpenAI(api_key=settings.openai_api_key)
    except Exception as exc:
        logger.error("Failed to initialize OpenAI client: %s", exc)
        return None
    return CoachAssistant(client, summary_model=settings.summary_model, analysis_model=settings.analysis_model)
