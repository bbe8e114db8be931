"""Deterministic voice source resolution for dialogue lines."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .models import Character, RegistryVoiceEntry

CLONE_SENTINEL = "recording"
DEFAULT_VOICE_ID = "en_us_001"


@dataclass(frozen=True)
class RegistryVoice:
    id: str

    def turn_fields(self) -> Dict[str, Any]:
        return {"voice_id": self.id}


@dataclass(frozen=True)
class ClonedAudio:
    url: str

    def turn_fields(self) -> Dict[str, Any]:
        # Clones are addressed by reference audio only; no voice_id.
        return {"ref_audio_urls": [self.url]}


@dataclass(frozen=True)
class CharacterAssignedVoice:
    voice_id: str

    def turn_fields(self) -> Dict[str, Any]:
        return {"voice_id": self.voice_id}


@dataclass(frozen=True)
class Fallback:
    voice_id: str = DEFAULT_VOICE_ID

    def turn_fields(self) -> Dict[str, Any]:
        return {"voice_id": self.voice_id}


VoiceSource = Union[RegistryVoice, ClonedAudio, CharacterAssignedVoice, Fallback]


def resolve_voice(
    speaker_ref: str,
    characters: Iterable[Character],
    registry_voices: Iterable[RegistryVoiceEntry],
    clone_sentinel: str = CLONE_SENTINEL,
    default_voice_id: str = DEFAULT_VOICE_ID,
) -> Tuple[VoiceSource, str]:
    ref = (speaker_ref or "").strip()
    if ref:
        for voice in registry_voices:
            if voice.id == ref:
                return RegistryVoice(voice.id), "registry"
        character = _find_character(ref, characters)
        if character is not None:
            if character.voice_id == clone_sentinel and character.voice_ref_url:
                return ClonedAudio(character.voice_ref_url), "clone"
            if character.voice_id and character.voice_id != clone_sentinel:
                return CharacterAssignedVoice(character.voice_id), "character"
    return Fallback(default_voice_id), "fallback"


def _find_character(ref: str, characters: Iterable[Character]) -> Optional[Character]:
    for character in characters:
        if character.id == ref:
            return character
    return None


class VoiceResolver:
    def __init__(
        self,
        characters: Optional[Iterable[Character]] = None,
        registry_voices: Optional[Iterable[RegistryVoiceEntry]] = None,
        clone_sentinel: str = CLONE_SENTINEL,
        default_voice_id: str = DEFAULT_VOICE_ID,
    ) -> None:
        self.characters: List[Character] = list(characters or [])
        self.registry_voices: List[RegistryVoiceEntry] = list(registry_voices or [])
        self.clone_sentinel = clone_sentinel
        self.default_voice_id = default_voice_id
        self.warnings: List[str] = []

    def resolve(self, speaker_ref: str) -> VoiceSource:
        source, origin = resolve_voice(
            speaker_ref,
            self.characters,
            self.registry_voices,
            clone_sentinel=self.clone_sentinel,
            default_voice_id=self.default_voice_id,
        )
        if origin == "fallback":
            self.warnings.append(
                f"speaker {speaker_ref or '<empty>'!r} unresolved; using fallback voice {source.voice_id}"
            )
        return source

    def speaker_name(self, speaker_ref: str) -> str:
        character = _find_character(speaker_ref, self.characters)
        if character is not None and character.name:
            return character.name
        for voice in self.registry_voices:
            if voice.id == speaker_ref:
                return voice.name or "Narrator"
        return "Unknown Speaker"

    def conversion_target(self, source: VoiceSource) -> Optional[str]:
        """Reference audio a timbre conversion should aim for, if any."""
        if isinstance(source, ClonedAudio):
            return source.url
        voice_id = source.id if isinstance(source, RegistryVoice) else source.voice_id
        for voice in self.registry_voices:
            if voice.id == voice_id and voice.preview_url:
                return voice.preview_url
        return None

    def drain_warnings(self) -> List[str]:
        out, self.warnings = self.warnings, []
        return out


def load_voice_registry(path: str) -> List[RegistryVoiceEntry]:
    if not path or not os.path.exists(path):
        return []
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    items = data if isinstance(data, list) else (data.get("voices") or [])
    out: List[RegistryVoiceEntry] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        entry = RegistryVoiceEntry.from_record(item)
        if entry.id:
            out.append(entry)
    return out


def load_characters(records: Iterable[Dict[str, Any]]) -> List[Character]:
    out: List[Character] = []
    for record in records:
        character = Character.from_record(record)
        if character.id:
            out.append(character)
    return out
