"""
Narration synthesis using ElevenLabs when an API key is configured,
gTTS (Google Text-to-Speech) otherwise
"""

import io
from typing import Optional

import requests
from gtts import gTTS
from gtts.tts import gTTSError

from config import DEFAULT_VOICE
from errors import CollaboratorError

ELEVENLABS_API_URL = "https://api.elevenlabs.io/v1"
ELEVENLABS_MODEL = "eleven_monolingual_v1"

# Language codes accepted as gTTS voices
VOICES = {
    "en": "en",
    "en-us": "en",
    "en-uk": "en-uk",
    "en-au": "en-au",
    "en-in": "en-in",
    "hi": "hi",      # Hindi
    "fr": "fr",      # French
    "de": "de",      # German
    "es": "es",      # Spanish
    "pt": "pt",      # Portuguese
    "it": "it",      # Italian
    "ja": "ja",      # Japanese
    "ko": "ko",      # Korean
    "zh": "zh-CN",   # Chinese (Simplified)
}


class NarrationSynthesizer:
    def __init__(self, elevenlabs_api_key: Optional[str] = None, default_voice: str = DEFAULT_VOICE):
        """
        Initialize narration synthesizer.

        Args:
            elevenlabs_api_key: ElevenLabs key; without one gTTS is used
            default_voice: ElevenLabs voice id, or gTTS language code
        """
        self.elevenlabs_api_key = elevenlabs_api_key
        self.default_voice = default_voice

    @property
    def provider(self) -> str:
        return "elevenlabs" if self.elevenlabs_api_key else "gtts"

    @property
    def mime_type(self) -> str:
        return "audio/mpeg"

    def list_voices(self) -> list:
        """Available ElevenLabs voices as (voice_id, name) pairs, or the gTTS language codes"""
        if not self.elevenlabs_api_key:
            return [(code, code) for code in VOICES]
        try:
            response = requests.get(
                f"{ELEVENLABS_API_URL}/voices",
                headers={"xi-api-key": self.elevenlabs_api_key},
                timeout=30,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise CollaboratorError(f"Failed to load voices: {e}") from e
        return [(v["voice_id"], v.get("name", v["voice_id"])) for v in response.json().get("voices", [])]

    def synthesize(self, text: str, voice_id: Optional[str] = None) -> bytes:
        """Text to MP3 bytes; any failure raises CollaboratorError"""
        if not text.strip():
            raise CollaboratorError("Cannot synthesize empty text")
        voice_id = voice_id or self.default_voice
        print(f"      [Narration] Synthesizing {len(text.split())} words with {self.provider} ({voice_id})")
        if self.elevenlabs_api_key:
            return self._synthesize_elevenlabs(text, voice_id)
        return self._synthesize_gtts(text, voice_id)

    def _synthesize_elevenlabs(self, text: str, voice_id: str) -> bytes:
        try:
            response = requests.post(
                f"{ELEVENLABS_API_URL}/text-to-speech/{voice_id}",
                headers={
                    "Accept": "audio/mpeg",
                    "Content-Type": "application/json",
                    "xi-api-key": self.elevenlabs_api_key,
                },
                json={
                    "text": text,
                    "model_id": ELEVENLABS_MODEL,
                    "voice_settings": {"stability": 0.5, "similarity_boost": 0.5},
                },
                timeout=120,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise CollaboratorError(f"ElevenLabs synthesis failed: {e}") from e
        if not response.content:
            raise CollaboratorError("ElevenLabs returned no audio")
        return response.content

    def _synthesize_gtts(self, text: str, voice_id: str) -> bytes:
        lang = VOICES.get(voice_id.lower(), voice_id)
        buffer = io.BytesIO()
        try:
            gTTS(text=text, lang=lang).write_to_fp(buffer)
        except (gTTSError, ValueError, AssertionError) as e:
            raise CollaboratorError(f"gTTS synthesis failed: {e}") from e
        return buffer.getvalue()
