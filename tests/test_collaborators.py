"""
Tests for the narration, script and image collaborators with the network mocked out
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

import narration
from errors import CollaboratorError
from image_generator import ImageGenerator
from narration import NarrationSynthesizer
from script_writer import GREETING, ScriptWriter, clean_script, target_word_count


def response(json_data=None, content=b"", status=200):
    mock = MagicMock()
    mock.status_code = status
    mock.content = content
    mock.json.return_value = json_data
    if status >= 400:
        mock.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    return mock


class TestNarration:

    def test_gtts_without_key(self):
        def fake_write(fp):
            fp.write(b"ID3mp3")

        with patch.object(narration, "gTTS") as tts:
            tts.return_value.write_to_fp.side_effect = fake_write
            audio = NarrationSynthesizer().synthesize("hello there", voice_id="zh")
        assert audio == b"ID3mp3"
        tts.assert_called_once_with(text="hello there", lang="zh-CN")

    def test_elevenlabs_with_key(self):
        synth = NarrationSynthesizer(elevenlabs_api_key="key", default_voice="voice123")
        with patch("narration.requests.post", return_value=response(content=b"mp3")) as post:
            assert synth.synthesize("hi") == b"mp3"
        url = post.call_args[0][0]
        assert url.endswith("/text-to-speech/voice123")
        assert post.call_args.kwargs["headers"]["xi-api-key"] == "key"
        assert synth.provider == "elevenlabs"

    def test_http_error_is_collaborator_error(self):
        synth = NarrationSynthesizer(elevenlabs_api_key="key")
        with patch("narration.requests.post", return_value=response(status=401)):
            with pytest.raises(CollaboratorError):
                synth.synthesize("hi")

    def test_gtts_failure_is_collaborator_error(self):
        with patch.object(narration, "gTTS", side_effect=ValueError("Language not supported")):
            with pytest.raises(CollaboratorError):
                NarrationSynthesizer().synthesize("hi", voice_id="xx")

    def test_empty_text(self):
        with pytest.raises(CollaboratorError):
            NarrationSynthesizer().synthesize("   ")

    def test_voices_without_key_are_gtts_codes(self):
        voices = NarrationSynthesizer().list_voices()
        assert ("en", "en") in voices
        assert len(voices) == len(narration.VOICES)

    def test_voices_from_elevenlabs(self):
        synth = NarrationSynthesizer(elevenlabs_api_key="key")
        reply = response({"voices": [{"voice_id": "v1", "name": "Rachel"}, {"voice_id": "v2"}]})
        with patch("narration.requests.get", return_value=reply) as get:
            assert synth.list_voices() == [("v1", "Rachel"), ("v2", "v2")]
        assert get.call_args[0][0].endswith("/voices")
        assert get.call_args.kwargs["headers"]["xi-api-key"] == "key"

    def test_voices_http_error(self):
        synth = NarrationSynthesizer(elevenlabs_api_key="key")
        with patch("narration.requests.get", return_value=response(status=500)):
            with pytest.raises(CollaboratorError):
                synth.list_voices()


class TestScriptWriter:

    def test_word_budget(self):
        assert target_word_count(60) == 155
        assert target_word_count(30) == 78
        assert target_word_count(0) == 1

    def test_clean_script_strips_symbols_and_adds_greeting(self):
        script = clean_script("Use @decorators & #tags here", 50)
        assert script.startswith(GREETING)
        assert "@" not in script and "&" not in script and "#" not in script

    def test_clean_script_trims_to_budget(self):
        script = clean_script(f"{GREETING} " + "word " * 100, 10)
        assert len(script.split()) == 10
        assert script.endswith(".")

    def test_template_without_key(self):
        script = ScriptWriter().generate("print(1)", 20, "Python", "demo.py")
        assert script.startswith(GREETING)
        assert len(script.split()) <= target_word_count(20)

    def test_groq_preferred(self):
        body = {"choices": [{"message": {"content": "wussup Fam! This loop sums numbers."}}]}
        writer = ScriptWriter(groq_api_key="g", xai_api_key="x")
        with patch("script_writer.requests.post", return_value=response(body)) as post:
            script = writer.generate("total = sum(xs)", 30, "Python")
        assert "groq" in post.call_args[0][0]
        assert script == "wussup Fam! This loop sums numbers."

    def test_malformed_reply_is_collaborator_error(self):
        writer = ScriptWriter(xai_api_key="x")
        with patch("script_writer.requests.post", return_value=response({"unexpected": True})):
            with pytest.raises(CollaboratorError):
                writer.generate("x", 30)

    def test_social_metadata_falls_back(self):
        body = {"choices": [{"message": {"content": "not json"}}]}
        writer = ScriptWriter(groq_api_key="g")
        with patch("script_writer.requests.post", return_value=response(body)):
            metadata = writer.generate_social_metadata("Rust")
        assert metadata["title"] == "Rust Code Tutorial"

    def test_social_metadata_parsed(self):
        body = {"choices": [{"message": {"content": '{"title": "Sum it", "description": "Short."}'}}]}
        writer = ScriptWriter(groq_api_key="g")
        with patch("script_writer.requests.post", return_value=response(body)):
            assert writer.generate_social_metadata("Python") == {"title": "Sum it", "description": "Short."}


class TestImageGenerator:

    def test_downloads_generated_image(self):
        generated = response({"data": [{"url": "https://img.example/a.png"}]})
        with patch("image_generator.requests.post", return_value=generated), \
                patch("image_generator.requests.get", return_value=response(content=b"\x89PNG")) as get:
            assert ImageGenerator("key").generate("a penguin") == b"\x89PNG"
        get.assert_called_once()
        assert get.call_args[0][0] == "https://img.example/a.png"

    def test_requires_key(self):
        with pytest.raises(CollaboratorError):
            ImageGenerator().generate()

    def test_api_error(self):
        with patch("image_generator.requests.post", side_effect=requests.ConnectionError("down")):
            with pytest.raises(CollaboratorError):
                ImageGenerator("key").generate()
