"""
Narration script and social metadata generation using a free LLM API (Groq),
or xAI when only an xAI key is configured
"""

import json
import re
from typing import Optional

import requests

from config import WORDS_PER_MINUTE
from errors import CollaboratorError

# Groq API (free tier available at console.groq.com)
GROQ_API_URL = "https://api.groq.com/openai/v1/chat/completions"
GROQ_MODEL = "llama-3.3-70b-versatile"
XAI_API_URL = "https://api.x.ai/v1/chat/completions"
XAI_MODEL = "grok-beta"

GREETING = "wussup Fam!"


def target_word_count(target_length_seconds: float) -> int:
    return max(1, round(target_length_seconds / 60 * WORDS_PER_MINUTE))


def clean_script(script: str, max_words: int) -> str:
    """Strip symbols TTS reads badly, add the greeting and trim to the word budget"""
    script = re.sub(r"[^\w\s.,!?'-]", " ", script)
    script = re.sub(r"\s+", " ", script).strip()
    if not script.lower().startswith(GREETING.lower()[:-1]):
        script = f"{GREETING} {script}".strip()
    words = script.split(" ")
    if len(words) > max_words:
        script = " ".join(words[:max_words])
        if not re.search(r"[.!?]$", script):
            script += "."
    return script


class ScriptWriter:
    def __init__(self, groq_api_key: Optional[str] = None, xai_api_key: Optional[str] = None):
        self.groq_api_key = groq_api_key
        self.xai_api_key = xai_api_key

    @property
    def has_llm(self) -> bool:
        return bool(self.groq_api_key or self.xai_api_key)

    def _chat(self, prompt: str, temperature: float = 0.7) -> str:
        """Call the configured chat completion API"""
        if self.groq_api_key:
            url, key, model = GROQ_API_URL, self.groq_api_key, GROQ_MODEL
        else:
            url, key, model = XAI_API_URL, self.xai_api_key, XAI_MODEL
        headers = {
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json"
        }
        data = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": 1000,
            "stream": False,
        }
        try:
            response = requests.post(url, headers=headers, json=data, timeout=60)
            response.raise_for_status()
            return response.json()["choices"][0]["message"]["content"].strip()
        except (requests.RequestException, KeyError, IndexError, ValueError) as e:
            raise CollaboratorError(f"Script generation failed: {e}") from e

    def generate(
        self,
        context_text: str,
        target_length_seconds: float,
        language: str = "code",
        file_name: str = "",
    ) -> str:
        """
        Write a narration script for a clip of the given length.

        Args:
            context_text: The source text the clip shows
            target_length_seconds: Clip length; the script targets 155 spoken words per minute
            language: Language label of the source
            file_name: Original file name, mentioned to the model

        Returns:
            Cleaned script text, trimmed to the target word count
        """
        words = target_word_count(target_length_seconds)
        if not self.has_llm:
            print("      [ScriptWriter] No API key configured, using template script")
            return clean_script(self._template_script(language, file_name), words)

        prompt = f"""Create a script for a {target_length_seconds:.0f}-second code tutorial video. The script must be EXACTLY {words} words.

CRITICAL REQUIREMENTS:
- Start with "{GREETING}"
- Use ONLY letters, spaces, and basic punctuation (periods, commas, exclamation marks)
- NO symbols like @, #, &, %, $, etc.
- Spell out URLs and technical symbols
- Keep it natural and conversational, not corny
- Explain what the code does and how to use it

Code details:
- Language: {language}
- Filename: {file_name}
- Code content: {context_text[:500]}...

Return ONLY the script text, nothing else."""

        script = clean_script(self._chat(prompt), words)
        print(f"      [ScriptWriter] Generated script: {len(script.split())} words (target: {words})")
        return script

    def generate_social_metadata(self, language: str, script: str = "", file_name: str = "") -> dict:
        """Title and description for posting the clip; falls back to a fixed template"""
        fallback = {
            "title": f"{language} Code Tutorial",
            "description": (
                f"Learn {language} programming with this quick tutorial. "
                "Perfect for developers looking to improve their coding skills."
            ),
        }
        if not self.has_llm:
            return fallback

        prompt = f"""Write a social media title and description for a short {language} code tutorial video.
File: {file_name}
Narration: {script[:500]}

- Title under 60 characters
- Description of 2-3 sentences
- Don't use excessive emojis or hashtags in the description

Return in this exact JSON format:
{{
  "title": "Your catchy title here",
  "description": "Your 2-3 sentence description here"
}}"""
        try:
            content = self._chat(prompt)
            parsed = json.loads(content)
        except CollaboratorError as e:
            print(f"      [ScriptWriter] {e}, using fallback metadata")
            return fallback
        except json.JSONDecodeError:
            print("      [ScriptWriter] Could not parse metadata response, using fallback metadata")
            return fallback
        return {
            "title": parsed.get("title") or "Code Tutorial",
            "description": parsed.get("description") or "Check out this code tutorial!",
        }

    @staticmethod
    def _template_script(language: str, file_name: str) -> str:
        name = file_name or "this file"
        return (
            f"{GREETING} Today we are walking through {name}, a {language} example. "
            "Watch each line appear and follow the logic step by step. "
            "Copy it into your editor, run it, then tweak it to make it your own. "
            "Follow for more quick code breakdowns."
        )
