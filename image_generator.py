"""
Avatar / thumbnail image generation via the xAI image API
"""

from typing import Optional

import requests

from errors import CollaboratorError

XAI_IMAGE_URL = "https://api.x.ai/v1/images/generations"
DEFAULT_AVATAR_PROMPT = (
    "A cute cartoon penguin avatar for a programming tutorial, friendly and "
    "professional, simple design, transparent background"
)


class ImageGenerator:
    def __init__(self, xai_api_key: Optional[str] = None):
        self.xai_api_key = xai_api_key

    def generate(self, prompt: str = DEFAULT_AVATAR_PROMPT, size: str = "512x512") -> bytes:
        """Prompt to image bytes; any failure raises CollaboratorError"""
        if not self.xai_api_key:
            raise CollaboratorError("XAI_API_KEY is required for image generation")

        print(f"      [ImageGenerator] Generating image: {prompt[:60]}...")
        try:
            response = requests.post(
                XAI_IMAGE_URL,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {self.xai_api_key}",
                },
                json={"prompt": prompt, "n": 1, "size": size},
                timeout=120,
            )
            response.raise_for_status()
            image_url = response.json()["data"][0]["url"]

            # The API answers with a URL; download the picture itself
            image_response = requests.get(image_url, timeout=60)
            image_response.raise_for_status()
        except (requests.RequestException, KeyError, IndexError, ValueError) as e:
            raise CollaboratorError(f"Image generation failed: {e}") from e

        if not image_response.content:
            raise CollaboratorError("Image generation returned an empty image")
        return image_response.content
