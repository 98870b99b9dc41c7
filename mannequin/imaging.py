"""Garment classification, render prompts and the Gemini image client."""
import base64
import logging
from typing import Dict, Optional

import google.generativeai as genai

from .exceptions import GenerationFailed, UnsupportedGarment

logger = logging.getLogger(__name__)

UPPER = "upper"
LOWER = "lower"

UPPER_WEAR = frozenset({
    "t-shirt", "shirt", "jacket", "hoodie", "sweater", "sweatshirt", "blouse",
    "top", "tank top", "coat", "blazer", "kurta", "dress",
})
LOWER_WEAR = frozenset({
    "pants", "trousers", "jeans", "shorts", "skirt", "leggings", "joggers", "track pants",
})

VIEWS = ("front", "side", "back")

_BACKGROUND = "Background of the image should be white. It has to look like a 3D image of the garment."

PROMPTS: Dict[str, Dict[str, str]] = {
    UPPER: {
        "front": (
            "Front view of the {garment} should appear as if someone invisible has worn it. "
            "Make it look realistic with proper depth and shadows, showing how the fabric drapes "
            "naturally over the shoulders, chest and arms of an invisible body form. " + _BACKGROUND
        ),
        "side": (
            "Side view of the {garment} based on this front view. Show how it would look from the "
            "side when worn by an invisible person, with the sleeve and torso volume, realistic "
            "fabric draping and dimensional depth. " + _BACKGROUND
        ),
        "back": (
            "Back view of the {garment} should appear as if someone invisible has worn it. Make it "
            "look realistic with proper depth and shadows, showing how the fabric drapes across the "
            "shoulders and back of an invisible body form from behind. " + _BACKGROUND
        ),
    },
    LOWER: {
        "front": (
            "Front view of the {garment} should appear as if someone invisible has worn it. "
            "Make it look realistic with proper depth and shadows, showing how the waistband sits "
            "on the hips and how the fabric falls along invisible legs. " + _BACKGROUND
        ),
        "side": (
            "Side view of the {garment} based on this front view. Show how it would look from the "
            "side when worn by an invisible person, with the seat and leg volume, realistic fabric "
            "draping and dimensional depth. " + _BACKGROUND
        ),
        "back": (
            "Back view of the {garment} should appear as if someone invisible has worn it. Make it "
            "look realistic with proper depth and shadows, showing the seat, back pockets and how "
            "the fabric falls along invisible legs from behind. " + _BACKGROUND
        ),
    },
}


def classify_garment(label: Optional[str]) -> str:
    """Return UPPER or LOWER for a garment label (case-insensitive)."""
    key = (label or "").strip().lower()
    if key in UPPER_WEAR:
        return UPPER
    if key in LOWER_WEAR:
        return LOWER
    raise UnsupportedGarment(label)


def build_prompt(label: str, view: str) -> str:
    category = classify_garment(label)
    return PROMPTS[category][view].format(garment=label.strip().lower())


def extract_image_base64(response) -> Optional[str]:
    """Pull the first inline image out of a generate_content response, base64 encoded."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None
    content = getattr(candidates[0], "content", None)
    for part in getattr(content, "parts", None) or []:
        inline = getattr(part, "inline_data", None)
        data = getattr(inline, "data", None) if inline is not None else None
        if not data:
            continue
        if isinstance(data, str):
            return data
        return base64.b64encode(data).decode("ascii")
    return None


class ImageGenerator:
    """Thin wrapper around the Gemini image model."""

    def __init__(self, api_key: str, model_name: str):
        self.api_key = api_key
        self.model_name = model_name
        self._model = None

    def _get_model(self):
        if self._model is None:
            if not self.api_key:
                raise GenerationFailed("Image generation is not configured")
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(model_name=self.model_name)
        return self._model

    async def render(self, prompt: str, image: bytes, mime_type: str) -> str:
        model = self._get_model()
        response = await model.generate_content_async(
            [prompt, {"mime_type": mime_type, "data": image}]
        )
        encoded = extract_image_base64(response)
        if encoded is None:
            logger.warning("Model %s returned no image part", self.model_name)
            raise GenerationFailed("The image model returned no image")
        return encoded
