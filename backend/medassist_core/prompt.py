from __future__ import annotations

from .data_uri import parse_data_uri
from .errors import EmptyInputError
from .models import Prompt, PromptPart, PromptRequest


def assemble_prompt(text: str | None, image: str | None, *, default_instruction: str) -> Prompt:
    """Build the backend prompt from raw user input.

    Text always leads; an image-only request gets ``default_instruction`` as its
    leading text part. A single text part collapses to a bare string.
    """
    parts: list[PromptPart] = []
    cleaned = (text or "").strip()
    image_uri = (image or "").strip() or None

    if cleaned:
        parts.append({"text": cleaned})
    elif image_uri:
        parts.append({"text": default_instruction})

    if image_uri:
        parse_data_uri(image_uri, expected_prefix="image/")
        parts.append({"media": {"url": image_uri}})

    if not parts:
        raise EmptyInputError("A message or an image is required.")

    if len(parts) == 1 and "text" in parts[0]:
        return parts[0]["text"]
    return parts


def assemble_request(request: PromptRequest, *, default_instruction: str) -> Prompt:
    return assemble_prompt(request.text, request.image, default_instruction=default_instruction)


def prompt_parts(prompt: Prompt) -> list[PromptPart]:
    if isinstance(prompt, str):
        return [{"text": prompt}]
    return list(prompt)
