"""
Citation extraction service.
Sends photos of a traffic citation to Claude and returns the structured data.
"""

import base64
import json
import logging
import os
import re
from typing import List, Optional, Sequence, Tuple

import anthropic
import httpx

logger = logging.getLogger(__name__)

# Model configuration
MODEL = "claude-sonnet-4-5-20250929"
MAX_TOKENS = 2000

SUPPORTED_MEDIA_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}

DOWNLOAD_TIMEOUT = 30.0

EXTRACTION_PROMPT = """\
You are an expert data extraction system for Texas traffic violation tickets. Extract EVERY FIELD from the ticket image(s) and organize it into this EXACT JSON structure:

{
  "ticket_header": {
    "County": "[County name]",
    "Precinct": "[Precinct number]",
    "Citation_Number": "[Citation number]",
    "Issue_Date_and_Time": "[Issue date and time]",
    "Violation_Date_and_Time": "[Violation date and time]"
  },
  "violator_information": {
    "LAST_NAME": "[Last name]",
    "FIRST": "[First name]",
    "MIDDLE": "[Middle name]",
    "RESIDENCE_ADDRESS": "[Street address]",
    "PHONE": "[Phone number or empty]",
    "CITY": "[City]",
    "STATE": "[State]",
    "ZIP_CODE": "[ZIP code]",
    "DL_NUMBER": "[Driver license number]",
    "DL_CLASS": "[License class]",
    "DL_STATE": "[License state]",
    "CDL": "[Yes/No]",
    "DATE_OF_BIRTH": "[Date of birth]"
  },
  "vehicle_information": {
    "LICENSE_PLATE": "[License plate]",
    "STATE": "[State]",
    "COLOR": "[Vehicle color]",
    "MAKE": "[Make]",
    "MODEL": "[Model]",
    "YEAR": "[Year]"
  },
  "location_information": {
    "ADDRESS": "[Violation location address]"
  },
  "violation": {
    "CITATION": "[Violation description]",
    "ALLEGED_SPEED_MPH": "[Speed]",
    "POSTED_SPEED_MPH": "[Speed limit]",
    "SCHOOL_ZONE": "[Yes/No]",
    "ACCIDENT": "[Yes/No]",
    "ADDITIONAL_NOTES": "[Any additional text]"
  }
}

Rules:
- Use EXACTLY these field names (case-sensitive).
- Include every field; use an empty string when a value is not on the ticket.
- Preserve the original text from the ticket.
- Do not include a driver license number or date of birth if they are illegible.

Respond with ONLY valid JSON.
"""


def _image_block(data: bytes, media_type: str) -> dict:
    if media_type not in SUPPORTED_MEDIA_TYPES:
        raise ValueError(f"Unsupported image type: {media_type}")
    return {
        "type": "image",
        "source": {
            "type": "base64",
            "media_type": media_type,
            "data": base64.standard_b64encode(data).decode("ascii"),
        },
    }


def parse_extraction_response(raw_text: str) -> dict:
    """
    Parse Claude's reply into a mapping.

    Handles markdown code fences and leading/trailing prose. A reply with no
    parseable JSON object comes back as {"raw_text": ...} so the caller can
    still store it and ask the client for the missing fields.
    """
    text = raw_text.strip()
    fenced = re.search(r"```(?:json)?\s*\n(.*?)\n?```", text, re.DOTALL)
    if fenced:
        text = fenced.group(1)
    else:
        braces = re.search(r"\{.*\}", text, re.DOTALL)
        if braces:
            text = braces.group(0)

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Could not parse extraction response as JSON")
        return {"raw_text": raw_text}

    if not isinstance(parsed, dict):
        return {"raw_text": raw_text}
    return parsed


def extract_citation_with_claude(
    images: Sequence[Tuple[bytes, str]],
    api_key: str = None
) -> Tuple[dict, str]:
    """
    Send citation images to Claude for extraction.

    Args:
        images: (image bytes, media type) pairs, front of the ticket first.

    Returns:
        (extracted_data, raw_text)
    """
    if not images:
        raise ValueError("At least one image is required")

    if api_key is None:
        api_key = os.getenv("ANTHROPIC_API_KEY")

    client = anthropic.Anthropic(api_key=api_key)

    content: List[dict] = [_image_block(data, media_type) for data, media_type in images]
    content.append({"type": "text", "text": EXTRACTION_PROMPT})

    response = client.messages.create(
        model=MODEL,
        max_tokens=MAX_TOKENS,
        messages=[{"role": "user", "content": content}],
    )

    raw_text = response.content[0].text
    logger.info(
        "Citation extraction used %s input / %s output tokens",
        response.usage.input_tokens, response.usage.output_tokens,
    )
    return parse_extraction_response(raw_text), raw_text


async def extract_citation(images: Sequence[Tuple[bytes, str]]) -> Tuple[dict, str]:
    """
    Full extraction pipeline: images -> Claude -> extracted-data mapping.

    Returns:
        (extracted_data, raw_text)
    """
    return extract_citation_with_claude(images)


async def download_image(
    image_url: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Tuple[bytes, str]:
    """
    Fetch an uploaded citation image.

    Returns:
        (image bytes, media type)

    Raises:
        httpx.HTTPError: the download failed or returned an error status
        ValueError: the response is not a supported image type
    """
    async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT, transport=transport, follow_redirects=True) as client:
        response = await client.get(image_url)
        response.raise_for_status()

    media_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
    if media_type == "image/jpg":
        media_type = "image/jpeg"
    if media_type not in SUPPORTED_MEDIA_TYPES:
        raise ValueError(f"Unsupported image type: {media_type or 'unknown'}")
    return response.content, media_type


async def extract_citation_from_url(
    image_url: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Tuple[dict, str]:
    """Download a mobile upload and run it through the extraction pipeline."""
    image = await download_image(image_url, transport=transport)
    logger.info("Downloaded citation image (%d bytes, %s)", len(image[0]), image[1])
    return await extract_citation([image])
