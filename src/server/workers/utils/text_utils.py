import re
import json
import logging
from typing import Any, Dict, Optional

from json_extractor import JsonExtractor

logger = logging.getLogger(__name__)

def clean_llm_output(text: str) -> str:
    """
    Removes reasoning tags (e.g., <think>...</think>) and markdown code fences, and trims whitespace from LLM output.
    """
    if not isinstance(text, str):
        return ""
    cleaned_text = re.sub(r'<think>.*?</think>', '', text, flags=re.DOTALL)
    fenced = re.search(r"```(?:json)?\s*([\s\S]+?)\s*```", cleaned_text)
    if fenced:
        cleaned_text = fenced.group(1)
    return cleaned_text.strip()

def extract_first_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Returns the outermost {...} span of an LLM response parsed as a dict.
    Surrounding prose is ignored. Returns None when nothing parseable is found.
    """
    cleaned = clean_llm_output(text)
    match = re.search(r"\{[\s\S]*\}", cleaned)
    if not match:
        return None
    candidate = match.group(0)
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        # Second chance for near-JSON (trailing commas, single quotes).
        try:
            parsed = JsonExtractor.extract_valid_json(candidate)
        except Exception as e:
            logger.warning(f"Could not repair JSON from LLM output: {e}")
            return None
    return parsed if isinstance(parsed, dict) else None
