"""
Robust JSON Parsing for LLM Output
==================================

Handles:
- Empty content
- Markdown code blocks (```json...```)
- Prefix/trailing text around a JSON object (takes the largest {...} block)
"""

import hashlib
import json
from typing import Any, Tuple


def parse_json_robust(content: str) -> Tuple[Any, bool, str]:
    """
    Parse JSON content robustly, handling common LLM output issues.

    Any JSON value is accepted (object, array, scalar); shape checking is
    the validator's job.

    Args:
        content: Raw content from LLM

    Returns:
        Tuple of (parsed_value, success, error_message)
    """
    if not content or not content.strip():
        return None, False, "Empty content"

    content = content.strip()

    # Remove markdown code blocks
    if "```json" in content:
        start = content.find("```json") + 7
        end = content.find("```", start)
        if end > start:
            content = content[start:end].strip()
    elif content.startswith("```"):
        start = 3
        end = content.find("```", start)
        if end > start:
            content = content[start:end].strip()

    # Direct parse
    try:
        return json.loads(content), True, ""
    except (json.JSONDecodeError, RecursionError) as e:
        first_error = str(e)

    # Largest balanced {...} block
    brace_blocks = []
    depth = 0
    start_idx = None

    for i, char in enumerate(content):
        if char == '{':
            if depth == 0:
                start_idx = i
            depth += 1
        elif char == '}' and depth > 0:
            depth -= 1
            if depth == 0 and start_idx is not None:
                brace_blocks.append(content[start_idx:i + 1])
                start_idx = None

    for block in sorted(brace_blocks, key=len, reverse=True):
        try:
            return json.loads(block), True, ""
        except (json.JSONDecodeError, RecursionError):
            continue

    return None, False, first_error


def safe_log_content(content: str, max_chars: int = 80) -> str:
    """
    Create a safe log representation of content.

    Args:
        content: Content to log
        max_chars: Maximum characters to show

    Returns:
        Safe log string with length and hash
    """
    if not content:
        return "(empty)"

    content_hash = hashlib.sha256(content.encode()).hexdigest()[:12]
    preview = content[:max_chars].replace('\n', ' ')

    return f"len={len(content)} hash={content_hash} preview='{preview}...'"
