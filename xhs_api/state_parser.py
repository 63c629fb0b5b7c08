"""Embedded page state parsing.

XHS note pages carry their initial data model as a JavaScript object
literal assigned to ``window.__INITIAL_STATE__``. The literal is not strict
JSON (unquoted keys, ``undefined`` values), so it is converted with
yt-dlp's ``js_to_json`` rather than executed. Nothing in here evaluates
page script, touches the file system or opens a connection.
"""

import json
import logging
from typing import Any, Optional

from yt_dlp.utils import js_to_json

logger = logging.getLogger(__name__)

STATE_MARKER = "window.__INITIAL_STATE__="
SCRIPT_END_MARKER = "</script>"

# Stand-in globals the literal may reference
STUB_GLOBALS = {
    "window": "{}",
    "document": "{}",
    "navigator": "{}",
}


def extract_state_expression(html: str) -> Optional[str]:
    """Return the object-literal source assigned to the state marker."""
    start = html.find(STATE_MARKER)
    if start < 0:
        return None
    end = html.find(SCRIPT_END_MARKER, start)
    if end < 0:
        return None

    expression = html[start + len(STATE_MARKER):end].strip()
    expression = expression.rstrip(";").strip()
    return expression or None


def evaluate_state_expression(expression: str) -> Optional[dict[str, Any]]:
    """Convert a JS object literal into a plain dict tree, or None on failure."""
    try:
        state = json.loads(js_to_json(expression, vars=STUB_GLOBALS))
    except (ValueError, TypeError, RecursionError) as e:
        logger.debug(f"Initial state could not be parsed: {e}")
        return None

    if not isinstance(state, dict):
        logger.debug(f"Initial state is a {type(state).__name__}, expected an object")
        return None
    return state


def parse_initial_state(html: str) -> Optional[dict[str, Any]]:
    """Locate and parse the embedded initial state of a note page.

    Returns:
        The state as nested dicts/lists/scalars, or None when the marker is
        missing or the literal cannot be converted.
    """
    expression = extract_state_expression(html)
    if expression is None:
        logger.debug("No initial state marker found in page")
        return None
    return evaluate_state_expression(expression)
