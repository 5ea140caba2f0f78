"""Title extraction from raw mindmap markup.

Only the start tags up to the central topic are tokenized; the rest of the
document is never parsed. Anything that prevents reaching that element
(empty text, broken markup, missing attribute) yields ``FALLBACK_TITLE``.
"""

from __future__ import annotations

import logging
from xml.etree.ElementTree import ParseError as XMLParseError
from xml.etree.ElementTree import XMLPullParser

logger = logging.getLogger(__name__)

FALLBACK_TITLE = "Untitled"

_CENTRAL_TAG = "topic"
_CHUNK_SIZE = 4096


def extract_title(content: str) -> str:
    """Return the ``text`` attribute of the central topic, or ``FALLBACK_TITLE``."""
    if not content:
        return FALLBACK_TITLE

    parser = XMLPullParser(events=("start",))
    try:
        for offset in range(0, len(content), _CHUNK_SIZE):
            parser.feed(content[offset : offset + _CHUNK_SIZE])
            for _event, element in parser.read_events():
                if element.tag == _CENTRAL_TAG and element.get("central") == "true":
                    title = (element.get("text") or "").strip()
                    return title or FALLBACK_TITLE
        parser.close()
    except (XMLParseError, ValueError) as e:
        logger.debug("Title scan stopped on malformed markup: %s", e)
    return FALLBACK_TITLE
