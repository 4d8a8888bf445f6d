"""Locate offer containers and their field fragments in a fetched page."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from bs4 import BeautifulSoup, Tag

from .logging import get_logger
from .source_config import LocationPatterns

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


@dataclass(slots=True)
class Container:
    index: int
    fields: Dict[str, Optional[str]] = field(default_factory=dict)

    def text(self, name: str) -> Optional[str]:
        return self.fields.get(name)


def locate(html: str, patterns: LocationPatterns) -> List[Container]:
    """Return containers in document order with each field's fragment text.

    Field selectors are evaluated inside their container only. A selector
    matching nothing, or matching only whitespace, yields ``None``.
    """
    soup = BeautifulSoup(html, "lxml")
    containers: List[Container] = []

    for index, element in enumerate(soup.select(patterns.container)):
        fields: Dict[str, Optional[str]] = {}
        for name, selector in patterns.field_selectors().items():
            fields[name] = _fragment_text(element, selector) if selector else None
        containers.append(Container(index=index, fields=fields))

    if not containers:
        logger.warning("no_containers", selector=patterns.container)
    else:
        logger.info("containers_located", selector=patterns.container, count=len(containers))
    return containers


def _fragment_text(container: Tag, selector: str) -> Optional[str]:
    node = container.select_one(selector)
    if node is None:
        return None
    text = _WHITESPACE.sub(" ", node.get_text(" ", strip=True)).strip()
    return text or None
