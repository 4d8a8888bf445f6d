"""Preset configuration trees for known deal listing sites."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import DEFAULT_USER_AGENT


@dataclass(slots=True)
class SourceTemplate:
    key: str
    name: str
    description: str
    config: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "config": copy.deepcopy(self.config),
        }


def _tree(
    selectors: Dict[str, str],
    reward: str,
    direct_debits: str,
    pay_in: str,
    date_layout: str,
) -> Dict[str, Any]:
    return {
        "locationPatterns": selectors,
        "extractionPatterns": {
            "rewardAmountPattern": reward,
            "requirementsCountPattern": direct_debits,
            "payInPattern": pay_in,
            "dateLayout": date_layout,
        },
        "options": {
            "identity": DEFAULT_USER_AGENT,
            "timeoutMs": 30_000,
            "retryAttempts": 3,
        },
    }


SOURCE_TEMPLATES: Dict[str, SourceTemplate] = {
    "scrimpr": SourceTemplate(
        key="scrimpr",
        name="Scrimpr Template",
        description="Bank switching offers listed on scrimpr.co.uk",
        config=_tree(
            {
                "container": ".offer-card",
                "name": ".bank-name",
                "rewardAmount": ".reward-amount",
                "requirements": ".requirements-text",
                "expiry": ".expiry-date",
            },
            reward=r"£([0-9,]+)",
            direct_debits=r"([0-9]+)\s*(?:direct debit|DD)",
            pay_in=r"(?:pay in|deposit)\s*£([0-9,]+)",
            date_layout="DD/MM/YYYY",
        ),
    ),
    "moneysavingexpert": SourceTemplate(
        key="moneysavingexpert",
        name="MoneySavingExpert Template",
        description="Bank switching offers listed on moneysavingexpert.com",
        config=_tree(
            {
                "container": ".deal-box",
                "name": ".bank-title",
                "rewardAmount": ".reward-value",
                "requirements": ".requirements-list",
                "expiry": ".expiry-info",
            },
            reward=r"£([0-9,]+)",
            direct_debits=r"([0-9]+)\s*direct debit",
            pay_in=r"£([0-9,]+)\s*(?:minimum|pay in)",
            date_layout="MMMM DD, YYYY",
        ),
    ),
    "generic": SourceTemplate(
        key="generic",
        name="Generic Template",
        description="Starting point for custom sites; selectors need adjusting",
        config=_tree(
            {
                "container": ".deal-item",
                "name": ".bank-name",
                "rewardAmount": ".reward",
                "requirements": ".requirements",
                "expiry": ".expiry",
            },
            reward=r"£([0-9,]+)",
            direct_debits=r"([0-9]+)\s*(?:direct debit|DD)",
            pay_in=r"(?:pay in|deposit)\s*£([0-9,]+)",
            date_layout="DD/MM/YYYY",
        ),
    ),
}


def get_template(key: str) -> Optional[SourceTemplate]:
    return SOURCE_TEMPLATES.get(key)


def all_templates() -> List[SourceTemplate]:
    return list(SOURCE_TEMPLATES.values())


def template_config(key: str) -> Dict[str, Any]:
    """Return a fresh copy of a template's tree, ready to be edited."""
    template = get_template(key)
    if template is None:
        raise LookupError(f"Unknown template '{key}'")
    return copy.deepcopy(template.config)
