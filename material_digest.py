"""Material digest — turns a user's recent uploads into a generation prompt."""

from __future__ import annotations

import logging

from errors import DigestError
from models import MaterialRecord

logger = logging.getLogger(__name__)

# Used when a user has not uploaded anything yet
DEFAULT_DOMAIN = "general high-school level biology: cells, mitochondria, photosynthesis, and DNA"

MCQ_ITEM_SHAPE = '{ "question": "...", "options": ["...", "...", "...", "..."], "answer": "A" }'
OPEN_ITEM_SHAPE = '{ "question": "...", "answer": "..." }'


def item_shape(question_type: str) -> str:
    return MCQ_ITEM_SHAPE if question_type == "MCQ" else OPEN_ITEM_SHAPE


def _type_label(question_type: str) -> str:
    return "MCQ" if question_type == "MCQ" else "short-answer"


class MaterialDigestBuilder:
    """Reads recent materials and builds the synthesis prompt."""

    def __init__(self, materials_store, limit: int = 5):
        self.materials_store = materials_store
        self.limit = limit

    def recent_materials(self, user_id: int, limit: int | None = None) -> list[MaterialRecord]:
        """Most recent materials first; empty when there are none or the read fails."""
        try:
            return self.materials_store.recent(user_id, limit or self.limit)
        except DigestError as e:
            logger.warning("Digest unavailable for user %s, using default topic: %s", user_id, e)
            return []

    @staticmethod
    def build_prompt(materials: list[MaterialRecord], question_count: int,
                     question_type: str = "MCQ") -> str:
        label = _type_label(question_type)
        contract = (
            f"Output a JSON array only, with exactly {question_count} items. "
            f"For each {label} item return: {item_shape(question_type)}"
        )
        if not materials:
            return f"Create a {question_count}-question {label} test on {DEFAULT_DOMAIN}. {contract}"

        lines = "\n".join(f"{i}. {m.display_name}" for i, m in enumerate(materials, start=1))
        return (
            f"Create a {question_count}-question {label} test using the following uploaded "
            f"study materials:\n{lines}\n\n{contract}"
        )
