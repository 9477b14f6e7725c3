"""
Dataset row formatters for calibration sets.

`DatasetFmt` is a namespace of static converters that turn a raw dataset
row into a list of chat messages (``{"role", "content"}`` dicts). The
calibration set later renders these messages with the tokenizer's chat
template, or as plain text / text pairs for models without one.

Each formatter receives:
1. columns: the column names configured for the dataset entry
2. data: the raw row
"""

import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Messages = List[Dict[str, str]]


def _require_columns(fmt: str, columns: List[str], count: int) -> None:
    if len(columns) != count:
        raise ValueError(f"{fmt} format requires exactly {count} column(s), got {len(columns)}: {columns}")


class DatasetFmt:
    """
    Namespace class for dataset format converters.

    All methods are static - do not instantiate this class.
    """

    @staticmethod
    def raw_text(columns: List[str], data: Dict[str, Any]) -> Messages:
        """Single text column, e.g. ``sentence`` in SST-2 or ``text`` in wikitext."""
        _require_columns("Raw text", columns, 1)
        return [{"role": "user", "content": data[columns[0]]}]

    @staticmethod
    def text_pair(columns: List[str], data: Dict[str, Any]) -> Messages:
        """
        Two text columns encoded as a pair, e.g. ``question``/``context`` for
        extractive QA or ``premise``/``hypothesis`` for NLI.
        """
        _require_columns("Text pair", columns, 2)
        return [
            {"role": "user", "content": data[columns[0]]},
            {"role": "user", "content": data[columns[1]]},
        ]

    @staticmethod
    def prompt_answer(columns: List[str], data: Dict[str, Any]) -> Messages:
        """Prompt and answer columns mapped to a user/assistant exchange."""
        _require_columns("Prompt-answer", columns, 2)
        prompt = data[columns[0]]
        answer = data[columns[1]]

        messages = []
        if prompt:
            messages.append({"role": "user", "content": prompt})
        if answer:
            messages.append({"role": "assistant", "content": answer})
        return messages

    @staticmethod
    def sharegpt(columns: List[str], data: Dict[str, Any]) -> Messages:
        """ShareGPT conversations: a list of ``{"from", "value"}`` turns."""
        _require_columns("ShareGPT", columns, 1)
        role_mapping = {"system": "system", "human": "user", "gpt": "assistant"}

        messages = []
        for idx, entry in enumerate(data[columns[0]]):
            if not isinstance(entry, dict) or "from" not in entry or "value" not in entry:
                logger.warning(f"Skipping invalid conversation entry {idx}: {entry}")
                continue
            messages.append({"role": role_mapping.get(entry["from"], "user"), "content": entry["value"]})
        return messages

    @staticmethod
    def chat_completion(columns: List[str], data: Dict[str, Any]) -> Messages:
        """Rows that already hold a messages list."""
        _require_columns("Chat completion", columns, 1)
        return data[columns[0]]

    @staticmethod
    def get_formatter(formatter_name: str) -> Callable[[List[str], Dict[str, Any]], Messages]:
        """
        Get a formatter function by name.

        Raises:
            ValueError: If formatter_name is not recognized
        """
        formatters = {
            "raw_text": DatasetFmt.raw_text,
            "text_pair": DatasetFmt.text_pair,
            "prompt_answer": DatasetFmt.prompt_answer,
            "sharegpt": DatasetFmt.sharegpt,
            "chat_completion": DatasetFmt.chat_completion,
        }
        if formatter_name not in formatters:
            raise ValueError(f"Unknown formatter: {formatter_name}. Valid formatters: {sorted(formatters)}")
        return formatters[formatter_name]
