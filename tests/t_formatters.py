#!/usr/bin/env python3

"""
Tests for calibration row formatters.

Validates:
- Arbitrary column names
- Column count enforcement
- Formatter lookup by name

To run these tests:
    uv run pytest tests/t_formatters.py
"""

import pytest

from optimum_compressor.formatters import DatasetFmt


def test_raw_text_with_arbitrary_column():
    print("\n=== Testing Raw Text Formatter ===")
    result = DatasetFmt.raw_text(["sentence"], {"sentence": "a gripping film", "label": 1})

    assert result == [{"role": "user", "content": "a gripping film"}]
    print("✅ Raw text formatter test passed")


def test_text_pair_keeps_column_order():
    row = {"question": "Who wrote it?", "context": "It was written by Ada.", "id": "x1"}
    result = DatasetFmt.text_pair(["question", "context"], row)

    assert [m["content"] for m in result] == ["Who wrote it?", "It was written by Ada."]

    swapped = DatasetFmt.text_pair(["context", "question"], row)
    assert swapped[0]["content"] == "It was written by Ada."


def test_prompt_answer_skips_empty_fields():
    result = DatasetFmt.prompt_answer(["instruction", "output"], {"instruction": "Say hi", "output": ""})

    assert result == [{"role": "user", "content": "Say hi"}]


def test_sharegpt_maps_roles_and_skips_invalid_entries():
    print("\n=== Testing ShareGPT Formatter ===")
    row = {
        "conversations": [
            {"from": "system", "value": "Be brief."},
            {"from": "human", "value": "What is 2+2?"},
            {"bogus": True},
            {"from": "gpt", "value": "4"},
        ]
    }
    result = DatasetFmt.sharegpt(["conversations"], row)

    assert [m["role"] for m in result] == ["system", "user", "assistant"]
    assert result[-1]["content"] == "4"
    print("✅ ShareGPT formatter test passed")


def test_chat_completion_passthrough():
    messages = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]
    assert DatasetFmt.chat_completion(["messages"], {"messages": messages}) == messages


@pytest.mark.parametrize(
    "formatter, columns",
    [
        (DatasetFmt.raw_text, ["a", "b"]),
        (DatasetFmt.text_pair, ["a"]),
        (DatasetFmt.prompt_answer, ["a", "b", "c"]),
        (DatasetFmt.sharegpt, []),
        (DatasetFmt.chat_completion, ["a", "b"]),
    ],
)
def test_column_count_is_enforced(formatter, columns):
    with pytest.raises(ValueError, match="requires exactly"):
        formatter(columns, {"a": "x", "b": "y", "c": "z"})


def test_get_formatter():
    assert DatasetFmt.get_formatter("text_pair") is DatasetFmt.text_pair
    with pytest.raises(ValueError, match="Unknown formatter"):
        DatasetFmt.get_formatter("deepmind_code_contests")


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__, "-v"]))
