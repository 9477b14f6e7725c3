"""
Shared fixtures: tiny randomly initialised BERT models and a stand-in for
llm-compressor's `oneshot`, so the suite runs offline on CPU.
"""

from unittest import mock

import pytest
import torch
from transformers import BertConfig, BertForQuestionAnswering, BertForSequenceClassification


def tiny_bert_config():
    return BertConfig(
        vocab_size=100,
        hidden_size=32,
        num_hidden_layers=2,
        num_attention_heads=2,
        intermediate_size=64,
        max_position_embeddings=64,
        num_labels=2,
    )


@pytest.fixture
def classifier():
    torch.manual_seed(0)
    return BertForSequenceClassification(tiny_bert_config()).eval()


@pytest.fixture
def qa_model():
    torch.manual_seed(0)
    return BertForQuestionAnswering(tiny_bert_config()).eval()


@pytest.fixture
def fake_oneshot():
    """
    Replace `oneshot` with a recorder. Each call marks the model with the
    ignore list of the recipe it received, so evaluation functions can tell
    which trial produced a candidate.
    """
    calls = []

    def _oneshot(model, recipe, **kwargs):
        calls.append({"model": model, "recipe": recipe, "kwargs": kwargs})
        model.applied_ignore = list(recipe.ignore)
        return model

    with mock.patch("optimum_compressor.quantization.oneshot", side_effect=_oneshot):
        yield calls
