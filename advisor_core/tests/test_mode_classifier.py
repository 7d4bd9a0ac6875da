import pytest

from advisor_core.modes.classifier import classify


@pytest.mark.parametrize(
    "text",
    [
        "Please generate a detailed report on my savings",
        "final report on emergency fund planning",
        "Can you prepare a plan for my retirement?",
        "make me a summary of what we discussed",
        "GIVE THE RECOMMENDATION now",
        "I want the full picture",
        "please finalize it",
    ],
)
def test_completion_intent_is_final(text):
    assert classify(text) == "final"


@pytest.mark.parametrize(
    "text",
    [
        "hello",
        "How much should I save each month?",
        "I earn 50k a month",
        "what about tax savings",
        "Is PPF better than FD?",
        "the plan sounds okay",
        "fullerton india loan rates",
    ],
)
def test_everything_else_is_probe(text):
    assert classify(text) == "probe"


@pytest.mark.parametrize("text", ["", "   ", None, 42])
def test_unusable_input_defaults_to_probe(text):
    assert classify(text) == "probe"
