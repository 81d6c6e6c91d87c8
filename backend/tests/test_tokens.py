from budget_ai.services.assistant.tokens import (
    estimate_tokens,
    format_token_count,
    remaining_tokens,
    usage_percentage,
)


def test_empty_text_is_zero_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens(None) == 0


def test_estimate_averages_char_and_word_heuristics():
    # chars: ceil(11 / 4) = 3, words: ceil(2 * 1.3) = 3
    assert estimate_tokens("hello world") == 3
    # chars: ceil(43 / 4) = 11, words: ceil(9 * 1.3) = 12 -> ceil(11.5)
    assert estimate_tokens("The quick brown fox jumps over the lazy dog") == 12


def test_estimate_is_deterministic_and_grows_with_text():
    text = "How much did I spend on groceries last month?"
    assert estimate_tokens(text) == estimate_tokens(text)
    assert estimate_tokens(text * 3) > estimate_tokens(text)


def test_format_token_count():
    assert format_token_count(950) == "950"
    assert format_token_count(12_345) == "12.3k"


def test_usage_percentage_is_rounded_and_capped():
    assert usage_percentage(250_000, 1_000_000) == 25.0
    assert usage_percentage(123_456, 1_000_000) == 12.3
    assert usage_percentage(2_000_000, 1_000_000) == 100.0
    assert usage_percentage(10, 0) == 100.0


def test_remaining_tokens_never_negative():
    assert remaining_tokens(400_000, 1_000_000) == 600_000
    assert remaining_tokens(1_200_000, 1_000_000) == 0
