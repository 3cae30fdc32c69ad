# tests/test_security.py
import re

from duet_chat.core.security import (
    MAX_USER_ID,
    allocate_user_id,
    generate_user_token,
    message_group,
    random_user_id,
    tokens_match,
)


def test_token_is_64_uppercase_hex_chars() -> None:
    token = generate_user_token()
    assert re.fullmatch(r"[0-9A-F]{64}", token)
    assert generate_user_token() != token


def test_random_user_id_is_in_range() -> None:
    for _ in range(100):
        assert 1 <= random_user_id() <= MAX_USER_ID


def test_allocate_user_id_retries_on_collision() -> None:
    candidates = iter([0, 5, 5, 6, 42])
    taken = {5, 6}
    drawn = allocate_user_id(lambda user_id: user_id in taken, lambda: next(candidates))
    assert drawn == 42


def test_allocate_user_id_defaults_to_csprng() -> None:
    assert allocate_user_id(lambda user_id: False) > 0


def test_tokens_match() -> None:
    token = generate_user_token()
    assert tokens_match(token, token)
    assert not tokens_match(token, "0" * 64)
    assert not tokens_match(token, "")
    assert not tokens_match("", "")
    assert not tokens_match(None, token)


def test_message_group_is_symmetric() -> None:
    assert message_group(9, 7) == "7@9"
    assert message_group(7, 9) == "7@9"
    assert message_group(3, 3) == "3@3"
