# tests/test_repositories.py
import pytest
from sqlalchemy.exc import OperationalError

from duet_chat.models import BODY_FIELDS, Message, User
from duet_chat.repositories import DuplicateMessageError, MessageStore, StoreError, UserDirectory


def _append(store: MessageStore, group: str = "7@9", sender: int = 7, receiver: int = 9) -> Message:
    return store.append(
        group=group,
        sender=sender,
        receiver=receiver,
        sender_message=b"sm",
        receiver_message=b"rm",
        sender_key=b"sk",
        receiver_key=b"rk",
        sender_nonce=b"sn",
        receiver_nonce=b"rn",
    )


def test_append_numbers_densely_from_one(message_store: MessageStore) -> None:
    numbers = [_append(message_store).message_number for _ in range(5)]
    assert numbers == [1, 2, 3, 4, 5]
    assert message_store.last_number("7@9") == message_store.count("7@9") == 5


def test_groups_are_numbered_independently(message_store: MessageStore) -> None:
    _append(message_store)
    _append(message_store)
    other = _append(message_store, group="7@11", receiver=11)
    assert other.message_number == 1
    assert message_store.last_number("9@11") == 0


def test_insert_rejects_duplicate_slot(message_store: MessageStore) -> None:
    _append(message_store)
    duplicate = Message(message_group="7@9", message_number=1, message_sender=7, message_receiver=9)
    with pytest.raises(DuplicateMessageError):
        message_store.insert(duplicate)


def test_range_is_exclusive_then_inclusive(message_store: MessageStore) -> None:
    for _ in range(5):
        _append(message_store)
    assert [m.message_number for m in message_store.range("7@9", 2, 5)] == [3, 4, 5]
    assert [m.message_number for m in message_store.range("7@9", 0, 1)] == [1]
    assert message_store.range("7@9", 5, 9) == []


def test_latest(message_store: MessageStore) -> None:
    assert message_store.latest("7@9") is None
    _append(message_store)
    _append(message_store)
    latest = message_store.latest("7@9")
    assert latest is not None and latest.message_number == 2


def test_soft_delete_keeps_slot_and_metadata(message_store: MessageStore) -> None:
    for _ in range(3):
        _append(message_store)
    before = message_store.get("7@9", 2)

    assert message_store.soft_delete("7@9", 2)
    after = message_store.get("7@9", 2)

    assert after is not None and before is not None
    assert after.is_deleted
    assert all(getattr(after, name) is None for name in BODY_FIELDS)
    assert after.created_at == before.created_at
    assert (after.message_sender, after.message_receiver) == (7, 9)
    assert message_store.last_number("7@9") == 3
    assert _append(message_store).message_number == 4


def test_soft_delete_missing_record(message_store: MessageStore) -> None:
    assert not message_store.soft_delete("7@9", 1)


def test_store_errors_are_wrapped(message_store: MessageStore, mocker) -> None:
    session = mocker.MagicMock()
    session.execute.side_effect = OperationalError("SELECT", {}, Exception("disk I/O error"))
    mocker.patch.object(message_store, "_session_factory", return_value=session)

    with pytest.raises(StoreError):
        message_store.last_number("7@9")
    session.rollback.assert_called_once()
    session.close.assert_called_once()


def test_user_directory_round_trip(user_directory: UserDirectory, alice: User) -> None:
    assert user_directory.exists(7)
    assert not user_directory.exists(8)

    found = user_directory.by_token(alice.user_token)
    assert found is not None and found.user_id == 7
    assert user_directory.by_token("0" * 64) is None

    assert user_directory.update_name(7, "Alicia")
    assert user_directory.update_image(7, "https://example.org/a.png")
    refreshed = user_directory.by_id(7)
    assert refreshed is not None
    assert refreshed.user_name == "Alicia"
    assert refreshed.image_link == "https://example.org/a.png"

    assert user_directory.update_image(7, None)
    assert user_directory.by_id(7).image_link is None
    assert not user_directory.update_name(8, "Nobody")
