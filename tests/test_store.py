"""Test the credential store backends against the same expectations."""

import pytest

from salla_alerts.core.exceptions import LinkTokenConflict
from salla_alerts.core.models import OAuthGrant, UserProfile, UserSettingsUpdate

pytestmark = pytest.mark.anyio


async def test_save_user_upserts_by_email(credential_store) -> None:
    first = await credential_store.save_user(UserProfile(email="a@example.com", username="A"))
    again = await credential_store.save_user(
        UserProfile(email="a@example.com", username="A", salla_id=555)
    )
    assert first == again

    user = await credential_store.retrieve_user("a@example.com")
    assert user is not None
    assert user.salla_id == 555
    assert user.stores == []

    # An existing platform id is never overwritten
    await credential_store.save_user(UserProfile(email="a@example.com", salla_id=777))
    user = await credential_store.retrieve_user("a@example.com")
    assert user is not None
    assert user.salla_id == 555


async def test_retrieve_unknown_user(credential_store) -> None:
    assert await credential_store.retrieve_user("missing@example.com") is None


async def test_one_row_per_user_and_merchant(credential_store, seed_store) -> None:
    user_id, store = await seed_store(credential_store, merchant=7)
    token = await credential_store.set_link_token(store.id, "link-7")

    updated = await credential_store.save_oauth(
        user_id,
        OAuthGrant(merchant=7, access_token="new", refresh_token="new-r", expires_in=60),
    )

    assert updated.id == store.id
    assert updated.access_token == "new"
    assert updated.store_name == "Cafe Riyadh"
    assert updated.telegram_link_token == token

    user = await credential_store.retrieve_user("owner@example.com", include_stores=True)
    assert user is not None
    assert [s.merchant for s in user.stores] == [7]


async def test_stores_are_listed_oldest_first(credential_store, seed_store) -> None:
    await seed_store(credential_store, merchant=3)
    await seed_store(credential_store, merchant=1)
    await seed_store(credential_store, merchant=2)

    user = await credential_store.retrieve_user("owner@example.com", include_stores=True)
    assert user is not None
    assert [s.merchant for s in user.stores] == [3, 1, 2]


async def test_find_store_by_merchant(credential_store, seed_store) -> None:
    _, store = await seed_store(credential_store, merchant=42)
    await seed_store(credential_store, email="other@example.com", merchant=42)

    found = await credential_store.find_store_by_merchant(42)
    assert found is not None
    user, found_store = found
    assert user.email == "owner@example.com"
    assert found_store.id == store.id

    assert await credential_store.find_store_by_merchant(43) is None


async def test_link_token_is_set_once(credential_store, seed_store) -> None:
    _, store = await seed_store(credential_store)

    assert await credential_store.set_link_token(store.id, "first") == "first"
    assert await credential_store.set_link_token(store.id, "second") == "first"

    found = await credential_store.find_store_by_link_token("first")
    assert found is not None
    assert found.id == store.id
    assert await credential_store.find_store_by_link_token("second") is None


async def test_link_tokens_are_unique(credential_store, seed_store) -> None:
    _, store_a = await seed_store(credential_store, merchant=1)
    _, store_b = await seed_store(credential_store, merchant=2)
    await credential_store.set_link_token(store_a.id, "shared")

    with pytest.raises(LinkTokenConflict):
        await credential_store.set_link_token(store_b.id, "shared")

    # The losing store is left without a token and can still get one
    assert await credential_store.set_link_token(store_b.id, "own") == "own"


async def test_link_token_for_missing_store(credential_store) -> None:
    with pytest.raises(LookupError):
        await credential_store.set_link_token(12345, "token")


async def test_channels(credential_store, seed_store) -> None:
    _, store = await seed_store(credential_store)
    _, other = await seed_store(credential_store, merchant=2)

    await credential_store.add_channel(store.id, "100", "Sara")
    await credential_store.add_channel(store.id, "100", "Sara")
    await credential_store.add_channel(store.id, "200", None)
    await credential_store.add_channel(other.id, "100", "Sara")

    channels = await credential_store.list_channels(store.id)
    assert [c.chat_id for c in channels] == ["100", "100", "200"]
    assert channels[0].label == "Sara"

    assert await credential_store.remove_channel(store.id, "100") == 2
    assert await credential_store.remove_channel(store.id, "100") == 0
    assert [c.chat_id for c in await credential_store.list_channels(store.id)] == ["200"]
    assert len(await credential_store.list_channels(other.id)) == 1


async def test_update_user_settings(credential_store, seed_store) -> None:
    await seed_store(credential_store)

    updated = await credential_store.update_user_settings(
        "owner@example.com", UserSettingsUpdate(stock_threshold=0, alert_email="ops@example.com")
    )
    assert updated is not None
    assert updated.stock_threshold == 0
    assert updated.alert_email == "ops@example.com"

    # Fields left out are not touched
    updated = await credential_store.update_user_settings(
        "owner@example.com", UserSettingsUpdate(telegram_chat_id="999")
    )
    assert updated is not None
    assert updated.stock_threshold == 0
    assert updated.telegram_chat_id == "999"

    missing = await credential_store.update_user_settings(
        "missing@example.com", UserSettingsUpdate(stock_threshold=3)
    )
    assert missing is None
