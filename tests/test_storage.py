# -*- coding: utf-8 -*-
"""
測試用戶存儲：三種後端的合併規則一致
"""
import pytest

from bot.errors import UserStoreError
from storage import (
    JsonUserStore,
    MemoryUserStore,
    SqlUserStore,
    create_user_store,
    merge_user,
)

from conftest import make_config


@pytest.fixture(params=["memory", "json", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        s = MemoryUserStore()
    elif request.param == "json":
        s = JsonUserStore(str(tmp_path / "users.json"))
    else:
        s = SqlUserStore(f"sqlite:///{tmp_path / 'users.sqlite'}")
    yield s
    s.close()


def test_merge_user_shallow_merges_custom():
    old = {"first_name": "A", "custom": {"prefix": "?", "timezone": "UTC"}}
    merged = merge_user(old, {"custom": {"prefix": "!"}, "last_active": 5}, "u1")

    assert merged == {
        "first_name": "A",
        "last_active": 5,
        "custom": {"prefix": "!", "timezone": "UTC"},
        "psid": "u1",
    }
    # 入參不被修改
    assert old["custom"]["prefix"] == "?"


def test_missing_user(store):
    assert store.get_user("nobody") is None


def test_save_and_get(store):
    saved = store.save_user("u1", {"first_name": "Ada"})

    assert saved == {"first_name": "Ada", "psid": "u1"}
    assert store.get_user("u1") == {"first_name": "Ada", "psid": "u1"}


def test_custom_keys_survive_partial_updates(store):
    store.save_user("u1", {"first_name": "Ada", "custom": {"prefix": "?"}})
    store.save_user("u1", {"custom": {"timezone": "Asia/Dhaka"}})
    store.save_user("u1", {"last_active": 100})

    user = store.get_user("u1")
    assert user["custom"] == {"prefix": "?", "timezone": "Asia/Dhaka"}
    assert user["first_name"] == "Ada"
    assert user["last_active"] == 100


def test_get_all_users(store):
    store.save_user("u1", {"first_name": "A"})
    store.save_user("u2", {"first_name": "B"})

    users = sorted(store.get_all_users(), key=lambda u: u["psid"])
    assert [u["psid"] for u in users] == ["u1", "u2"]


def test_returned_records_are_copies(store):
    store.save_user("u1", {"custom": {"prefix": "?"}})
    user = store.get_user("u1")
    user["custom"]["prefix"] = "changed"

    assert store.get_user("u1")["custom"]["prefix"] == "?"


def test_json_store_persists_across_instances(tmp_path):
    path = tmp_path / "users.json"
    JsonUserStore(str(path)).save_user("u1", {"first_name": "Ada"})

    assert JsonUserStore(str(path)).get_user("u1")["first_name"] == "Ada"


def test_json_store_corrupt_file(tmp_path):
    path = tmp_path / "users.json"
    path.write_text("{broken", encoding="utf-8")

    with pytest.raises(UserStoreError):
        JsonUserStore(str(path)).get_user("u1")


def test_create_user_store_by_type(tmp_path):
    assert isinstance(create_user_store(make_config(user_db_type="memory")), MemoryUserStore)

    json_store = create_user_store(make_config(user_db_type="json", user_db_path=str(tmp_path / "u.json")))
    assert isinstance(json_store, JsonUserStore)

    sql_store = create_user_store(make_config(user_db_type="sqlite", database_path=str(tmp_path / "u.sqlite")))
    assert isinstance(sql_store, SqlUserStore)
    sql_store.close()

    with pytest.raises(UserStoreError):
        create_user_store(make_config(user_db_type="mongo"))
