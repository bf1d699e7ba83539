from asyncio import run

import pytest
from orjson import loads

import configs
import storage


@pytest.fixture(autouse=True)
def database(tmp_path, monkeypatch):
    monkeypatch.setattr(configs, "db_path", str(tmp_path / "test.db"))
    monkeypatch.setattr(configs, "write_policy", "reject")
    run(storage.init_db())


def test_create_and_find():
    user = run(storage.create("users", {"name": "Bob", "email": "bob@example.com"}))
    assert user["id"] == 1
    assert user["role"] == "buyer"
    assert run(storage.find_by_id("users", "1"))["name"] == "Bob"
    assert run(storage.find_all("users")) == [user]


def test_find_by_and_find_one():
    run(storage.create("reviews", {"product_id": 1, "user_id": 1, "rating": 5}))
    run(storage.create("reviews", {"product_id": 2, "user_id": 1, "rating": 3}))
    assert len(run(storage.find_by("reviews", {"user_id": 1}))) == 2
    assert run(storage.find_one("reviews", {"product_id": 2}))["rating"] == 3
    assert run(storage.find_one("reviews", {"product_id": 9})) is None
    assert len(run(storage.find_by("reviews", {}))) == 2


def test_update_and_delete():
    order = run(storage.create("orders", {"customer_name": "Ann", "total": 9.5}))
    updated = run(storage.update("orders", order["id"], {"status": "shipped"}))
    assert updated["status"] == "shipped"
    assert run(storage.delete("orders", order["id"])) is True
    assert run(storage.delete("orders", order["id"])) is False
    assert run(storage.update("orders", order["id"], {"status": "lost"})) is None


def test_nested_values_are_stored_as_json():
    order = run(
        storage.create(
            "orders",
            {"customer_name": "Ann", "total": 3, "items": [{"sku": 1}, {"sku": 2}]},
        )
    )
    assert loads(order["items"]) == [{"sku": 1}, {"sku": 2}]


@pytest.mark.parametrize(
    "table", ["users; DROP TABLE users", "1users", "select", "users\n", " users"]
)
def test_invalid_table_name(table):
    with pytest.raises(ValueError, match="Invalid table name"):
        run(storage.find_all(table))


def test_unknown_table():
    with pytest.raises(LookupError):
        run(storage.find_all("products"))


@pytest.mark.parametrize("record_id", ["abc", 0, -1, "1 OR 1=1"])
def test_invalid_record_id(record_id):
    with pytest.raises(ValueError, match="Invalid record id"):
        run(storage.find_by_id("users", record_id))


def test_invalid_criteria():
    with pytest.raises(ValueError, match="Invalid filter criteria"):
        run(storage.find_by("users", {"name": "Bob' OR '1'='1"}))
    with pytest.raises(ValueError, match="No matching columns"):
        run(storage.find_by("users", {"password": "x"}))
    with pytest.raises(ValueError, match="scalars"):
        run(storage.find_by("users", {"name": ["a", "b"]}))


def test_reject_policy():
    with pytest.raises(ValueError, match="Invalid payload"):
        run(storage.create("users", {"name": "x", "email": "y", "admin": True}))
    with pytest.raises(ValueError, match="Invalid payload"):
        run(storage.create("users", {"name": "O'Brien", "email": "o@example.com"}))
    assert run(storage.find_all("users")) == []


def test_sanitize_policy(monkeypatch):
    monkeypatch.setattr(configs, "write_policy", "sanitize")
    user = run(
        storage.create("users", {"name": "O'Brien; DROP", "email": "o@example.com"})
    )
    assert user["name"] == "O''Brien"


def test_sanitize_policy_refuses_key_collisions():
    with pytest.raises(ValueError, match="Invalid payload"):
        storage.prepare_payload("users", {"name": "a", "na-me": "b"}, "sanitize")


def test_sanitize_policy_still_enforces_whitelist():
    with pytest.raises(ValueError, match="Invalid payload"):
        storage.prepare_payload("users", {"role!": "admin", "password": "x"}, "sanitize")


def test_both_policy():
    payload = storage.prepare_payload("users", {"name": "  Bob  "}, "both")
    assert payload == {"name": "Bob"}
    with pytest.raises(ValueError):
        storage.prepare_payload("users", {"name": "Bob;"}, "both")


def test_unknown_write_policy():
    with pytest.raises(ValueError, match="Unknown write policy"):
        storage.prepare_payload("users", {"name": "Bob"}, "lenient")


def test_empty_payload():
    with pytest.raises(ValueError, match="Empty payload"):
        storage.prepare_payload("users", {})


@pytest.mark.parametrize("product_id", [2**64 - 1, 2**63, -(2**63) - 1])
def test_out_of_range_integer_is_rejected(product_id):
    with pytest.raises(ValueError, match="Integer out of range"):
        run(storage.create("reviews", {"product_id": product_id, "rating": 1}))
    assert run(storage.find_all("reviews")) == []


def test_out_of_range_integer_in_nested_value_is_rejected():
    with pytest.raises(ValueError, match="Unsupported value"):
        storage.prepare_payload(
            "orders", {"customer_name": "Ann", "total": 1, "items": [2**65]}
        )


def test_out_of_range_integer_in_criteria_is_rejected():
    with pytest.raises(ValueError, match="Integer out of range"):
        run(storage.find_by("reviews", {"product_id": 2**64}))


def test_integer_at_sqlite_limit_is_stored():
    review = run(storage.create("reviews", {"product_id": 2**63 - 1, "rating": 1}))
    assert review["product_id"] == 2**63 - 1
