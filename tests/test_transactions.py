import threading

import mongomock
import pytest
from pymongo.errors import OperationFailure, PyMongoError

import database
import orders
from cart import add_to_cart
from conftest import FakeSession, make_address, stock_of
from database import create_document, oid, run_in_transaction
from errors import InsufficientStock
from orders import cancel_order, create_order


def write_conflict():
    return OperationFailure("WriteConflict", code=112, details={"errorLabels": ["TransientTransactionError"]})


@pytest.fixture
def session_factory(monkeypatch):
    """Transactions on, with the next session given by the test."""
    monkeypatch.setattr(database, "USE_TRANSACTIONS", True)

    def use(session):
        monkeypatch.setattr(database, "start_session", lambda _database: session)
        return session

    return use


def test_commit_and_release(session_factory):
    session = session_factory(FakeSession())
    seen = []

    assert run_in_transaction(None, lambda s: seen.append(s) or "done") == "done"
    assert seen == [session]
    assert session.calls == ["start_session", "start", "commit", "end_session"]


def test_error_aborts_and_releases(session_factory):
    session = session_factory(FakeSession())

    def fail(s):
        raise InsufficientStock("p1", "Pixel", 2, 1)

    with pytest.raises(InsufficientStock):
        run_in_transaction(None, fail)
    assert session.calls == ["start_session", "start", "abort", "end_session"]


def test_write_conflict_reruns_block(session_factory):
    session = session_factory(FakeSession())
    attempts = []

    def body(s):
        attempts.append(s)
        if len(attempts) == 1:
            raise write_conflict()
        return len(attempts)

    assert run_in_transaction(None, body) == 2
    assert session.calls == ["start_session", "start", "abort", "start", "commit", "end_session"]


def test_persistent_conflict_gives_up(session_factory):
    session = session_factory(FakeSession())
    attempts = []

    def body(s):
        attempts.append(s)
        raise write_conflict()

    with pytest.raises(OperationFailure):
        run_in_transaction(None, body)
    assert len(attempts) == database.TRANSACTION_ATTEMPTS
    assert session.calls[-1] == "end_session"


def test_unknown_commit_result_retries_commit_only(session_factory):
    unknown = PyMongoError("commit timed out", error_labels=["UnknownTransactionCommitResult"])
    session = session_factory(FakeSession(commit_errors=[unknown]))
    attempts = []

    run_in_transaction(None, attempts.append)

    assert len(attempts) == 1
    assert session.calls == ["start_session", "start", "commit", "commit", "end_session"]


def test_transient_commit_error_reruns_block(session_factory):
    transient = PyMongoError("commit conflicted", error_labels=["TransientTransactionError"])
    session = session_factory(FakeSession(commit_errors=[transient]))
    attempts = []

    run_in_transaction(None, attempts.append)

    assert len(attempts) == 2
    assert session.calls == ["start_session", "start", "commit", "start", "commit", "end_session"]


def test_other_database_errors_are_not_retried(session_factory):
    session = session_factory(FakeSession())
    attempts = []

    def body(s):
        attempts.append(s)
        raise OperationFailure("not authorized", code=13)

    with pytest.raises(OperationFailure):
        run_in_transaction(None, body)
    assert len(attempts) == 1
    assert "abort" in session.calls


def test_without_transactions_block_gets_no_session(db, monkeypatch):
    def refuse(_database):
        raise AssertionError("no session expected")

    monkeypatch.setattr(database, "start_session", refuse)
    assert run_in_transaction(db, lambda s: s) is None


# ----------------------- Orders under transactions -----------------------
def _conflict_on_first_take(monkeypatch, before_raise=None):
    real = orders.take_stock
    calls = []

    def take(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            if before_raise:
                before_raise()
            raise write_conflict()
        return real(*args, **kwargs)

    monkeypatch.setattr(orders, "take_stock", take)
    return calls


def test_order_retried_after_write_conflict(client, db, user, address, products, sessions, monkeypatch):
    client.post("/api/cart", json={"product_id": products["phone"], "quantity": 2}, headers=user["headers"])
    sessions.clear()
    calls = _conflict_on_first_take(monkeypatch)

    res = client.post("/api/orders", json={"address_id": address["id"], "payment_method": "COD"},
                      headers=user["headers"])

    assert res.status_code == 201
    assert len(calls) == 2
    assert sessions[0].calls == ["start_session", "start", "abort", "start", "commit", "end_session"]
    assert stock_of(db, products["phone"]) == 3
    assert db["order"].count_documents({}) == 1


def test_order_losing_last_unit_to_conflict_is_insufficient_stock(
    client, db, user, address, products, sessions, monkeypatch
):
    client.post("/api/cart", json={"product_id": products["laptop"], "quantity": 2}, headers=user["headers"])

    def rival_commits():
        db["product"].update_one({"_id": oid(products["laptop"])}, {"$set": {"stock_quantity": 0}})

    _conflict_on_first_take(monkeypatch, before_raise=rival_commits)

    res = client.post("/api/orders", json={"address_id": address["id"], "payment_method": "COD"},
                      headers=user["headers"])

    assert res.status_code == 400
    assert res.json()["message"] == "Insufficient stock for ThinkPad X1"
    assert res.json()["available"] == 0
    assert db["order"].count_documents({}) == 0
    assert db["cart"].count_documents({"user_id": user["id"]}) == 1


def test_cancel_commits_in_one_session(client, db, user, address, products, sessions):
    add_to_cart(db, user["id"], products["phone"], 2)
    result = create_order(db, user["id"], address["id"], "COD")
    sessions.clear()

    cancel_order(db, user["id"], result["orderId"])

    assert len(sessions) == 1
    assert sessions[0].calls == ["start_session", "start", "commit", "end_session"]
    assert stock_of(db, products["phone"]) == 5


def test_concurrent_buyers_of_last_unit(client, db, user, other_user, monkeypatch):
    product_id = create_document("product", {
        "name": "Last Pixel", "type": "Smartphone", "price": 100.0,
        "category_key": "mobiles", "stock_quantity": 1, "availability": "In Stock",
    }, db)
    buyers = [
        (user["id"], make_address(client, user)["id"]),
        (other_user["id"], make_address(client, other_user)["id"]),
    ]
    for user_id, _ in buyers:
        add_to_cart(db, user_id, product_id, 1)

    # single-document updates are atomic on a real server
    update_lock = threading.Lock()
    real_update_one = mongomock.collection.Collection.update_one

    def atomic_update_one(self, *args, **kwargs):
        with update_lock:
            return real_update_one(self, *args, **kwargs)

    monkeypatch.setattr(mongomock.collection.Collection, "update_one", atomic_update_one)

    # both buyers pass the stock pre-check before either one takes stock
    barrier = threading.Barrier(2, timeout=5)
    real_cart_lines = orders.cart_lines

    def cart_lines_then_wait(*args, **kwargs):
        lines = real_cart_lines(*args, **kwargs)
        barrier.wait()
        return lines

    monkeypatch.setattr(orders, "cart_lines", cart_lines_then_wait)

    placed, rejected, unexpected = [], [], []

    def buy(user_id, address_id):
        try:
            placed.append(create_order(db, user_id, address_id, "COD"))
        except InsufficientStock as e:
            rejected.append(e)
        except Exception as e:
            unexpected.append(e)

    threads = [threading.Thread(target=buy, args=buyer) for buyer in buyers]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert unexpected == []
    assert len(placed) == 1
    assert len(rejected) == 1
    assert stock_of(db, product_id) == 0
    assert db["order"].count_documents({}) == 1
    assert db["cart"].count_documents({}) == 1
