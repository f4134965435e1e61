"""
API tests for the Bank Swift Ledger API.
Tests registration, accounts, transfers, claims and error handling.
"""

from datetime import timedelta
from decimal import Decimal

from sqlalchemy import func, select

from bankswift.core.utils import utcnow
from bankswift.models.idempotency import IdempotencyRecord
from bankswift.models.outbox import OutboxMessage
from bankswift.models.transaction import Transaction
from bankswift.models.transfer import Transfer

API = "/api/v1"


def count(db, model):
    return db.execute(select(func.count()).select_from(model)).scalar_one()


# ==================== HEALTH CHECK TESTS ====================

def test_root_endpoint(client):
    """Test root endpoint returns correct response."""
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "running"
    assert "Bank Swift" in data["message"]


def test_health_check(client):
    """Test health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database"] == "connected"


# ==================== USER TESTS ====================

def test_register_opens_zero_balance_accounts(client):
    """Registration creates a checking and a savings account at 0.00."""
    response = client.post(
        f"{API}/users",
        json={"fullname": "Alice Smith", "email": "Alice@Example.com", "password": "password123"}
    )
    assert response.status_code == 201
    data = response.json()
    assert data["email"] == "alice@example.com"
    assert "password" not in data and "password_hash" not in data
    assert sorted(a["type"] for a in data["accounts"]) == ["checking", "savings"]
    for account in data["accounts"]:
        assert Decimal(account["balance"]) == Decimal("0")
        assert Decimal(account["available"]) == Decimal("0")
        assert account["account_id"].startswith("BS")


def test_register_duplicate_email(client, make_user):
    """Test that registering an email twice fails."""
    make_user("Alice", "alice@example.com")
    response = client.post(
        f"{API}/users",
        json={"fullname": "Other Alice", "email": "ALICE@example.com", "password": "password123"}
    )
    assert response.status_code == 409
    assert "already registered" in response.json()["detail"]


def test_register_rejects_short_password(client):
    response = client.post(
        f"{API}/users",
        json={"fullname": "Alice", "email": "alice@example.com", "password": "short"}
    )
    assert response.status_code == 422


def test_login_wrong_password(client, make_user):
    make_user("Alice", "alice@example.com")
    response = client.post(f"{API}/auth/login", json={"email": "alice@example.com", "password": "nope-nope"})
    assert response.status_code == 401
    assert response.json()["error"] == "InvalidCredentialsError"


def test_me_requires_token(client):
    assert client.get(f"{API}/users/me").status_code == 401
    bad = client.get(f"{API}/users/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert bad.status_code == 401


def test_query_token_only_accepted_by_event_stream(client, make_user):
    alice = make_user("Alice", "alice@example.com")
    token = alice["headers"]["Authorization"].split(" ", 1)[1]

    assert client.get(f"{API}/users/me", params={"token": token}).status_code == 401
    assert client.get(f"{API}/accounts", params={"token": token}).status_code == 401
    # The stream authenticates before it starts, so a bad token never opens it
    assert client.get(f"{API}/events", params={"token": "not-a-jwt"}).status_code == 401


def test_me_returns_caller(client, make_user):
    alice = make_user("Alice", "alice@example.com")
    response = client.get(f"{API}/users/me", headers=alice["headers"])
    assert response.status_code == 200
    assert response.json()["id"] == alice["id"]


# ==================== ACCOUNT TESTS ====================

def test_list_accounts(client, make_user):
    alice = make_user("Alice", "alice@example.com")
    response = client.get(f"{API}/accounts", headers=alice["headers"])
    assert response.status_code == 200
    assert {a["account_id"] for a in response.json()} == {alice["checking"], alice["savings"]}


def test_get_account_balance(client, make_user, fund):
    alice = make_user("Alice", "alice@example.com")
    fund(alice["checking"], "1000.00")

    response = client.get(f"{API}/accounts/{alice['checking']}/balance", headers=alice["headers"])
    assert response.status_code == 200
    data = response.json()
    assert data["account_id"] == alice["checking"]
    assert Decimal(data["balance"]) == Decimal("1000.00")
    assert Decimal(data["available"]) == Decimal("1000.00")


def test_get_nonexistent_account(client, make_user):
    alice = make_user("Alice", "alice@example.com")
    response = client.get(f"{API}/accounts/NONEXISTENT", headers=alice["headers"])
    assert response.status_code == 404


def test_other_users_account_is_hidden(client, make_user):
    alice = make_user("Alice", "alice@example.com")
    bob = make_user("Bob", "bob@example.com")
    response = client.get(f"{API}/accounts/{bob['checking']}", headers=alice["headers"])
    assert response.status_code == 404


# ==================== TRANSFER TESTS ====================

def test_internal_transfer(client, make_user, fund, balance_of, db):
    """Sender 100.00 -> 40.00 to recipient at 10.00: 60.00 / 50.00, two entries, completed."""
    alice = make_user("Alice", "alice@example.com")
    bob = make_user("Bob", "bob@example.com")
    fund(alice["checking"], "100.00")
    fund(bob["checking"], "10.00")

    response = client.post(
        f"{API}/transfers",
        json={
            "sender_account_id": alice["checking"],
            "recipient_account_id": bob["checking"],
            "amount": "40.00",
            "description": "Dinner"
        },
        headers=alice["headers"]
    )

    assert response.status_code == 201
    data = response.json()
    assert Decimal(data["amount"]) == Decimal("40.00")
    assert data["status"] == "completed"
    assert data["sender_account_id"] == alice["checking"]
    assert data["recipient_account_id"] == bob["checking"]
    assert data["recipient_external_ref"] is None
    assert data["claim_token"] is None

    assert balance_of(alice) == Decimal("60.00")
    assert balance_of(bob) == Decimal("50.00")

    entries = db.execute(select(Transaction).order_by(Transaction.id)).scalars().all()
    assert [(e.account_id, e.direction.value, e.amount) for e in entries] == [
        (alice["checking"], "debit", Decimal("40.00")),
        (bob["checking"], "credit", Decimal("40.00")),
    ]
    assert count(db, Transfer) == 1


def test_transfer_by_recipient_email(client, make_user, fund, balance_of):
    alice = make_user("Alice", "alice@example.com")
    bob = make_user("Bob", "bob@example.com")
    fund(alice["checking"], "100.00")

    response = client.post(
        f"{API}/transfers",
        json={"sender_email": "alice@example.com", "recipient_email": "BOB@example.com", "amount": 25},
        headers=alice["headers"]
    )
    assert response.status_code == 201
    assert response.json()["recipient_account_id"] == bob["checking"]
    assert balance_of(bob) == Decimal("25.00")


def test_transfer_to_own_savings(client, make_user, fund, balance_of):
    alice = make_user("Alice", "alice@example.com")
    fund(alice["checking"], "100.00")

    response = client.post(
        f"{API}/transfers",
        json={"recipient_account_id": alice["savings"], "amount": "30.00"},
        headers=alice["headers"]
    )
    assert response.status_code == 201
    assert balance_of(alice, "checking") == Decimal("70.00")
    assert balance_of(alice, "savings") == Decimal("30.00")


def test_transfer_by_unique_name(client, make_user, fund):
    alice = make_user("Alice", "alice@example.com")
    bob = make_user("Bob Jones", "bob@example.com")
    fund(alice["checking"], "100.00")

    response = client.post(
        f"{API}/transfers",
        json={"recipient_name": "bob jones", "amount": "5.00"},
        headers=alice["headers"]
    )
    assert response.status_code == 201
    assert response.json()["recipient_account_id"] == bob["checking"]


def test_transfer_by_ambiguous_name_is_rejected(client, make_user, fund, balance_of, db):
    alice = make_user("Alice", "alice@example.com")
    make_user("Sam Lee", "sam1@example.com")
    make_user("Sam Lee", "sam2@example.com")
    fund(alice["checking"], "100.00")

    response = client.post(
        f"{API}/transfers",
        json={"recipient_name": "Sam Lee", "amount": "5.00"},
        headers=alice["headers"]
    )
    assert response.status_code == 400
    assert response.json()["error"] == "RecipientUnresolvedError"
    assert balance_of(alice) == Decimal("100.00")
    assert count(db, Transfer) == 0


def test_transfer_insufficient_funds(client, make_user, fund, balance_of, db):
    """Sender at 10.00 tries 50.00: fails, nothing written."""
    alice = make_user("Alice", "alice@example.com")
    bob = make_user("Bob", "bob@example.com")
    fund(alice["checking"], "10.00")
    outbox_before = count(db, OutboxMessage)

    response = client.post(
        f"{API}/transfers",
        json={"recipient_account_id": bob["checking"], "amount": "50.00"},
        headers=alice["headers"]
    )

    assert response.status_code == 400
    assert "Insufficient funds" in response.json()["detail"]
    assert response.json()["error"] == "InsufficientFundsError"
    assert balance_of(alice) == Decimal("10.00")
    assert balance_of(bob) == Decimal("0.00")
    assert count(db, Transaction) == 0
    assert count(db, Transfer) == 0
    assert count(db, OutboxMessage) == outbox_before


def test_transfer_to_same_account(client, make_user, fund, balance_of, db):
    """Test that transfer to same account fails."""
    alice = make_user("Alice", "alice@example.com")
    fund(alice["checking"], "1000.00")

    response = client.post(
        f"{API}/transfers",
        json={
            "sender_account_id": alice["checking"],
            "recipient_account_id": alice["checking"],
            "amount": "100.00"
        },
        headers=alice["headers"]
    )

    assert response.status_code == 400
    assert "same account" in response.json()["detail"]
    assert balance_of(alice) == Decimal("1000.00")
    assert count(db, Transaction) == 0


def test_transfer_to_own_email_is_self_transfer(client, make_user, fund):
    alice = make_user("Alice", "alice@example.com")
    fund(alice["checking"], "100.00")
    response = client.post(
        f"{API}/transfers",
        json={"recipient_email": "alice@example.com", "amount": "1.00"},
        headers=alice["headers"]
    )
    assert response.status_code == 400
    assert response.json()["error"] == "SelfTransferError"


def test_transfer_to_nonexistent_account(client, make_user, fund):
    """Test transfer to non-existent account fails."""
    alice = make_user("Alice", "alice@example.com")
    fund(alice["checking"], "1000.00")

    response = client.post(
        f"{API}/transfers",
        json={"recipient_account_id": "NONEXISTENT", "amount": "100.00"},
        headers=alice["headers"]
    )

    assert response.status_code == 404
    assert response.json()["error"] == "RecipientNotFoundError"


def test_transfer_from_someone_elses_account(client, make_user, fund):
    alice = make_user("Alice", "alice@example.com")
    bob = make_user("Bob", "bob@example.com")
    fund(bob["checking"], "100.00")

    response = client.post(
        f"{API}/transfers",
        json={"sender_account_id": bob["checking"], "recipient_account_id": alice["checking"], "amount": "10.00"},
        headers=alice["headers"]
    )
    assert response.status_code == 403


def test_transfer_from_unknown_sender(client, make_user):
    alice = make_user("Alice", "alice@example.com")
    response = client.post(
        f"{API}/transfers",
        json={"sender_account_id": "BS0000000000", "recipient_email": "x@example.com", "amount": "10.00"},
        headers=alice["headers"]
    )
    assert response.status_code == 404
    assert response.json()["error"] == "SenderNotFoundError"


def test_transfer_invalid_amounts(client, make_user, fund):
    alice = make_user("Alice", "alice@example.com")
    bob = make_user("Bob", "bob@example.com")
    fund(alice["checking"], "100.00")

    for amount in ["0", "-5.00", "1.005", "NaN", "Infinity", "abc"]:
        response = client.post(
            f"{API}/transfers",
            json={"recipient_account_id": bob["checking"], "amount": amount},
            headers=alice["headers"]
        )
        assert response.status_code == 400, amount
        assert response.json()["error"] == "InvalidAmountError"


def test_transfer_without_recipient(client, make_user, fund):
    alice = make_user("Alice", "alice@example.com")
    fund(alice["checking"], "100.00")
    response = client.post(
        f"{API}/transfers",
        json={"recipient_name": "Nobody Here", "amount": "10.00"},
        headers=alice["headers"]
    )
    assert response.status_code == 400
    assert response.json()["error"] == "RecipientUnresolvedError"


def test_external_transfer_is_pending(client, make_user, fund, balance_of, db):
    """Bank details only: pending, claim token, ~7 day expiry, sender debited."""
    alice = make_user("Alice", "alice@example.com")
    fund(alice["checking"], "100.00")

    response = client.post(
        f"{API}/transfers",
        json={
            "external": {"account_number": "12345678", "routing_number": "021000021"},
            "amount": "30.00"
        },
        headers=alice["headers"]
    )

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["method"] == "bank"
    assert data["recipient_account_id"] is None
    assert data["recipient_external_ref"] == "bank:021000021:12345678"
    assert data["claim_token"]
    assert balance_of(alice) == Decimal("70.00")

    transfer = db.execute(select(Transfer)).scalar_one()
    expires_in = transfer.claim_expires_at - utcnow()
    assert timedelta(days=6, hours=23) < expires_in <= timedelta(days=7)
    # Only the sender's debit leg exists
    assert count(db, Transaction) == 1


def test_claim_external_transfer(client, make_user, fund, balance_of):
    alice = make_user("Alice", "alice@example.com")
    fund(alice["checking"], "100.00")
    created = client.post(
        f"{API}/transfers",
        json={"recipient_email": "carol@example.com", "amount": "20.00"},
        headers=alice["headers"]
    ).json()
    assert created["method"] == "email"
    assert created["status"] == "pending"

    carol = make_user("Carol", "carol@example.com")
    response = client.post(
        f"{API}/transfers/claim",
        json={"claim_token": created["claim_token"]},
        headers=carol["headers"]
    )
    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert response.json()["recipient_account_id"] == carol["checking"]
    assert balance_of(carol) == Decimal("20.00")
    assert balance_of(alice) == Decimal("80.00")

    # Single use
    again = client.post(
        f"{API}/transfers/claim",
        json={"claim_token": created["claim_token"]},
        headers=carol["headers"]
    )
    assert again.status_code == 400
    assert balance_of(carol) == Decimal("20.00")


def test_claim_unknown_token(client, make_user):
    carol = make_user("Carol", "carol@example.com")
    response = client.post(f"{API}/transfers/claim", json={"claim_token": "nope"}, headers=carol["headers"])
    assert response.status_code == 404


# ==================== IDEMPOTENCY TESTS ====================

def test_transfer_idempotent_replay(client, make_user, fund, balance_of, db):
    """Same key + same payload returns the stored response and moves money once."""
    alice = make_user("Alice", "alice@example.com")
    bob = make_user("Bob", "bob@example.com")
    fund(alice["checking"], "1000.00")
    payload = {"recipient_account_id": bob["checking"], "amount": "100.00"}
    headers = {**alice["headers"], "Idempotency-Key": "IDEMPOTENT_TEST_001"}

    response1 = client.post(f"{API}/transfers", json=payload, headers=headers)
    assert response1.status_code == 201

    response2 = client.post(f"{API}/transfers", json=payload, headers=headers)
    assert response2.status_code == 201
    assert response2.json() == response1.json()
    assert response2.headers.get("Idempotent-Replayed") == "true"

    assert balance_of(alice) == Decimal("900.00")  # Only one debit
    assert count(db, Transfer) == 1
    assert count(db, Transaction) == 2
    assert count(db, IdempotencyRecord) == 1


def test_transfer_idempotent_replay_ignores_amount_formatting(client, make_user, fund, balance_of):
    alice = make_user("Alice", "alice@example.com")
    bob = make_user("Bob", "bob@example.com")
    fund(alice["checking"], "1000.00")
    headers = {**alice["headers"], "Idempotency-Key": "fmt-key"}

    first = client.post(f"{API}/transfers", json={"recipient_account_id": bob["checking"], "amount": "100"}, headers=headers)
    second = client.post(f"{API}/transfers", json={"recipient_account_id": bob["checking"], "amount": "100.00"}, headers=headers)
    assert first.status_code == second.status_code == 201
    assert second.json()["reference"] == first.json()["reference"]
    assert balance_of(alice) == Decimal("900.00")


def test_transfer_idempotency_conflict(client, make_user, fund, balance_of, db):
    """Same key with a different payload is a 409 and creates nothing."""
    alice = make_user("Alice", "alice@example.com")
    bob = make_user("Bob", "bob@example.com")
    fund(alice["checking"], "1000.00")
    headers = {**alice["headers"], "Idempotency-Key": "CONFLICT_KEY"}

    first = client.post(f"{API}/transfers", json={"recipient_account_id": bob["checking"], "amount": "100.00"}, headers=headers)
    assert first.status_code == 201

    second = client.post(f"{API}/transfers", json={"recipient_account_id": bob["checking"], "amount": "200.00"}, headers=headers)
    assert second.status_code == 409
    assert second.json()["error"] == "IdempotencyConflictError"

    assert balance_of(alice) == Decimal("900.00")
    assert count(db, Transfer) == 1


def test_failed_transfer_does_not_consume_key(client, make_user, fund, balance_of):
    alice = make_user("Alice", "alice@example.com")
    bob = make_user("Bob", "bob@example.com")
    fund(alice["checking"], "10.00")
    headers = {**alice["headers"], "Idempotency-Key": "retry-after-topup"}
    payload = {"recipient_account_id": bob["checking"], "amount": "50.00"}

    assert client.post(f"{API}/transfers", json=payload, headers=headers).status_code == 400
    fund(alice["checking"], "60.00")
    assert client.post(f"{API}/transfers", json=payload, headers=headers).status_code == 201
    assert balance_of(alice) == Decimal("10.00")


# ==================== QUERY TESTS ====================

def test_get_transfer(client, make_user, fund):
    """Test retrieving transfer details."""
    alice = make_user("Alice", "alice@example.com")
    bob = make_user("Bob", "bob@example.com")
    fund(alice["checking"], "1000.00")

    reference = client.post(
        f"{API}/transfers",
        json={"recipient_account_id": bob["checking"], "amount": "250.00"},
        headers=alice["headers"]
    ).json()["reference"]

    response = client.get(f"{API}/transfers/{reference}", headers=alice["headers"])
    assert response.status_code == 200
    assert response.json()["reference"] == reference
    assert "claim_token" not in response.json()

    # Visible to the recipient, not to strangers
    assert client.get(f"{API}/transfers/{reference}", headers=bob["headers"]).status_code == 200
    carol = make_user("Carol", "carol@example.com")
    assert client.get(f"{API}/transfers/{reference}", headers=carol["headers"]).status_code == 404


def test_list_transfers_filters(client, make_user, fund):
    alice = make_user("Alice", "alice@example.com")
    bob = make_user("Bob", "bob@example.com")
    fund(alice["checking"], "1000.00")

    refs = []
    for amount in ["100.00", "50.00", "25.00"]:
        refs.append(client.post(
            f"{API}/transfers",
            json={"recipient_account_id": bob["checking"], "amount": amount},
            headers=alice["headers"]
        ).json()["reference"])

    response = client.get(f"{API}/transfers", params={"account_id": alice["checking"]}, headers=alice["headers"])
    assert response.status_code == 200
    assert [t["reference"] for t in response.json()] == list(reversed(refs))

    response = client.get(f"{API}/transfers", params={"reference": refs[1]}, headers=bob["headers"])
    assert [t["reference"] for t in response.json()] == [refs[1]]

    assert client.get(f"{API}/transfers", params={"account_id": alice["savings"]}, headers=alice["headers"]).json() == []
    forbidden = client.get(f"{API}/transfers", params={"account_id": bob["checking"]}, headers=alice["headers"])
    assert forbidden.status_code == 403


def test_transactions_with_running_balance(client, make_user, fund):
    alice = make_user("Alice", "alice@example.com")
    bob = make_user("Bob", "bob@example.com")
    fund(alice["checking"], "100.00")

    client.post(f"{API}/transfers", json={"recipient_account_id": bob["checking"], "amount": "30.00"}, headers=alice["headers"])
    client.post(f"{API}/transfers", json={"recipient_account_id": alice["checking"], "amount": "5.00"}, headers=bob["headers"])
    client.post(f"{API}/transfers", json={"recipient_account_id": bob["checking"], "amount": "20.00"}, headers=alice["headers"])

    response = client.get(
        f"{API}/transactions",
        params={"account_id": alice["checking"], "with_balance": True},
        headers=alice["headers"]
    )
    assert response.status_code == 200
    rows = [(r["direction"], Decimal(r["amount"]), Decimal(r["balance_after"])) for r in response.json()]
    assert rows == [
        ("debit", Decimal("20.00"), Decimal("55.00")),
        ("credit", Decimal("5.00"), Decimal("75.00")),
        ("debit", Decimal("30.00"), Decimal("70.00")),
    ]

    plain = client.get(f"{API}/transactions", params={"account_id": alice["checking"]}, headers=alice["headers"])
    assert all(r["balance_after"] is None for r in plain.json())


def test_transactions_of_other_user_hidden(client, make_user):
    alice = make_user("Alice", "alice@example.com")
    bob = make_user("Bob", "bob@example.com")
    response = client.get(f"{API}/transactions", params={"account_id": bob["checking"]}, headers=alice["headers"])
    assert response.status_code == 404
