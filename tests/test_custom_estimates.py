import pytest

from models.custom_estimate import CustomEstimate, EstimatePaymentStatus, EstimateStatus

ADDRESS = {"label": "Home", "street": "12 Elm St", "city": "Tacoma", "state": "wa", "postalCode": "98402"}


@pytest.fixture()
def estimate_body(customer):
    return {
        "userId": customer.id,
        "addresses": [ADDRESS],
        "lineItems": [{"description": "Bin wash", "quantity": 2, "monthlyRate": 7}],
        "monthlyAdjustment": 5,
        "notes": "Two bins by the garage",
        "adminNotes": "Upsell yard care",
    }


@pytest.fixture()
def create_estimate(client, admin, auth_headers, estimate_body):
    def _create(**overrides):
        body = {**estimate_body, **overrides}
        response = client.post("/custom-estimates", json=body, headers=auth_headers(admin))
        assert response.status_code == 200, response.text
        return response.json()["estimate"]
    return _create


def patch(client, auth_headers, user, estimate_id, body):
    return client.patch(f"/custom-estimates/{estimate_id}", json=body, headers=auth_headers(user))


def set_state(db, estimate_id, **fields):
    estimate = db.get(CustomEstimate, estimate_id)
    for key, value in fields.items():
        setattr(estimate, key, value)
    db.commit()


def test_create_computes_totals(create_estimate, sent_emails, admin):
    estimate = create_estimate()

    assert estimate["subtotal"] == 19.0
    assert estimate["total"] == 19.0
    assert estimate["status"] == "DRAFT"
    assert estimate["paymentStatus"] == "PENDING"
    assert estimate["lineItems"][0]["lineTotal"] == 14.0
    assert estimate["addresses"][0]["state"] == "WA"
    assert estimate["createdByEmail"] == admin.email
    assert estimate["adminNotes"] == "Upsell yard care"
    assert sent_emails == []


def test_create_sent_emails_the_customer(create_estimate, sent_emails, customer):
    estimate = create_estimate(status="SENT")

    assert estimate["status"] == "SENT"
    assert len(sent_emails) == 1
    assert sent_emails[0]["to"] == customer.email
    assert f"estimate={estimate['id']}" in sent_emails[0]["text"]
    assert "Upsell yard care" not in sent_emails[0]["text"]


def test_create_sent_survives_email_failure(create_estimate, failing_email):
    assert create_estimate(status="SENT")["status"] == "SENT"


def test_create_validation(client, admin, auth_headers, estimate_body):
    headers = auth_headers(admin)

    no_items = client.post("/custom-estimates", json={**estimate_body, "lineItems": [{"description": ""}]},
                           headers=headers)
    no_address = client.post("/custom-estimates", json={**estimate_body, "addresses": []}, headers=headers)
    no_user = client.post("/custom-estimates", json={**estimate_body, "userId": None}, headers=headers)

    assert no_items.status_code == 400
    assert no_items.json() == {"error": "Add at least one line item."}
    assert no_address.json() == {"error": "Select at least one address."}
    assert no_user.json() == {"error": "Select a customer before saving."}


def test_create_is_admin_only(client, customer, auth_headers, estimate_body):
    forbidden = client.post("/custom-estimates", json=estimate_body, headers=auth_headers(customer))
    anonymous = client.post("/custom-estimates", json=estimate_body)

    assert forbidden.status_code == 403
    assert anonymous.status_code == 401


def test_owner_list_and_detail_hide_admin_notes(client, customer, auth_headers, create_estimate, make_user):
    estimate = create_estimate()

    listed = client.get("/custom-estimates", headers=auth_headers(customer)).json()["estimates"]
    detail = client.get(f"/custom-estimates/{estimate['id']}", headers=auth_headers(customer)).json()["estimate"]

    assert [e["id"] for e in listed] == [estimate["id"]]
    assert "adminNotes" not in listed[0]
    assert "adminNotes" not in detail

    other = make_user(email="other@example.com")
    assert client.get("/custom-estimates", headers=auth_headers(other)).json() == {"estimates": []}
    assert client.get(f"/custom-estimates/{estimate['id']}", headers=auth_headers(other)).status_code == 404


def test_admin_list_filters_by_user(client, admin, customer, auth_headers, create_estimate):
    estimate = create_estimate()

    everything = client.get("/custom-estimates", headers=auth_headers(admin)).json()["estimates"]
    filtered = client.get(f"/custom-estimates?userId={customer.id + 100}", headers=auth_headers(admin)).json()

    assert everything[0]["adminNotes"] == "Upsell yard care"
    assert [e["id"] for e in everything] == [estimate["id"]]
    assert filtered == {"estimates": []}


def test_customer_accepts_estimate(client, db, customer, auth_headers, create_estimate):
    estimate = create_estimate(status="SENT")

    response = patch(client, auth_headers, customer, estimate["id"], {"status": "ACCEPTED"})

    assert response.status_code == 200
    body = response.json()["estimate"]
    assert body["status"] == "ACCEPTED"
    assert body["acceptedAt"] is not None


def test_customer_cannot_set_admin_statuses(client, customer, auth_headers, create_estimate):
    estimate = create_estimate(status="SENT")

    for target in ("SENT", "ACTIVE", "DRAFT"):
        response = patch(client, auth_headers, customer, estimate["id"], {"status": target})
        assert response.status_code == 403
        assert response.json() == {"error": "Only admins can set that status."}


def test_customer_cannot_edit_pricing_or_payment(client, db, customer, auth_headers, create_estimate):
    estimate = create_estimate(status="SENT")

    pricing = patch(client, auth_headers, customer, estimate["id"],
                    {"status": "ACCEPTED", "lineItems": [{"description": "Free", "quantity": 1, "monthlyRate": 0}]})
    payment = patch(client, auth_headers, customer, estimate["id"], {"paymentStatus": "PAID_ON_FILE"})

    assert pricing.status_code == 403
    assert payment.status_code == 403
    assert payment.json() == {"error": "Only admins can record payment."}
    db.expire_all()
    stored = db.get(CustomEstimate, estimate["id"])
    # Nothing was applied, including the allowed status change
    assert stored.status == EstimateStatus.SENT
    assert stored.total == 19.0


def test_non_owner_cannot_patch(client, make_user, auth_headers, create_estimate):
    estimate = create_estimate(status="SENT")
    other = make_user(email="other@example.com")

    response = patch(client, auth_headers, other, estimate["id"], {"status": "ACCEPTED"})

    assert response.status_code == 404


def test_invalid_transition_is_rejected(client, admin, auth_headers, create_estimate):
    estimate = create_estimate()

    response = patch(client, auth_headers, admin, estimate["id"], {"status": "ACTIVE"})

    assert response.status_code == 400
    assert response.json() == {"error": "An estimate cannot move from DRAFT to ACTIVE."}


def test_unknown_status_is_rejected(client, admin, auth_headers, create_estimate):
    estimate = create_estimate()

    response = patch(client, auth_headers, admin, estimate["id"], {"status": "ARCHIVED"})

    assert response.status_code == 400
    assert response.json() == {"error": "Provide a valid estimate status."}


def test_customer_dismisses_estimate(client, db, customer, auth_headers, create_estimate):
    estimate = create_estimate(status="SENT")

    response = patch(client, auth_headers, customer, estimate["id"], {"status": "DELETE"})

    assert response.status_code == 200
    assert response.json()["estimate"]["status"] == "CANCELLED"
    assert client.get("/custom-estimates", headers=auth_headers(customer)).json() == {"estimates": []}
    db.expire_all()
    assert db.get(CustomEstimate, estimate["id"]).dismissed_at is not None


def test_admin_records_payment_on_file(client, admin, auth_headers, create_estimate):
    estimate = create_estimate()

    response = patch(client, auth_headers, admin, estimate["id"], {"paymentStatus": "PAID_ON_FILE"})

    body = response.json()["estimate"]
    assert body["paymentStatus"] == "PAID_ON_FILE"
    assert body["paidAt"] is not None


def test_admin_pricing_edit_recomputes_totals(client, admin, auth_headers, create_estimate, sent_emails):
    estimate = create_estimate(status="SENT")
    sent_emails.clear()

    response = patch(client, auth_headers, admin, estimate["id"], {
        "lineItems": [{"description": "Trash valet", "quantity": 1, "monthlyRate": 10.005}],
        "monthlyAdjustment": "-2.5",
    })

    body = response.json()["estimate"]
    assert body["subtotal"] == 7.51
    assert body["total"] == 7.51
    assert body["notes"] == "Two bins by the garage"
    assert body["addresses"][0]["street"] == "12 Elm St"
    # Still SENT and re-priced, so the customer gets the new quote
    assert len(sent_emails) == 1


def test_pricing_edit_on_active_estimate_updates_stripe(client, db, admin, auth_headers, create_estimate, stripe):
    estimate = create_estimate()
    set_state(db, estimate["id"], status=EstimateStatus.ACTIVE, stripe_subscription_id="sub_est")

    response = patch(client, auth_headers, admin, estimate["id"], {
        "lineItems": [{"description": "Bin wash", "quantity": 3, "monthlyRate": 7}],
    })

    assert response.status_code == 200
    assert response.json()["estimate"]["total"] == 26.0
    assert stripe.updated[0]["subscription_id"] == "sub_est"
    items = stripe.updated[0]["items"]
    assert [(item["name"], item["quantity"], item["monthlyRate"]) for item in items] == [
        ("Bin wash", 3, 7.0),
        ("Custom adjustment", 1, 5.0),
    ]


def test_stripe_failure_blocks_pricing_edit(client, db, admin, auth_headers, create_estimate, stripe):
    estimate = create_estimate()
    set_state(db, estimate["id"], status=EstimateStatus.ACTIVE, stripe_subscription_id="sub_est")
    stripe.update_result = {"success": False, "error": "No such subscription", "configured": True}

    response = patch(client, auth_headers, admin, estimate["id"], {
        "lineItems": [{"description": "Bin wash", "quantity": 3, "monthlyRate": 7}],
    })

    assert response.status_code == 500
    db.expire_all()
    assert db.get(CustomEstimate, estimate["id"]).total == 19.0


def test_delete_cancels_linked_subscription_first(client, db, admin, auth_headers, create_estimate, stripe):
    estimate = create_estimate()
    set_state(db, estimate["id"], stripe_subscription_id="sub_est")

    response = client.delete(f"/custom-estimates/{estimate['id']}", headers=auth_headers(admin))

    assert response.status_code == 200
    assert response.json()["estimate"]["id"] == estimate["id"]
    assert stripe.cancelled == ["sub_est"]
    db.expire_all()
    assert db.get(CustomEstimate, estimate["id"]) is None


def test_delete_keeps_record_when_cancel_fails(client, db, admin, auth_headers, create_estimate, stripe):
    estimate = create_estimate()
    set_state(db, estimate["id"], stripe_subscription_id="sub_est")
    stripe.cancel_result = {"success": False, "error": "Stripe is down", "configured": True}

    response = client.delete(f"/custom-estimates/{estimate['id']}", headers=auth_headers(admin))

    assert response.status_code == 502
    assert response.json() == {
        "error": "We could not cancel the billing subscription for this estimate, so it was not deleted."
    }
    db.expire_all()
    assert db.get(CustomEstimate, estimate["id"]) is not None


def test_delete_is_admin_only(client, customer, auth_headers, create_estimate, stripe):
    estimate = create_estimate()

    response = client.delete(f"/custom-estimates/{estimate['id']}", headers=auth_headers(customer))

    assert response.status_code == 403
    assert stripe.cancelled == []


def test_estimate_checkout_and_finalize(client, db, customer, auth_headers, create_estimate, stripe, make_user):
    sent = create_estimate(status="SENT")
    draft = create_estimate()

    response = client.post(
        "/custom-estimates/checkout",
        json={"estimateIds": [sent["id"], draft["id"]]},
        headers=auth_headers(customer),
    )

    assert response.status_code == 200, response.text
    call = stripe.created[0]
    assert call["metadata"]["estimateIds"] == str(sent["id"])
    assert [item["monthlyRate"] for item in call["items"]] == [7.0, 5.0]
    assert call["items"][0]["name"] == "Bin wash (Home)"
    session_id = response.json()["url"].rsplit("/", 1)[-1]
    stripe.pay(session_id, subscription_id="sub_custom")

    finalized = client.post(
        "/custom-estimates/finalize",
        json={"sessionId": session_id, "outcome": "success"},
        headers=auth_headers(customer),
    )

    assert finalized.json() == {
        "status": "completed",
        "message": "Payment received. Your custom plan is now active.",
        "estimateIds": [str(sent["id"])],
    }
    db.expire_all()
    paid = db.get(CustomEstimate, sent["id"])
    assert paid.status == EstimateStatus.ACTIVE
    assert paid.payment_status == EstimatePaymentStatus.PAID
    assert paid.stripe_subscription_id == "sub_custom"
    assert db.get(CustomEstimate, draft["id"]).status == EstimateStatus.DRAFT


def start_estimate_checkout(client, auth_headers, user, estimate_ids):
    response = client.post("/custom-estimates/checkout", json={"estimateIds": estimate_ids},
                           headers=auth_headers(user))
    assert response.status_code == 200, response.text
    return response.json()["url"].rsplit("/", 1)[-1]


def test_estimate_finalize_requires_payment(client, db, customer, auth_headers, create_estimate, stripe):
    sent = create_estimate(status="SENT")
    session_id = start_estimate_checkout(client, auth_headers, customer, [sent["id"]])

    response = client.post(
        "/custom-estimates/finalize",
        json={"sessionId": session_id, "outcome": "success"},
        headers=auth_headers(customer),
    )

    assert response.status_code == 400
    assert response.json() == {
        "error": "Stripe has not confirmed payment for this checkout yet. Please try again shortly."
    }
    db.expire_all()
    estimate = db.get(CustomEstimate, sent["id"])
    assert estimate.status == EstimateStatus.SENT
    assert estimate.payment_status == EstimatePaymentStatus.PENDING
    assert estimate.stripe_subscription_id is None


def test_estimate_finalize_reports_only_owned_estimates(client, db, customer, auth_headers, create_estimate,
                                                        stripe, make_user):
    other = make_user(email="neighbor@example.com")
    mine = create_estimate(status="SENT")
    theirs = create_estimate(status="SENT", userId=other.id)
    session_id = start_estimate_checkout(client, auth_headers, customer, [mine["id"]])
    stripe.pay(session_id, subscription_id="sub_custom")
    stripe.sessions[session_id]["metadata"]["estimateIds"] = f"{mine['id']},{theirs['id']}"

    response = client.post(
        "/custom-estimates/finalize",
        json={"sessionId": session_id, "outcome": "success"},
        headers=auth_headers(customer),
    )

    assert response.json()["estimateIds"] == [str(mine["id"])]
    db.expire_all()
    assert db.get(CustomEstimate, theirs["id"]).payment_status == EstimatePaymentStatus.PENDING


def test_estimate_checkout_rejects_ineligible(client, customer, auth_headers, create_estimate, stripe):
    draft = create_estimate()

    empty = client.post("/custom-estimates/checkout", json={"estimateIds": []}, headers=auth_headers(customer))
    ineligible = client.post("/custom-estimates/checkout", json={"estimateIds": [draft["id"]]},
                             headers=auth_headers(customer))

    assert empty.json() == {"error": "Select at least one plan to checkout."}
    assert ineligible.json() == {"error": "No eligible custom plans were found for checkout."}
    assert stripe.created == []


def test_estimate_finalize_cancelled_is_a_no_op(client, customer, auth_headers, stripe):
    response = client.post(
        "/custom-estimates/finalize",
        json={"sessionId": "cs_test_1", "outcome": "cancelled"},
        headers=auth_headers(customer),
    )

    assert response.json() == {"status": "cancelled", "message": "Checkout was cancelled. Your plans are still available."}
    assert stripe.retrieved == []


def test_estimate_finalize_requires_session(client, customer, auth_headers, stripe):
    response = client.post(
        "/custom-estimates/finalize",
        json={"outcome": "success"},
        headers=auth_headers(customer),
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Stripe session id is required."}
