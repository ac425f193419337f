from models.user import User

REGISTRATION = {
    "firstName": "Jordan",
    "lastName": "Lee",
    "email": "Jordan@Example.com",
    "password": "correct-horse",
    "phone": "253-555-0100",
    "referralSource": "Neighbor",
    "street": "44 Pine St",
    "city": "Tacoma",
    "state": "wa",
    "postalCode": "98402 ",
}


def test_register_creates_user_and_home_address(client, db, sent_emails):
    response = client.post("/auth/register", json=REGISTRATION)

    assert response.status_code == 200, response.text
    assert response.json()["user"]["email"] == "jordan@example.com"
    user = db.query(User).filter(User.email == "jordan@example.com").one()
    assert user.referral_source == "Neighbor"
    assert [(a.label, a.state, a.postal_code) for a in user.addresses] == [("Home", "WA", "98402")]
    assert user.password_hash != "correct-horse"
    assert sent_emails[0]["to"] == "jordan@example.com"
    assert sent_emails[0]["subject"]


def test_register_survives_welcome_email_failure(client, failing_email):
    assert client.post("/auth/register", json=REGISTRATION).status_code == 200


def test_register_rejects_duplicate_email(client, sent_emails):
    client.post("/auth/register", json=REGISTRATION)

    response = client.post("/auth/register", json={**REGISTRATION, "email": "jordan@example.com"})

    assert response.status_code == 400
    assert response.json() == {"error": "An account with that email already exists. Try signing in instead."}


def test_register_validation(client, sent_emails):
    short = client.post("/auth/register", json={**REGISTRATION, "password": "short"})
    state = client.post("/auth/register", json={**REGISTRATION, "state": "XX"})
    postal = client.post("/auth/register", json={**REGISTRATION, "postalCode": "1234"})
    missing = client.post("/auth/register", json={**REGISTRATION, "street": "  "})
    bad_email = client.post("/auth/register", json={**REGISTRATION, "email": "not-an-email"})

    assert short.json() == {"error": "Passwords need to be at least 8 characters long."}
    assert state.json() == {"error": "Please choose a valid U.S. state."}
    assert postal.json() == {"error": "Please provide a valid 5 or 9 digit ZIP code."}
    assert missing.json() == {"error": "Please provide a complete service address."}
    assert bad_email.status_code == 400
    assert sent_emails == []


def test_login_and_me(client, customer, admin):
    response = client.post("/auth/login", json={"email": "customer@example.com", "password": "password123"})

    assert response.status_code == 200
    token = response.json()["access_token"]
    assert response.json()["user"]["isAdmin"] is False

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["user"]["email"] == "customer@example.com"

    admin_login = client.post("/auth/login", json={"email": "ADMIN@example.com", "password": "password123"})
    assert admin_login.json()["user"]["isAdmin"] is True


def test_login_rejects_bad_password(client, customer):
    response = client.post("/auth/login", json={"email": "customer@example.com", "password": "wrong-password"})

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid email or password"}


def test_invalid_token_is_rejected(client):
    response = client.get("/auth/me", headers={"Authorization": "Bearer not-a-token"})

    assert response.status_code == 401
    assert response.json() == {"error": "You must be signed in."}
