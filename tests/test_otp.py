from stagebook import redis_tools
from stagebook.redis_tools import (
    OTP_BURNED, OTP_MISMATCH, OTP_MISSING, OTP_VERIFIED, generate_otp, otp_key, store_otp, verify_otp,
)


def test_generated_codes_are_numeric():
    code = generate_otp()
    assert len(code) == 6
    assert code.isdigit()


def test_keys_are_normalised():
    assert otp_key("email", "  Asha@Example.com ") == "otp:email:asha@example.com"


async def test_code_verifies_once(fake_redis):
    await store_otp("email", "asha@example.com", "123456", ttl=60)
    assert fake_redis.ttls["otp:email:asha@example.com"] == 60

    assert await verify_otp("email", "asha@example.com", "123456") == OTP_VERIFIED
    # consumed on success
    assert await verify_otp("email", "asha@example.com", "123456") == OTP_MISSING


async def test_unknown_destination_is_missing(fake_redis):
    assert await verify_otp("phone", "+919800000000", "000000") == OTP_MISSING


async def test_code_is_burned_after_too_many_wrong_guesses(fake_redis):
    await store_otp("phone", "+919800000000", "424242")
    for _ in range(4):
        assert await verify_otp("phone", "+919800000000", "111111", max_attempts=5) == OTP_MISMATCH
    assert await verify_otp("phone", "+919800000000", "111111", max_attempts=5) == OTP_BURNED
    assert await verify_otp("phone", "+919800000000", "424242", max_attempts=5) == OTP_MISSING


async def test_reissuing_resets_attempts(fake_redis):
    await store_otp("email", "asha@example.com", "123456")
    await verify_otp("email", "asha@example.com", "000000")
    await store_otp("email", "asha@example.com", "654321")
    assert "otp:email:asha@example.com:attempts" not in fake_redis.store
    assert await verify_otp("email", "asha@example.com", "654321") == OTP_VERIFIED


async def test_login_flow_registers_an_artist(client, fake_redis):
    r = await client.post("/api/auth/otp/request", json={"channel": "email", "destination": "Meera@Example.com"})
    assert r.status_code == 200
    assert r.json() == {"success": True, "message": "OTP sent"}
    code = fake_redis.store["otp:email:meera@example.com"]

    r = await client.post("/api/auth/otp/verify", json={
        "channel": "email", "destination": "meera@example.com", "code": code,
        "role": "artist", "display_name": "Meera",
    })
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["token_type"] == "bearer"
    assert data["user"]["role"] == "artist"
    assert data["user"]["email"] == "meera@example.com"

    headers = {"Authorization": f"Bearer {data['access_token']}"}
    r = await client.get("/api/artist/profile", headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["user_id"] == data["user"]["id"]

    r = await client.get("/api/auth/me", headers=headers)
    assert r.json()["data"]["id"] == data["user"]["id"]


async def test_returning_user_keeps_their_account(client, fake_redis):
    ids = []
    for _ in range(2):
        await client.post("/api/auth/otp/request", json={"channel": "phone", "destination": "98765 43210"})
        code = fake_redis.store["otp:phone:9876543210"]
        r = await client.post("/api/auth/otp/verify", json={
            "channel": "phone", "destination": "9876543210", "code": code,
        })
        ids.append(r.json()["data"]["user"]["id"])
    assert ids[0] == ids[1]


async def test_wrong_code_is_unauthorized(client, fake_redis):
    await client.post("/api/auth/otp/request", json={"channel": "email", "destination": "asha@example.com"})
    r = await client.post("/api/auth/otp/verify", json={
        "channel": "email", "destination": "asha@example.com", "code": "0000000",
    })
    assert r.status_code == 401
    assert r.json() == {"success": False, "message": "Invalid OTP"}

    r = await client.post("/api/auth/otp/verify", json={
        "channel": "email", "destination": "nobody@example.com", "code": "123456",
    })
    assert r.json()["message"] == "OTP expired or not requested"


async def test_user_token_cannot_reach_artist_routes(client, fake_redis):
    await client.post("/api/auth/otp/request", json={"channel": "email", "destination": "asha@example.com"})
    code = redis_tools.redis.store["otp:email:asha@example.com"]
    r = await client.post("/api/auth/otp/verify", json={
        "channel": "email", "destination": "asha@example.com", "code": code,
    })
    token = r.json()["data"]["access_token"]
    r = await client.get("/api/artist/profile", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 403


async def test_malformed_email_destinations_are_rejected(client, fake_redis):
    for destination in ("not-an-email", "asha@", "@example.com", "asha@@example.com"):
        r = await client.post("/api/auth/otp/request", json={"channel": "email", "destination": destination})
        assert r.status_code == 400, destination
        assert r.json() == {"success": False, "message": "Invalid email address"}
    assert fake_redis.store == {}

    r = await client.post("/api/auth/otp/verify", json={
        "channel": "email", "destination": "asha at example.com", "code": "123456",
    })
    assert r.status_code == 400
