import os
from datetime import timedelta

import pytest

from spinwin.core.config import get_settings
from spinwin.core.exceptions import StoreUnavailableError
from spinwin.core.timeutil import utcnow
from spinwin.services import redemption

ADMIN = ("admin", "test-password")


def issue_payload(seed, spin_id="spin-1", **overrides):
    payload = {
        "spin_id": spin_id,
        "prize_id": seed.prize_id,
        "user_id": seed.alice_id,
        "tenant_id": seed.tenant_id,
        "tenant_slug": "acme",
        "validity_days": 30,
        "generate_qr": False,
    }
    payload.update(overrides)
    return payload


async def issue(client, seed, **overrides):
    resp = await client.post("/api/vouchers", json=issue_payload(seed, **overrides))
    assert resp.status_code == 200
    return resp.json()["voucher"]


async def test_health(client):
    assert (await client.get("/health")).json() == {"status": "healthy"}
    assert (await client.get("/")).json()["status"] == "running"


async def test_issue_validate_redeem_flow(client, seed):
    voucher = await issue(client, seed)
    assert voucher["status"] == "active"

    validate = await client.post("/api/vouchers/validate", json={"code": voucher["code"], "tenant_id": seed.tenant_id})
    assert validate.status_code == 200
    body = validate.json()
    assert body["valid"] is True
    assert body["voucher"]["prize"]["name"] == "Free Coffee"
    assert body["voucher"]["customer"]["phone"] == "9876543210"

    redeem = await client.post(
        "/api/vouchers/redeem",
        json={"code": voucher["code"], "merchant_id": "merchant-1", "tenant_id": seed.tenant_id},
    )
    assert redeem.status_code == 200
    assert redeem.json()["success"] is True
    assert redeem.json()["voucher"]["redemption_count"] == 1

    again = await client.post("/api/vouchers/validate", json={"code": voucher["code"], "tenant_id": seed.tenant_id})
    assert again.status_code == 200
    assert again.json()["valid"] is False
    assert again.json()["reason"] == "redeemed"
    assert again.json()["details"]["redeemed_by"] == "merchant-1"


async def test_issue_with_qr_runs_in_background(client, seed, tmp_path, monkeypatch):
    monkeypatch.setattr(get_settings(), "qr_storage_path", str(tmp_path / "qr"))

    voucher = await issue(client, seed, generate_qr=True)

    assert os.path.exists(tmp_path / "qr" / f"{voucher['id']}.png")
    listing = await client.get("/api/vouchers", params={"tenant_id": seed.tenant_id})
    assert listing.json()["vouchers"][0]["qr_image_url"] == f"/api/qr/{voucher['id']}.png"


async def test_issue_without_validity(client, seed):
    resp = await client.post("/api/vouchers", json=issue_payload(seed, validity_days=0))
    assert resp.status_code == 200
    assert resp.json() == {"issued": False, "voucher": None}


async def test_issue_same_spin_twice(client, seed):
    first = await issue(client, seed)
    second = await issue(client, seed)
    assert first["id"] == second["id"]


async def test_issue_with_unknown_references(client, seed):
    no_prize = await client.post("/api/vouchers", json=issue_payload(seed, prize_id="no-such-prize"))
    assert no_prize.status_code == 400
    assert no_prize.json()["detail"] == "Prize no-such-prize not found"

    no_customer = await client.post("/api/vouchers", json=issue_payload(seed, user_id="no-such-customer"))
    assert no_customer.status_code == 400

    listing = await client.get("/api/vouchers", params={"tenant_id": seed.tenant_id})
    assert listing.json()["pagination"]["total"] == 0
    assert listing.json()["stats"]["total"] == 0


async def test_issue_spin_of_other_tenant_is_409(client, seed):
    await issue(client, seed, spin_id="spin-x")

    resp = await client.post(
        "/api/vouchers",
        json=issue_payload(
            seed,
            spin_id="spin-x",
            tenant_id=seed.other_tenant_id,
            prize_id=seed.other_prize_id,
            user_id=seed.carol_id,
            tenant_slug="globex",
        ),
    )
    assert resp.status_code == 409


async def test_issue_rejects_bad_limit(client, seed):
    resp = await client.post("/api/vouchers", json=issue_payload(seed, redemption_limit=0))
    assert resp.status_code == 422


async def test_code_is_normalized(client, seed):
    voucher = await issue(client, seed)
    resp = await client.post(
        "/api/vouchers/validate",
        json={"code": f"  {voucher['code'].lower()} ", "tenant_id": seed.tenant_id},
    )
    assert resp.json()["valid"] is True


async def test_tenant_from_header(client, seed):
    voucher = await issue(client, seed)
    resp = await client.post(
        "/api/vouchers/validate",
        json={"code": voucher["code"]},
        headers={"X-Tenant-Id": seed.tenant_id},
    )
    assert resp.json()["valid"] is True


@pytest.mark.parametrize("payload, detail", [
    ({"code": "ACME-1234"}, "Invalid voucher code format"),
    ({"code": "   "}, "Voucher code is required"),
])
async def test_validate_rejects_malformed_code(client, seed, payload, detail):
    resp = await client.post("/api/vouchers/validate", json={**payload, "tenant_id": seed.tenant_id})
    assert resp.status_code == 400
    assert resp.json()["detail"] == detail


async def test_validate_requires_tenant(client, seed):
    resp = await client.post("/api/vouchers/validate", json={"code": "ACME-X7K9P2M4N5R8"})
    assert resp.status_code == 400


async def test_validate_other_tenant(client, seed):
    voucher = await issue(client, seed)
    resp = await client.post(
        "/api/vouchers/validate",
        json={"code": voucher["code"], "tenant_id": seed.other_tenant_id},
    )
    assert resp.status_code == 200
    assert resp.json() == {"valid": False, "voucher": None, "reason": "wrong_tenant", "details": None}


async def test_redeem_expired_returns_400(client, seed, make_voucher):
    await make_voucher("ACME-X7K9P2M4N5R8", expires_at=utcnow() - timedelta(days=2))

    resp = await client.post(
        "/api/vouchers/redeem",
        json={"code": "ACME-X7K9P2M4N5R8", "merchant_id": "merchant-1", "tenant_id": seed.tenant_id},
    )

    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["reason"] == "expired"
    assert body["error_code"] == "EXPIRED"
    assert body["error"].startswith("Voucher expired on")


async def test_redeem_requires_merchant(client, seed):
    resp = await client.post(
        "/api/vouchers/redeem",
        json={"code": "ACME-X7K9P2M4N5R8", "merchant_id": " ", "tenant_id": seed.tenant_id},
    )
    assert resp.status_code == 400


async def test_store_outage_is_503(client, seed, monkeypatch):
    async def unavailable(*args, **kwargs):
        raise StoreUnavailableError("database is locked")

    monkeypatch.setattr(redemption.voucher_store, "conditional_redeem", unavailable)

    resp = await client.post(
        "/api/vouchers/redeem",
        json={"code": "ACME-X7K9P2M4N5R8", "merchant_id": "merchant-1", "tenant_id": seed.tenant_id},
    )
    assert resp.status_code == 503
    assert "locked" not in resp.text


async def test_lookup_phone(client, seed):
    voucher = await issue(client, seed)

    resp = await client.post("/api/vouchers/lookup-phone", json={"phone": "9876543210", "tenant_id": seed.tenant_id})
    assert resp.status_code == 200
    assert [v["code"] for v in resp.json()["vouchers"]] == [voucher["code"]]

    empty = await client.post("/api/vouchers/lookup-phone", json={"phone": "", "tenant_id": seed.tenant_id})
    assert empty.json() == {"vouchers": []}

    bad = await client.post("/api/vouchers/lookup-phone", json={"phone": "abc", "tenant_id": seed.tenant_id})
    assert bad.status_code == 400


async def test_list_with_stats(client, seed):
    await issue(client, seed, spin_id="spin-1")
    await issue(client, seed, spin_id="spin-2")

    resp = await client.get("/api/vouchers", params={"tenant_id": seed.tenant_id, "limit": 1})
    assert resp.status_code == 200
    body = resp.json()
    assert len(body["vouchers"]) == 1
    assert body["stats"]["total"] == 2
    assert body["stats"]["active"] == 2
    assert body["pagination"] == {"page": 1, "limit": 1, "total": 2, "total_pages": 2}


@pytest.mark.parametrize("params", [{"page": 0}, {"limit": 0}, {"limit": 101}])
async def test_list_rejects_bad_paging(client, seed, params):
    resp = await client.get("/api/vouchers", params={"tenant_id": seed.tenant_id, **params})
    assert resp.status_code == 400


async def test_export_csv(client, seed):
    voucher = await issue(client, seed)

    resp = await client.get("/api/vouchers/export", params={"tenant_id": seed.tenant_id})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert "attachment" in resp.headers["content-disposition"]
    assert voucher["code"] in resp.text
    assert resp.headers["x-export-truncated"] == "false"
    assert resp.headers["x-export-total"] == "1"


async def test_export_csv_reports_truncation(client, seed, monkeypatch):
    monkeypatch.setattr(get_settings(), "voucher_export_max_rows", 1)
    await issue(client, seed, spin_id="spin-1")
    await issue(client, seed, spin_id="spin-2")

    resp = await client.get("/api/vouchers/export", params={"tenant_id": seed.tenant_id})

    assert resp.status_code == 200
    assert len(resp.text.splitlines()) == 2
    assert resp.headers["x-export-truncated"] == "true"
    assert resp.headers["x-export-total"] == "2"


async def test_rate_limit(client, seed, monkeypatch):
    monkeypatch.setattr(get_settings(), "rate_limit_max_attempts", 2)
    payload = {"code": "ACME-X7K9P2M4N5R8", "tenant_id": seed.tenant_id}

    assert (await client.post("/api/vouchers/validate", json=payload)).status_code == 200
    assert (await client.post("/api/vouchers/validate", json=payload)).status_code == 200
    assert (await client.post("/api/vouchers/validate", json=payload)).status_code == 429


async def test_void_requires_admin(client, seed):
    voucher = await issue(client, seed)

    resp = await client.put(
        f"/api/admin/vouchers/{voucher['id']}/void",
        params={"tenant_id": seed.tenant_id},
        auth=("admin", "wrong"),
    )
    assert resp.status_code == 401


async def test_void_flow(client, seed):
    voucher = await issue(client, seed)
    url = f"/api/admin/vouchers/{voucher['id']}/void"

    resp = await client.put(url, headers={"X-Tenant-Id": seed.tenant_id}, auth=ADMIN)
    assert resp.status_code == 200
    assert resp.json()["voucher"]["status"] == "expired"

    again = await client.put(url, headers={"X-Tenant-Id": seed.tenant_id}, auth=ADMIN)
    assert again.status_code == 400
    assert again.json()["error_code"] == "VOIDED"

    missing = await client.put(url, headers={"X-Tenant-Id": seed.other_tenant_id}, auth=ADMIN)
    assert missing.status_code == 404

    validate = await client.post("/api/vouchers/validate", json={"code": voucher["code"], "tenant_id": seed.tenant_id})
    assert validate.json()["reason"] == "voided"
