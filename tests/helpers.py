import httpx

from checkpoint_gate.auth import Role, mint_session_token

SECRET = "test_signing_secret"


def auth(operator_id="vol_1", role=Role.VOLUNTEER):
    return {"Authorization": f"Bearer {mint_session_token(SECRET, operator_id, role)}"}


ORGANIZER = auth("org_1", Role.ORGANIZER)
VOLUNTEER = auth("vol_1", Role.VOLUNTEER)


async def create_event(client: httpx.AsyncClient, name="Test Event", checkpoints=("Registration", "Lunch", "Dinner")) -> str:
    r = await client.post("/admin/events", json={"name": name, "checkpoints": list(checkpoints)}, headers=ORGANIZER)
    r.raise_for_status()
    data = r.json()
    assert data.get("ok") is True, data
    return data["event_id"]


async def register(client: httpx.AsyncClient, event_id: str, participant_id="p_1", status="approved") -> dict:
    r = await client.post(
        f"/admin/events/{event_id}/registrations",
        json={"participant_id": participant_id, "status": status},
        headers=ORGANIZER,
    )
    r.raise_for_status()
    return r.json()


async def toggle(client: httpx.AsyncClient, event_id: str, checkpoint: str, action="unlock") -> httpx.Response:
    return await client.post(
        f"/admin/events/{event_id}/checkpoints",
        json={"checkpoint": checkpoint, "action": action},
        headers=ORGANIZER,
    )


async def scan(client: httpx.AsyncClient, credential: str, checkpoint: str, headers=VOLUNTEER) -> httpx.Response:
    return await client.post("/check-in", json={"credential": credential, "checkpoint": checkpoint}, headers=headers)


async def scan_logs(client: httpx.AsyncClient, **params):
    r = await client.get("/admin/scan-logs", params=params, headers=ORGANIZER)
    r.raise_for_status()
    return r.json()
