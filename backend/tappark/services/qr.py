"""QR payloads. Only the opaque qr_key goes into the code; image rendering is the client's job."""
import json
import uuid


def new_qr_key() -> str:
    return uuid.uuid4().hex


def qr_payload(qr_key: str) -> str:
    return json.dumps({"qr_key": qr_key}, separators=(",", ":"))


def parse_qr_payload(data) -> str | None:
    """Accept the JSON string or an already-decoded dict; return the qr_key or None."""
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except (TypeError, json.JSONDecodeError):
            return None
    if not isinstance(data, dict):
        return None
    key = data.get("qr_key")
    return key.strip() if isinstance(key, str) and key.strip() else None
