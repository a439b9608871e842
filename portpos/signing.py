import base64, hashlib, time


def auth_header(app_key: str, secret_key: str, timestamp: int | None = None) -> str:
    """Return the Bearer Authorization header for the PortPos v2 API.

    Format: ``Bearer base64(APPKEY:md5(SECRETKEY + TIMESTAMP))``. The token is
    tied to the current unix time, so build a fresh header for every request;
    PortPos tolerates a small clock skew.
    """
    ts = int(time.time()) if timestamp is None else int(timestamp)
    token = hashlib.md5(f"{secret_key}{ts}".encode("utf-8")).hexdigest()
    raw = f"{app_key}:{token}"
    return "Bearer " + base64.b64encode(raw.encode("utf-8")).decode("utf-8")
