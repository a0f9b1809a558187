import base64
import json
import time

import anyio


def make_jwt(aud="https://graph.microsoft.com", exp_in=3600, **claims) -> str:
    """Unsigned JWT with the given audience; good enough for structural checks."""
    def segment(obj):
        return base64.urlsafe_b64encode(json.dumps(obj).encode()).rstrip(b"=").decode()

    payload = {"aud": aud, "exp": int(time.time()) + exp_in, **claims}
    return f"{segment({'alg': 'none', 'typ': 'JWT'})}.{segment(payload)}.sig"


class FakeTimer:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


async def wait_for(predicate, timeout=5.0):
    """Poll ``predicate`` until it is true; background closes run as separate tasks."""
    with anyio.fail_after(timeout):
        while not predicate():
            await anyio.sleep(0.01)
