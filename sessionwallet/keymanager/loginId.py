import json

import base58

from .crypto_utils import BadCredentials


class LoginIdCodec:
    """
    Wraps a keystore into a single portable string (the login ID).

    The token is base58 over the JSON of ``{"keystore": ..., "name": ...}``.
    It only obscures the keystore; the keystore's own password protection is
    the security boundary.
    """

    def encode(self, keystore: dict, name: str = "") -> str:
        payload = {"keystore": keystore, "name": name}
        raw = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        return base58.b58encode(raw.encode("utf-8")).decode("ascii")

    def unwrap(self, token: str) -> dict:
        """
        Reverse ``encode``.

        Raises:
            BadCredentials: the token is malformed or tampered with
        """
        try:
            payload = json.loads(base58.b58decode(token).decode("utf-8"))
            keystore = payload["keystore"]
            name = payload.get("name", "")
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise BadCredentials() from e

        if not isinstance(keystore, dict) or not isinstance(name, str):
            raise BadCredentials()
        return {"keystore": keystore, "name": name}

    def decode(self, token: str) -> dict:
        """Return the keystore embedded in a login ID."""
        return self.unwrap(token)["keystore"]
