import hashlib
import hmac
import time
from typing import Optional
from urllib.parse import urlencode

MEDIA_PATH = "/api/media/recordings"


class MediaLinkSigner:
    """
    Short-lived signed links to a recording, served by this API, so the
    transcription engine can pull audio without an API key header.
    """

    def __init__(self, secret: str, public_base_url: str = "", ttl_seconds: int = 3600):
        self.secret = secret.encode("utf-8")
        self.public_base_url = public_base_url.rstrip("/")
        self.ttl_seconds = ttl_seconds

    def signature(self, location: str, expires: int) -> str:
        message = f"{location}\n{expires}".encode("utf-8")
        return hmac.new(self.secret, message, hashlib.sha256).hexdigest()

    def build_url(self, location: str, now: Optional[float] = None) -> Optional[str]:
        if not self.public_base_url or not self.secret:
            return None
        expires = int((now if now is not None else time.time()) + self.ttl_seconds)
        query = urlencode({"location": location, "expires": expires, "signature": self.signature(location, expires)})
        return f"{self.public_base_url}{MEDIA_PATH}?{query}"

    def verify(self, location: str, expires: int, signature: str, now: Optional[float] = None) -> bool:
        if not self.secret:
            return False
        if expires < (now if now is not None else time.time()):
            return False
        return hmac.compare_digest(self.signature(location, expires), signature)
