"""Portal session module.

This module handles:
- The HTTP session used for every portal request (timeouts, logon-redirect detection)
- Persisting the session cookies between runs, encrypted at rest
- Creating the session lazily, once, for all concurrent fetches
"""

import base64
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import List, Optional, Tuple
from urllib.parse import urlparse

import requests
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from requests.cookies import RequestsCookieJar, create_cookie

from solarweb_exporter.config import DEFAULT_LOGON_PATH, SessionConfig
from solarweb_exporter.exceptions import CookieStoreError

# Configure module logger
logger = logging.getLogger(__name__)

STORE_VERSION = 1
SALT_SIZE = 16


def derive_key(passphrase: bytes, salt: bytes) -> Fernet:
    """Derive the cookie store key from a passphrase and salt."""
    kdf = Scrypt(salt=salt, length=32, n=2 ** 14, r=8, p=1)
    return Fernet(base64.urlsafe_b64encode(kdf.derive(passphrase)))


def cookie_to_record(cookie) -> dict:
    """Serialise a cookie into a JSON-friendly dict."""
    return {
        "name": cookie.name,
        "value": cookie.value,
        "domain": cookie.domain,
        "path": cookie.path,
        "secure": cookie.secure,
        "expires": cookie.expires,
        "discard": cookie.discard,
        "http_only": cookie.has_nonstandard_attr("HttpOnly"),
    }


def cookie_from_record(record: dict):
    """Rebuild a cookie from cookie_to_record() output.

    Raises:
        KeyError: If name or value is missing
        TypeError: If the record is not a dict
    """
    rest = {"HttpOnly": None} if record.get("http_only") else {}
    return create_cookie(
        record["name"],
        record["value"],
        domain=record.get("domain", ""),
        path=record.get("path", "/"),
        secure=bool(record.get("secure", False)),
        expires=record.get("expires"),
        discard=bool(record.get("discard", False)),
        rest=rest,
    )


class CookieStore:
    """Cookie jar persisted to disk, optionally encrypted.

    Loading never fails: a missing, corrupt or undecryptable file leaves an
    empty jar, which simply forces a new logon. Saving raises
    CookieStoreError, since an unsaved session cannot be reused.

    All loads and saves are serialised by one lock.

    Attributes:
        path: Location of the store file
        encrypt: Whether the cookies are encrypted at rest
        jar: The live cookie jar shared with the HTTP session
    """

    def __init__(
        self,
        path: str,
        passphrase: str,
        encrypt: bool = True,
        logger: Optional[logging.Logger] = None,
    ):
        self.path = Path(path)
        self.encrypt = encrypt
        self.jar = RequestsCookieJar()
        self._passphrase = passphrase.encode("utf-8")
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._salt: Optional[bytes] = None
        self._fernet: Optional[Fernet] = None

    @property
    def has_key(self) -> bool:
        return self._fernet is not None

    def _read(self) -> Tuple[List[dict], Optional[bytes], Optional[Fernet]]:
        envelope = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(envelope, dict):
            raise ValueError("cookie store is not a JSON object")

        salt = fernet = None
        if self.encrypt:
            salt = base64.b64decode(envelope["salt"])
            fernet = derive_key(self._passphrase, salt)
            records = json.loads(fernet.decrypt(envelope["cookies"].encode("ascii")))
        else:
            records = envelope["cookies"]

        if not isinstance(records, list):
            raise ValueError("cookie list expected")
        return records, salt, fernet

    def load(self) -> bool:
        """Load cookies from disk into the jar.

        Returns:
            True if a store was loaded, False if the jar was left empty
        """
        with self._lock:
            try:
                records, salt, fernet = self._read()
                cookies = [cookie_from_record(r) for r in records]
            except FileNotFoundError:
                self._logger.info(f"No cookie store at {self.path}, starting without a session")
                return False
            except (OSError, ValueError, KeyError, TypeError, AttributeError, InvalidToken) as e:
                self._logger.warning(f"Cannot load cookie store {self.path}: {e!r}")
                return False

            loaded = 0
            for cookie in cookies:
                if cookie.is_expired():
                    continue
                self.jar.set_cookie(cookie)
                loaded += 1
            self._salt, self._fernet = salt, fernet

        self._logger.info(f"Loaded {loaded} cookies from {self.path}")
        return True

    def _encode(self, records: List[dict]) -> Tuple[dict, Optional[bytes], Optional[Fernet]]:
        if not self.encrypt:
            return {"version": STORE_VERSION, "cookies": records}, None, None

        salt, fernet = self._salt, self._fernet
        if fernet is None:
            # First save without a loaded store: mint a new key
            salt = os.urandom(SALT_SIZE)
            fernet = derive_key(self._passphrase, salt)
        token = fernet.encrypt(json.dumps(records).encode("utf-8"))
        envelope = {
            "version": STORE_VERSION,
            "salt": base64.b64encode(salt).decode("ascii"),
            "cookies": token.decode("ascii"),
        }
        return envelope, salt, fernet

    def _write(self, envelope: dict) -> None:
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(directory))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(envelope, fh)
                fh.write("\n")
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def save(self) -> None:
        """Write the jar to disk.

        Raises:
            CookieStoreError: If the store cannot be encoded or written
        """
        with self._lock:
            try:
                records = [cookie_to_record(c) for c in list(self.jar)]
                envelope, salt, fernet = self._encode(records)
                self._write(envelope)
            except (OSError, TypeError, ValueError) as e:
                raise CookieStoreError(f"Cannot save cookie store {self.path}: {e}") from e
            self._salt, self._fernet = salt, fernet

        self._logger.debug(f"Saved {len(records)} cookies to {self.path}")


class PortalSession(requests.Session):
    """HTTP session for the Solar.Web portal.

    Redirects to the logon page are not followed: the redirect response is
    returned instead, so a data request never silently ends on the logon
    page. Every request carries the configured timeout.
    """

    def __init__(
        self,
        logon_path: str = DEFAULT_LOGON_PATH,
        timeout: float = 30.0,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__()
        self.logon_path = logon_path
        self.timeout = timeout
        self._logger = logger or logging.getLogger(__name__)

        self.headers.update({
            "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
            "Accept": "application/json, text/javascript, */*; q=0.01",
            "X-Requested-With": "XMLHttpRequest",
        })

    def request(self, method, url, **kwargs):
        if kwargs.get("timeout") is None:
            kwargs["timeout"] = self.timeout
        return super().request(method, url, **kwargs)

    def _is_logon_target(self, target: Optional[str]) -> bool:
        return bool(target) and urlparse(target).path.startswith(self.logon_path)

    def get_redirect_target(self, resp):
        target = super().get_redirect_target(resp)
        if self._is_logon_target(target):
            self._logger.debug(f"Redirect from {resp.url} to logon page {target}, not following")
            return None
        if target:
            self._logger.debug(f"Redirect from {resp.url} to {target}")
        return target

    def is_logon_redirect(self, resp: requests.Response) -> bool:
        """Whether the response is a redirect to the logon page."""
        return self._is_logon_target(super().get_redirect_target(resp))


class SessionManager:
    """Owns the portal session and its cookie store.

    The session is created on first use and at most once, however many
    threads ask for it at the same time.
    """

    def __init__(self, config: SessionConfig, logger: Optional[logging.Logger] = None):
        self.config = config
        self._logger = logger or logging.getLogger(__name__)
        self.cookie_store = CookieStore(
            config.cookie_jar_path,
            config.system_id,
            encrypt=config.encrypt_cookies,
            logger=self._logger,
        )
        self._lock = threading.Lock()
        self._session: Optional[PortalSession] = None

    def _build_session(self) -> PortalSession:
        return PortalSession(
            logon_path=self.config.logon_path,
            timeout=self.config.timeout,
            logger=self._logger,
        )

    def session(self) -> PortalSession:
        """Return the shared session, creating it on first call."""
        if self._session is not None:
            return self._session
        with self._lock:
            if self._session is None:
                self.cookie_store.load()
                session = self._build_session()
                session.cookies = self.cookie_store.jar
                self._session = session
                self._logger.debug(f"Created portal session for system {self.config.system_id}")
        return self._session

    def save(self) -> None:
        """Persist the session cookies (raises CookieStoreError)."""
        self.cookie_store.save()

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
