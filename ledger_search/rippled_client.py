"""
JSON-RPC lookup provider for a rippled server.

Queries the `ledger` method for a ledger header and exposes its close time
through the `LedgerLookup` protocol. Every failure (transport, HTTP status,
malformed payload or a non-success status from the server) raises
`LookupFailure`; nothing is coerced to a default value.
"""

import logging
from typing import Any, Dict, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ledger_search.errors import LookupFailure
from ledger_search.lookup import Sample

logger = logging.getLogger(__name__)

# Best-effort public cluster of full-history XRP Ledger nodes.
DEFAULT_URL = "http://s2.ripple.com:51234"
DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRIES = 3


def _create_session(retries: int, user_agent: str) -> requests.Session:
    """Session with retry/backoff on transient server errors."""
    session = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=0.3,
        status_forcelist=(500, 502, 503, 504),
        allowed_methods=None,  # JSON-RPC reads go over POST
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"User-Agent": user_agent, "Content-Type": "application/json"})
    return session


class RippledClient:
    """Fetch ledger headers over JSON-RPC. Usable as a context manager."""

    def __init__(
        self,
        url: str = DEFAULT_URL,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        verify: bool = True,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.verify = verify
        self.session = session if session is not None else _create_session(retries, "ledger-search")

    def __enter__(self) -> "RippledClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.session.close()

    def query(self, method: str, params: Dict[str, Any], *, index: Optional[int] = None) -> Dict[str, Any]:
        """POST a JSON-RPC request and return its successful `result` object."""
        payload = {"method": method, "params": [params]}
        try:
            r = self.session.post(self.url, json=payload, timeout=self.timeout, verify=self.verify)
            r.raise_for_status()
        except requests.RequestException as exc:
            raise LookupFailure(f"{method} request to {self.url} failed: {exc}", index=index) from exc

        try:
            root = r.json()
        except ValueError as exc:
            raise LookupFailure(f"{method} reply from {self.url} is not JSON", index=index) from exc

        result = root.get("result") if isinstance(root, dict) else None
        if not isinstance(result, dict):
            raise LookupFailure(f"{method} reply has no result object", index=index)

        status = result.get("status")
        if status != "success":
            detail = result.get("error_message") or result.get("error") or "no detail"
            raise LookupFailure(f"{method} returned status {status!r}: {detail}", index=index)
        return result

    def ledger_header(self, index: Optional[int] = None) -> Dict[str, Any]:
        """Return the header of ledger `index`, or of the latest validated ledger when None."""
        params = {"ledger_index": "validated" if index is None else int(index)}
        result = self.query("ledger", params, index=index)
        header = result.get("ledger")
        if not isinstance(header, dict) or not header:
            raise LookupFailure(f"ledger reply for {params['ledger_index']} has no header", index=index)
        return header

    def index_range(self) -> Tuple[int, int]:
        """
        First and last ledger the server holds, from `server_info`'s
        `complete_ledgers` (e.g. "32570-86000000" or "1-5,9-20").

        With gaps the outer ends are returned; a request that falls into a
        gap still fails with `LookupFailure`.
        """
        result = self.query("server_info", {})
        info = result.get("info")
        text = info.get("complete_ledgers") if isinstance(info, dict) else None
        starts, ends = [], []
        try:
            for part in str(text).split(","):
                first, _, last = part.strip().partition("-")
                starts.append(int(first))
                ends.append(int(last or first))
        except ValueError as exc:
            raise LookupFailure(f"Server reports no usable ledger range: {text!r}") from exc
        logger.info("rippled at %s holds ledgers %d..%d", self.url, min(starts), max(ends))
        return (min(starts), max(ends))

    def fetch(self, index: Optional[int]) -> Sample:
        header = self.ledger_header(index)
        try:
            # Some server versions report ledger_index as a string.
            sample = Sample(index=int(header["ledger_index"]), timestamp=int(header["close_time"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise LookupFailure(f"Malformed ledger header: {header!r}", index=index) from exc
        logger.debug("rippled ledger %d closed at %d", sample.index, sample.timestamp)
        return sample
