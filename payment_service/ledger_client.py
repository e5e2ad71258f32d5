"""
TON Center HTTP API (v2) adapter used as the ledger query service
"""
import logging
from typing import Any, Dict, List, Optional
import requests
from common.schemas import LedgerTransfer

logger = logging.getLogger(__name__)

class LedgerQueryError(Exception):
    """Raised when the ledger service cannot answer or answers garbage"""
    pass

def parse_transaction(tx: Dict[str, Any]) -> LedgerTransfer:
    """Map one TON Center transaction onto a LedgerTransfer.

    An inbound message without a source address is an external message;
    everything else is an internal (wallet-to-wallet) transfer.
    """
    try:
        in_msg = tx.get("in_msg") or {}
        source = in_msg.get("source") or ""
        return LedgerTransfer(
            hash=tx["transaction_id"]["hash"],
            amount_raw=int(in_msg.get("value") or 0),
            sender=source or None,
            message_type="internal" if source else "external",
            timestamp=int(tx.get("utime") or 0),
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise LedgerQueryError(f"malformed transaction: {e}") from e

class TonCenterClient:
    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()
        self._ready = False

    @property
    def ready(self) -> bool:
        return self._ready

    def _get(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        headers = {"X-API-Key": self.api_key} if self.api_key else {}
        try:
            response = self.session.get(
                f"{self.endpoint}/{method}", params=params, headers=headers, timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            raise LedgerQueryError(f"{method} request failed: {e}") from e
        except ValueError as e:
            raise LedgerQueryError(f"{method} returned invalid JSON") from e

        if not isinstance(data, dict) or not data.get("ok"):
            error = data.get("error") if isinstance(data, dict) else data
            raise LedgerQueryError(f"{method} error: {error}")
        return data.get("result")

    def initialize(self) -> None:
        """Verify the endpoint answers before any monitoring starts"""
        self._get("getMasterchainInfo")
        self._ready = True
        logger.info(f"TON Client initialized successfully ({self.endpoint})")

    def get_recent_transfers(self, account: str, limit: int = 20) -> List[LedgerTransfer]:
        """Most recent transactions for the account, newest first.

        Entries that cannot be parsed are logged and left out; only a broken
        response envelope fails the whole query.
        """
        result = self._get("getTransactions", {"address": account, "limit": limit, "archival": "true"})
        if not isinstance(result, list):
            raise LedgerQueryError("getTransactions result is not a list")
        transfers = []
        for tx in result:
            try:
                transfers.append(parse_transaction(tx))
            except LedgerQueryError as e:
                logger.warning(f"Skipping {e}")
        return transfers
