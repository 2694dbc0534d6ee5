"""Burn transaction requests and the signer/broadcaster collaborator."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Protocol, Tuple

import aiohttp

from .http import HTTPError, dumps, fetch_json

logger = logging.getLogger(__name__)

REJECT_CANCELLED = "cancelled"
REJECT_INVALID = "invalid"
REJECT_NETWORK = "network"

_CANCEL_CODES = {"cancelled", "canceled", "user_rejected", "rejected_by_user", "cancel"}


class BurnRejected(Exception):
    """Structured rejection returned by a :class:`BurnSubmitter`."""

    def __init__(self, kind: str, reason: str = "") -> None:
        super().__init__(f"{kind}: {reason}" if reason else kind)
        self.kind = kind
        self.reason = reason


@dataclass(frozen=True)
class PostCondition:
    """Cap on the fungible amount ``principal`` may send in the transaction."""

    principal: str
    asset: str
    amount: int
    comparator: str = "lte"

    def to_payload(self) -> Dict[str, Any]:
        contract, _, token = self.asset.partition("::")
        return {
            "type": "ft-postcondition",
            "address": self.principal,
            "condition": self.comparator,
            "amount": str(self.amount),
            "asset": contract,
            "assetName": token,
        }


@dataclass(frozen=True)
class BurnRequest:
    contract: str
    amount: int
    caller: str
    function_name: str = "claim"
    post_condition_mode: str = "deny"
    post_conditions: Tuple[PostCondition, ...] = field(default_factory=tuple)
    network: str = "mainnet"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "contract": self.contract,
            "functionName": self.function_name,
            "functionArgs": [{"type": "uint", "value": str(self.amount)}],
            "postConditionMode": self.post_condition_mode,
            "postConditions": [pc.to_payload() for pc in self.post_conditions],
            "network": self.network,
            "sender": self.caller,
        }


def build_burn_request(
    caller: str,
    amount: int,
    *,
    contract: str,
    reward_issuer: str,
    energy_token: str,
    reward_token: str,
) -> BurnRequest:
    """Request claiming ``amount`` of reward for the same amount of energy.

    The caller may send at most ``amount`` energy and the reward issuer may
    send at most ``amount`` reward tokens; any other transfer aborts the
    transaction.
    """
    if amount <= 0:
        raise ValueError("burn amount must be positive")
    return BurnRequest(
        contract=contract,
        amount=amount,
        caller=caller,
        post_conditions=(
            PostCondition(principal=caller, asset=energy_token, amount=amount),
            PostCondition(principal=reward_issuer, asset=reward_token, amount=amount),
        ),
    )


class BurnSubmitter(Protocol):
    async def submit(self, request: BurnRequest) -> str:
        """Sign and broadcast ``request`` returning the broadcast id.

        Raises :class:`BurnRejected` when the request is cancelled, invalid or
        cannot reach the network.
        """
        ...


class HttpBurnSubmitter:
    """Submit burn requests to a signing service over HTTP."""

    def __init__(self, signer_url: str, *, attempts: int = 1) -> None:
        self.signer_url = signer_url
        self.attempts = attempts

    async def submit(self, request: BurnRequest) -> str:
        try:
            data = await fetch_json(
                self.signer_url,
                "POST",
                data=dumps(request.to_payload()),
                headers={"Content-Type": "application/json"},
                attempts=self.attempts,
            )
        except HTTPError as exc:
            raise BurnRejected(REJECT_INVALID, f"signer returned {exc.status}") from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise BurnRejected(REJECT_NETWORK, str(exc) or type(exc).__name__) from exc
        except ValueError as exc:
            raise BurnRejected(REJECT_INVALID, "signer response is not JSON") from exc

        if not isinstance(data, Mapping):
            raise BurnRejected(REJECT_INVALID, "unexpected signer response")
        error = data.get("error")
        if error:
            code = str(error.get("code") if isinstance(error, Mapping) else error).lower()
            kind = REJECT_CANCELLED if code in _CANCEL_CODES else REJECT_INVALID
            raise BurnRejected(kind, code)
        txid = data.get("txid") or data.get("txId")
        if not txid:
            raise BurnRejected(REJECT_INVALID, "signer response has no txid")
        logger.info("burn of %s broadcast as %s", request.amount, txid)
        return str(txid)


__all__ = [
    "BurnRejected",
    "BurnRequest",
    "BurnSubmitter",
    "HttpBurnSubmitter",
    "PostCondition",
    "build_burn_request",
    "REJECT_CANCELLED",
    "REJECT_INVALID",
    "REJECT_NETWORK",
]
