"""Harvest and burn actions applied optimistically on top of the snapshot."""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Tuple

import aiohttp

from . import event_bus
from .burn import REJECT_CANCELLED, REJECT_INVALID, REJECT_NETWORK, BurnRejected, BurnSubmitter, build_burn_request
from .errors import ActionError, BurnSubmissionError, InsufficientEnergyError
from .overlay import BURN, HARVEST, PendingEntry
from .projector import sanitize
from .schemas import BurnFailed, BurnSubmitted, HarvestGranted

if TYPE_CHECKING:  # pragma: no cover
    from .session import EnergySession

logger = logging.getLogger(__name__)

HARVEST_TTL = 30.0
BURN_TTL = 60.0
BURN_SAFETY_BOUND = 1_000_000_000

_FAILURE_MESSAGES = {
    REJECT_CANCELLED: "Burn cancelled",
    REJECT_INVALID: "Burn transaction was rejected",
    REJECT_NETWORK: "Network error while submitting burn",
}


@dataclass(frozen=True)
class HarvestResult:
    action_id: str
    requested: float
    granted: float
    wasted: float
    source_id: Optional[str] = None


@dataclass(frozen=True)
class BurnReceipt:
    action_id: str
    amount: int
    txid: str


def new_action_id(kind: str) -> str:
    return f"{kind}-{uuid.uuid4().hex}"


def harvest_split(requested: float, capacity: float, spendable: float) -> Tuple[float, float]:
    """Return ``(granted, wasted)`` for a harvest of ``requested``.

    Only the remaining headroom below ``capacity`` is granted; the rest is
    destroyed.
    """
    headroom = max(0.0, capacity - spendable)
    granted = min(requested, headroom)
    return granted, requested - granted


class ActionCoordinator:
    """Register harvest and burn deltas in the session overlay.

    Every entry gets its own action id and a deadline in the session's
    :class:`~energy_sync.scheduler.ExpiryScheduler`; at expiry the entry is
    dropped on the assumption that the authoritative snapshot has caught up.
    """

    def __init__(
        self,
        session: "EnergySession",
        submitter: Optional[BurnSubmitter] = None,
        *,
        harvest_ttl: float = HARVEST_TTL,
        burn_ttl: float = BURN_TTL,
        burn_safety_bound: float = BURN_SAFETY_BOUND,
    ) -> None:
        self._session = session
        self.submitter = submitter
        self.harvest_ttl = harvest_ttl
        self.burn_ttl = burn_ttl
        self.burn_safety_bound = burn_safety_bound

    # harvest ---------------------------------------------------------------
    def apply_harvest(self, requested_amount: float, source_id: Optional[str] = None) -> Optional[HarvestResult]:
        """Move ``requested_amount`` of accrued energy into the balance.

        The full requested amount leaves accrual even when only part of it
        fits under capacity.  Returns ``None`` when no snapshot has arrived yet.
        """
        requested = float(requested_amount)
        if not math.isfinite(requested) or requested <= 0:
            raise ValueError("harvest amount must be a positive finite number")
        session = self._session
        snapshot = session.snapshot
        if snapshot is None:
            logger.warning("harvest of %s ignored: no snapshot for %s yet", requested, session.subject)
            return None

        clean = sanitize(snapshot, capacity_fallback=session.capacity_fallback)
        granted, wasted = harvest_split(requested, clean.capacity, clean.spendable_balance)
        action_id = new_action_id(HARVEST)
        entry = session.overlay.add(
            PendingEntry(
                action_id=action_id,
                kind=HARVEST,
                balance_delta=granted,
                accrual_consumed=requested,
                source_id=source_id,
                created_at=session.scheduler_clock(),
            )
        )
        entry.expires_at = session.scheduler.schedule(action_id, self.harvest_ttl, self._expire)
        logger.info(
            "harvest %s: requested=%s granted=%s wasted=%s source=%s",
            action_id,
            requested,
            granted,
            wasted,
            source_id,
        )
        result = HarvestResult(action_id, requested, granted, wasted, source_id)
        event_bus.publish(
            "energy.harvest_granted",
            HarvestGranted(
                subject=session.subject,
                action_id=action_id,
                requested=requested,
                granted=granted,
                wasted=wasted,
                source_id=source_id,
            ),
        )
        return result

    # burn ------------------------------------------------------------------
    def burnable_amount(self) -> int:
        display = self._session.display()
        if display is None:
            return 0
        return int(math.floor(min(display.spendable_balance, self.burn_safety_bound)))

    async def apply_burn(self, amount: Optional[float] = None) -> BurnReceipt:
        """Burn spendable energy through a signed transaction.

        ``amount=None`` burns everything burnable.  The balance drops
        immediately; if submission fails the delta is rolled back and
        :class:`BurnSubmissionError` is raised with a user-facing message.
        """
        session = self._session
        subject = session.subject
        if subject is None:
            raise ActionError("Wallet not connected")
        if self.submitter is None:
            raise ActionError("Burning is not available")
        burnable = self.burnable_amount()
        if amount is not None:
            if not math.isfinite(amount) or amount <= 0:
                raise ValueError("burn amount must be a positive finite number")
            burnable = min(burnable, int(math.floor(amount)))
        if burnable <= 0:
            raise InsufficientEnergyError("No energy to burn")

        cfg = session.config
        request = build_burn_request(
            subject,
            burnable,
            contract=cfg.burn_contract,
            reward_issuer=cfg.reward_issuer,
            energy_token=cfg.energy_token,
            reward_token=cfg.reward_token,
        )
        overlay = session.overlay
        epoch = session.epoch
        action_id = new_action_id(BURN)
        overlay.add(
            PendingEntry(
                action_id=action_id,
                kind=BURN,
                balance_delta=-float(burnable),
                created_at=session.scheduler_clock(),
            )
        )
        logger.info("burn %s: submitting %s for %s", action_id, burnable, subject)

        try:
            txid = await self.submitter.submit(request)
        except BurnRejected as exc:
            kind = exc.kind
            cause: BaseException = exc
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            kind = REJECT_NETWORK
            cause = exc
        except BaseException:
            overlay.remove(action_id)
            raise
        else:
            return self._burn_submitted(epoch, action_id, burnable, txid)

        overlay.remove(action_id)
        message = _FAILURE_MESSAGES.get(kind, _FAILURE_MESSAGES[REJECT_INVALID])
        logger.warning("burn %s failed (%s): %s", action_id, kind, cause)
        event_bus.publish(
            "energy.burn_failed",
            BurnFailed(subject=subject, action_id=action_id, amount=float(burnable), kind=kind, message=message),
        )
        raise BurnSubmissionError(message, kind=kind, action_id=action_id, amount=burnable) from cause

    def _burn_submitted(self, epoch: int, action_id: str, amount: int, txid: str) -> BurnReceipt:
        session = self._session
        receipt = BurnReceipt(action_id=action_id, amount=amount, txid=txid)
        if session.epoch != epoch:
            # Subject changed or session closed while the request was in flight.
            logger.info("burn %s completed after session reset; ignoring", action_id)
            return receipt
        deadline = session.scheduler.schedule(action_id, self.burn_ttl, self._expire)
        session.overlay.set_expiry(action_id, deadline)
        event_bus.publish(
            "energy.burn_submitted",
            BurnSubmitted(subject=session.subject, action_id=action_id, amount=float(amount), txid=txid),
        )
        return receipt

    # expiry ----------------------------------------------------------------
    def _expire(self, action_id: object) -> None:
        entry = self._session.overlay.remove(str(action_id))
        if entry is not None:
            logger.debug("overlay entry %s expired", action_id)


__all__ = [
    "ActionCoordinator",
    "BurnReceipt",
    "HarvestResult",
    "harvest_split",
    "new_action_id",
    "HARVEST_TTL",
    "BURN_TTL",
    "BURN_SAFETY_BOUND",
]
