from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, List, Optional

from domain.errors import NotFoundError, ValidationError
from domain.models import (
    AppUserStaker,
    FreeformStaker,
    LiveSession,
    ManualProfileStaker,
    ManualStakerProfile,
    Stake,
    StakeConfiguration,
    StakerIdentity,
    StakeStatus,
    new_id,
)
from domain.repositories import ManualStakerRepository, StakeRepository

logger = logging.getLogger(__name__)

# Stake ids are derived from (session id, configuration id) so that a
# retried settlement writes the same records again instead of new ones.
_STAKE_NAMESPACE = uuid.UUID("6f3c1a52-2b7e-4d8e-9a51-0c2f5e7b9d14")


def _is_real(value) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def staker_identity(
    app_user_id: Optional[str] = None,
    manual_profile_id: Optional[str] = None,
    name: Optional[str] = None,
) -> StakerIdentity:
    """
    Build a staker identity from loosely-typed input (form fields, chat args).

    Exactly one of the three must be given and non-blank.
    """

    given = [
        (value, factory)
        for value, factory in (
            (app_user_id, AppUserStaker),
            (manual_profile_id, ManualProfileStaker),
            (name, FreeformStaker),
        )
        if value is not None and str(value).strip()
    ]
    if len(given) != 1:
        raise ValidationError(
            "staker",
            "Exactly one of app user, manual staker profile or staker name is required.",
        )
    value, factory = given[0]
    return factory(str(value).strip())


def validate_stake_configuration(
    config: StakeConfiguration,
    manual_staker_repo: Optional[ManualStakerRepository] = None,
) -> StakeConfiguration:
    """
    Check a configuration before it may be attached to a session end.

    Raises `ValidationError` naming the offending field. Returns the
    configuration unchanged so it can be used inline.
    """

    staker = config.staker
    if not isinstance(staker, (AppUserStaker, ManualProfileStaker, FreeformStaker)):
        raise ValidationError("staker", "Unknown staker identity.")
    if not isinstance(staker.value, str) or not staker.value.strip():
        raise ValidationError("staker", "Staker identity must not be empty.")

    if not _is_real(config.percentage_sold) or not 0 < config.percentage_sold <= 100:
        raise ValidationError(
            "percentage_sold",
            "Percentage sold must be greater than 0 and at most 100.",
        )

    if not _is_real(config.markup) or config.markup < 1.0:
        raise ValidationError("markup", "Markup must be at least 1.0.")

    if isinstance(staker, ManualProfileStaker) and manual_staker_repo is not None:
        if manual_staker_repo.get(staker.profile_id) is None:
            raise ValidationError("staker", f"Unknown manual staker profile: {staker.profile_id}")

    return config


def new_stake_configuration(
    percentage_sold: float,
    markup: float = 1.0,
    *,
    app_user_id: Optional[str] = None,
    manual_profile_id: Optional[str] = None,
    staker_name: Optional[str] = None,
) -> StakeConfiguration:
    config = StakeConfiguration(
        staker=staker_identity(app_user_id, manual_profile_id, staker_name),
        percentage_sold=percentage_sold,
        markup=markup,
    )
    return validate_stake_configuration(config)


@dataclass(frozen=True)
class Settlement:
    staker_cost: float
    staker_share_of_cashout: float
    amount_transferred: float


def calculate_settlement(
    total_buy_in: float,
    cashout: float,
    percentage_sold: float,
    markup: float,
) -> Settlement:
    """
    Settlement arithmetic for one staker.

    The staker fronts their share of the buy-in inflated by the markup and
    receives the same share of the cash-out. A positive transfer means the
    player owes the staker; negative means the staker's cost exceeded their
    share. Values are kept at full precision.
    """

    share = percentage_sold / 100.0
    staker_cost = total_buy_in * share * markup
    staker_share = cashout * share
    return Settlement(
        staker_cost=staker_cost,
        staker_share_of_cashout=staker_share,
        amount_transferred=staker_share - staker_cost,
    )


def stake_id_for(session_id: str, configuration_id: str) -> str:
    return str(uuid.uuid5(_STAKE_NAMESPACE, f"{session_id}:{configuration_id}"))


def settle_session(
    session: LiveSession,
    final_cashout: float,
    configurations: Iterable[StakeConfiguration],
    proposed_at: datetime,
) -> List[Stake]:
    """Turn a finished session plus its stake configurations into pending Stake records."""

    stakes = []
    for config in configurations:
        result = calculate_settlement(
            session.buy_in, final_cashout, config.percentage_sold, config.markup
        )
        stakes.append(
            Stake(
                id=stake_id_for(session.id, config.id),
                session_id=session.id,
                staker=config.staker,
                staked_player_user_id=session.user_id,
                stake_percentage=config.percentage_sold,
                markup=config.markup,
                total_player_buy_in_for_session=session.buy_in,
                player_cashout_for_session=final_cashout,
                staker_cost=result.staker_cost,
                amount_transferred_at_settlement=result.amount_transferred,
                status=StakeStatus.PENDING,
                session_game_name=session.game_name,
                session_stakes=session.stakes_label,
                session_date=session.start_time,
                is_tournament_session=session.is_tournament,
                proposed_at=proposed_at,
            )
        )
    return stakes


def adjusted_profit(profit: float, stakes: Iterable[Stake]) -> float:
    """The player's profit after paying out (or collecting from) their stakers."""

    return profit - sum(s.amount_transferred_at_settlement for s in stakes)


def is_party_to(stake: Stake, user_id: str) -> bool:
    """The staked player, or the app user who staked them."""

    return stake.staked_player_user_id == user_id or stake.staker == AppUserStaker(user_id)


def mark_stake_settled(
    stake_id: str,
    stake_repo: StakeRepository,
    settled_at: datetime,
    user_id: Optional[str] = None,
) -> Stake:
    """
    Flip a stake to settled.

    Idempotent: settling an already-settled stake returns it unchanged and
    performs no write. When `user_id` is given, stakes that user is not a
    party to are reported as not found.
    """

    stake = stake_repo.get_stake(stake_id)
    if stake is None or (user_id is not None and not is_party_to(stake, user_id)):
        raise NotFoundError(f"No stake with id {stake_id}.")
    if stake.status == StakeStatus.SETTLED:
        logger.debug("Stake %s already settled", stake_id)
        return stake

    stake_repo.update_stake_status(stake_id, StakeStatus.SETTLED, settled_at)
    logger.info("Stake %s settled", stake_id)
    return replace(stake, status=StakeStatus.SETTLED, settled_at=settled_at)


def fetch_stakes_for_session(session_id: str, stake_repo: StakeRepository) -> List[Stake]:
    return stake_repo.list_stakes(session_id)


def fetch_stakes_for_user(user_id: str, stake_repo: StakeRepository) -> List[Stake]:
    """All stakes the user is part of, newest first."""

    stakes = stake_repo.list_stakes_for_user(user_id)
    return sorted(
        stakes,
        key=lambda s: s.proposed_at.timestamp() if s.proposed_at else 0.0,
        reverse=True,
    )


def create_manual_staker(
    user_id: str,
    name: str,
    repo: ManualStakerRepository,
    created_at: datetime,
    contact_info: Optional[str] = None,
    notes: Optional[str] = None,
) -> ManualStakerProfile:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name", "Staker name must not be empty.")

    profile = ManualStakerProfile(
        id=new_id(),
        created_by_user_id=user_id,
        name=name,
        created_at=created_at,
        contact_info=contact_info.strip() if contact_info else None,
        notes=notes.strip() if notes else None,
    )
    repo.create(profile)
    return profile


def list_manual_stakers(user_id: str, repo: ManualStakerRepository) -> List[ManualStakerProfile]:
    return sorted(repo.list_for_user(user_id), key=lambda p: p.name.lower())
