from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List

from domain.models import (
    AppUserStaker,
    FinishedSession,
    LiveSession,
    ManualProfileStaker,
    ParkedSessionInfo,
    Stake,
    StakerIdentity,
)

# Argument parsing and reply formatting shared by the Telegram and Discord bots.


def parse_amount(text: str) -> float:
    try:
        return float(text.replace(",", "").lstrip("$"))
    except ValueError:
        raise ValueError("Amount must be a number.") from None


def parse_date(text: str) -> datetime:
    """Parse `YYYY-MM-DD` or `YYYY-MM-DD HH:MM` as a UTC timestamp."""

    for fmt in ("%Y-%m-%d %H:%M", "%Y-%m-%d"):
        try:
            return datetime.strptime(text.strip(), fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    raise ValueError("Date must look like 2024-05-31 or 2024-05-31 18:00.")


def staker_kwargs(text: str, provider: str) -> Dict[str, str]:
    """
    Map a chat argument onto `new_stake_configuration` keyword arguments.

    `profile:<id>` names a saved manual staker, `@<id>` another user of
    the same chat provider; anything else is a free-text staker name.
    """

    text = text.strip()
    if text.startswith("profile:"):
        return {"manual_profile_id": text[len("profile:"):]}
    if text.startswith("@") and len(text) > 1:
        return {"app_user_id": f"{provider}:{text[1:]}"}
    return {"staker_name": text}


def format_duration(seconds: float) -> str:
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes = rest // 60
    return f"{hours}h {minutes:02d}m"


def format_money(amount: float) -> str:
    # Display-only truncation; stored values keep full precision.
    sign = "-" if amount < 0 else ""
    return f"{sign}${int(abs(amount)):,}"


def describe_staker(staker: StakerIdentity) -> str:
    if isinstance(staker, AppUserStaker):
        return f"user {staker.user_id.split(':', 1)[-1]}"
    if isinstance(staker, ManualProfileStaker):
        return f"profile {staker.profile_id}"
    return staker.name


def format_session(session: LiveSession, elapsed: float) -> str:
    lines = [
        f"{session.title} (Day {session.current_day})",
        f"Status: {session.phase.value}",
        f"Time: {format_duration(elapsed)}",
        f"Buy-in: {format_money(session.buy_in)}",
    ]
    if session.rebuys:
        lines.append(f"Rebuys: {len(session.rebuys)}")
    return "\n".join(lines)


def format_parked(infos: List[ParkedSessionInfo]) -> str:
    if not infos:
        return "No parked sessions."
    lines = []
    for info in infos:
        flag = " (overdue)" if info.overdue else ""
        lines.append(f"{info.display_name} on {info.scheduled_date:%Y-%m-%d}{flag}\n  key: {info.key}")
    return "\n".join(lines)


def format_stake(stake: Stake) -> str:
    amount = stake.amount_transferred_at_settlement
    direction = "player owes staker" if amount >= 0 else "staker owes player"
    return (
        f"{describe_staker(stake.staker)}: {stake.stake_percentage:g}% @ {stake.markup:g}x, "
        f"{format_money(abs(amount))} {direction} [{stake.status.value}] id={stake.id}"
    )


def format_finished(finished: FinishedSession, stakes: List[Stake], unsynced: bool = False) -> str:
    lines = [
        f"Session ended after {format_duration(finished.elapsed_seconds)} "
        f"over {finished.days_played} day(s).",
        f"Buy-in {format_money(finished.buy_in)}, cash-out {format_money(finished.cashout)}, "
        f"profit {format_money(finished.profit)}.",
    ]
    if stakes:
        lines.append(f"After staking: {format_money(finished.adjusted_profit)}.")
        lines.extend(format_stake(s) for s in stakes)
    if unsynced:
        lines.append("Not saved yet, will retry. Use sync to try again.")
    return "\n".join(lines)
