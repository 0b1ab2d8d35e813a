"""
Mapping between domain models and the shapes stored by the database adapters.

Sessions are stored as JSON documents; stakes and manual staker profiles as
flat rows. Both SQLite and Postgres adapters share these helpers so the two
backends agree on the stored representation.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from domain.models import (
    STAKER_KINDS,
    FinishedSession,
    LiveSession,
    ManualStakerProfile,
    ParkedKey,
    ParkedSessionEntry,
    SessionPhase,
    Stake,
    StakerIdentity,
    StakeStatus,
)


def dt_to_str(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def dt_from_str(value: Optional[str]) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def staker_from_parts(kind: str, value: str) -> StakerIdentity:
    try:
        factory = STAKER_KINDS[kind]
    except KeyError:
        raise ValueError(f"Unknown staker kind: {kind}") from None
    return factory(value)


def session_to_json(session: LiveSession) -> str:
    return json.dumps(
        {
            "id": session.id,
            "user_id": session.user_id,
            "game_name": session.game_name,
            "stakes_label": session.stakes_label,
            "buy_in": session.buy_in,
            "start_time": dt_to_str(session.start_time),
            "phase": session.phase.value,
            "elapsed_seconds": session.elapsed_seconds,
            "last_active_at": dt_to_str(session.last_active_at),
            "last_paused_at": dt_to_str(session.last_paused_at),
            "is_tournament": session.is_tournament,
            "tournament_name": session.tournament_name,
            "current_day": session.current_day,
            "paused_for_next_day": session.paused_for_next_day,
            "paused_for_next_day_date": dt_to_str(session.paused_for_next_day_date),
            "rebuys": list(session.rebuys),
        }
    )


def session_from_json(payload: str) -> LiveSession:
    data: Dict[str, Any] = json.loads(payload)
    return LiveSession(
        id=data["id"],
        user_id=data["user_id"],
        game_name=data["game_name"],
        stakes_label=data.get("stakes_label", ""),
        buy_in=float(data["buy_in"]),
        start_time=dt_from_str(data["start_time"]),
        phase=SessionPhase(data["phase"]),
        elapsed_seconds=float(data.get("elapsed_seconds", 0.0)),
        last_active_at=dt_from_str(data.get("last_active_at")),
        last_paused_at=dt_from_str(data.get("last_paused_at")),
        is_tournament=bool(data.get("is_tournament", False)),
        tournament_name=data.get("tournament_name"),
        current_day=int(data.get("current_day", 1)),
        paused_for_next_day=bool(data.get("paused_for_next_day", False)),
        paused_for_next_day_date=dt_from_str(data.get("paused_for_next_day_date")),
        rebuys=[float(x) for x in data.get("rebuys", [])],
    )


def parked_entry_from_row(key: str, user_id: str, payload: str) -> ParkedSessionEntry:
    return ParkedSessionEntry(
        key=ParkedKey.parse(key),
        user_id=user_id,
        session=session_from_json(payload),
    )


def finished_to_json(finished: FinishedSession) -> str:
    return json.dumps(
        {
            "id": finished.id,
            "user_id": finished.user_id,
            "game_name": finished.game_name,
            "stakes_label": finished.stakes_label,
            "is_tournament": finished.is_tournament,
            "tournament_name": finished.tournament_name,
            "start_time": dt_to_str(finished.start_time),
            "end_time": dt_to_str(finished.end_time),
            "elapsed_seconds": finished.elapsed_seconds,
            "buy_in": finished.buy_in,
            "cashout": finished.cashout,
            "days_played": finished.days_played,
            "adjusted_profit": finished.adjusted_profit,
        }
    )


def finished_from_json(payload: str) -> FinishedSession:
    data = json.loads(payload)
    return FinishedSession(
        id=data["id"],
        user_id=data["user_id"],
        game_name=data["game_name"],
        stakes_label=data.get("stakes_label", ""),
        is_tournament=bool(data.get("is_tournament", False)),
        tournament_name=data.get("tournament_name"),
        start_time=dt_from_str(data["start_time"]),
        end_time=dt_from_str(data["end_time"]),
        elapsed_seconds=float(data["elapsed_seconds"]),
        buy_in=float(data["buy_in"]),
        cashout=float(data["cashout"]),
        days_played=int(data.get("days_played", 1)),
        adjusted_profit=float(data["adjusted_profit"]),
    )


# Column order shared by every `stakes` SELECT / INSERT.
STAKE_COLUMNS = (
    "id",
    "session_id",
    "staker_kind",
    "staker_value",
    "staked_player_user_id",
    "stake_percentage",
    "markup",
    "total_player_buy_in",
    "player_cashout",
    "staker_cost",
    "amount_transferred",
    "status",
    "session_game_name",
    "session_stakes",
    "session_date",
    "is_tournament_session",
    "proposed_at",
    "settled_at",
)


def stake_to_row(stake: Stake) -> tuple:
    return (
        stake.id,
        stake.session_id,
        stake.staker.kind,
        stake.staker.value,
        stake.staked_player_user_id,
        stake.stake_percentage,
        stake.markup,
        stake.total_player_buy_in_for_session,
        stake.player_cashout_for_session,
        stake.staker_cost,
        stake.amount_transferred_at_settlement,
        stake.status.value,
        stake.session_game_name,
        stake.session_stakes,
        dt_to_str(stake.session_date),
        1 if stake.is_tournament_session else 0,
        dt_to_str(stake.proposed_at),
        dt_to_str(stake.settled_at),
    )


def stake_from_row(row: Sequence[Any]) -> Stake:
    return Stake(
        id=str(row[0]),
        session_id=str(row[1]),
        staker=staker_from_parts(row[2], row[3]),
        staked_player_user_id=str(row[4]),
        stake_percentage=float(row[5]),
        markup=float(row[6]),
        total_player_buy_in_for_session=float(row[7]),
        player_cashout_for_session=float(row[8]),
        staker_cost=float(row[9]),
        amount_transferred_at_settlement=float(row[10]),
        status=StakeStatus(row[11]),
        session_game_name=row[12] or "",
        session_stakes=row[13] or "",
        session_date=dt_from_str(row[14]),
        is_tournament_session=bool(row[15]),
        proposed_at=dt_from_str(row[16]),
        settled_at=dt_from_str(row[17]),
    )


def manual_staker_from_row(row: Sequence[Any]) -> ManualStakerProfile:
    return ManualStakerProfile(
        id=str(row[0]),
        created_by_user_id=str(row[1]),
        name=row[2],
        contact_info=row[3],
        notes=row[4],
        created_at=dt_from_str(row[5]),
    )
