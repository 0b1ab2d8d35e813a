from __future__ import annotations

import logging

import telebot
from telebot.types import InlineKeyboardButton, InlineKeyboardMarkup

from application.services import (
    ExternalContext,
    add_rebuy,
    attach_stake,
    current_session,
    discard_parked_session,
    discard_session,
    end_session,
    fetch_user_stakes,
    list_parked_sessions,
    manual_stakers,
    park_for_next_day,
    pause_session,
    restore_parked_session,
    resume_session,
    save_manual_staker,
    settle_stake,
    sign_out,
    start_session,
    sync_pending_writes,
)
from application.sessions import SessionSlots
from application.staking import new_stake_configuration
from domain.errors import SessionError
from domain.models import StakeStatus
from interfaces.commands import (
    format_duration,
    format_finished,
    format_parked,
    format_session,
    format_stake,
    parse_amount,
    parse_date,
    staker_kwargs,
)
from interfaces.telegram.callback_data import (
    encode_parked_action,
    encode_settle,
    parse_parked_action,
    parse_settle,
)

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "/session <buy-in> <game> [stakes]  - start a cash game session\n"
    "/tourney <buy-in> <name>           - start a tournament\n"
    "/pause, /resume                    - pause or resume the clock\n"
    "/rebuy <amount>                    - add a rebuy to the buy-in\n"
    "/time                              - show the current session\n"
    "/park <YYYY-MM-DD>                 - park a tournament for the next day\n"
    "/parked                            - list parked sessions\n"
    "/restore <key>, /discard <key>     - resume or drop a parked session\n"
    "/stake <pct> <markup> <name|@id>   - attach a staker\n"
    "/end <cash-out>                    - end the session and settle stakes\n"
    "/abandon                           - discard the current session\n"
    "/stakes                            - list your stakes\n"
    "/settle <stake-id>                 - mark a stake as settled\n"
    "/staker <name>, /stakers           - save or list manual stakers\n"
    "/sync                              - retry unsaved changes\n"
    "/logout                            - sign out\n"
)


def _build_external_context(user) -> ExternalContext:
    """Extract a channel-agnostic context object from a Telegram user."""

    name = " ".join(p for p in (user.first_name, user.last_name) if p)
    return ExternalContext(
        provider="telegram",
        provider_user_id=str(user.id),
        display_name=name,
    )


def _args(message) -> list[str]:
    return message.text.split()[1:]


def create_telegram_bot(bot_token: str, slots: SessionSlots) -> telebot.TeleBot:
    """
    Configure and return a TeleBot instance wired to the application layer.

    This module contains only Telegram-specific concerns: parsing Telegram
    messages/callbacks and mapping them to/from application services.
    """

    bot = telebot.TeleBot(bot_token)

    def reply(message, text: str, **kwargs) -> None:
        bot.send_message(message.chat.id, text, **kwargs)

    def command(*names):
        """Register a handler that gets the caller's context and args, and reports domain errors."""

        def decorator(func):
            @bot.message_handler(commands=list(names))
            def handler(message):
                ctx = _build_external_context(message.from_user)
                try:
                    func(message, ctx, _args(message))
                except (SessionError, ValueError) as exc:
                    logger.info("/%s rejected for %s: %s", names[0], ctx.user_id, exc)
                    reply(message, str(exc))

            return handler

        return decorator

    @bot.message_handler(commands=["start", "help"])
    def handle_help(message):
        reply(message, "Live poker session tracker.\n\n" + HELP_TEXT)

    @command("session")
    def handle_session(message, ctx, args):
        if len(args) < 2:
            reply(message, "Usage: /session <buy-in> <game> [stakes]")
            return
        buy_in = parse_amount(args[0])
        game, stakes = args[1], " ".join(args[2:])
        result = start_session(ctx, slots, game, stakes, buy_in)
        reply(message, "Session started.\n" + format_session(result.session, 0))

    @command("tourney")
    def handle_tourney(message, ctx, args):
        if len(args) < 2:
            reply(message, "Usage: /tourney <buy-in> <name>")
            return
        buy_in = parse_amount(args[0])
        name = " ".join(args[1:])
        result = start_session(ctx, slots, name, "", buy_in, is_tournament=True, tournament_name=name)
        reply(message, "Tournament started.\n" + format_session(result.session, 0))

    @command("pause")
    def handle_pause(message, ctx, args):
        result = pause_session(ctx, slots)
        reply(message, f"Paused at {format_duration(result.session.elapsed_seconds)}.")

    @command("resume")
    def handle_resume(message, ctx, args):
        resume_session(ctx, slots)
        reply(message, "Resumed.")

    @command("rebuy")
    def handle_rebuy(message, ctx, args):
        if not args:
            reply(message, "Usage: /rebuy <amount>")
            return
        result = add_rebuy(ctx, slots, parse_amount(args[0]))
        reply(message, f"Rebuy recorded. Total buy-in: {result.session.buy_in:g}")

    @command("time")
    def handle_time(message, ctx, args):
        session, elapsed = current_session(ctx, slots)
        if session is None:
            reply(message, "No session in progress.")
            return
        reply(message, format_session(session, elapsed))

    @command("park")
    def handle_park(message, ctx, args):
        if not args:
            reply(message, "Usage: /park <YYYY-MM-DD> [HH:MM]")
            return
        key = park_for_next_day(ctx, slots, parse_date(" ".join(args)))
        reply(message, f"Session parked. Resume it later with /parked.\nkey: {key}")

    @command("parked")
    def handle_parked(message, ctx, args):
        infos = list_parked_sessions(ctx.user_id, slots)
        if not infos:
            reply(message, "No parked sessions.")
            return

        markup = InlineKeyboardMarkup(row_width=2)
        for info in infos:
            markup.add(
                InlineKeyboardButton(
                    f"Resume {info.display_name}",
                    callback_data=encode_parked_action("restore", str(info.key)),
                ),
                InlineKeyboardButton(
                    "Discard",
                    callback_data=encode_parked_action("discard", str(info.key)),
                ),
            )
        reply(message, format_parked(infos), reply_markup=markup)

    @command("restore")
    def handle_restore(message, ctx, args):
        if not args:
            reply(message, "Usage: /restore <key>")
            return
        session = restore_parked_session(ctx, slots, args[0])
        reply(
            message,
            f"Welcome back to Day {session.current_day}.\n"
            + format_session(session, session.elapsed_seconds),
        )

    @command("discard")
    def handle_discard(message, ctx, args):
        if not args:
            reply(message, "Usage: /discard <key>")
            return
        discard_parked_session(ctx, slots, args[0])
        reply(message, "Parked session discarded.")

    @command("stake")
    def handle_stake(message, ctx, args):
        if len(args) < 3:
            reply(message, "Usage: /stake <percent> <markup> <name|@user|profile:id>")
            return
        config = new_stake_configuration(
            parse_amount(args[0]),
            parse_amount(args[1]),
            **staker_kwargs(" ".join(args[2:]), ctx.provider),
        )
        attach_stake(ctx, slots, config)
        reply(message, f"Stake attached: {config.percentage_sold:g}% at {config.markup:g}x.")

    @command("end")
    def handle_end(message, ctx, args):
        if not args:
            reply(message, "Usage: /end <cash-out>")
            return
        finished, stakes = end_session(ctx, slots, parse_amount(args[0]))
        unsynced = bool(slots.for_user(ctx.user_id).pending_writes)
        reply(message, format_finished(finished, stakes, unsynced))

    @command("abandon")
    def handle_abandon(message, ctx, args):
        discard_session(ctx, slots)
        reply(message, "Session discarded.")

    @command("stakes")
    def handle_stakes(message, ctx, args):
        stakes = fetch_user_stakes(ctx, slots)
        if not stakes:
            reply(message, "No stakes yet.")
            return

        markup = InlineKeyboardMarkup(row_width=1)
        for stake in stakes:
            if stake.status == StakeStatus.PENDING:
                markup.add(
                    InlineKeyboardButton(
                        f"Settle {stake.session_game_name} ({stake.stake_percentage:g}%)",
                        callback_data=encode_settle(stake.id),
                    )
                )
        reply(message, "\n".join(format_stake(s) for s in stakes), reply_markup=markup)

    @command("settle")
    def handle_settle_command(message, ctx, args):
        if not args:
            reply(message, "Usage: /settle <stake-id>")
            return
        stake = settle_stake(ctx, slots, args[0])
        reply(message, "Settled: " + format_stake(stake))

    @command("staker")
    def handle_staker(message, ctx, args):
        if not args:
            reply(message, "Usage: /staker <name>")
            return
        profile = save_manual_staker(ctx, slots, " ".join(args))
        reply(message, f"Saved {profile.name}. Use profile:{profile.id} with /stake.")

    @command("stakers")
    def handle_stakers(message, ctx, args):
        profiles = manual_stakers(ctx, slots)
        if not profiles:
            reply(message, "No saved stakers.")
            return
        reply(message, "\n".join(f"{p.name}  profile:{p.id}" for p in profiles))

    @command("sync")
    def handle_sync(message, ctx, args):
        remaining = sync_pending_writes(ctx, slots)
        reply(message, "All changes saved." if not remaining else f"Still unsaved: {len(remaining)}")

    @command("logout")
    def handle_logout(message, ctx, args):
        if sign_out(ctx, slots) is not None:
            reply(message, "Some changes are not saved yet, so you are still signed in. Try /sync, then /logout again.")
            return
        reply(message, "Signed out.")

    @bot.callback_query_handler(func=lambda call: call.data.startswith("parked:"))
    def handle_parked_action(call):
        try:
            action, key = parse_parked_action(call.data)
        except ValueError:
            bot.answer_callback_query(call.id, "Invalid selection.")
            return

        ctx = _build_external_context(call.from_user)
        try:
            if action == "restore":
                session = restore_parked_session(ctx, slots, key)
                text = f"Welcome back to Day {session.current_day}.\n" + format_session(
                    session, session.elapsed_seconds
                )
            else:
                discard_parked_session(ctx, slots, key)
                text = "Parked session discarded."
        except SessionError as exc:
            text = str(exc)

        bot.answer_callback_query(call.id)
        bot.send_message(call.message.chat.id, text)
        bot.delete_message(call.message.chat.id, call.message.id)

    @bot.callback_query_handler(func=lambda call: call.data.startswith("settle:"))
    def handle_settle(call):
        try:
            stake_id = parse_settle(call.data)
        except ValueError:
            bot.answer_callback_query(call.id, "Invalid selection.")
            return

        ctx = _build_external_context(call.from_user)
        try:
            stake = settle_stake(ctx, slots, stake_id)
            text = "Settled: " + format_stake(stake)
        except SessionError as exc:
            text = str(exc)

        bot.answer_callback_query(call.id)
        bot.send_message(call.message.chat.id, text)

    return bot
