from __future__ import annotations

import logging
from typing import Dict

import discord
from discord.ext import commands

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

logger = logging.getLogger(__name__)

RESTORE_EMOJI = "▶️"
DISCARD_EMOJI = "🗑️"


def _build_external_context(user: discord.abc.User) -> ExternalContext:
    """Create an `ExternalContext` from a Discord user."""

    return ExternalContext(
        provider="discord",
        provider_user_id=str(user.id),
        display_name=user.display_name or user.name,
    )


def create_discord_bot(slots: SessionSlots) -> commands.Bot:
    """
    Configure and return a Discord bot with the same commands as the
    Telegram interface, using `!` as the prefix.
    """

    intents = discord.Intents.default()
    intents.message_content = True
    intents.members = True
    intents.reactions = True

    # Disable the default help command so we can provide our own `!help`.
    bot = commands.Bot(command_prefix="!", intents=intents, help_command=None)

    # Parked-session prompts awaiting a reaction, keyed by message ID.
    # value: (parked_key, discord_user_id)
    pending_prompts: Dict[int, tuple] = {}

    @bot.event
    async def on_ready():
        logger.info("Discord bot logged in as %s (id=%s)", bot.user, bot.user.id)

    @bot.event
    async def on_command_error(ctx: commands.Context, error: commands.CommandError):
        original = getattr(error, "original", error)
        if isinstance(original, (SessionError, ValueError)):
            logger.info("!%s rejected for %s: %s", ctx.command, ctx.author.id, original)
            await ctx.send(str(original))
        elif isinstance(error, (commands.MissingRequiredArgument, commands.BadArgument)):
            await ctx.send(f"Usage: !{ctx.command} {ctx.command.signature}")
        else:
            raise error

    @bot.command(name="help")
    async def help_cmd(ctx: commands.Context):
        await ctx.send(
            "!session <buy-in> <game> [stakes]   - start a cash game session\n"
            "!tourney <buy-in> <name>            - start a tournament\n"
            "!pause / !resume                    - pause or resume the clock\n"
            "!rebuy <amount>                     - add a rebuy\n"
            "!time                               - show the current session\n"
            "!park <YYYY-MM-DD>                  - park a tournament for the next day\n"
            "!parked                             - list parked sessions\n"
            "!restore <key> / !discard <key>     - resume or drop a parked session\n"
            "!stake <pct> <markup> <name|@user>  - attach a staker\n"
            "!end <cash-out>                     - end the session and settle stakes\n"
            "!abandon                            - discard the current session\n"
            "!stakes / !settle <stake-id>        - list or settle stakes\n"
            "!staker <name> / !stakers           - save or list manual stakers\n"
            "!sync / !logout\n"
        )

    @bot.command(name="session")
    async def session_cmd(ctx: commands.Context, buy_in: str, game: str, *, stakes: str = ""):
        result = start_session(
            _build_external_context(ctx.author), slots, game, stakes, parse_amount(buy_in)
        )
        await ctx.send("Session started.\n" + format_session(result.session, 0))

    @bot.command(name="tourney")
    async def tourney_cmd(ctx: commands.Context, buy_in: str, *, name: str):
        result = start_session(
            _build_external_context(ctx.author),
            slots,
            name,
            "",
            parse_amount(buy_in),
            is_tournament=True,
            tournament_name=name,
        )
        await ctx.send("Tournament started.\n" + format_session(result.session, 0))

    @bot.command(name="pause")
    async def pause_cmd(ctx: commands.Context):
        result = pause_session(_build_external_context(ctx.author), slots)
        await ctx.send(f"Paused at {format_duration(result.session.elapsed_seconds)}.")

    @bot.command(name="resume")
    async def resume_cmd(ctx: commands.Context):
        resume_session(_build_external_context(ctx.author), slots)
        await ctx.send("Resumed.")

    @bot.command(name="rebuy")
    async def rebuy_cmd(ctx: commands.Context, amount: str):
        result = add_rebuy(_build_external_context(ctx.author), slots, parse_amount(amount))
        await ctx.send(f"Rebuy recorded. Total buy-in: {result.session.buy_in:g}")

    @bot.command(name="time")
    async def time_cmd(ctx: commands.Context):
        session, elapsed = current_session(_build_external_context(ctx.author), slots)
        if session is None:
            await ctx.send("No session in progress.")
            return
        await ctx.send(format_session(session, elapsed))

    @bot.command(name="park")
    async def park_cmd(ctx: commands.Context, *, when: str):
        key = park_for_next_day(_build_external_context(ctx.author), slots, parse_date(when))
        await ctx.send(f"Session parked. Resume it with `!restore {key}`.")

    @bot.command(name="parked")
    async def parked_cmd(ctx: commands.Context):
        external_ctx = _build_external_context(ctx.author)
        infos = list_parked_sessions(external_ctx.user_id, slots)
        await ctx.send(format_parked(infos))

        # One prompt per entry so a reaction maps onto exactly one key.
        for info in infos:
            prompt = await ctx.send(
                f"{info.display_name}: react {RESTORE_EMOJI} to resume or {DISCARD_EMOJI} to discard."
            )
            await prompt.add_reaction(RESTORE_EMOJI)
            await prompt.add_reaction(DISCARD_EMOJI)
            pending_prompts[prompt.id] = (str(info.key), ctx.author.id)

    @bot.command(name="restore")
    async def restore_cmd(ctx: commands.Context, key: str):
        session = restore_parked_session(_build_external_context(ctx.author), slots, key)
        await ctx.send(
            f"Welcome back to Day {session.current_day}.\n"
            + format_session(session, session.elapsed_seconds)
        )

    @bot.command(name="discard")
    async def discard_cmd(ctx: commands.Context, key: str):
        discard_parked_session(_build_external_context(ctx.author), slots, key)
        await ctx.send("Parked session discarded.")

    @bot.command(name="stake")
    async def stake_cmd(
        ctx: commands.Context,
        percentage: str,
        markup: str,
        staker: discord.Member | None = None,
        *,
        name: str = "",
    ):
        external_ctx = _build_external_context(ctx.author)
        if staker is not None:
            identity = {"app_user_id": f"discord:{staker.id}"}
        else:
            identity = staker_kwargs(name, external_ctx.provider)
        config = new_stake_configuration(parse_amount(percentage), parse_amount(markup), **identity)
        attach_stake(external_ctx, slots, config)
        await ctx.send(f"Stake attached: {config.percentage_sold:g}% at {config.markup:g}x.")

    @bot.command(name="end")
    async def end_cmd(ctx: commands.Context, cashout: str):
        external_ctx = _build_external_context(ctx.author)
        finished, stakes = end_session(external_ctx, slots, parse_amount(cashout))
        unsynced = bool(slots.for_user(external_ctx.user_id).pending_writes)
        await ctx.send(format_finished(finished, stakes, unsynced))

    @bot.command(name="abandon")
    async def abandon_cmd(ctx: commands.Context):
        discard_session(_build_external_context(ctx.author), slots)
        await ctx.send("Session discarded.")

    @bot.command(name="stakes")
    async def stakes_cmd(ctx: commands.Context):
        stakes = fetch_user_stakes(_build_external_context(ctx.author), slots)
        if not stakes:
            await ctx.send("No stakes yet.")
            return
        await ctx.send("\n".join(format_stake(s) for s in stakes))

    @bot.command(name="settle")
    async def settle_cmd(ctx: commands.Context, stake_id: str):
        stake = settle_stake(_build_external_context(ctx.author), slots, stake_id)
        await ctx.send("Settled: " + format_stake(stake))

    @bot.command(name="staker")
    async def staker_cmd(ctx: commands.Context, *, name: str):
        profile = save_manual_staker(_build_external_context(ctx.author), slots, name)
        await ctx.send(f"Saved {profile.name}. Use profile:{profile.id} with !stake.")

    @bot.command(name="stakers")
    async def stakers_cmd(ctx: commands.Context):
        profiles = manual_stakers(_build_external_context(ctx.author), slots)
        if not profiles:
            await ctx.send("No saved stakers.")
            return
        await ctx.send("\n".join(f"{p.name}  profile:{p.id}" for p in profiles))

    @bot.command(name="sync")
    async def sync_cmd(ctx: commands.Context):
        remaining = sync_pending_writes(_build_external_context(ctx.author), slots)
        await ctx.send("All changes saved." if not remaining else f"Still unsaved: {len(remaining)}")

    @bot.command(name="logout")
    async def logout_cmd(ctx: commands.Context):
        if sign_out(_build_external_context(ctx.author), slots) is not None:
            await ctx.send("Some changes are not saved yet, so you are still signed in. Try !sync, then !logout again.")
            return
        await ctx.send("Signed out.")

    @bot.event
    async def on_reaction_add(reaction: discord.Reaction, user: discord.abc.User):
        # Ignore bot reactions and reactions not on tracked messages.
        if user.bot:
            return

        message_id = reaction.message.id
        if message_id not in pending_prompts:
            return

        key, owner_id = pending_prompts[message_id]
        # Only the owner of the parked session can act on it.
        if user.id != owner_id:
            return

        emoji = str(reaction.emoji)
        channel = reaction.message.channel
        external_ctx = _build_external_context(user)

        try:
            if emoji == RESTORE_EMOJI:
                session = restore_parked_session(external_ctx, slots, key)
                text = f"Welcome back to Day {session.current_day}."
            elif emoji == DISCARD_EMOJI:
                discard_parked_session(external_ctx, slots, key)
                text = "Parked session discarded."
            else:
                return
        except SessionError as exc:
            text = str(exc)

        pending_prompts.pop(message_id, None)
        await channel.send(text)

    return bot
