from config import Settings, build_slots, configure_logging
from interfaces.discord.handlers import create_discord_bot


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings)

    if not settings.discord_token:
        raise RuntimeError("DISCORD_TOKEN environment variable is not set.")

    slots = build_slots(settings)

    bot = create_discord_bot(slots)
    # Logging is already configured above; keep discord.py from adding its own handler.
    bot.run(settings.discord_token, log_handler=None)


if __name__ == "__main__":
    main()
