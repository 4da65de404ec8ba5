import asyncio
import os

from rxinterpals import (
    Bot,
    ClientConfig,
    GatewayConfig,
    SessionCredentials,
    resolve_intents,
)
from rxinterpals.telemetry import ConsoleLogRecordExporter, configure_telemetry

# this example answers "!echo <text>" and "!ping" in private messages.
# export INTERPALS_TOKEN (or INTERPALS_SESSION) before running it.


def main():
    async def echo_bot():
        credentials = SessionCredentials(
            auth_token=os.environ.get("INTERPALS_TOKEN"),
            session_id=os.environ.get("INTERPALS_SESSION"),
        )
        logger_provider = configure_telemetry(
            service_name="echo-bot",
            log_exporter=ConsoleLogRecordExporter(),
            batch_logs=False,
        )
        config = ClientConfig(
            gateway=GatewayConfig(intents=resolve_intents(["messages", "typing"]))
        )

        async with Bot(
            credentials, config, command_prefix="!", logger_provider=logger_provider
        ) as bot:

            @bot.command("echo", aliases=["say"])
            async def echo(ctx, *words):
                await ctx.reply(" ".join(words) or "echo what?")

            @bot.command("ping")
            async def ping(ctx):
                await ctx.reply("pong")

            @bot.event()
            def on_typing(event):
                print(f"{event.user or event.user_id} is typing in {event.thread_id}")

            @bot.event()
            def on_disconnect(info):
                print(info)

            @bot.event()
            def on_error(error):
                print(f"error: {error}")

            me = await bot.fetch_self()
            print(f"Logged in as {me}")

            await bot.connect()
            while True:
                await asyncio.sleep(60)
                print(bot.stats)

    try:
        asyncio.run(echo_bot())

    except KeyboardInterrupt:
        print("\nKeyboard Interrupt.")


if __name__ == "__main__":
    main()
