# Owner administration commands
import asyncio
import math
import sys
import time

from discord.ext import commands

from services.lifecycle import RESTART_NOTICE, SHUTDOWN_NOTICE

OWNER_ONLY_REPLY = "This command is owner only!"
UP_TO_DATE_MARKERS = ("Already up to date", "Already up-to-date")


class UpdateError(Exception):
    pass


async def run_process(*args: str) -> str:
    process = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    stdout, _ = await process.communicate()
    output = stdout.decode(errors="replace")
    if process.returncode != 0:
        raise UpdateError(f"`{' '.join(args)}` exited with {process.returncode}: {output.strip()}")
    return output


class BridgeCommands(commands.Cog):
    def __init__(self, bot, relay, lifecycle, logger, prefix: str, runner=run_process):
        self.bot = bot
        self.relay = relay
        self.lifecycle = lifecycle
        self.logger = logger
        self.prefix = prefix
        self.runner = runner

    async def cog_before_invoke(self, ctx):
        self.logger.info(f"{ctx.author.display_name} <@{ctx.author.id}> used command: {ctx.message.content}")

    async def cog_command_error(self, ctx, error):
        if isinstance(error, commands.NotOwner):
            await ctx.reply(OWNER_ONLY_REPLY)
            return
        self.logger.error(f"Command {ctx.command} failed: {error}", exc_info=error)

    @commands.command()
    async def ping(self, ctx):
        latency = self.bot.latency
        # NaN until the first heartbeat
        ws_ping = -1 if math.isnan(latency) else round(latency * 1000)
        started = time.perf_counter()
        msg = await ctx.reply("Pinging...")
        api_ping = round((time.perf_counter() - started) * 1000)
        await msg.edit(content=f"Pong!\nWS ping: {ws_ping}ms\nAPI ping: {api_ping}ms")

    @commands.command()
    async def uptime(self, ctx):
        await ctx.reply(f"The bot has been started since: <t:{int(self.lifecycle.started_at)}:R>")

    @commands.command()
    @commands.is_owner()
    async def echo(self, ctx, *, text: str = ""):
        if not text:
            await ctx.send(f"Usage: `{self.prefix} echo <message>`")
            return
        await self.relay.send_to_all_channels(text)

    @commands.command()
    @commands.is_owner()
    async def update(self, ctx):
        try:
            status = await ctx.reply("Checking for updates...")
            output = await self.runner("git", "pull")
            if any(marker in output for marker in UP_TO_DATE_MARKERS):
                await status.edit(content="No updates found!")
                return

            await status.edit(content="Updates found! Updating...")
            await self.runner(sys.executable, "-m", "pip", "install", "-q", "-e", ".")
            # A process supervisor is expected to start us again
            self.logger.info("Update complete, restarting...")
            await self.lifecycle.shutdown(RESTART_NOTICE, exit_code=0)
        except Exception as exc:
            self.logger.error(f"Update command failed: {exc}", exc_info=True)
            await ctx.reply(f"Update failed: {exc}")

    @commands.command()
    @commands.is_owner()
    async def stop(self, ctx):
        await ctx.reply("Stopping bot...")
        await self.lifecycle.shutdown(SHUTDOWN_NOTICE)

    @commands.command()
    @commands.is_owner()
    async def restart(self, ctx):
        await ctx.reply("Restarting bot...")
        await self.lifecycle.shutdown(RESTART_NOTICE)
