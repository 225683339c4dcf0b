import discord
from discord.ext import commands
import logging
import asyncio
import os
from typing import Callable, Dict, Optional

from challenge_engine.catalog import ChallengeCatalog
from challenge_engine.config_manager import ConfigManager
from challenge_engine.challenge_controller import ChallengeController
from challenge_engine.models import FeedbackKind, Outcome, Phase, SessionResult, SessionSnapshot

logger = logging.getLogger(__name__)

OPTION_LABELS = ("🇦", "🇧", "🇨", "🇩", "🇪", "🇫")

FEEDBACK_STYLES = {
    FeedbackKind.CORRECT: ("✅ Correct!", 0x00ff00),
    FeedbackKind.WRONG: ("❌ Not quite", 0xff0000),
    FeedbackKind.TIMEOUT: ("⏰ Time's up", 0xff6600),
}


def _timer_color(time_left: int) -> int:
    if time_left > 10:
        return 0x00ff00
    if time_left > 5:
        return 0xffaa00
    return 0xff0000


def build_challenge_embed(snapshot: SessionSnapshot, pack_title: str) -> discord.Embed:
    """
    Render the current challenge of a PLAYING or FEEDBACK snapshot.

    Args:
        snapshot: Session snapshot to render
        pack_title: Display title of the challenge pack

    Returns:
        Embed showing the prompt, options, timer and session stats
    """
    challenge = snapshot.challenge
    title = f"🎯 {pack_title} - Challenge {snapshot.index + 1}/{snapshot.deck_size}"

    if snapshot.phase is Phase.FEEDBACK and snapshot.feedback is not None:
        heading, color = FEEDBACK_STYLES[snapshot.feedback.kind]
    else:
        heading, color = None, _timer_color(snapshot.time_left)

    embed = discord.Embed(title=title, description=challenge.prompt if challenge else "", color=color)

    if challenge is not None and not challenge.is_free_text:
        lines = []
        for i, option in enumerate(challenge.options):
            marker = OPTION_LABELS[i] if i < len(OPTION_LABELS) else f"{i + 1}."
            line = f"{marker} {option}"
            if snapshot.phase is Phase.FEEDBACK:
                if i == challenge.correct_index:
                    line = f"**{line}** ✅"
                elif i == snapshot.selected_index:
                    line = f"~~{line}~~ ❌"
            lines.append(line)
        embed.add_field(name="Options", value="\n".join(lines), inline=False)
    elif snapshot.submitted_text:
        embed.add_field(name="Your answer", value=snapshot.submitted_text, inline=False)

    if heading is not None:
        embed.add_field(name=heading, value=snapshot.feedback.text or "-", inline=False)
    else:
        timer_emoji = "⏱️" if snapshot.time_left > 5 else "🚨"
        embed.add_field(
            name=f"{timer_emoji} Time Remaining",
            value=f"{snapshot.time_left} second{'s' if snapshot.time_left != 1 else ''}",
            inline=True
        )

    embed.add_field(name="🏆 Score", value=str(snapshot.score), inline=True)
    embed.add_field(
        name="❤️ Lives",
        value=f"{'❤️' * snapshot.lives}{'🖤' * max(0, snapshot.max_lives - snapshot.lives)}",
        inline=True
    )
    if snapshot.streak > 1:
        embed.add_field(name="🔥 Streak", value=f"x{snapshot.streak}", inline=True)

    if snapshot.phase is Phase.PLAYING:
        if challenge is not None and challenge.is_free_text:
            footer = "Answer with /guess"
        else:
            footer = "Answer with /answer <number>"
        if snapshot.hint_used:
            footer += " | 💡 Hint used"
        embed.set_footer(text=footer)

    return embed


def build_result_embed(result: SessionResult, pack_title: str, total_score: int = 0) -> discord.Embed:
    """Render the end-of-session summary."""
    if result.outcome is Outcome.VICTORY:
        title = f"🎉 {pack_title} complete!"
        color = 0x00ff00
    else:
        title = f"💔 {pack_title} - out of lives"
        color = 0xff0000

    embed = discord.Embed(
        title=title,
        description=f"You scored **{result.score}** of {result.max_score} points ({result.percent}%)",
        color=color
    )
    embed.add_field(
        name="📊 Answers",
        value=f"{result.correct_count}/{result.answered_count} correct of {result.deck_size} challenges",
        inline=False
    )
    embed.add_field(name="🔥 Best Streak", value=str(result.best_streak), inline=True)
    embed.add_field(name="❤️ Lives Left", value=str(result.lives_remaining), inline=True)
    if total_score:
        embed.add_field(name="💰 Channel Total", value=str(total_score), inline=True)
    embed.set_footer(text="Use /restart to play again or /games to pick another pack")
    return embed


def should_render(previous: Optional[SessionSnapshot], current: SessionSnapshot) -> bool:
    """
    Decide whether a snapshot changes what the channel shows.

    Countdown ticks only render every 5 seconds and during the last 5 seconds
    so message edits stay within Discord rate limits.
    """
    if previous is None:
        return True
    if (previous.session_id, previous.phase, previous.index) != (current.session_id, current.phase, current.index):
        return True
    if previous.feedback != current.feedback or previous.hint_used != current.hint_used:
        return True
    if previous.time_left != current.time_left:
        return current.time_left % 5 == 0 or current.time_left <= 5
    return False


class ChannelRenderer:
    """Keeps one channel's challenge message in sync with its session snapshots."""

    def __init__(
        self,
        channel,
        pack_title: str,
        result_provider: Callable[[], Optional[SessionResult]],
        total_score_provider: Callable[[], int] = lambda: 0
    ):
        self.channel = channel
        self.pack_title = pack_title
        self._result_provider = result_provider
        self._total_score_provider = total_score_provider
        self._message: Optional[discord.Message] = None
        self._last_rendered: Optional[SessionSnapshot] = None
        self._lock = asyncio.Lock()
        self._tasks = set()

    def on_snapshot(self, snapshot: SessionSnapshot) -> None:
        """Session listener: schedule a render when the snapshot changes the display."""
        if not should_render(self._last_rendered, snapshot):
            return
        previous, self._last_rendered = self._last_rendered, snapshot
        # The result must be read before a restart can replace it
        result = self._result_provider() if snapshot.phase is Phase.RESULT else None
        task = asyncio.get_running_loop().create_task(self.render(previous, snapshot, result))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def render(
        self,
        previous: Optional[SessionSnapshot],
        snapshot: SessionSnapshot,
        result: Optional[SessionResult] = None
    ) -> None:
        async with self._lock:
            try:
                if snapshot.phase is Phase.RESULT:
                    if result is not None:
                        await self.channel.send(
                            embed=build_result_embed(result, self.pack_title, self._total_score_provider())
                        )
                    self._message = None
                    return

                if snapshot.phase is Phase.MENU or snapshot.challenge is None:
                    return

                embed = build_challenge_embed(snapshot, self.pack_title)
                new_question = (
                    previous is None
                    or previous.session_id != snapshot.session_id
                    or previous.index != snapshot.index
                )
                if self._message is None or new_question:
                    self._message = await self.channel.send(embed=embed)
                else:
                    await self._message.edit(embed=embed)

            except discord.HTTPException as e:
                logger.error(f"Failed to render challenge message: {e}")


class ChallengeBot(commands.Bot):
    """Discord bot hosting timed challenge sessions, one per channel"""

    def __init__(self, config=None):
        intents = discord.Intents.none()
        intents.guilds = True  # Required for slash commands

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}

        self.catalog: Optional[ChallengeCatalog] = None
        self.config_manager: Optional[ConfigManager] = None
        self.challenge_controller: Optional[ChallengeController] = None
        self.renderers: Dict[int, ChannelRenderer] = {}

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")

            self.config_manager = ConfigManager()
            if self.app_config:
                self.apply_configuration()

            self.catalog = ChallengeCatalog(self.config_manager.get_challenge_directory())
            self.catalog.load_packs()
            summary = self.catalog.get_loading_summary()
            logger.info(
                f"Loaded {summary['total_packs']} challenge packs from {summary['challenge_directory']}"
            )

            self.challenge_controller = ChallengeController(self.catalog, self.config_manager)

            self.setup_commands()

            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    def apply_configuration(self):
        """Apply the "engine" section of config.json to the config manager."""
        engine_config = self.app_config.get('engine', {})
        failures = self.config_manager.apply_settings(engine_config)
        for failure in failures:
            logger.warning(f"Ignoring invalid engine setting: {failure['error']}")
        logger.info("Configuration applied")

    def setup_commands(self):
        """Register all slash commands"""

        @self.tree.command(name="help", description="Display available commands and their descriptions")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="games", description="List the available challenge packs")
        async def games_command(interaction: discord.Interaction):
            await self.handle_games(interaction)

        @self.tree.command(name="play", description="Start a challenge pack in this channel")
        async def play_command(interaction: discord.Interaction, pack: str):
            await self.handle_play(interaction, pack)

        @self.tree.command(name="answer", description="Answer the current challenge with an option number")
        async def answer_command(interaction: discord.Interaction, option: int):
            await self.handle_answer(interaction, option)

        @self.tree.command(name="guess", description="Answer a word challenge")
        async def guess_command(interaction: discord.Interaction, word: str):
            await self.handle_guess(interaction, word)

        @self.tree.command(name="hint", description="Reveal a hint for the current challenge")
        async def hint_command(interaction: discord.Interaction):
            await self.handle_hint(interaction)

        @self.tree.command(name="restart", description="Play the same pack again")
        async def restart_command(interaction: discord.Interaction):
            await self.handle_restart(interaction)

        @self.tree.command(name="stop", description="Stop the challenge in this channel")
        async def stop_command(interaction: discord.Interaction):
            await self.handle_stop(interaction)

        @self.tree.command(name="status", description="Show the current challenge progress")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        @self.tree.command(name="set_deck", description="Set the default number of challenges per game (1-50)")
        async def set_deck_command(interaction: discord.Interaction, size: int):
            await self.handle_set_deck(interaction, size)

        @self.tree.command(name="set_timer", description="Set the default seconds per challenge (5-300)")
        async def set_timer_command(interaction: discord.Interaction, seconds: int):
            await self.handle_set_timer(interaction, seconds)

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user} in {len(self.guilds)} guilds")
        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        if self.challenge_controller is not None:
            self.challenge_controller.shutdown()
        await super().close()

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        try:
            embed = discord.Embed(
                title="🎯 Challenge Bot Commands",
                description="Timed challenge games with scores, streaks and lives",
                color=0x00ff00
            )
            embed.add_field(
                name="🎮 Playing",
                value=(
                    "`/games` - List the available challenge packs\n"
                    "`/play <pack>` - Start a pack in this channel\n"
                    "`/answer <number>` - Pick an option\n"
                    "`/guess <word>` - Answer a word challenge\n"
                    "`/hint` - Reveal a hint (costs points)\n"
                    "`/restart` - Play the same pack again\n"
                    "`/stop` - Stop the current game\n"
                    "`/status` - Show progress"
                ),
                inline=False
            )
            embed.add_field(
                name="📋 Settings",
                value=(
                    "`/set_deck <size>` - Default challenges per game\n"
                    "`/set_timer <seconds>` - Default seconds per challenge"
                ),
                inline=False
            )
            embed.add_field(
                name="⚙️ Current Settings",
                value=f"```\n{self.config_manager.get_settings_summary()}\n```",
                inline=False
            )
            embed.set_footer(text="Packs may override these defaults")
            await interaction.response.send_message(embed=embed)

        except discord.HTTPException as e:
            logger.error(f"Error in help command: {e}")
            await self.send_error_response(interaction, "Could not display help", "❌ Help Error")

    async def handle_games(self, interaction: discord.Interaction):
        """Handle /games command"""
        try:
            packs = self.challenge_controller.list_packs()
            embed = discord.Embed(title="📚 Challenge Packs", color=0x6699ff)
            if packs:
                for pack in packs[:25]:
                    embed.add_field(
                        name=f"{pack['title']} (`{pack['name']}`)",
                        value=f"{pack['description'] or 'No description'}\n{pack['challenge_count']} challenges",
                        inline=False
                    )
            else:
                embed.description = "No challenge packs found. Add JSON files to the challenges directory."

            if self.catalog.has_load_errors():
                embed.set_footer(text="⚠️ Some challenge packs failed to load. Check logs for details.")

            await interaction.response.send_message(embed=embed)

        except discord.HTTPException as e:
            logger.error(f"Error in games command: {e}")
            await self.send_error_response(interaction, "Could not list challenge packs", "❌ Games Error")

    async def handle_play(self, interaction: discord.Interaction, pack_name: str):
        """Handle /play command"""
        channel_id = interaction.channel_id
        try:
            pack = self.catalog.get_pack(pack_name)
            renderer = ChannelRenderer(
                interaction.channel,
                pack.title if pack else pack_name,
                lambda: self.challenge_controller.get_result(channel_id),
                lambda: self.challenge_controller.get_total_score(channel_id)
            )

            # Acknowledge first; the renderer posts the challenge itself
            await interaction.response.defer()
            result = self.challenge_controller.start_challenge(channel_id, pack_name, renderer.on_snapshot)

            if result['success']:
                self.renderers[channel_id] = renderer
                await interaction.followup.send(f"▶️ {result['message']}")
            else:
                await self.send_error_response(interaction, result['user_message'], "❌ Cannot Start Challenge")

        except discord.HTTPException as e:
            logger.error(f"Error in play command for channel {channel_id}: {e}")
            await self.send_error_response(interaction, "Failed to start the challenge", "❌ Challenge Error")

    async def handle_answer(self, interaction: discord.Interaction, option: int):
        """Handle /answer command"""
        try:
            result = self.challenge_controller.answer(interaction.channel_id, option)
            if not result['success']:
                await self.send_error_response(interaction, result['user_message'], "❌ No Challenge")
            elif result['accepted']:
                await interaction.response.send_message(f"📝 Answer {option} locked in", ephemeral=True)
            else:
                await self.send_warning_response(
                    interaction,
                    "That answer was not accepted. The challenge may already be answered or the option is invalid."
                )
        except discord.HTTPException as e:
            logger.error(f"Error in answer command: {e}")

    async def handle_guess(self, interaction: discord.Interaction, word: str):
        """Handle /guess command"""
        try:
            result = self.challenge_controller.guess(interaction.channel_id, word)
            if not result['success']:
                await self.send_error_response(interaction, result['user_message'], "❌ No Challenge")
            elif result['accepted']:
                await interaction.response.send_message(f"📝 Guess '{word}' locked in", ephemeral=True)
            else:
                await self.send_warning_response(
                    interaction,
                    "That guess was not accepted. The challenge may already be answered or needs an option number."
                )
        except discord.HTTPException as e:
            logger.error(f"Error in guess command: {e}")

    async def handle_hint(self, interaction: discord.Interaction):
        """Handle /hint command"""
        try:
            result = self.challenge_controller.hint(interaction.channel_id)
            if result['success']:
                embed = discord.Embed(title="💡 Hint", description=result['hint'], color=0xffaa00)
                embed.set_footer(text=f"A correct answer now costs {result['penalty']} points")
                await interaction.response.send_message(embed=embed)
            else:
                await self.send_info_response(interaction, result['user_message'], "💡 Hint")
        except discord.HTTPException as e:
            logger.error(f"Error in hint command: {e}")

    async def handle_restart(self, interaction: discord.Interaction):
        """Handle /restart command"""
        channel_id = interaction.channel_id
        try:
            renderer = self.renderers.get(channel_id)
            if renderer is not None:
                renderer.channel = interaction.channel

            await interaction.response.defer()
            result = self.challenge_controller.restart_challenge(channel_id)
            if result['success']:
                await interaction.followup.send("🔄 Challenge restarted")
            else:
                await self.send_error_response(interaction, result['user_message'], "❌ Cannot Restart")
        except discord.HTTPException as e:
            logger.error(f"Error in restart command: {e}")

    async def handle_stop(self, interaction: discord.Interaction):
        """Handle /stop command"""
        channel_id = interaction.channel_id
        try:
            result = self.challenge_controller.stop_challenge(channel_id)
            self.renderers.pop(channel_id, None)

            if not result['success']:
                await self.send_info_response(interaction, result['user_message'], "ℹ️ No Active Challenge")
                return

            info = result['session_info']
            embed = discord.Embed(
                title="⏹️ Challenge Stopped",
                description=f"**{info['title']}** was stopped",
                color=0xff6600
            )
            embed.add_field(
                name="📊 Final Progress",
                value=(
                    f"Challenge: {info['current_challenge']}/{info['total_challenges']}\n"
                    f"Score: {info['score']}"
                ),
                inline=False
            )
            await interaction.response.send_message(embed=embed)

        except discord.HTTPException as e:
            logger.error(f"Error in stop command: {e}")
            await self.send_error_response(interaction, "Failed to stop the challenge", "❌ Challenge Error")

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        try:
            info = self.challenge_controller.get_status(interaction.channel_id)
            if info is None:
                await self.send_info_response(
                    interaction,
                    "There is no challenge in this channel. Use `/games` and `/play` to start one.",
                    "ℹ️ No Active Challenge"
                )
                return

            embed = discord.Embed(
                title=f"📊 {info['title']} - {info['phase'].title()}",
                color=0x6699ff
            )
            embed.add_field(
                name="Progress",
                value=f"Challenge {info['current_challenge']}/{info['total_challenges']}",
                inline=True
            )
            embed.add_field(name="Score", value=str(info['score']), inline=True)
            embed.add_field(name="Lives", value=f"{info['lives']}/{info['max_lives']}", inline=True)
            embed.add_field(name="Streak", value=str(info['streak']), inline=True)
            if info['phase'] == Phase.PLAYING.value:
                embed.add_field(name="Time Left", value=f"{info['time_left']}s", inline=True)
            embed.add_field(name="Channel Total", value=str(info['total_score']), inline=True)
            await interaction.response.send_message(embed=embed)

        except discord.HTTPException as e:
            logger.error(f"Error in status command: {e}")
            await self.send_error_response(interaction, "Failed to get challenge status", "❌ Status Error")

    async def handle_set_deck(self, interaction: discord.Interaction, size: int):
        """Handle /set_deck command"""
        await self._respond_to_setting(interaction, self.config_manager.set_deck_size(size))

    async def handle_set_timer(self, interaction: discord.Interaction, seconds: int):
        """Handle /set_timer command"""
        await self._respond_to_setting(interaction, self.config_manager.set_time_per_question(seconds))

    async def _respond_to_setting(self, interaction: discord.Interaction, result: dict):
        try:
            if result['success']:
                embed = discord.Embed(
                    title="✅ Settings Updated",
                    description=result['user_message'],
                    color=0x00ff00
                )
                embed.set_footer(text="Applies to the next game. Packs may override it.")
                await interaction.response.send_message(embed=embed)
            else:
                await interaction.response.send_message(result['user_message'], ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Error updating settings: {e}")

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        await self._send_ephemeral_embed(interaction, message, title, 0xff0000)

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        await self._send_ephemeral_embed(interaction, message, title, 0x6699ff)

    async def send_warning_response(self, interaction: discord.Interaction, message: str, title: str = "⚠️ Warning"):
        await self._send_ephemeral_embed(interaction, message, title, 0xffaa00)

    async def _send_ephemeral_embed(self, interaction: discord.Interaction, message: str, title: str, color: int):
        try:
            embed = discord.Embed(title=title, description=message, color=color)
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error(f"Failed to send response to user: {title}")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = ChallengeBot(config)

    try:
        logger.info("Starting Discord Challenge Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
