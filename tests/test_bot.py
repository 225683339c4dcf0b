"""
Unit tests for the Discord presentation layer with mocked Discord objects.
"""
import logging
import random
import shutil
import tempfile
import unittest
from unittest.mock import Mock

import discord

from challenge_engine.bot import (
    ChallengeBot,
    ChannelRenderer,
    build_challenge_embed,
    build_result_embed,
    should_render,
)
from challenge_engine.catalog import ChallengeCatalog, ChallengePack
from challenge_engine.challenge_controller import ChallengeController
from challenge_engine.config_manager import ConfigManager
from challenge_engine.models import (
    Feedback,
    FeedbackKind,
    Outcome,
    Phase,
    SessionResult,
    SessionSnapshot,
)
from challenge_engine.session_machine import ChallengeSession
from tests.test_fixtures import (
    ChallengeFixtures,
    ManualScheduler,
    ManualTimer,
    MockDiscordObjects,
    async_test,
    drain_tasks,
)


def make_snapshot(**overrides):
    values = dict(
        session_id="abc",
        phase=Phase.PLAYING,
        index=0,
        deck_size=3,
        challenge=ChallengeFixtures.create_sample_challenges(1)[0],
        score=0,
        lives=3,
        max_lives=3,
        streak=0,
        time_left=30,
        selected_index=None,
        submitted_text=None,
        feedback=None,
        hint_used=False,
        correct_count=0,
        answered_count=0
    )
    values.update(overrides)
    return SessionSnapshot(**values)


def field_map(embed):
    return {field.name: field.value for field in embed.fields}


class TestChallengeEmbeds(unittest.TestCase):
    """Embed rendering for challenges and results."""

    def test_playing_embed(self):
        embed = build_challenge_embed(make_snapshot(), "Chemistry")

        self.assertEqual(embed.title, "🎯 Chemistry - Challenge 1/3")
        self.assertEqual(embed.description, "Chemistry question 1?")
        self.assertEqual(embed.color.value, 0x00ff00)
        fields = field_map(embed)
        self.assertTrue(fields["Options"].startswith("🇦 Right 1\n🇧 Wrong 1a"))
        self.assertEqual(fields["⏱️ Time Remaining"], "30 seconds")
        self.assertEqual(fields["🏆 Score"], "0")
        self.assertEqual(fields["❤️ Lives"], "❤️❤️❤️")
        self.assertEqual(embed.footer.text, "Answer with /answer <number>")

    def test_timer_turns_urgent(self):
        embed = build_challenge_embed(make_snapshot(time_left=1, lives=1), "Chemistry")
        fields = field_map(embed)

        self.assertEqual(embed.color.value, 0xff0000)
        self.assertEqual(fields["🚨 Time Remaining"], "1 second")
        self.assertEqual(fields["❤️ Lives"], "❤️🖤🖤")

    def test_wrong_feedback_marks_options(self):
        snapshot = make_snapshot(
            phase=Phase.FEEDBACK,
            selected_index=1,
            lives=2,
            feedback=Feedback(FeedbackKind.WRONG, "Explanation 1")
        )
        embed = build_challenge_embed(snapshot, "Chemistry")
        fields = field_map(embed)

        self.assertEqual(embed.color.value, 0xff0000)
        self.assertIn("**🇦 Right 1** ✅", fields["Options"])
        self.assertIn("~~🇧 Wrong 1a~~ ❌", fields["Options"])
        self.assertEqual(fields["❌ Not quite"], "Explanation 1")
        self.assertIsNone(embed.footer.text)

    def test_free_text_feedback_shows_guess(self):
        challenge = ChallengeFixtures.create_word_challenges()[0]
        snapshot = make_snapshot(
            challenge=challenge,
            phase=Phase.FEEDBACK,
            submitted_text="PLANTE",
            feedback=Feedback(FeedbackKind.WRONG, "The answer was: PLANET.")
        )
        fields = field_map(build_challenge_embed(snapshot, "Words"))

        self.assertNotIn("Options", fields)
        self.assertEqual(fields["Your answer"], "PLANTE")

    def test_free_text_footer_and_streak(self):
        challenge = ChallengeFixtures.create_word_challenges()[0]
        embed = build_challenge_embed(make_snapshot(challenge=challenge, streak=3, hint_used=True), "Words")

        self.assertEqual(field_map(embed)["🔥 Streak"], "x3")
        self.assertEqual(embed.footer.text, "Answer with /guess | 💡 Hint used")

    def test_result_embeds(self):
        victory = SessionResult(Outcome.VICTORY, 45, 45, 100, 3, 3, 3, 3, 3)
        embed = build_result_embed(victory, "Chemistry", total_score=90)

        self.assertEqual(embed.title, "🎉 Chemistry complete!")
        self.assertIn("**45** of 45 points (100%)", embed.description)
        self.assertEqual(field_map(embed)["💰 Channel Total"], "90")

        defeat = SessionResult(Outcome.DEFEAT, 10, 45, 22, 1, 4, 3, 0, 1)
        embed = build_result_embed(defeat, "Chemistry")

        self.assertEqual(embed.title, "💔 Chemistry - out of lives")
        self.assertNotIn("💰 Channel Total", field_map(embed))


class TestShouldRender(unittest.TestCase):

    def test_first_snapshot_renders(self):
        self.assertTrue(should_render(None, make_snapshot()))

    def test_ticks_are_throttled(self):
        previous = make_snapshot(time_left=30)
        self.assertFalse(should_render(previous, make_snapshot(time_left=29)))
        self.assertTrue(should_render(previous, make_snapshot(time_left=25)))
        self.assertTrue(should_render(previous, make_snapshot(time_left=4)))

    def test_transitions_render(self):
        previous = make_snapshot()
        self.assertTrue(should_render(previous, make_snapshot(phase=Phase.FEEDBACK)))
        self.assertTrue(should_render(previous, make_snapshot(index=1)))
        self.assertTrue(should_render(previous, make_snapshot(session_id="other")))
        self.assertTrue(should_render(previous, make_snapshot(hint_used=True)))
        self.assertFalse(should_render(previous, make_snapshot()))


class TestChannelRenderer(unittest.TestCase):
    """ChannelRenderer driven by a session with manual timers."""

    def setUp(self):
        logging.disable(logging.CRITICAL)
        self.timer = ManualTimer()
        self.scheduler = ManualScheduler()
        self.session = ChallengeSession("render", self.timer, self.scheduler, random.Random(0))
        self.channel = MockDiscordObjects.create_mock_channel()
        self.renderer = ChannelRenderer(self.channel, "Chemistry", self.session.result)
        self.session.subscribe(self.renderer.on_snapshot)

    def tearDown(self):
        self.session.teardown()
        logging.disable(logging.NOTSET)

    def start(self):
        self.session.start_session(
            ChallengeFixtures.create_sample_challenges(3),
            ChallengeFixtures.create_config(deck_size=2)
        )

    @async_test
    async def test_session_lifecycle_messages(self):
        self.start()
        await drain_tasks()
        self.assertEqual(self.channel.send.await_count, 1)
        message = self.renderer._message

        # Throttled tick, then a rendered one
        self.timer.tick(1)
        await drain_tasks()
        self.assertEqual(message.edit.await_count, 0)
        self.timer.tick(4)
        await drain_tasks()
        self.assertEqual(message.edit.await_count, 1)

        self.session.submit_answer(0)
        await drain_tasks()
        self.assertEqual(message.edit.await_count, 2)

        # Next challenge gets a fresh message
        self.scheduler.fire()
        await drain_tasks()
        self.assertEqual(self.channel.send.await_count, 2)

        self.session.submit_answer(0)
        self.scheduler.fire()
        await drain_tasks()

        self.assertEqual(self.session.phase, Phase.RESULT)
        self.assertEqual(self.channel.send.await_count, 3)
        result_embed = self.channel.send.call_args.kwargs['embed']
        self.assertEqual(result_embed.title, "🎉 Chemistry complete!")
        self.assertIsNone(self.renderer._message)

    @async_test
    async def test_restart_after_result_keeps_finished_summary(self):
        self.start()
        for _ in range(2):
            self.session.submit_answer(0)
            self.scheduler.fire()
        self.session.restart()
        await drain_tasks()

        titles = [call.kwargs['embed'].title for call in self.channel.send.call_args_list]
        self.assertIn("🎉 Chemistry complete!", titles)
        self.assertEqual(titles[-1], "🎯 Chemistry - Challenge 1/2")

    @async_test
    async def test_http_errors_are_logged(self):
        self.channel.send.side_effect = discord.HTTPException(Mock(status=500, reason="Server Error"), "boom")

        self.start()
        await drain_tasks()

        self.assertEqual(self.channel.send.await_count, 1)
        self.assertIsNone(self.renderer._message)


class TestChallengeBotHandlers(unittest.TestCase):
    """Slash command handlers with a real controller and mocked interactions."""

    CHANNEL = 12345

    def setUp(self):
        logging.disable(logging.CRITICAL)
        self.timers = {}
        self.schedulers = {}

    def tearDown(self):
        logging.disable(logging.NOTSET)

    def create_session(self, key):
        self.timers[key] = ManualTimer()
        self.schedulers[key] = ManualScheduler()
        return ChallengeSession(key, self.timers[key], self.schedulers[key], random.Random(0))

    def create_bot(self):
        bot = ChallengeBot()
        bot.config_manager = ConfigManager()
        bot.catalog = ChallengeCatalog("./unused/")
        bot.catalog.loaded_packs = {
            "chemistry": ChallengePack(
                name="chemistry",
                title="Chemistry Mixer",
                challenges=ChallengeFixtures.create_sample_challenges(),
                settings={"deck_size": 3}
            )
        }
        bot.challenge_controller = ChallengeController(
            bot.catalog,
            bot.config_manager,
            session_factory=self.create_session
        )
        return bot

    def sent_embed(self, interaction):
        return interaction.response.send_message.call_args.kwargs['embed']

    @async_test
    async def test_play_starts_and_renders(self):
        bot = self.create_bot()
        interaction = MockDiscordObjects.create_mock_interaction(self.CHANNEL)

        await bot.handle_play(interaction, "chemistry")
        await drain_tasks()

        interaction.response.defer.assert_awaited_once()
        interaction.followup.send.assert_awaited_once_with("▶️ Challenge 'Chemistry Mixer' started")
        self.assertIn(self.CHANNEL, bot.renderers)
        embed = interaction.channel.send.call_args.kwargs['embed']
        self.assertEqual(embed.title, "🎯 Chemistry Mixer - Challenge 1/3")
        bot.challenge_controller.shutdown()

    @async_test
    async def test_play_unknown_pack(self):
        bot = self.create_bot()
        interaction = MockDiscordObjects.create_mock_interaction(self.CHANNEL)

        await bot.handle_play(interaction, "astronomy")

        self.assertNotIn(self.CHANNEL, bot.renderers)
        embed = self.sent_embed(interaction)
        self.assertEqual(embed.title, "❌ Cannot Start Challenge")
        self.assertIn("astronomy", embed.description)
        self.assertTrue(interaction.response.send_message.call_args.kwargs['ephemeral'])

    @async_test
    async def test_answer_flow(self):
        bot = self.create_bot()
        interaction = MockDiscordObjects.create_mock_interaction(self.CHANNEL)

        await bot.handle_answer(interaction, 1)
        self.assertEqual(self.sent_embed(interaction).title, "❌ No Challenge")

        bot.challenge_controller.start_challenge(self.CHANNEL, "chemistry")

        interaction = MockDiscordObjects.create_mock_interaction(self.CHANNEL)
        await bot.handle_answer(interaction, 1)
        interaction.response.send_message.assert_awaited_once_with("📝 Answer 1 locked in", ephemeral=True)

        interaction = MockDiscordObjects.create_mock_interaction(self.CHANNEL)
        await bot.handle_answer(interaction, 2)
        self.assertEqual(self.sent_embed(interaction).title, "⚠️ Warning")
        bot.challenge_controller.shutdown()

    @async_test
    async def test_hint_unavailable(self):
        bot = self.create_bot()
        bot.challenge_controller.start_challenge(self.CHANNEL, "chemistry")
        interaction = MockDiscordObjects.create_mock_interaction(self.CHANNEL)

        await bot.handle_hint(interaction)

        embed = self.sent_embed(interaction)
        self.assertEqual(embed.title, "💡 Hint")
        self.assertEqual(embed.description, "💡 No hint is available right now")
        bot.challenge_controller.shutdown()

    @async_test
    async def test_stop_and_status(self):
        bot = self.create_bot()
        bot.challenge_controller.start_challenge(self.CHANNEL, "chemistry")

        interaction = MockDiscordObjects.create_mock_interaction(self.CHANNEL)
        await bot.handle_status(interaction)
        embed = self.sent_embed(interaction)
        self.assertEqual(embed.title, "📊 Chemistry Mixer - Playing")
        self.assertEqual(field_map(embed)["Progress"], "Challenge 1/3")

        interaction = MockDiscordObjects.create_mock_interaction(self.CHANNEL)
        await bot.handle_stop(interaction)
        embed = self.sent_embed(interaction)
        self.assertEqual(embed.title, "⏹️ Challenge Stopped")
        self.assertIsNone(bot.challenge_controller.get_session(self.CHANNEL))

        interaction = MockDiscordObjects.create_mock_interaction(self.CHANNEL)
        await bot.handle_status(interaction)
        self.assertEqual(self.sent_embed(interaction).title, "ℹ️ No Active Challenge")

    @async_test
    async def test_restart_without_session(self):
        bot = self.create_bot()
        interaction = MockDiscordObjects.create_mock_interaction(self.CHANNEL)

        await bot.handle_restart(interaction)

        self.assertEqual(self.sent_embed(interaction).title, "❌ Cannot Restart")

    @async_test
    async def test_settings_commands(self):
        bot = self.create_bot()

        interaction = MockDiscordObjects.create_mock_interaction(self.CHANNEL)
        await bot.handle_set_deck(interaction, 5)
        self.assertEqual(self.sent_embed(interaction).title, "✅ Settings Updated")
        self.assertEqual(bot.config_manager.get_default_config().deck_size, 5)

        interaction = MockDiscordObjects.create_mock_interaction(self.CHANNEL)
        await bot.handle_set_timer(interaction, 1)
        interaction.response.send_message.assert_awaited_once_with(
            "❌ Time per question too low: Minimum is 5", ephemeral=True
        )

    @async_test
    async def test_games_and_help(self):
        bot = self.create_bot()

        interaction = MockDiscordObjects.create_mock_interaction(self.CHANNEL)
        await bot.handle_games(interaction)
        embed = self.sent_embed(interaction)
        self.assertEqual(len(embed.fields), 1)
        self.assertEqual(embed.fields[0].name, "Chemistry Mixer (`chemistry`)")

        interaction = MockDiscordObjects.create_mock_interaction(self.CHANNEL)
        await bot.handle_help(interaction)
        self.assertIn("Deck size: 10", field_map(self.sent_embed(interaction))["⚙️ Current Settings"])


class TestChallengeBotSetup(unittest.TestCase):

    def setUp(self):
        logging.disable(logging.CRITICAL)
        self.temp_dir = tempfile.mkdtemp()
        ChallengeFixtures.create_temp_pack_files(self.temp_dir)

    def tearDown(self):
        logging.disable(logging.NOTSET)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    @async_test
    async def test_setup_hook_wires_components(self):
        bot = ChallengeBot({
            'bot': {'command_prefix': '?'},
            'engine': {'challenge_directory': self.temp_dir, 'deck_size': 5, 'max_lives': 0}
        })

        await bot.setup_hook()

        self.assertEqual(bot.command_prefix, '?')
        self.assertTrue(bot.catalog.pack_exists("valid_pack"))
        self.assertEqual(bot.config_manager.get_default_config().deck_size, 5)
        self.assertEqual(bot.config_manager.get_default_config().max_lives, 3)
        self.assertIsNotNone(bot.challenge_controller)

        command_names = {command.name for command in bot.tree.get_commands()}
        self.assertEqual(command_names, {
            "help", "games", "play", "answer", "guess", "hint",
            "restart", "stop", "status", "set_deck", "set_timer"
        })


if __name__ == '__main__':
    unittest.main()
