#!/usr/bin/env python3
"""
Challenge Bot entry point.

Reads config.json (or the file named by CHALLENGE_BOT_CONFIG), sets up
logging and starts the Discord bot that hosts timed challenge games.

Usage:
    python main.py

Environment Variables:
    DISCORD_BOT_TOKEN: Bot token, takes precedence over config.json
    CHALLENGE_BOT_CONFIG: Path to an alternative configuration file
"""

import asyncio
import json
import logging
import os
import sys
from pathlib import Path

DEFAULT_CONFIG_PATH = Path("config.json")
TOKEN_PLACEHOLDER = "YOUR_DISCORD_BOT_TOKEN_HERE"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def fail(*lines):
    for line in lines:
        print(line)
    sys.exit(1)


def load_config(config_path: Path = None) -> dict:
    """Read the bot configuration, exiting with a readable message on failure."""
    config_path = Path(config_path or os.getenv('CHALLENGE_BOT_CONFIG') or DEFAULT_CONFIG_PATH)
    if not config_path.is_file():
        fail(
            f"❌ Configuration file {config_path} does not exist.",
            "Create it from the config.json shipped with the project."
        )

    try:
        with config_path.open('r', encoding='utf-8') as config_file:
            config = json.load(config_file)
    except json.JSONDecodeError as e:
        fail(f"❌ {config_path} is not valid JSON: {e}")
    except OSError as e:
        fail(f"❌ Could not read {config_path}: {e}")

    if not isinstance(config, dict):
        fail(f"❌ {config_path} must contain a JSON object")
    return config


def resolve_token(config: dict) -> str:
    """Pick the bot token from the environment first, then from the "bot" section."""
    token = os.getenv('DISCORD_BOT_TOKEN') or config.get('bot', {}).get('token')
    if not token or token == TOKEN_PLACEHOLDER:
        fail(
            "❌ No Discord bot token found.",
            "Export DISCORD_BOT_TOKEN or fill in bot.token in the configuration file."
        )
    return token


def configure_logging(log_settings: dict) -> None:
    """Console plus bot.log for everything, errors.log for ERROR and above."""
    level_name = str(log_settings.get('level', 'INFO')).upper()
    level = getattr(logging, level_name, logging.INFO)
    log_dir = Path(log_settings.get('log_directory', './logs/'))
    log_dir.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_dir / "bot.log", encoding='utf-8'),
        ]
    )

    errors_only = logging.FileHandler(log_dir / "errors.log", encoding='utf-8')
    errors_only.setLevel(logging.ERROR)
    errors_only.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(errors_only)

    # discord.py logs every gateway event at INFO
    for noisy in ('discord', 'discord.http', 'discord.gateway'):
        logging.getLogger(noisy).setLevel(logging.WARNING)


async def main() -> None:
    config = load_config()
    configure_logging(config.get('logging', {}))

    from challenge_engine.bot import run_bot
    await run_bot(resolve_token(config), config)


if __name__ == "__main__":
    print("🎯 Starting Challenge Bot...")
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n👋 Challenge Bot stopped")
