import asyncio
import logging

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties

from .config import get_bot_token, get_log_level
from .handlers import router


def setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, get_log_level(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # aiohttp access noise drowns the resolver logs at DEBUG
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


async def main() -> None:
    setup_logging()
    bot = Bot(token=get_bot_token(), default=DefaultBotProperties(parse_mode="HTML"))
    dp = Dispatcher()
    dp.include_router(router)
    logging.getLogger(__name__).info("starting polling")
    await dp.start_polling(bot, allowed_updates=dp.resolve_used_update_types())


def run() -> None:
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        pass


if __name__ == "__main__":
    run()
