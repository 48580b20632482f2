import asyncio
import logging
import signal
from typing import Dict, Any

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from leadroute.config import settings
from leadroute.configuration import ConfigurationProvider, RedisConfigurationStore
from leadroute.logging_config import configure_logging
from triage_worker.classifier_adapters import BaseClassifierAdapter, get_classifier_adapter
from triage_worker.processor import MessageProcessor

logger = logging.getLogger("triage_worker")

# Set by the signal handlers for graceful shutdown
shutdown_event = asyncio.Event()


WORKER_NAMES = ["triage_worker_1", "triage_worker_2"]


async def ack_successful_messages(
    redis_client,
    stream_name: str,
    group_name: str,
    msg_ids: list[str],
    results: list[bool]
):
    """Acknowledges only the messages that were processed successfully"""
    for i, message_id in enumerate(msg_ids):
        if results[i]:
            await redis_client.xack(
                stream_name,
                group_name,
                message_id
            )


async def _process_with_semaphore(
    session_factory: async_sessionmaker,
    config_provider: ConfigurationProvider,
    classifier: BaseClassifierAdapter,
    message_data: Dict[str, Any],
    semaphore: asyncio.Semaphore
) -> bool:
    # One session per message; a rollback must not touch sibling messages
    async with semaphore:
        async with session_factory() as session:
            processor = MessageProcessor(session, config_provider, classifier)
            return await processor.process_message(message_data)


async def _process_batch(session_factory, config_provider, classifier, redis_client, semaphore, message_list):
    tasks = [
        _process_with_semaphore(session_factory, config_provider, classifier, message_data, semaphore)
        for _, message_data in message_list
    ]
    results = await asyncio.gather(*tasks)
    await ack_successful_messages(
        redis_client,
        settings.REDIS_STREAM,
        settings.REDIS_CONSUMER_GROUP,
        [message_id for message_id, _ in message_list],
        results
    )


async def main_loop(consumer_name: str, config_provider: ConfigurationProvider, redis_client):
    """Main message processing loop"""
    logger.info(
        "Starting consumer=%s stream=%s group=%s batch=%s block=%s",
        consumer_name, settings.REDIS_STREAM, settings.REDIS_CONSUMER_GROUP,
        settings.BATCH_SIZE, settings.STREAM_BLOCK_TIME,
    )

    engine = create_async_engine(settings.database_url)
    async_session = async_sessionmaker(engine, expire_on_commit=False)
    classifier = get_classifier_adapter()

    try:
        await redis_client.xgroup_create(
            name=settings.REDIS_STREAM,
            groupname=settings.REDIS_CONSUMER_GROUP,
            id="0-0",
            mkstream=True
        )
        logger.info("Consumer group created: %s", settings.REDIS_CONSUMER_GROUP)
    except redis.ResponseError as e:
        if "BUSYGROUP" not in str(e):
            raise
        logger.debug("Consumer group already exists: %s", settings.REDIS_CONSUMER_GROUP)

    semaphore = asyncio.Semaphore(settings.MAX_CONCURRENT_REQUESTS)

    while not shutdown_event.is_set():
        try:
            # Pick up messages left pending by a crashed consumer
            try:
                pending_messages = await redis_client.xautoclaim(
                    name=settings.REDIS_STREAM,
                    groupname=settings.REDIS_CONSUMER_GROUP,
                    consumername=consumer_name,
                    min_idle_time=1000,
                    start_id="0-0",
                    count=settings.BATCH_SIZE
                )
                pending_msgs_list = pending_messages[1] if pending_messages else []
            except redis.ResponseError as e:
                logger.debug("XAUTOCLAIM failed: %s", e)
                pending_msgs_list = []
            if pending_msgs_list:
                logger.info("Claimed %d pending messages", len(pending_msgs_list))
                await _process_batch(
                    async_session, config_provider, classifier,
                    redis_client, semaphore, pending_msgs_list,
                )

            messages = await redis_client.xreadgroup(
                groupname=settings.REDIS_CONSUMER_GROUP,
                consumername=consumer_name,
                streams={settings.REDIS_STREAM: ">"},
                count=settings.BATCH_SIZE,
                block=settings.STREAM_BLOCK_TIME
            )

            for _, message_list in messages or []:
                if message_list:
                    logger.debug("Received %d messages", len(message_list))
                    await _process_batch(
                        async_session, config_provider, classifier,
                        redis_client, semaphore, message_list,
                    )

            await asyncio.sleep(0.1)

        except asyncio.CancelledError:
            break
        except Exception:
            logger.exception("Loop exception in consumer %s", consumer_name)
            await asyncio.sleep(5)

    await engine.dispose()


def handle_shutdown(signum, frame):
    """Signal handler for shutdown"""
    shutdown_event.set()


async def main():
    configure_logging("triage_worker")
    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    config_provider = ConfigurationProvider(
        RedisConfigurationStore(redis_client, settings.CONFIG_REDIS_KEY),
        ttl_seconds=settings.CONFIG_CACHE_TTL,
        fetch_timeout=settings.CONFIG_FETCH_TIMEOUT,
    )

    tasks = [
        asyncio.create_task(main_loop(name, config_provider, redis_client))
        for name in WORKER_NAMES
    ]
    await asyncio.gather(*tasks)
    await redis_client.close()


if __name__ == "__main__":
    asyncio.run(main())
