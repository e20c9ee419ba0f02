"""
Demo script showing basic usage of the Chat Orchestrator.
"""

import asyncio

from .models import ChatRequest, Message, Role, StreamEventType
from .utils import setup_logging, get_logger, ConfigManager, OrchestratorError
from .core import ChatPipeline, ProviderRegistry


async def run_demo():
    """Send sample requests through the pipeline and print the event stream."""
    config_manager = ConfigManager()
    config = config_manager.load_config()

    setup_logging(config.logging_config)
    logger = get_logger(__name__)

    logger.info("Chat Orchestrator Demo Starting")

    registry = ProviderRegistry.from_config(config)
    pipeline = ChatPipeline(config, registry)

    requests = [
        ChatRequest(messages=[Message(role=Role.USER, content="What is a closure?")]),
        ChatRequest(messages=[Message(role=Role.USER, content="What's today's weather in Paris?")]),
        ChatRequest(messages=[Message(
            role=Role.USER,
            content="Write a Python function to calculate fibonacci numbers",
        )]),
    ]

    for i, request in enumerate(requests, 1):
        print(f"\nRequest {i}: {request.messages[-1].text()}")
        try:
            stream = pipeline.stream(request)
        except OrchestratorError as e:
            print(f"Rejected: {e.to_payload()}")
            continue

        async for event in stream:
            if event.type is StreamEventType.METADATA:
                print(f"[{event.data['provider']}/{event.data['model']}] "
                      f"task={event.data['taskType']} tools={event.data['toolsUsed']}")
            elif event.type is StreamEventType.CONTENT:
                print(event.data["content"], end="", flush=True)
            elif event.type is StreamEventType.ERROR:
                print(f"\nError: {event.data['error']}")
            elif event.type is StreamEventType.USAGE:
                print(f"\nUsage: {event.data['usage']}")
        print("\n" + "-" * 50)

    logger.info("Demo completed successfully")


def main():
    asyncio.run(run_demo())


if __name__ == "__main__":
    main()
