import os

import uvicorn
from dotenv import load_dotenv

from chat_orchestrator.core import ChatPipeline, ProviderRegistry
from chat_orchestrator.server import create_app
from chat_orchestrator.utils import ConfigManager, setup_logging

load_dotenv()

config = ConfigManager(os.getenv("CHAT_ORCHESTRATOR_CONFIG", "config.json")).load_config()
setup_logging(config.logging_config)

registry = ProviderRegistry.from_config(config)
pipeline = ChatPipeline(config, registry)
app = create_app(pipeline)


def main():
    uvicorn.run(app, host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    main()
