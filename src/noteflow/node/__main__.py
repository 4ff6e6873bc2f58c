# src/noteflow/node/__main__.py
from __future__ import annotations

import uvicorn

from noteflow.env import load_dotenv_if_present


def main() -> None:
    # Load .env early so NOTEFLOW_* vars exist before anything reads them.
    load_dotenv_if_present()

    from noteflow.node.app import create_app
    from noteflow.node.config import build_node, node_config_from_env
    from noteflow.structured_logging import configure_structured_logging

    configure_structured_logging()
    cfg = node_config_from_env()
    uvicorn.run(create_app(build_node(cfg)), host=cfg.host, port=cfg.port, log_level="info")


if __name__ == "__main__":
    main()
