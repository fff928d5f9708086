# Copyright (c) 2026 Pieceline. Licensed under the MIT License. See LICENSE.
"""Shared utility functions used across the client, the CLI, and the API server."""

import json
import logging
import os

from pieceline.messages import ConversationConfig, SamplerParams

LOG_LEVEL_ENV = "PIECELINE_LOG_LEVEL"
_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(level: str | None = None) -> None:
    """Configure stdlib logging once.

    Respects ``PIECELINE_LOG_LEVEL`` when *level* is None.  Library code never
    calls this; only entry points do.
    """
    lvl = (level or os.environ.get(LOG_LEVEL_ENV) or "WARNING").upper()
    logging.basicConfig(level=getattr(logging, lvl, logging.WARNING), format=_LOG_FORMAT)


def load_sampler_params(model_dir: str) -> SamplerParams:
    """Load sampling params from generation_config.json, falling back to defaults."""
    gen_config_path = os.path.join(model_dir, "generation_config.json")
    if not os.path.exists(gen_config_path):
        return SamplerParams()

    with open(gen_config_path, encoding="utf-8") as f:
        gen_config = json.load(f)
    overrides = {k: gen_config[k] for k in SamplerParams.model_fields if k in gen_config}
    if overrides:
        logger.debug("Sampler overrides from %s: %s", gen_config_path, overrides)
    return SamplerParams(**overrides)


def engine_args(config: ConversationConfig) -> list[str]:
    """Render a conversation config as engine command-line flags.

    Always emits the sampler fields.  Only emits ``--system-message`` when set.
    """
    s = config.sampler
    args = [
        f"--temperature={s.temperature}",
        f"--top-k={s.top_k}",
        f"--top-p={s.top_p}",
        f"--seed={s.seed}",
    ]
    if config.system_message is not None:
        args.append(f"--system-message={config.system_message}")
    return args
