"""
provider.py – External LLM clients with provider routing and validation. Build and return configured async clients
-----------------------------------------------------------------------------------------------------------------
In the overall data-flow this file sits at the infrastructure layer.
It is the single place where we talk to the external LLM platform (Nebius/OpenAI endpoints, optionally
routed through an AI gateway).

Why a *provider* module?
• Keeps third-party SDK initialisation separate from business logic.
• Offers tiny, easily mockable `get_client()` / `get_gateway_client()` functions instead of
  global singletons. Tests can monkey-patch them or inject a fake client.
• The dispatcher and the chat orchestrator only see `ModelGateway` objects; they do not need to
  know about base URLs or API keys.

Provider routing logic:
- "nebius": Uses Nebius-compatible API with LLM_API_KEY/NEBIUS_API_KEY
- "openai": Uses OpenAI's official API with OPENAI_API_KEY
- Unsupported providers raise ValueError with clear error message

Secondary (gateway) client:
- Built only when AI_GATEWAY_ACCOUNT_ID, AI_GATEWAY_ID and OPENAI_API_KEY are all set.
- Its base URL is CONFIG["llm"]["gateway"]["base_url_template"] filled with the account and gateway ids.
- The chat path prefers it; analysis always uses the primary client.

Validation happens at client creation time (not import time) so the service can start, and
answer history/stats queries, without model credentials. `build_gateways()` turns a failed
client construction into a gateway without a client binding, which then reports ModelUnavailable
on every call.
"""

import logging
import os
from typing import Dict, List, Optional, Tuple

from openai import AsyncOpenAI
from config import CONFIG

from llm_cloud.gateway import ModelGateway

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_URL_TEMPLATE = "https://gateway.ai.cloudflare.com/v1/{account_id}/{gateway_id}/openai"


def require_any_env(var_names: List[str]) -> Tuple[str, str]:
    """
    Check that at least one of the specified environment variables is present and non-empty.

    Returns the first valid variable found. The function never logs the secret itself, only the
    name of the variable that held it.

    Args:
        var_names (List[str]): Environment variable names to check, in order of preference.
            Examples: ["LLM_API_KEY", "NEBIUS_API_KEY"] or ["OPENAI_API_KEY"]

    Returns:
        Tuple[str, str]: (selected_var_name, value)

    Raises:
        RuntimeError: If none of the specified environment variables are present or are empty.
    """
    for var_name in var_names:
        value = os.getenv(var_name, "")
        if value:
            return var_name, value

    var_list = ", ".join(var_names)
    raise RuntimeError(
        f"Missing required environment variable. Set one of: {var_list}"
    )


def validate_env_for_provider(config: Dict) -> None:
    """
    Validate that required environment variables are present for the configured LLM provider.

    Args:
        config (Dict): The configuration dictionary, expected to contain an 'llm' section
            with a 'provider' key specifying either 'nebius' or 'openai'.

    Raises:
        ValueError: If an unsupported provider is configured.
        RuntimeError: If the required environment variables for the selected provider
            are missing or empty.
    """
    llm_config = config.get("llm", {})
    provider = llm_config.get("provider", "nebius").strip().lower()

    logger.info("LLM provider selected: %s", provider)

    if provider == "nebius":
        selected_var, _ = require_any_env(["LLM_API_KEY", "NEBIUS_API_KEY"])
        logger.info("Using environment variable: %s", selected_var)
    elif provider == "openai":
        selected_var, _ = require_any_env(["OPENAI_API_KEY"])
        logger.info("Using environment variable: %s", selected_var)
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}")


def get_client() -> AsyncOpenAI:
    """
    Build and return the primary OpenAI-compatible async client with provider routing.

    Returns:
        AsyncOpenAI: A ready-to-use client configured for the selected provider.

    Raises:
        RuntimeError: If required environment variables are missing (via validation).
        ValueError: If an unsupported provider is configured.
    """
    validate_env_for_provider(CONFIG)

    llm_config = CONFIG.get("llm", {})
    provider = llm_config.get("provider", "nebius").strip().lower()

    if provider == "nebius":
        _, api_key = require_any_env(["LLM_API_KEY", "NEBIUS_API_KEY"])
        base_url = llm_config.get("base_url", "https://api.studio.nebius.com/v1/")
    elif provider == "openai":
        _, api_key = require_any_env(["OPENAI_API_KEY"])
        base_url = "https://api.openai.com/v1"
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}")

    logger.info("LLM provider selected: %s | base_url=%s", provider, base_url)

    # The gateway applies its own per-call timeout; the SDK timeout is a backstop and retries are off.
    return AsyncOpenAI(
        base_url=base_url,
        api_key=api_key,
        timeout=float(llm_config.get("timeout_s", 20.0)) + 5.0,
        max_retries=0,
    )


def get_gateway_client() -> Optional[AsyncOpenAI]:
    """
    Build the secondary client routed through the AI gateway, if one is configured.

    Returns:
        Optional[AsyncOpenAI]: The gateway client, or None when the account id, gateway id or
            OpenAI key is missing.
    """
    account_id = os.getenv("AI_GATEWAY_ACCOUNT_ID", "")
    gateway_id = os.getenv("AI_GATEWAY_ID", "")
    api_key = os.getenv("OPENAI_API_KEY", "")
    if not (account_id and gateway_id and api_key):
        logger.info("AI gateway not configured; chat will use the primary client")
        return None

    gateway_config = CONFIG.get("llm", {}).get("gateway", {})
    template = gateway_config.get("base_url_template", DEFAULT_GATEWAY_URL_TEMPLATE)
    base_url = template.format(account_id=account_id, gateway_id=gateway_id)
    logger.info("AI gateway configured | base_url=%s", base_url)

    return AsyncOpenAI(
        base_url=base_url,
        api_key=api_key,
        timeout=float(CONFIG["llm"].get("timeout_s", 20.0)) + 5.0,
        max_retries=0,
    )


def build_gateways() -> Tuple[ModelGateway, Optional[ModelGateway]]:
    """
    Build the primary and (optional) secondary model gateways.

    A failure to construct the primary client is logged and yields a gateway with no client
    binding, so analysis requests degrade into sentinel findings instead of crashing startup.

    Returns:
        Tuple[ModelGateway, Optional[ModelGateway]]: (primary, secondary or None)
    """
    llm_config = CONFIG["llm"]
    timeout_s = float(llm_config.get("timeout_s", 20.0))

    try:
        primary_client = get_client()
    except (RuntimeError, ValueError) as e:
        logger.error("Primary model client unavailable: %s", e)
        primary_client = None

    primary = ModelGateway(
        client=primary_client,
        model_name=llm_config["models"]["analysis"]["name"],
        timeout_s=timeout_s,
        name="primary",
    )

    secondary_client = get_gateway_client()
    secondary = None
    if secondary_client is not None:
        secondary = ModelGateway(
            client=secondary_client,
            model_name=llm_config.get("gateway", {}).get("model", "gpt-4"),
            timeout_s=timeout_s,
            name="secondary",
        )

    return primary, secondary
