"""Build the environment passed to the gateway startup script."""

from typing import Mapping

# Copied through unchanged when set
PASSTHROUGH_KEYS = [
    "ANTHROPIC_API_KEY",
    "ANTHROPIC_BASE_URL",
    "OPENAI_API_KEY",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_DM_POLICY",
    "DISCORD_BOT_TOKEN",
    "DISCORD_DM_POLICY",
    "SLACK_BOT_TOKEN",
    "SLACK_APP_TOKEN",
    "CDP_SECRET",
    "WORKER_URL",
]

# Renamed for the gateway binary, which still reads its legacy names
RENAMED_KEYS = {
    "MOLTBOT_GATEWAY_TOKEN": "CLAWDBOT_GATEWAY_TOKEN",
    "DEV_MODE": "CLAWDBOT_DEV_MODE",
}


def build_env_vars(env: Mapping[str, str]) -> dict[str, str]:
    """Select and rename the variables the gateway needs.

    An AI gateway key and base URL, when both are set, take the place of the
    direct provider settings: a base URL ending in ``/openai`` routes them to
    the OpenAI variables, anything else to the Anthropic ones.
    """
    result = {key: env[key] for key in PASSTHROUGH_KEYS if env.get(key)}

    for source, target in RENAMED_KEYS.items():
        if env.get(source):
            result[target] = env[source]

    gateway_key = env.get("AI_GATEWAY_API_KEY")
    gateway_url = env.get("AI_GATEWAY_BASE_URL")
    if gateway_key and gateway_url:
        base_url = gateway_url.rstrip("/")
        if base_url.endswith("/openai"):
            result["OPENAI_API_KEY"] = gateway_key
            result["OPENAI_BASE_URL"] = base_url
        else:
            result["ANTHROPIC_API_KEY"] = gateway_key
            result["ANTHROPIC_BASE_URL"] = base_url
        result["AI_GATEWAY_BASE_URL"] = base_url

    return result
