"""Configuration handling."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

import yaml

DEFAULT_MODEL = "gemini-2.5-flash-native-audio-preview-12-2025"
DEFAULT_VOICE = "Zephyr"
MIN_API_KEY_LENGTH = 10

SYSTEM_INSTRUCTION = (
    "You are the AI assistant for 'Healing with MMA', a compassionate and "
    "professional AI counseling service. Your goal is to provide a safe, "
    "non-judgmental space for the user to talk about their feelings, challenges, "
    "and goals. Listen actively, validate their emotions, and offer gentle "
    "guidance or coping strategies when appropriate. Keep your responses concise "
    "and conversational, as this is a voice interaction. Do not provide medical "
    "or psychiatric diagnoses. If the user mentions self-harm, provide resources "
    "and encourage professional help."
)


@dataclass
class LiveConfig:
    api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    voice: str = DEFAULT_VOICE
    input_sample_rate_hz: int = 16000
    output_sample_rate_hz: int = 24000
    block_size: int = 4096
    system_instruction: str = SYSTEM_INSTRUCTION


@dataclass
class SubscriptionConfig:
    backend: str = "sqlite"
    db_path: str = "database.sqlite"


@dataclass
class PaymentConfig:
    secret_key: Optional[str] = None
    app_url: str = "http://localhost:3000"
    amount_kobo: int = 5000 * 100


@dataclass
class Config:
    base_dir: str = ""
    input_device: Optional[str] = None
    output_device: Optional[str] = None
    save_transcripts: bool = True
    live: LiveConfig = field(default_factory=LiveConfig)
    subscription: SubscriptionConfig = field(default_factory=SubscriptionConfig)
    payment: PaymentConfig = field(default_factory=PaymentConfig)


def apply_env(config: Config, env: Optional[Mapping[str, str]] = None) -> Config:
    """Overlay secrets from the environment onto a loaded config."""
    env = os.environ if env is None else env
    api_key = env.get("GEMINI_API_KEY") or env.get("API_KEY")
    if api_key:
        config.live.api_key = api_key
    if env.get("PAYSTACK_SECRET_KEY"):
        config.payment.secret_key = env["PAYSTACK_SECRET_KEY"]
    if env.get("APP_URL"):
        config.payment.app_url = env["APP_URL"]
    return config


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    live = LiveConfig(**data.get("live", {}))
    subscription = SubscriptionConfig(**data.get("subscription", {}))
    payment = PaymentConfig(**data.get("payment", {}))

    return Config(
        base_dir=data.get("base_dir", ""),
        input_device=data.get("input_device"),
        output_device=data.get("output_device"),
        save_transcripts=bool(data.get("save_transcripts", True)),
        live=live,
        subscription=subscription,
        payment=payment,
    )


def load_or_default(path: Optional[str]) -> Config:
    if path and os.path.exists(path):
        config = load_config(path)
    else:
        config = Config()
    return apply_env(config)


def save_config(path: str, config: Config) -> None:
    # Secrets stay in the environment.
    data = {
        "base_dir": config.base_dir,
        "input_device": config.input_device,
        "output_device": config.output_device,
        "save_transcripts": config.save_transcripts,
        "live": {
            "model": config.live.model,
            "voice": config.live.voice,
            "input_sample_rate_hz": config.live.input_sample_rate_hz,
            "output_sample_rate_hz": config.live.output_sample_rate_hz,
            "block_size": config.live.block_size,
            "system_instruction": config.live.system_instruction,
        },
        "subscription": {
            "backend": config.subscription.backend,
            "db_path": config.subscription.db_path,
        },
        "payment": {
            "app_url": config.payment.app_url,
            "amount_kobo": config.payment.amount_kobo,
        },
    }
    with open(path, "w", encoding="utf-8") as handle:
        yaml.safe_dump(data, handle, sort_keys=False)
