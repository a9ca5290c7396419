"""CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime

from .config import Config, load_or_default, save_config
from .controller import AudioSessionController
from .errors import AuthenticationError, ConfigurationError, PaymentError
from .logging_utils import setup_logging
from .models import ConnectionState, SessionSnapshot
from .payments import PaystackClient, handle_callback, handle_webhook
from .recorder import list_input_devices, list_output_devices
from .renderer import format_entry, render_transcript
from .session_io import save_transcript
from .storage import build_session_basename, ensure_structure
from .subscription import Access, begin_conversation, open_store


class TranscriptPrinter:
    """Observer that prints new transcript lines and state changes."""

    def __init__(self) -> None:
        self.printed = 0
        self.state = None

    def __call__(self, snap: SessionSnapshot) -> None:
        if snap.state != self.state:
            self.state = snap.state
            if snap.state == ConnectionState.CONNECTING:
                print("Connecting...")
        for entry in snap.transcript[self.printed:]:
            print(format_entry(entry))
        self.printed = len(snap.transcript)
        if snap.error and snap.state == ConnectionState.ERRORED:
            print(f"Error: {snap.error}")


async def run_conversation(controller: AudioSessionController) -> int:
    try:
        await controller.connect()
        if controller.state != ConnectionState.OPEN:
            if controller.error:
                print(f"Error: {controller.error}")
            return 1
        print("Listening... press Ctrl+C to end the conversation.")
        await controller.wait_closed()
    finally:
        await controller.disconnect()
    return 1 if controller.state == ConnectionState.ERRORED else 0


def _save_conversation(config: Config, controller: AudioSessionController, title: str, started: datetime) -> None:
    paths = ensure_structure(config.base_dir)
    basename = build_session_basename(title, started)
    json_path = os.path.join(paths["transcripts"], f"{basename}.transcript.json")
    save_transcript(json_path, controller.transcript)
    note = render_transcript(
        controller.transcript,
        title=title,
        date=started.strftime("%Y-%m-%d"),
        turn_count=controller.turn_count,
        voice=config.live.voice,
        model=config.live.model,
        started_at=started.isoformat(timespec="seconds"),
        ended_at=datetime.now().isoformat(timespec="seconds"),
        error=controller.error,
    )
    note_path = os.path.join(paths["notes"], f"{basename}.md")
    with open(note_path, "w", encoding="utf-8") as handle:
        handle.write(note)
    print(f"Transcript saved: {note_path}")


def _paystack_client(config: Config) -> PaystackClient:
    return PaystackClient(
        config.payment.secret_key,
        app_url=config.payment.app_url,
        amount_kobo=config.payment.amount_kobo,
    )


def _read_body(path: str) -> bytes:
    if path == "-":
        return sys.stdin.buffer.read()
    with open(path, "rb") as handle:
        return handle.read()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="healingvoice")
    parser.add_argument("--config", default="healingvoice_config.yml", help="Config.")
    parser.add_argument("--verbose", action="store_true", help="Log to stderr too.")
    sub = parser.add_subparsers(dest="command")

    devices_cmd = sub.add_parser("devices")
    devices_cmd.add_argument("--output", action="store_true", help="List output devices.")
    devices_cmd.add_argument("--detail", action="store_true", help="Show sample rates.")

    talk_cmd = sub.add_parser("talk")
    talk_cmd.add_argument("--user", required=True, help="User identifier.")
    talk_cmd.add_argument("--title", default="Conversation", help="Transcript title.")
    talk_cmd.add_argument("--no-save", action="store_true", help="Do not save transcript.")

    status_cmd = sub.add_parser("status")
    status_cmd.add_argument("--user", required=True, help="User identifier.")

    pay_cmd = sub.add_parser("pay")
    pay_cmd.add_argument("--user", required=True, help="User identifier.")
    pay_cmd.add_argument("--email", required=True, help="Billing email.")

    verify_cmd = sub.add_parser("verify")
    verify_cmd.add_argument("--user", required=True, help="User identifier.")
    verify_cmd.add_argument("--reference", required=True, help="Paystack transaction reference.")

    webhook_cmd = sub.add_parser("webhook")
    webhook_cmd.add_argument("--body", required=True, help="Raw webhook body file, or - for stdin.")
    webhook_cmd.add_argument("--signature", required=True, help="x-paystack-signature header.")

    config_cmd = sub.add_parser("config")
    config_cmd.add_argument("--force", action="store_true", help="Overwrite existing file.")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "config":
        if os.path.exists(args.config) and not args.force:
            print(f"{args.config} exists; use --force to overwrite.")
            return 1
        save_config(args.config, Config())
        print(f"Wrote {args.config}")
        return 0

    config = load_or_default(args.config)
    paths = ensure_structure(config.base_dir)
    logger, log_path = setup_logging(
        log_dir=paths["logs"],
        level=logging.DEBUG if args.verbose else logging.INFO,
        console=bool(args.verbose),
    )

    if args.command == "devices":
        devices = list_output_devices() if args.output else list_input_devices()
        key = "max_output_channels" if args.output else "max_input_channels"
        for device in devices:
            line = f"[{device.get('index', '?')}] {device.get('name', 'Unknown')} (channels: {device.get(key, 0)})"
            if args.detail and "default_samplerate" in device:
                line = f"{line} [rate={device.get('default_samplerate')}]"
            print(line)
        return 0

    if args.command == "status":
        status = open_store(config.subscription).get_status(args.user)
        print(f"Premium: {'yes' if status.is_premium else 'no'}")
        print(f"Trial used: {'yes' if status.has_used_trial else 'no'}")
        if status.expires_at:
            print(f"Expires: {status.expires_at.isoformat(timespec='seconds')}")
        return 0

    if args.command == "pay":
        client = _paystack_client(config)
        try:
            url = client.initialize_payment(args.user, args.email)
        except (ConfigurationError, PaymentError) as exc:
            print(f"Failed to start payment process: {exc}")
            return 1
        print(url)
        return 0

    if args.command == "verify":
        result = handle_callback(
            _paystack_client(config), args.reference, args.user, open_store(config.subscription)
        )
        print(result)
        return 0 if result == "payment_success=true" else 1

    if args.command == "webhook":
        try:
            user_id = handle_webhook(
                config.payment.secret_key,
                _read_body(args.body),
                args.signature,
                open_store(config.subscription),
            )
        except (AuthenticationError, ConfigurationError, PaymentError) as exc:
            print(f"Webhook rejected: {exc}")
            return 1
        print(f"Premium granted: {user_id}" if user_id else "Webhook acknowledged")
        return 0

    if args.command == "talk":
        decision = begin_conversation(open_store(config.subscription), args.user)
        if not decision.allowed:
            print("Your free conversation has been used. Run `healingvoice pay` to upgrade.")
            return 2
        if decision.access == Access.TRIAL:
            print("Starting your free trial conversation.")
        controller = AudioSessionController(
            config.live,
            input_device=config.input_device,
            output_device=config.output_device,
        )
        controller.subscribe(TranscriptPrinter())
        started = datetime.now()
        try:
            code = asyncio.run(run_conversation(controller))
        except KeyboardInterrupt:
            code = 0
        logger.info("Conversation ended (turns=%s, log=%s)", controller.turn_count, log_path)
        if config.save_transcripts and not args.no_save and controller.transcript:
            _save_conversation(config, controller, args.title, started)
        return code

    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
