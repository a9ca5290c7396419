import argparse
import os
import sys
import threading
import time

import numpy as np

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from healingvoice.audio_utils import float_to_pcm16
from healingvoice.errors import describe_error, VoiceSessionError
from healingvoice.playback import SpeakerOutput
from healingvoice.recorder import MicrophoneCapture


def _tone(seconds: float, rate: int, freq: float = 440.0) -> np.ndarray:
    t = np.arange(int(seconds * rate)) / rate
    return (0.2 * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def main() -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("--input", help="Input device name substring.")
    parser.add_argument("--output", help="Output device name substring.")
    parser.add_argument("--seconds", type=float, default=5.0, help="Capture duration.")
    args = parser.parse_args()

    levels = {"rms": 0.0, "peak": 0, "blocks": 0}
    lock = threading.Lock()

    def _on_block(samples: np.ndarray) -> None:
        pcm = float_to_pcm16(samples)
        with lock:
            levels["rms"] = float(np.sqrt(np.mean(samples**2))) if samples.size else 0.0
            levels["peak"] = int(np.max(np.abs(pcm.astype(np.int32)))) if pcm.size else 0
            levels["blocks"] += 1

    capture = MicrophoneCapture(_on_block, device_name=args.input)
    try:
        capture.start()
    except VoiceSessionError as exc:
        print(describe_error(exc))
        return 1

    print("Capturing at 16 kHz... speak into the microphone.")
    end = time.time() + args.seconds
    try:
        while time.time() < end:
            with lock:
                snapshot = dict(levels)
            print(f"Blocks {snapshot['blocks']} | RMS {snapshot['rms']:.3f} | Peak PCM16 {snapshot['peak']}")
            time.sleep(0.5)
    finally:
        capture.close()

    done = threading.Event()
    speaker = SpeakerOutput(device_name=args.output, on_finished=lambda _cid: done.set())
    try:
        speaker.open()
    except VoiceSessionError as exc:
        print(describe_error(exc))
        return 1
    print("Playing a 1 s test tone at 24 kHz...")
    try:
        speaker.play(1, _tone(1.0, speaker.sample_rate_hz))
        if not done.wait(timeout=3.0):
            print("Playback did not report completion.")
            return 1
    finally:
        speaker.close()
    print("Audio path OK.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
