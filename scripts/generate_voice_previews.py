#!/usr/bin/env python3
"""
Generate one MP3 preview clip per voice profile.

Uses the same synthesis path as live calls (buffered mode), so previews sound
like the selected tone preset.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import os
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def generate(out_dir: Path, display_name: str, only: list[str]) -> int:
    from src.aloha.config import ConfigError, get_config
    from src.aloha.logging_setup import configure_logging
    from src.aloha.tts import SpeechSynthesizer
    from src.aloha.tts_types import SynthesisError
    from src.aloha.voice_profiles import get_voice_profiles

    config = dataclasses.replace(get_config(), tts_response_format="mp3")
    configure_logging(config.log_level)
    try:
        config.validate()
    except ConfigError as e:
        print(f"  [ERR] {e}")
        return 1

    registry = get_voice_profiles()
    profiles = [p for p in registry.all() if not only or p.key in only]
    if not profiles:
        print("  [ERR] No matching voice profiles.")
        return 1

    out_dir.mkdir(parents=True, exist_ok=True)
    synthesizer = SpeechSynthesizer(config=config)
    failures = 0
    try:
        for profile in profiles:
            text = registry.preview_script(profile.key, display_name)
            print(f'Generating preview for "{profile.key}" using voice "{profile.provider_voice_id}"...')
            try:
                audio = await synthesizer.synthesize_buffered(text, profile)
            except SynthesisError as e:
                print(f"  [ERR] {profile.key}: {e}")
                failures += 1
                continue

            out_path = out_dir / registry.preview_asset_name(profile.key)
            out_path.write_bytes(audio)
            print(f"  [OK] Saved: {out_path.resolve()}")
    finally:
        await synthesizer.close()

    return 1 if failures else 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Generate voice preview clips for every voice profile.")
    parser.add_argument(
        "--out-dir",
        default=os.getenv("VOICE_PREVIEW_DIR", "public/previews"),
        help="Output directory (default: $VOICE_PREVIEW_DIR or public/previews)",
    )
    parser.add_argument(
        "--name",
        default=os.getenv("AGENT_NAME", "Aloha"),
        help="Agent display name spoken in the preview",
    )
    parser.add_argument(
        "--voice",
        action="append",
        default=[],
        help="Only render this voice key (repeatable)",
    )
    args = parser.parse_args()

    return asyncio.run(generate(Path(args.out_dir), args.name, args.voice))


if __name__ == "__main__":
    raise SystemExit(main())
