"""CLI entrypoint for driving shots through the studio engine."""
import argparse
import json
import os
from dataclasses import asdict
from typing import Any, Dict, List, Optional

import anyio

from .config import StudioConfig
from .errors import StudioError, ValidationError
from .pipeline import Studio


def _print(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=True, indent=2, default=str))


def _load_characters(path: str) -> List[Dict[str, Any]]:
    if not path or not os.path.exists(path):
        return []
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return data if isinstance(data, list) else list(data.get("characters") or [])


def _shot_summary(shot: Any) -> Dict[str, Any]:
    return {
        "local_id": shot.local_id,
        "name": shot.name,
        "status": shot.status,
        "speaker_mode": shot.speaker_mode,
        "blocks": len(shot.dialogue_blocks),
        "audio": shot.stitched_audio_ref,
        "media": shot.rendered_media_ref,
        "error": shot.error_message,
    }


async def run_command(args: argparse.Namespace) -> Any:
    config = StudioConfig.from_env()
    studio = Studio(config, characters=_load_characters(args.characters), echo=args.verbose)
    error: Optional[StudioError] = None
    async with studio:
        # Caught inside the task group so it is not re-raised as an exception group.
        try:
            return await _dispatch(studio, args)
        except StudioError as exc:
            error = exc
    raise SystemExit(f"error: {error}") from error


async def _dispatch(studio: Studio, args: argparse.Namespace) -> Any:
    cmd = args.command
    if cmd == "drafts":
        return [_shot_summary(s) for s in studio.drafts.list()]
    if cmd == "new":
        shot = studio.create_shot(
            args.scene,
            keyframe_ref=args.keyframe,
            speaker_mode=args.mode,
            name=args.name,
            speaker_ref=args.speaker,
        )
        if args.prompt:
            shot = studio.drafts.update(shot.local_id, visual_prompt=args.prompt)
        if args.text:
            shot = studio.drafts.update_block(shot.local_id, shot.dialogue_blocks[0].id, text=args.text)
        return _shot_summary(shot)
    if cmd == "say":
        shot = studio.drafts.require(args.local_id)
        first = shot.dialogue_blocks[0]
        if len(shot.dialogue_blocks) == 1 and not first.text:
            studio.drafts.update_block(args.local_id, first.id, text=args.text, speaker_ref=args.speaker)
        else:
            studio.drafts.add_block(args.local_id, speaker_ref=args.speaker, text=args.text, pause_after_seconds=args.pause)
        return _shot_summary(studio.drafts.require(args.local_id))
    if cmd == "generate":
        result = await studio.generate_dialogue(args.local_id)
        return asdict(result) if result else None
    if cmd == "render":
        result = await studio.render(args.local_id)
        return asdict(result) if result else None
    if cmd == "produce":
        result = await studio.produce(args.local_id)
        return asdict(result) if result else None
    if cmd == "reopen":
        return _shot_summary(studio.reopen(args.local_id))
    if cmd == "save":
        return (await studio.save_to_bin(args.local_id)).to_dict()
    if cmd == "discard":
        return {"discarded": studio.discard(args.local_id)}
    if cmd == "bin":
        entries = await studio.refresh_bin() if args.refresh else studio.drafts.bin
        return [e.to_dict() for e in entries]
    if cmd == "delete":
        await studio.delete_clip(args.clip_id)
        return {"deleted": args.clip_id}
    if cmd == "remix":
        return _shot_summary(studio.remix(args.clip_id))
    if cmd == "keyframe":
        return await studio.generate_keyframe(args.scene, args.prompt, name=args.name)
    raise ValidationError(f"unknown command: {cmd}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Clip studio job engine")
    parser.add_argument(
        "--characters",
        default=os.getenv("STUDIO_CHARACTERS_PATH", ""),
        help="JSON file with character records (list or {characters: [...]})",
    )
    parser.add_argument("--verbose", action="store_true", help="Echo event log lines to stdout")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("drafts", help="List draft shots")

    new = sub.add_parser("new", help="Create a draft shot")
    new.add_argument("scene")
    new.add_argument("--keyframe", default=None)
    new.add_argument("--mode", default="on_screen", choices=["on_screen", "narrator"])
    new.add_argument("--name", default="")
    new.add_argument("--speaker", default="")
    new.add_argument("--text", default="")
    new.add_argument("--prompt", default="")

    say = sub.add_parser("say", help="Add a dialogue line to a shot")
    say.add_argument("local_id")
    say.add_argument("text")
    say.add_argument("--speaker", default="")
    say.add_argument("--pause", type=float, default=None)

    for name, help_text in (
        ("generate", "Synthesize dialogue audio"),
        ("render", "Render the shot video"),
        ("produce", "Synthesize if needed, then render"),
        ("reopen", "Send a previewed shot back to draft"),
        ("save", "Save a previewed shot to the bin"),
        ("discard", "Discard a draft shot"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("local_id")

    bin_cmd = sub.add_parser("bin", help="Show saved clips")
    bin_cmd.add_argument("--refresh", action="store_true", help="Merge with the remote store first")

    for name, help_text in (("delete", "Delete a saved clip"), ("remix", "Restore a saved clip as a new draft")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("clip_id")

    keyframe = sub.add_parser("keyframe", help="Generate a keyframe image")
    keyframe.add_argument("scene")
    keyframe.add_argument("prompt")
    keyframe.add_argument("--name", default="")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    _print(anyio.run(run_command, args))


if __name__ == "__main__":
    main()
