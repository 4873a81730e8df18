"""
Main entry point for code stream video generation

Usage:
    python main.py render <source_file> [options]
    python main.py list [--kind video|fullclip|shorts|avatar]
    python main.py export <id> [-o output.mp4]
    python main.py delete <id>
    python main.py stats
    python main.py voices

Example:
    python main.py render examples/hello.py --narrate --avatar penguin.png --title "Hello World"

For AI voices and scripts set ELEVENLABS_API_KEY, GROQ_API_KEY or XAI_API_KEY
(a .env file next to this script is loaded automatically).
"""

import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv

from config import RenderConfig
from errors import CodestreamError
from narration import NarrationSynthesizer
from storage import KINDS, VideoStore
from studio import ProduceRequest, produce
from text_stream import THEMES
from timing import WallClock

LANGUAGES = {
    ".py": "python", ".js": "javascript", ".ts": "typescript", ".tsx": "typescript",
    ".java": "java", ".c": "c", ".cpp": "cpp", ".cs": "csharp", ".go": "go",
    ".rs": "rust", ".rb": "ruby", ".php": "php", ".html": "html", ".css": "css",
    ".sql": "sql", ".sh": "bash", ".kt": "kotlin", ".swift": "swift",
}


def detect_language(path: Path) -> str:
    return LANGUAGES.get(path.suffix.lower(), "text")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Turn source code into a vertical code-stream video"
    )
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="SQLite database for produced videos (or set CODESTREAM_DB env var)"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    render = commands.add_parser("render", help="Render a source file")
    render.add_argument("source_file", type=str, help="Path to the source file")
    render.add_argument("-o", "--output", type=str, default=None, help="Also write the video to this path")
    render.add_argument("--theme", choices=list(THEMES), default=None, help="Syntax colour theme")
    render.add_argument("--speed", type=int, default=None, help="Reveal speed 1-100 (default: 50)")
    render.add_argument("--narration", type=str, default=None, help="Narration audio file")
    render.add_argument("--narrate", action="store_true", help="Synthesize narration (script generated if not given)")
    render.add_argument("--script", type=str, default=None, help="Narration script text file")
    render.add_argument("--voice", type=str, default=None, help="Voice id (ElevenLabs) or language code (gTTS)")
    render.add_argument("--captions", choices=["words", "sentences", "none"], default="words")
    render.add_argument("--video", type=str, default=None, help="Use this video as main content instead of the code")
    render.add_argument("--fill", action="store_true", help="Crop the main video to fill the frame")
    render.add_argument("--avatar", type=str, default=None, help="Avatar image path or URL")
    render.add_argument("--generate-avatar", action="store_true", help="Generate the avatar with xAI")
    render.add_argument("--avatar-position", default="bottom-right",
                        choices=["top-left", "top-right", "bottom-left", "bottom-right"])
    render.add_argument("--avatar-size", type=float, default=25.0, help="Avatar size in %% of frame width")
    render.add_argument("--circular", action="store_true", help="Circular avatar mask")
    render.add_argument("--title", type=str, default=None, help="Thumbnail preroll title card")
    render.add_argument("--thumbnail", type=str, default=None, help="Thumbnail preroll image")
    render.add_argument("--realtime", action="store_true", help="Pace recording by the wall clock")
    render.add_argument("--no-save", action="store_true", help="Don't store the video in the database")

    listing = commands.add_parser("list", help="List stored records")
    listing.add_argument("--kind", choices=KINDS, default="video")

    export = commands.add_parser("export", help="Write a stored record to a file")
    export.add_argument("id", type=int)
    export.add_argument("-o", "--output", type=str, default=None)

    delete = commands.add_parser("delete", help="Delete a stored record")
    delete.add_argument("id", type=int)

    commands.add_parser("stats", help="Show record counts")
    commands.add_parser("voices", help="List narration voices")
    return parser


def run_render(args, config: RenderConfig, store: VideoStore):
    source_path = Path(args.source_file)
    if not source_path.exists():
        print(f"Error: Source file not found: {source_path}")
        sys.exit(1)

    print(f"Reading source from: {source_path}")
    text = source_path.read_text(encoding="utf-8")
    script = Path(args.script).read_text(encoding="utf-8").strip() if args.script else None

    request = ProduceRequest(
        text=text,
        file_name=source_path.name,
        language=detect_language(source_path),
        theme=args.theme,
        narration_path=args.narration,
        narrate=args.narrate,
        script=script,
        voice=args.voice,
        captions=None if args.captions == "none" else args.captions,
        main_video_path=args.video,
        video_fit="fill" if args.fill else "fit",
        avatar_source=args.avatar,
        generate_avatar=args.generate_avatar,
        avatar_position=args.avatar_position,
        avatar_size=args.avatar_size,
        avatar_circular=args.circular,
        thumbnail_title=args.title,
        thumbnail_image_path=args.thumbnail,
    )

    kwargs = {"clock": WallClock(config.fps)} if args.realtime else {}
    record_id, artifact, plan = produce(
        config, request, store=None if args.no_save else store, **kwargs
    )

    output = Path(args.output) if args.output else config.output_dir / plan.output_filename()
    artifact.save_to(output)
    print(f"\n✅ Success! Video saved to: {output}")
    if record_id is not None:
        print(f"   Stored as {plan.kind.value} #{record_id}")


def run_list(args, store: VideoStore):
    records = store.list_by_kind(args.kind)
    if not records:
        print(f"No {args.kind} records")
        return
    for record in records:
        print(f"  #{record.id:<4} {record.created_at[:19]}  {record.duration:6.1f}s  "
              f"{record.display_name or record.filename}")


def run_voices(config: RenderConfig):
    synthesizer = NarrationSynthesizer(config.elevenlabs_api_key, config.default_voice)
    print(f"Voices ({synthesizer.provider}):")
    for voice_id, name in synthesizer.list_voices():
        print(f"  {voice_id:<24} {name}")


def run_export(args, config: RenderConfig, store: VideoStore):
    record = store.get(args.id)
    if record is None:
        print(f"Error: Record #{args.id} not found")
        sys.exit(1)
    output = Path(args.output) if args.output else config.output_dir / record.filename
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(record.data)
    print(f"Wrote {record.filename} to {output}")


def main():
    load_dotenv()
    args = build_parser().parse_args()

    overrides = {}
    if args.db:
        overrides["db_path"] = args.db
    if getattr(args, "speed", None):
        overrides["stream_speed"] = args.speed
    config = RenderConfig.from_env(**overrides)
    config.ensure_dirs()
    store = VideoStore(config.db_path)

    try:
        if args.command == "render":
            run_render(args, config, store)
        elif args.command == "list":
            run_list(args, store)
        elif args.command == "export":
            run_export(args, config, store)
        elif args.command == "delete":
            if not store.delete(args.id):
                print(f"Error: Record #{args.id} not found")
                sys.exit(1)
        elif args.command == "voices":
            run_voices(config)
        elif args.command == "stats":
            for kind, count in store.stats().items():
                print(f"  {kind}: {count}")
    except CodestreamError as e:
        print(f"\n❌ Error generating video: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
