"""
Studio - turns a produce request into a render plan, runs it and stores the result.

Shared by the command line (main.py) and the web API (app.py).
"""

import asyncio
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Tuple

from avatar_sprite import Avatar
from capture_session import OutputArtifact
from config import RenderConfig
from image_generator import ImageGenerator
from narration import NarrationSynthesizer
from render_controller import RenderController, RenderPlan
from script_writer import ScriptWriter
from source_track import MediaResource
from storage import VideoStore
from thumbnail_preroll import ThumbnailPreroll


@dataclass
class ProduceRequest:
    """Everything a user can ask for in one produce action"""
    text: str
    file_name: str = "snippet.txt"
    language: str = "text"
    theme: Optional[str] = None
    # Narration: a ready audio file, or a script (supplied or generated) to synthesize
    narration_path: Optional[str] = None
    narrate: bool = False
    script: Optional[str] = None
    voice: Optional[str] = None
    target_seconds: Optional[float] = None
    captions: Optional[str] = "words"
    # Main content can be a previously produced video instead of the text stream
    main_video_path: Optional[str] = None
    video_fit: str = "fit"
    # Avatar: path, URL, or generated through the image collaborator
    avatar_source: Optional[str] = None
    generate_avatar: bool = False
    avatar_position: str = "bottom-right"
    avatar_size: float = 25.0
    avatar_circular: bool = False
    # Thumbnail preroll: an image or a generated title card
    thumbnail_title: Optional[str] = None
    thumbnail_image_path: Optional[str] = None
    display_name: Optional[str] = None


def build_plan(
    config: RenderConfig,
    request: ProduceRequest,
    report: Callable[[str], None] = print,
) -> RenderPlan:
    """Run the collaborators a request needs and assemble the render plan"""
    plan = RenderPlan.for_text(request.text, request.file_name, request.language)
    plan.with_theme(request.theme)

    if request.main_video_path:
        plan.with_video(MediaResource.from_file(request.main_video_path), fit=request.video_fit)

    if request.narration_path:
        plan.with_narration(MediaResource.from_file(request.narration_path), script=request.script)
    elif request.narrate or request.script:
        script = request.script
        if not script:
            report("Generating narration script...")
            target = request.target_seconds or len(request.text) / config.chars_per_second
            writer = ScriptWriter(groq_api_key=config.groq_api_key, xai_api_key=config.xai_api_key)
            script = writer.generate(request.text, target, request.language, request.file_name)
        report("Synthesizing narration...")
        synthesizer = NarrationSynthesizer(config.elevenlabs_api_key, config.default_voice)
        audio = synthesizer.synthesize(script, request.voice)
        plan.with_narration(MediaResource(audio, synthesizer.mime_type, "narration.mp3"), script=script)

    if request.captions and plan.script:
        plan.with_auto_captions(request.captions)

    if request.generate_avatar or request.avatar_source:
        source = request.avatar_source
        name = Path(source).name if source else "generated-avatar.png"
        if request.generate_avatar:
            report("Generating avatar image...")
            source = ImageGenerator(config.xai_api_key).generate()
        plan.with_avatar(Avatar(
            source=source,
            position=request.avatar_position,
            size_percent=request.avatar_size,
            circular=request.avatar_circular,
            name=name,
        ))

    if request.thumbnail_image_path or request.thumbnail_title:
        image = Path(request.thumbnail_image_path).read_bytes() if request.thumbnail_image_path else None
        plan.with_preroll(ThumbnailPreroll(
            image=image,
            title=request.thumbnail_title,
            subtitle=request.language if image is None else None,
            hold_seconds=config.preroll_seconds,
        ))
    return plan


def record_metadata(
    plan: RenderPlan,
    artifact: OutputArtifact,
    display_name: Optional[str] = None,
    social: Optional[dict] = None,
) -> dict:
    metadata = {
        "filename": plan.output_filename(),
        "original_filename": plan.file_name,
        "display_name": display_name,
        "language": plan.language,
        "duration": artifact.duration_seconds,
        "mime_type": artifact.mime_type,
        "negotiated_mime_type": artifact.negotiated_mime_type,
        "original_file_content": plan.text,
    }
    if social:
        metadata["title"] = social.get("title")
        metadata["description"] = social.get("description")
    if plan.script:
        metadata["script"] = plan.script
    if plan.captions:
        metadata["captions"] = [caption.to_dict() for caption in plan.captions]
    if plan.avatar is not None:
        metadata["avatar"] = {
            "name": plan.avatar.name,
            "position": plan.avatar.position.value,
            "size": plan.avatar.size_percent,
            "circular": plan.avatar.circular,
        }
    return metadata


def produce(
    config: RenderConfig,
    request: ProduceRequest,
    store: Optional[VideoStore] = None,
    progress_callback: Optional[Callable[[int, str], None]] = None,
    cancel_event: Optional[threading.Event] = None,
    **controller_kwargs,
) -> Tuple[Optional[int], OutputArtifact, RenderPlan]:
    """
    Build the plan, render it and save the artifact.

    Returns:
        Tuple of (record id or None when no store is given, artifact, plan)
    """
    def report(message: str):
        print(f"      [Studio] {message}")
        if progress_callback:
            progress_callback(0, message)

    plan = build_plan(config, request, report)
    controller = RenderController(
        config, plan,
        progress_callback=progress_callback,
        cancel_event=cancel_event,
        **controller_kwargs,
    )
    artifact = asyncio.run(controller.run())

    record_id = None
    if store is not None and request.generate_avatar and isinstance(plan.avatar.source, bytes):
        store.save("avatar", {
            "filename": "generated-avatar.png",
            "display_name": "AI Generated Penguin",
            "mime_type": "image/png",
            "avatar_type": "generated",
        }, plan.avatar.source)
    if store is not None:
        print("      [Studio] Writing title and description...")
        writer = ScriptWriter(groq_api_key=config.groq_api_key, xai_api_key=config.xai_api_key)
        social = writer.generate_social_metadata(plan.language, plan.script or "", plan.file_name)
        metadata = record_metadata(plan, artifact, request.display_name, social)
        record_id = store.save(plan.kind.value, metadata, artifact.data)
    return record_id, artifact, plan
