"""
Configuration settings for code stream video rendering
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

# Video dimensions (Portrait 9:16 format for Shorts/Reels/TikTok)
VIDEO_WIDTH = 720
VIDEO_HEIGHT = 1280

# Video settings
FPS = 30
SLICE_INTERVAL = 0.1  # seconds of capture time per buffered chunk
PREROLL_SECONDS = 1.0
AVATAR_LOAD_TIMEOUT = 10.0

# Text stream settings
DEFAULT_STREAM_SPEED = 50  # 1..100, higher reveals faster
CODE_FONT_SIZE = 18
CODE_LINE_HEIGHT = 32
CODE_PADDING = 24
GUTTER_WIDTH = 80

# Encoding settings
VIDEO_BITRATE = "4000k"
AUDIO_BITRATE = "128k"
ENCODER_PRESET = "ultrafast"
AUDIO_FPS = 44100

# Narration settings
DEFAULT_VOICE = "en"
WORDS_PER_MINUTE = 155

# Output settings (use environment variables for cloud deployment)
OUTPUT_DIR = os.environ.get("OUTPUT_DIR", "output")
TEMP_DIR = os.environ.get("TEMP_DIR", "temp")
DB_PATH = os.environ.get("CODESTREAM_DB", "codestream.db")


@dataclass
class RenderConfig:
    """Everything a render run needs, passed explicitly instead of read from globals"""
    width: int = VIDEO_WIDTH
    height: int = VIDEO_HEIGHT
    fps: int = FPS
    slice_interval: float = SLICE_INTERVAL
    preroll_seconds: float = PREROLL_SECONDS
    avatar_timeout: float = AVATAR_LOAD_TIMEOUT
    stream_speed: int = DEFAULT_STREAM_SPEED
    video_bitrate: str = VIDEO_BITRATE
    audio_bitrate: str = AUDIO_BITRATE
    preset: str = ENCODER_PRESET
    temp_dir: Path = field(default_factory=lambda: Path(TEMP_DIR))
    output_dir: Path = field(default_factory=lambda: Path(OUTPUT_DIR))
    db_path: Path = field(default_factory=lambda: Path(DB_PATH))
    elevenlabs_api_key: Optional[str] = None
    xai_api_key: Optional[str] = None
    groq_api_key: Optional[str] = None
    default_voice: str = DEFAULT_VOICE

    def __post_init__(self):
        self.temp_dir = Path(self.temp_dir)
        self.output_dir = Path(self.output_dir)
        self.db_path = Path(self.db_path)
        if not 1 <= self.stream_speed <= 100:
            raise ValueError(f"stream_speed must be in 1..100, got {self.stream_speed}")
        if self.fps <= 0:
            raise ValueError(f"fps must be positive, got {self.fps}")

    @property
    def frame_size(self):
        return (self.width, self.height)

    @property
    def chars_per_second(self) -> float:
        """Reveal rate for a text-only stream (one character every 101 - speed ms)"""
        return 1000.0 / (101 - self.stream_speed)

    def ensure_dirs(self):
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls, **overrides) -> "RenderConfig":
        """
        Build a config from environment variables.

        Entry points call load_dotenv() first; nothing below the entry
        points reads the environment.
        """
        values = dict(
            fps=int(os.environ.get("CODESTREAM_FPS", FPS)),
            stream_speed=int(os.environ.get("CODESTREAM_SPEED", DEFAULT_STREAM_SPEED)),
            preroll_seconds=float(os.environ.get("CODESTREAM_PREROLL_SECONDS", PREROLL_SECONDS)),
            temp_dir=os.environ.get("TEMP_DIR", TEMP_DIR),
            output_dir=os.environ.get("OUTPUT_DIR", OUTPUT_DIR),
            db_path=os.environ.get("CODESTREAM_DB", DB_PATH),
            elevenlabs_api_key=os.environ.get("ELEVENLABS_API_KEY") or None,
            xai_api_key=os.environ.get("XAI_API_KEY") or None,
            groq_api_key=os.environ.get("GROQ_API_KEY") or None,
            default_voice=os.environ.get("CODESTREAM_VOICE", DEFAULT_VOICE),
        )
        values.update(overrides)
        return cls(**values)
