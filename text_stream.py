"""
Text stream renderer - the animated, syntax-coloured code reveal
"""

import math
import os
import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Tuple

from PIL import Image, ImageColor, ImageDraw, ImageFont

from config import (
    VIDEO_WIDTH, VIDEO_HEIGHT,
    CODE_FONT_SIZE, CODE_LINE_HEIGHT, CODE_PADDING, GUTTER_WIDTH,
)


FONT_CANDIDATES = {
    "mono": [
        "/usr/share/fonts/truetype/dejavu/DejaVuSansMono.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationMono-Regular.ttf",
        "/usr/share/fonts/truetype/freefont/FreeMono.ttf",
        "C:/Windows/Fonts/consola.ttf",
        "C:/Windows/Fonts/cour.ttf",
    ],
    "bold": [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
        "/usr/share/fonts/truetype/freefont/FreeSansBold.ttf",
        "C:/Windows/Fonts/arialbd.ttf",
        "C:/Windows/Fonts/impact.ttf",
    ],
    "regular": [
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
        "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
        "C:/Windows/Fonts/arial.ttf",
    ],
}


@lru_cache(maxsize=None)
def load_font(size: int, style: str = "bold"):
    """Get a TrueType font of the given style, falling back to Pillow's bundled font"""
    for path in FONT_CANDIDATES[style]:
        if os.path.exists(path):
            try:
                return ImageFont.truetype(path, size)
            except OSError:
                continue
    return ImageFont.load_default(size=size)


# ============================================================================
# COLOUR THEMES
# ============================================================================

@dataclass(frozen=True)
class ColorScheme:
    keywords: str = "#FF6B9D"
    operators: str = "#4ECDC4"
    strings: str = "#95E1D3"
    numbers: str = "#FFE66D"
    comments: str = "#A8A8A8"
    classes: str = "#FF8C42"
    functions: str = "#6BCF7F"
    background: str = "#0A0A0A"
    text: str = "#FFFFFF"
    line_numbers: str = "#4ECDC4"
    cursor: str = "#FF6B9D"

    def rgb(self, attr: str) -> Tuple[int, int, int]:
        return ImageColor.getrgb(getattr(self, attr))[:3]


THEMES = {
    "Cyberpunk": ColorScheme(),
    "Ocean": ColorScheme(
        keywords="#61DAFB", operators="#82AAFF", strings="#C3E88D",
        numbers="#F78C6C", comments="#546E7A", classes="#FFCB6B",
        functions="#89DDFF", background="#0F1419", text="#FFFFFF",
        line_numbers="#82AAFF", cursor="#61DAFB",
    ),
    "Sunset": ColorScheme(
        keywords="#FF5370", operators="#F07178", strings="#C3E88D",
        numbers="#F78C6C", comments="#697098", classes="#FFCB6B",
        functions="#82AAFF", background="#1A1A2E", text="#EEFFFF",
        line_numbers="#F07178", cursor="#FF5370",
    ),
    "Forest": ColorScheme(
        keywords="#98C379", operators="#56B6C2", strings="#E06C75",
        numbers="#D19A66", comments="#5C6370", classes="#E5C07B",
        functions="#61AFEF", background="#1E2127", text="#ABB2BF",
        line_numbers="#56B6C2", cursor="#98C379",
    ),
}

DEFAULT_THEME = "Cyberpunk"


def get_theme(name: Optional[str]) -> ColorScheme:
    if not name:
        return THEMES[DEFAULT_THEME]
    for theme_name, scheme in THEMES.items():
        if theme_name.lower() == name.lower():
            return scheme
    raise ValueError(f"Unknown theme {name!r}; choose from {', '.join(THEMES)}")


# ============================================================================
# TOKENIZER
# ============================================================================

class TokenKind(str, Enum):
    KEYWORD = "keywords"
    OPERATOR = "operators"
    STRING = "strings"
    NUMBER = "numbers"
    COMMENT = "comments"
    CLASS = "classes"
    FUNCTION = "functions"
    TEXT = "text"


# One list for every language: this is a highlighter, not a lexer
KEYWORDS = frozenset({
    "abstract", "and", "as", "async", "await", "bool", "boolean", "break",
    "case", "catch", "char", "class", "const", "continue", "def", "default",
    "defer", "del", "delete", "do", "double", "elif", "else", "enum", "except",
    "export", "extends", "false", "final", "finally", "float", "fn", "for",
    "from", "func", "function", "go", "global", "if", "impl", "implements",
    "import", "in", "instanceof", "int", "interface", "is", "lambda", "let",
    "long", "match", "mod", "mut", "new", "nil", "none", "not", "null", "of",
    "or", "package", "pass", "private", "protected", "pub", "public", "raise",
    "return", "self", "static", "string", "struct", "super", "switch", "this",
    "throw", "throws", "trait", "true", "try", "type", "typeof", "undefined",
    "use", "var", "void", "while", "with", "yield",
})

TOKEN_PATTERN = re.compile(r"""
    (?P<space>\s+)
  | (?P<comment>//.*|\#.*|/\*.*?(?:\*/|$))
  | (?P<string>"(?:\\.|[^"\\])*"?|'(?:\\.|[^'\\])*'?|`(?:\\.|[^`\\])*`?)
  | (?P<number>\b0[xX][0-9a-fA-F]+\b|\b\d+(?:\.\d+)?(?:[eE][+-]?\d+)?\b)
  | (?P<word>[A-Za-z_$][\w$]*)
  | (?P<operator>===|!==|==|!=|<=|>=|=>|->|&&|\|\||\+\+|--|\*\*|::|[-+*/%=<>!&|^~?:])
  | (?P<other>.)
""", re.VERBOSE)

_GROUP_KINDS = {
    "comment": TokenKind.COMMENT,
    "string": TokenKind.STRING,
    "number": TokenKind.NUMBER,
    "operator": TokenKind.OPERATOR,
}


@dataclass(frozen=True)
class Token:
    text: str
    kind: TokenKind


def tokenize_line(line: str) -> List[Token]:
    """Split one physical line into coloured tokens; joining the texts gives the line back"""
    matches = [(m.lastgroup, m.group()) for m in TOKEN_PATTERN.finditer(line)]
    tokens = []
    for i, (group, text) in enumerate(matches):
        if group == "word":
            next_text = matches[i + 1][1] if i + 1 < len(matches) else ""
            if text.lower() in KEYWORDS:
                kind = TokenKind.KEYWORD
            elif text[0].isupper():
                kind = TokenKind.CLASS
            elif next_text == "(":
                kind = TokenKind.FUNCTION
            else:
                kind = TokenKind.TEXT
        else:
            kind = _GROUP_KINDS.get(group, TokenKind.TEXT)
        tokens.append(Token(text, kind))
    return tokens


# ============================================================================
# WORD WRAP
# ============================================================================

def _break_long_word(word: str, max_width: float, measure: Callable[[str], float]) -> List[str]:
    """Hard-break a single word that is wider than the line, no hyphenation"""
    pieces, current = [], ""
    for ch in word:
        if current and measure(current + ch) > max_width:
            pieces.append(current)
            current = ch
        else:
            current += ch
    if current:
        pieces.append(current)
    return pieces


def wrap_text(text: str, max_width: float, measure: Callable[[str], float]) -> List[str]:
    """
    Greedy word wrap.

    Lines that already fit come back unchanged as a single line. Words are
    never split unless a single word is wider than max_width by itself;
    whitespace at a break point is dropped, leading indentation is kept.
    """
    if measure(text) <= max_width:
        return [text]

    lines: List[str] = []
    current = ""
    for piece in re.findall(r"\s+|\S+", text):
        candidate = current + piece
        if measure(candidate) <= max_width:
            current = candidate
            continue
        if piece.isspace():
            if current.strip():
                lines.append(current)
            current = ""
            continue
        if current.strip():
            lines.append(current.rstrip())
        current = ""
        if measure(piece) <= max_width:
            current = piece
        else:
            *full, current = _break_long_word(piece, max_width, measure)
            lines.extend(full)
    if current.strip() or not lines:
        lines.append(current)
    return lines


@dataclass(frozen=True)
class WrappedLine:
    number: Optional[int]  # logical line number, only on the first physical line
    text: str


# ============================================================================
# RENDERER
# ============================================================================

class TextStreamRenderer:
    """Reveals source text character by character onto the drawing surface"""

    def __init__(
        self,
        text: str,
        theme: Optional[ColorScheme] = None,
        width: int = VIDEO_WIDTH,
        height: int = VIDEO_HEIGHT,
        font_size: int = CODE_FONT_SIZE,
        line_height: int = CODE_LINE_HEIGHT,
        padding: int = CODE_PADDING,
        gutter_width: int = GUTTER_WIDTH,
    ):
        self.text = text.replace("\r\n", "\n").replace("\t", "    ")
        self.theme = theme or THEMES[DEFAULT_THEME]
        self.width = width
        self.height = height
        self.font_size = font_size
        self.line_height = line_height
        self.padding = padding
        self.gutter_width = gutter_width
        self.font = load_font(font_size, "mono")
        self.revealed = 0
        self._wrap_cache: Dict[int, Tuple[str, List[str]]] = {}

    @property
    def total_chars(self) -> int:
        return len(self.text)

    @property
    def is_complete(self) -> bool:
        return self.revealed >= self.total_chars

    @property
    def code_x(self) -> int:
        return self.padding + self.gutter_width

    @property
    def max_line_width(self) -> int:
        return self.width - self.code_x - self.padding

    @property
    def viewport_lines(self) -> int:
        return max(1, (self.height - self.padding * 2) // self.line_height)

    def measure(self, text: str) -> float:
        return self.font.getlength(text)

    def advance(self, revealed_count: int):
        """Set how much of the text is visible; the count never goes backwards within a run"""
        revealed_count = min(max(int(revealed_count), 0), self.total_chars)
        if revealed_count < self.revealed:
            raise ValueError(
                f"reveal count went backwards ({self.revealed} -> {revealed_count})"
            )
        self.revealed = revealed_count

    def wrapped_lines(self) -> List[WrappedLine]:
        visible_text = self.text[:self.revealed]
        if not visible_text:
            return []
        wrapped = []
        for index, logical in enumerate(visible_text.split("\n")):
            cached = self._wrap_cache.get(index)
            if cached is None or cached[0] != logical:
                # Only the line still being revealed changes between frames
                cached = (logical, wrap_text(logical, self.max_line_width, self.measure))
                self._wrap_cache[index] = cached
            for i, physical in enumerate(cached[1]):
                wrapped.append(WrappedLine(index + 1 if i == 0 else None, physical))
        return wrapped

    def visible_lines(self, viewport_lines: Optional[int] = None) -> List[WrappedLine]:
        """Auto-scroll: the last `viewport_lines` wrapped lines"""
        n = viewport_lines or self.viewport_lines
        return self.wrapped_lines()[-n:]

    def render(self, surface: Image.Image, viewport_lines: Optional[int] = None, clock_ms: float = 0.0):
        draw = ImageDraw.Draw(surface)

        if self.revealed == 0:
            placeholder = load_font(24, "mono")
            draw.text(
                (self.width / 2, self.height / 2), "Ready to stream...",
                font=placeholder, fill=(107, 114, 128), anchor="mm",
            )
            return

        visible = self.visible_lines(viewport_lines)
        y = self.padding
        for line in visible:
            if line.number is not None:
                draw.text(
                    (self.padding, y), f"{line.number:>3}",
                    font=self.font, fill=self.theme.rgb("line_numbers"),
                )
            x = self.code_x
            for token in tokenize_line(line.text):
                if not token.text.isspace():
                    draw.text((x, y), token.text, font=self.font, fill=self.theme.rgb(token.kind.value))
                x += self.measure(token.text)
            y += self.line_height

        if not self.is_complete and visible:
            self._draw_cursor(draw, visible, clock_ms)

    def _draw_cursor(self, draw: ImageDraw.ImageDraw, visible: List[WrappedLine], clock_ms: float):
        """Blinking cursor after the last visible line; opacity follows the clock, not the reveal"""
        opacity = math.sin(clock_ms * 0.005) * 0.5 + 0.5
        cursor = self.theme.rgb("cursor")
        background = self.theme.rgb("background")
        fill = tuple(round(c * opacity + b * (1 - opacity)) for c, b in zip(cursor, background))

        row = len(visible) - 1
        x = self.code_x + self.measure(visible[-1].text) + 5
        top = self.padding + row * self.line_height + (self.line_height - self.font_size) / 2
        draw.rectangle([x, top, x + 3, top + self.font_size], fill=fill)
