"""
PostScript Printer Description (PPD) option extraction.

Only the *OpenUI / *CloseUI blocks are read. Each block becomes a PpdOption
whose choices carry the PostScript fragment the driver wants injected when
that choice is selected.
"""
import logging
import re
from typing import BinaryIO, List, Optional, Tuple, Union

from print_agent.models import PpdChoice, PpdOption

logger = logging.getLogger(__name__)

DRIVER_OPTION_ORDER = 100

PAGE_SIZE = "PageSize"
ORIENTATION = "Orientation"
COPIES = "Copies"

_LINE_BREAK = re.compile(r"\r\n|\n|\r")


def _read_lines(source: Union[bytes, str, BinaryIO]) -> List[str]:
    if hasattr(source, "read"):
        source = source.read()
    if isinstance(source, bytes):
        source = source.decode("utf-8", errors="replace")
    return _LINE_BREAK.split(source)


def _parse_open_ui(line: str) -> Optional[Tuple[str, str]]:
    # *OpenUI *PageSize/Page Size: PickOne
    head = line[len("*OpenUI"):].split(":", 1)[0].strip().lstrip("*")
    keyword, _, display = head.partition("/")
    keyword = keyword.strip()
    if not keyword:
        return None
    return keyword, display.strip() or keyword


def _is_choice_line(line: str, prefix: str) -> bool:
    if not line.lower().startswith(prefix.lower()):
        return False
    rest = line[len(prefix):]
    return rest[:1].isspace()


def _parse_choice(lines: List[str], i: int, prefix_len: int) -> Tuple[PpdChoice, int]:
    """
    Parse the choice that starts at lines[i].

    Returns the choice and the index of the first line after it. The code
    may run over several lines; those are joined with single spaces.
    """
    rest = lines[i].strip()[prefix_len:].strip()
    head, sep, code = rest.partition(":")
    if not sep:
        raise ValueError(f"choice line without ':' -> {lines[i].strip()!r}")

    keyword, _, display = head.partition("/")
    keyword = keyword.strip()
    if not keyword:
        raise ValueError(f"choice line without keyword -> {lines[i].strip()!r}")

    code = code.strip()
    i += 1
    if code.startswith('"'):
        body = code[1:]
        if body.endswith('"'):
            code = body[:-1]
        else:
            parts = [body] if body else []
            while i < len(lines) and not lines[i].strip().startswith("*"):
                part = lines[i].strip()
                if part:
                    parts.append(part)
                i += 1
            code = " ".join(parts)
            if code.endswith('"'):
                code = code[:-1]
            code = code.strip()

    return PpdChoice(keyword=keyword, display_name=display.strip() or keyword,
                     invocation_code=code), i


def _parse_option(lines: List[str], start: int) -> Tuple[Optional[PpdOption], int]:
    header = _parse_open_ui(lines[start].strip())
    if header is None:
        logger.warning("Skipping *OpenUI without keyword at line %d", start + 1)
        return None, start + 1
    keyword, display_name = header

    choice_prefix = f"*{keyword}"
    default_prefix = f"*Default{keyword}:".lower()
    default_choice = ""
    choices: List[PpdChoice] = []

    i = start + 1
    while i < len(lines):
        line = lines[i].strip()
        if line.lower().startswith("*closeui"):
            i += 1
            break
        if line.lower().startswith(default_prefix):
            default_choice = line.split(":", 1)[1].strip()
            i += 1
        elif _is_choice_line(line, choice_prefix):
            try:
                choice, i = _parse_choice(lines, i, len(choice_prefix))
                choices.append(choice)
            except (ValueError, IndexError) as e:
                logger.warning("Skipping malformed %s choice at line %d: %s", keyword, i + 1, e)
                i += 1
        else:
            i += 1

    if not choices:
        logger.debug("Dropping option %s with no choices", keyword)
        return None, i

    return PpdOption(
        keyword=keyword,
        display_name=display_name,
        default_choice=default_choice,
        display_order=DRIVER_OPTION_ORDER,
        choices=choices,
    ), i


def parse(source: Union[bytes, str, BinaryIO]) -> List[PpdOption]:
    """Options in file order. Never raises on malformed content."""
    lines = _read_lines(source)
    options: List[PpdOption] = []
    seen = set()

    i = 0
    while i < len(lines):
        if not lines[i].strip().lower().startswith("*openui"):
            i += 1
            continue
        option, i = _parse_option(lines, i)
        if option is None:
            continue
        if option.keyword.lower() in seen:
            logger.debug("Ignoring repeated option %s", option.keyword)
            continue
        seen.add(option.keyword.lower())
        options.append(option)

    return options


# -----------------------------
# Synthetic options
# -----------------------------
def synthetic_options() -> List[PpdOption]:
    return [
        PpdOption(
            keyword=PAGE_SIZE,
            display_name="Page Size",
            default_choice="Letter",
            display_order=1,
            choices=[
                PpdChoice(keyword="Letter", display_name="Letter (8.5 x 11 in)"),
                PpdChoice(keyword="A4", display_name="A4 (210 x 297 mm)"),
                PpdChoice(keyword="Legal", display_name="Legal (8.5 x 14 in)"),
            ],
        ),
        PpdOption(
            keyword=ORIENTATION,
            display_name="Orientation",
            default_choice="Portrait",
            display_order=2,
            choices=[
                PpdChoice(keyword="Portrait", display_name="Portrait"),
                PpdChoice(keyword="Landscape", display_name="Landscape"),
            ],
        ),
        PpdOption(
            keyword=COPIES,
            display_name="Copies",
            default_choice="1",
            display_order=3,
            choices=[PpdChoice(keyword=str(n), display_name=str(n)) for n in range(1, 21)],
        ),
    ]


def with_synthetic_options(options: List[PpdOption]) -> List[PpdOption]:
    """Add PageSize, Orientation and Copies where the driver lacks them, sorted by display order."""
    present = {o.keyword.lower() for o in options}
    merged = list(options)
    for option in synthetic_options():
        if option.keyword.lower() not in present:
            merged.append(option)
    return sorted(merged, key=lambda o: o.display_order)
