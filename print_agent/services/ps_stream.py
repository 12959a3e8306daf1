import logging
import re
from typing import Dict, List, Optional

from print_agent.models import PpdOption
from print_agent.services.ppd_parser import COPIES, ORIENTATION, PAGE_SIZE

logger = logging.getLogger(__name__)

UEL = "\x1b%-12345X"
FORM_FEED = "\x0c"
LINE_ADVANCE = 14

_PAGE_DIMENSIONS = {
    "A4": "[595 842]",
    "Legal": "[612 1008]",
}
_LETTER = "[612 792]"

_LINE_BREAK = re.compile(r"\r\n|\n|\r")


def page_size_code(choice: str) -> str:
    dims = _PAGE_DIMENSIONS.get(choice, _LETTER)
    return f"<< /PageSize {dims} /ImagingBBox null >> setpagedevice"


def orientation_code(choice: str) -> str:
    value = 1 if choice == "Landscape" else 0
    return f"<< /Orientation {value} >> setpagedevice"


def _copies(selected: Dict[str, str]) -> Optional[int]:
    try:
        n = int(selected.get(COPIES, "").strip())
    except ValueError:
        return None
    return n if n > 1 else None


def _find_option(options: List[PpdOption], keyword: str) -> Optional[PpdOption]:
    wanted = keyword.lower()
    return next((o for o in options if o.keyword.lower() == wanted), None)


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


# -----------------------------
# Segments
# -----------------------------
def _pjl_header(job_name: str, selected: Dict[str, str]) -> List[str]:
    lines = [UEL, f'@PJL JOB NAME="{job_name}"']
    copies = _copies(selected)
    if copies:
        lines.append(f"@PJL SET COPIES={copies}")
    return lines


def _feature(keyword: str, choice: Optional[str], code: str) -> List[str]:
    begin = f"%%BeginFeature: *{keyword} {choice}" if choice else f"%%BeginFeature: *{keyword}"
    return ["featurebegin{", begin, code, "%%EndFeature", "}featurecleanup"]


def _setup(options: List[PpdOption], selected: Dict[str, str]) -> List[str]:
    lines = ["%%BeginSetup"]

    if PAGE_SIZE in selected:
        lines += _feature(PAGE_SIZE, None, page_size_code(selected[PAGE_SIZE]))
    if ORIENTATION in selected:
        lines += _feature(ORIENTATION, None, orientation_code(selected[ORIENTATION]))

    for keyword, choice_keyword in selected.items():
        if keyword in (PAGE_SIZE, ORIENTATION, COPIES):
            continue
        option = _find_option(options, keyword)
        choice = option.find_choice(choice_keyword) if option else None
        if choice is None or not choice.invocation_code.strip():
            logger.debug("No invocation code for %s=%s, skipping", keyword, choice_keyword)
            continue
        lines += _feature(option.keyword, choice.keyword, choice.invocation_code)

    lines.append("%%EndSetup")
    return lines


def _body(file_bytes: bytes) -> List[str]:
    lines = [
        "userdict begin /ehsave save def end",
        "%%Page: 1 1",
        "/Courier findfont 12 scalefont setfont",
        "72 720 moveto",
    ]
    text = file_bytes.decode("utf-8", errors="replace")
    for line in _LINE_BREAK.split(text):
        lines.append(f"({_escape(line)}) show")
        lines.append(f"0 -{LINE_ADVANCE} rmoveto")
    lines += ["showpage", "ehsave restore"]
    return lines


def generate(
    driver_options: List[PpdOption],
    selected_options: Dict[str, str],
    job_name: str,
    page_language: str,
    file_bytes: bytes,
) -> bytes:
    """
    Build the PJL + PostScript stream for one job.

    The input file is rendered as plain text, one `show` per line. Non-ASCII
    characters become "?" in the output. Backslashes in the text are doubled
    along with the parentheses, so a line holding "\\" differs from a stream
    that only escapes parentheses.
    """
    lines: List[str] = []
    lines += _pjl_header(job_name, selected_options)
    lines += [
        f"@PJL ENTER LANGUAGE={page_language}",
        "%!PS-Adobe-3.0",
        "%%EndComments",
        "",
    ]
    lines += _setup(driver_options, selected_options)
    lines.append("")
    lines += _body(file_bytes)
    lines.append("%%EOF")
    lines.append(f"{FORM_FEED}{UEL}")
    lines.append("@PJL EOJ")

    stream = "\n".join(lines) + "\n"
    return stream.encode("ascii", errors="replace")
