"""
Welcome banner (message of the day).

The template may contain ``{{VERSION}}``, ``{{HOST}}`` and ``{{PORT}}``.
They are substituted once at startup; sessions only ever see the rendered
text.
"""

import logging
from pathlib import Path
from typing import Union


logger = logging.getLogger(__name__)

DEFAULT_MOTD = """\
*********************************************
*   Welcome to the board (v{{VERSION}})
*   {{HOST}}:{{PORT}}
*
*   Type 'help' for a list of commands.
*********************************************
"""


def render_motd(template: str, version: str, host: str, port: int) -> str:
    text = (
        template.replace("{{VERSION}}", version)
        .replace("{{HOST}}", host)
        .replace("{{PORT}}", str(port))
    )
    if not text.endswith("\n"):
        text += "\n"
    return text


def load_motd(path: Union[str, Path], version: str, host: str, port: int) -> str:
    """
    Read and render the banner template at ``path``.

    Falls back to DEFAULT_MOTD when no path is given, or the file does not
    exist or cannot be read.
    """
    if not path:
        return render_motd(DEFAULT_MOTD, version, host, port)
    try:
        template = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.debug(f"No MOTD at {path}, using the built-in banner")
        template = DEFAULT_MOTD
    except OSError as e:
        logger.warning(f"Could not read MOTD {path}: {e}")
        template = DEFAULT_MOTD
    return render_motd(template, version, host, port)
