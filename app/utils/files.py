"""
Filename and content-type helpers for stored XenBox files.
"""
import mimetypes
import re

DEFAULT_MIME_TYPE = "application/octet-stream"
MAX_FILENAME_LENGTH = 255

# Path separators and control characters never reach the catalog
_UNSAFE_CHARS = re.compile(r'[\x00-\x1f\x7f/\\]')


def sanitize_filename(filename: str) -> str:
    """
    Reduce a client-supplied filename to a safe display name.

    Drops any directory components, strips control characters and caps the
    length while keeping the extension.

    Examples:
        >>> sanitize_filename("../../etc/passwd")
        'passwd'
        >>> sanitize_filename("  report.pdf ")
        'report.pdf'
    """
    name = re.split(r"[/\\]", filename)[-1]
    name = _UNSAFE_CHARS.sub("", name).strip().strip(".")

    if not name:
        return "file"

    if len(name) > MAX_FILENAME_LENGTH:
        stem, dot, ext = name.rpartition(".")
        if dot and 0 < len(ext) <= 16:
            name = stem[: MAX_FILENAME_LENGTH - len(ext) - 1] + "." + ext
        else:
            name = name[:MAX_FILENAME_LENGTH]

    return name


def detect_mime_type(filename: str) -> str:
    """Guess the MIME type from the extension, defaulting to octet-stream."""
    mime_type, _ = mimetypes.guess_type(filename, strict=False)
    return mime_type or DEFAULT_MIME_TYPE


def format_file_size(size: int) -> str:
    """
    Format a byte count for human-readable messages.

    Examples:
        >>> format_file_size(1536)
        '1.50 KB'
    """
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if abs(value) < 1024:
            return f"{int(value)} {unit}" if unit == "B" else f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} TB"
