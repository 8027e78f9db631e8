"""Platform-aware absolute path checks and parent directory derivation.

Pod paths are validated on the webhook host, which is always Linux, so
the host's ``os.path`` cannot be used for Windows-targeted pods. Both
flavours are implemented here as pure functions keyed on ``windows``.
"""

POSIX_SEPARATOR = "/"
WINDOWS_SEPARATOR = "\\"


def separator(*, windows: bool) -> str:
    """Return the path separator for the target platform."""
    return WINDOWS_SEPARATOR if windows else POSIX_SEPARATOR


def _is_windows_slash(char: str) -> bool:
    return char in ("\\", "/")


def _windows_volume_name_length(path: str) -> int:
    """Return the length of the leading volume name of a Windows path.

    Handles drive letters (``C:``) and UNC shares (``\\\\server\\share``).

    Args:
        path: The Windows path to inspect.

    Returns:
        The number of characters forming the volume name, 0 if there is none.

    """
    if len(path) >= 2 and path[1] == ":" and path[0].isascii() and path[0].isalpha():
        return 2

    if len(path) >= 2 and _is_windows_slash(path[0]) and _is_windows_slash(path[1]):
        # \\server\share: server and share must both be present and non-empty
        rest = path[2:]
        server_end = next((i for i, c in enumerate(rest) if _is_windows_slash(c)), -1)
        if server_end <= 0:
            return 0
        share = rest[server_end + 1 :]
        share_end = next((i for i, c in enumerate(share) if _is_windows_slash(c)), len(share))
        if share_end == 0:
            return 0
        return 2 + server_end + 1 + share_end

    return 0


def is_windows_abs(path: str) -> bool:
    """Report whether a path is absolute under Windows rules.

    A drive letter must be followed by a separator (``C:\\data``); a bare
    ``C:data`` is drive-relative. UNC paths are always absolute.

    Args:
        path: The path to check.

    Returns:
        True if the path is absolute.

    """
    volume_length = _windows_volume_name_length(path)
    if volume_length == 0:
        return False
    if volume_length > 2:
        return True
    rest = path[volume_length:]
    return bool(rest) and _is_windows_slash(rest[0])


def is_posix_abs(path: str) -> bool:
    """Report whether a path is absolute under POSIX rules."""
    return path.startswith(POSIX_SEPARATOR)


def is_abs(path: str, *, windows: bool) -> bool:
    """Report whether a path is absolute on the target platform.

    Args:
        path: The path to check.
        windows: Whether the path targets a Windows container.

    Returns:
        True if the path is absolute.

    """
    return is_windows_abs(path) if windows else is_posix_abs(path)


def dirname(path: str, *, windows: bool) -> str:
    """Return the parent directory of a path on the target platform.

    Trailing separators are ignored, the root (``/``, ``C:\\``) is its own
    parent and a bare UNC share (``\\\\server\\share``) is returned as-is.

    Args:
        path: The path to derive the parent from.
        windows: Whether the path targets a Windows container.

    Returns:
        The parent directory, or ``.`` for a path without any separator.

    """
    sep = separator(windows=windows)

    if not path:
        return "."

    path = path.rstrip(sep)
    if not path:
        return sep

    if windows and len(path) == 2 and path[1] == ":":
        return path + sep

    if windows and path.startswith(sep * 2):
        parts = path[2:].split(sep, 2)
        if len(parts) <= 2:
            return path

    last_sep = path.rfind(sep)
    if last_sep == -1:
        return "."
    if last_sep == 0:
        return sep
    if windows and last_sep == 2 and path[1] == ":":
        return path[:3]

    return path[:last_sep]


def segments(path: str, *, windows: bool) -> list[str]:
    """Return the non-empty segments of a path below its root.

    The Windows volume name (drive letter or UNC share) is not a segment,
    and repeated or trailing separators do not produce empty ones.

    Args:
        path: The path to split.
        windows: Whether the path targets a Windows container.

    Returns:
        The segments in order.

    """
    if windows:
        path = path[_windows_volume_name_length(path) :]
    return [part for part in path.split(separator(windows=windows)) if part]


def join(base: str, *parts: str, windows: bool) -> str:
    """Join path segments with the target platform's separator.

    Args:
        base: The leading path.
        *parts: Further segments; separators at their edges are collapsed.
        windows: Whether the path targets a Windows container.

    Returns:
        The joined path.

    """
    sep = separator(windows=windows)
    joined = base
    for part in parts:
        part = part.strip(sep)
        if not part:
            continue
        joined = f"{joined.rstrip(sep)}{sep}{part}"
    return joined
