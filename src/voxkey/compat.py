"""
Platform-specific utilities for cross-platform compatibility.

Provides abstractions for Windows/macOS/Linux differences:
- Single-instance locking (Windows mutex vs file lock)
- Clipboard fallback (clip.exe vs pbcopy vs xclip/wl-copy)
- System automation paste (PowerShell SendKeys vs osascript vs xdotool)
- Accessibility permission check for synthetic keystrokes
- Default compute device selection
"""

import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == 'win32'
IS_MACOS = sys.platform == 'darwin'
IS_LINUX = sys.platform.startswith('linux')

AUTOMATION_TIMEOUT = 5.0


def acquire_single_instance_lock(lock_name="voxkey"):
    """
    Acquire a single-instance lock. Exits if another instance is running.

    Windows: Named Mutex via kernel32.
    macOS/Linux: File-based lock via fcntl.

    Returns a lock handle that must be kept alive (prevents GC release).
    """
    if IS_WINDOWS:
        import ctypes
        ERROR_ALREADY_EXISTS = 183
        mutex = ctypes.windll.kernel32.CreateMutexW(None, False, f"{lock_name}Mutex_v1")  # type: ignore
        last_error = ctypes.windll.kernel32.GetLastError()  # type: ignore
        if last_error == ERROR_ALREADY_EXISTS:
            logger.warning("Another instance is already running. Exiting.")
            sys.exit(0)
        return mutex
    else:
        import fcntl
        lock_path = Path.home() / f".{lock_name}.lock"
        lock_file = open(lock_path, 'w')
        try:
            fcntl.flock(lock_file, fcntl.LOCK_EX | fcntl.LOCK_NB)
            lock_file.write(str(os.getpid()))
            lock_file.flush()
            return lock_file
        except OSError:
            lock_file.close()
            logger.warning("Another instance is already running. Exiting.")
            sys.exit(0)


def release_single_instance_lock(lock_handle):
    """Release the single-instance lock."""
    if lock_handle is None:
        return
    if IS_WINDOWS:
        import ctypes
        ctypes.windll.kernel32.ReleaseMutex(lock_handle)  # type: ignore
        ctypes.windll.kernel32.CloseHandle(lock_handle)  # type: ignore
    else:
        import fcntl
        fcntl.flock(lock_handle, fcntl.LOCK_UN)
        lock_handle.close()


def _clipboard_command() -> Optional[List[str]]:
    if IS_WINDOWS:
        return ['clip']
    if IS_MACOS:
        return ['pbcopy']
    if os.environ.get('WAYLAND_DISPLAY') and shutil.which('wl-copy'):
        return ['wl-copy']
    if shutil.which('xclip'):
        return ['xclip', '-selection', 'clipboard']
    return None


def clipboard_copy_fallback(text):
    """Platform-specific clipboard fallback when pyperclip fails."""
    command = _clipboard_command()
    if command is None:
        return False
    encoding = 'utf-16le' if IS_WINDOWS else 'utf-8'
    try:
        subprocess.run(command, input=text.encode(encoding), check=True, timeout=AUTOMATION_TIMEOUT)
        return True
    except (subprocess.SubprocessError, OSError) as e:
        logger.warning(f"Clipboard fallback {command[0]} failed: {e}")
        return False


def automation_paste_command() -> Optional[List[str]]:
    """Command that asks the OS automation layer to paste into the focused app."""
    if IS_MACOS:
        return ['osascript', '-e',
                'tell application "System Events" to keystroke "v" using command down']
    if IS_WINDOWS:
        return ['powershell', '-NoProfile', '-Command',
                "(New-Object -ComObject WScript.Shell).SendKeys('^v')"]
    if shutil.which('xdotool'):
        return ['xdotool', 'key', '--clearmodifiers', 'ctrl+v']
    return None


def run_automation_paste() -> bool:
    """Paste via the system automation layer. Returns True on success."""
    command = automation_paste_command()
    if command is None:
        logger.info("No system automation paste available on this platform")
        return False
    try:
        subprocess.run(command, check=True, capture_output=True, timeout=AUTOMATION_TIMEOUT)
        return True
    except (subprocess.SubprocessError, OSError) as e:
        logger.warning(f"Automation paste via {command[0]} failed: {e}")
        return False


def has_accessibility_permission() -> bool:
    """Check whether this process may emit synthetic keystrokes."""
    if IS_MACOS:
        import ctypes
        import ctypes.util
        path = ctypes.util.find_library('ApplicationServices')
        if not path:
            return False
        services = ctypes.cdll.LoadLibrary(path)
        services.AXIsProcessTrusted.restype = ctypes.c_bool
        return bool(services.AXIsProcessTrusted())
    if IS_LINUX:
        # pynput needs an X server (XWayland counts)
        return bool(os.environ.get('DISPLAY'))
    return True


def get_default_device():
    """Get the default compute device for this platform.

    macOS: Always 'cpu' (MPS has bugs with pyannote timestamps).
    Windows/Linux: 'cuda' if available, else 'cpu'.
    """
    if IS_MACOS:
        return "cpu"
    try:
        import torch
    except ImportError:
        return "cpu"
    return "cuda" if torch.cuda.is_available() else "cpu"
