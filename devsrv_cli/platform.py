"""Platform detection"""

import os
import platform

IS_WINDOWS = platform.system() == "Windows"
IS_MACOS = platform.system() == "Darwin"
IS_LINUX = platform.system() == "Linux"


def is_admin() -> bool:
    """Check if running with root privileges"""
    return os.geteuid() == 0 if hasattr(os, "geteuid") else False
