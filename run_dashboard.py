#!/usr/bin/env python3
"""Direct launcher for the Receipt Tracker dashboard.

This script launches Streamlit on ``receipt_tracker/Home.py`` with the
project root as the working directory.
"""

import os
import subprocess
import sys
from pathlib import Path

project_root = Path(__file__).parent.resolve()

if __name__ == "__main__":
    os.chdir(project_root)
    sys.path.insert(0, str(project_root))
    subprocess.run([
        sys.executable, "-m", "streamlit", "run",
        str(project_root / "receipt_tracker" / "Home.py"),
    ] + sys.argv[1:])
