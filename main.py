#!/usr/bin/env python3
"""
Sync agent launcher, also used as the PyInstaller entry script.

Frozen builds unpack the examsync package into the bundle directory, so it is
put on sys.path before the absolute import below.
"""

import sys
from pathlib import Path

ROOT = Path(getattr(sys, '_MEIPASS', Path(__file__).resolve().parent))
sys.path.insert(0, str(ROOT))

if __name__ == "__main__":
    from examsync.agent import main
    main()
