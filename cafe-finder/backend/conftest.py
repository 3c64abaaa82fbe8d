import sys
from pathlib import Path


# Tests import the backend modules flat (`config`, `models`, `services.*`), as main.py does.
SRC = Path(__file__).resolve().parent / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
