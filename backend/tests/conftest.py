import sys
from pathlib import Path

# Make api/, domain/, services/ and settings importable when pytest runs from backend/ or the repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))
