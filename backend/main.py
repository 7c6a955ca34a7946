from pathlib import Path
import sys

# Ensure backend directory is on sys.path so `salesdesk.*` imports work no matter where main is executed
BACKEND_ROOT = Path(__file__).resolve().parent
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from salesdesk.main import app  # noqa: E402

if __name__ == "__main__":
    import uvicorn

    uvicorn.run("salesdesk.main:app", host="0.0.0.0", port=8000)
