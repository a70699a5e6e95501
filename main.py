import sys
from pathlib import Path

import uvicorn

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

if __name__ == "__main__":
    uvicorn.run("dual_subtitles.app:app", host="0.0.0.0", port=8000)
