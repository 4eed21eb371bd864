import sys
from pathlib import Path


_root = Path(__file__).resolve().parents[1]
_src = _root / "src"
for _path in (_src, _root):
    if _path.exists() and str(_path) not in sys.path:
        sys.path.insert(0, str(_path))
