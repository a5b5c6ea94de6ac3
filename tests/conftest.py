import sys
from pathlib import Path

# 项目根目录与 tests 目录都放进 sys.path：前者用于以顶层包名导入，后者用于 `from fakes import ...`
TESTS = Path(__file__).resolve().parent
for path in (TESTS.parent, TESTS):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))
