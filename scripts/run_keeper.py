# scripts/run_keeper.py
# 〔このスクリプトがすること〕
# Noether keeper を CLI から起動/終了します。引数はそのまま bots.keeper.keeper.main に渡します。
#   python scripts/run_keeper.py --config configs/keeper.example.toml --prom-port 9108

from __future__ import annotations

import sys
from pathlib import Path

# 〔この行がすること〕 未インストールのまま実行しても src 配下を import できるようにする
SRC_PATH = Path(__file__).resolve().parents[1] / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from bots.keeper.keeper import main  # noqa: E402

if __name__ == "__main__":
    main()
