import sys
from pathlib import Path

API_SRC = Path(__file__).resolve().parents[1] / "src"
TESTS_SRC = Path(__file__).resolve().parent
CONFIG_SRC = Path(__file__).resolve().parents[3] / "packages" / "config" / "src"
PIPELINE_ROOT = Path(__file__).resolve().parents[3] / "services" / "voxel-pipeline"
PIPELINE_SRC = PIPELINE_ROOT / "src"
PIPELINE_TESTS = PIPELINE_ROOT / "tests"

sys.path.insert(0, str(PIPELINE_TESTS))
sys.path.insert(0, str(CONFIG_SRC))
sys.path.insert(0, str(PIPELINE_SRC))
sys.path.insert(0, str(API_SRC))
sys.path.insert(0, str(TESTS_SRC))
