import sys
from pathlib import Path

# Ensure we can import the package from src/
repo_root = Path(__file__).resolve().parent
sys.path.append(str(repo_root / "src"))

import uvicorn  # noqa: E402

from gym_retention.api import create_app  # noqa: E402
from gym_retention.config import Settings, setup_logging  # noqa: E402
from gym_retention.data_prep import load_store  # noqa: E402
from gym_retention.engine import RetentionEngine, utc_now  # noqa: E402
from gym_retention.risk_scoring import parse_thresholds  # noqa: E402
from gym_retention.scoring import ModelScorer  # noqa: E402


def build_app():
    settings = Settings()
    setup_logging(settings.log_level)
    thresholds = parse_thresholds(settings.high_risk_threshold, settings.medium_risk_threshold)
    store = load_store(settings.raw_dir, thresholds)
    scorer = None
    if settings.model_path is not None:
        scorer = ModelScorer(store, settings.model_path, utc_now, settings.inactivity_days)
    return create_app(RetentionEngine(store=store, scorer=scorer, settings=settings, clock=utc_now))


if __name__ == "__main__":
    uvicorn.run(build_app(), host="0.0.0.0", port=8000)
